"""System prompts and prompt builders for each pipeline stage."""

from __future__ import annotations

import json
from collections.abc import Sequence

from patchline.schemas import Bug, ChangeRecord, PlanResult

ANALYZER_SYSTEM_PROMPT = """\
You are a senior engineer triaging a change request before any work starts.
Explore the repository just enough to judge how large and risky the change is.
Do not modify any file.

Recommend a pipeline mode:
- "simple": a one-file or cosmetic change that can be planned, made and checked in one pass.
- "fast": a contained change across a few files where separate verification adds little.
- "full": anything touching behavior across modules, data formats, or code that needs new tests.
When unsure, recommend "full".
"""

LOCATOR_SYSTEM_PROMPT = """\
You are a senior engineer locating the code a change request concerns.
Search the repository and list the files most likely to need changes or to be
read while planning them, most relevant first. Return paths relative to the
workspace root. Do not modify any file.
"""

PLANNER_SYSTEM_PROMPT = """\
You are a senior engineer writing an implementation plan.
Read the relevant code, then produce an ordered list of concrete file-level steps.
Do not modify any file. Each step names exactly one file and one action
(create, modify or delete). List every file you expect to touch in files_to_modify,
and record risks or constraints in considerations.
"""

IMPLEMENTER_SYSTEM_PROMPT = """\
You are a senior engineer implementing an approved plan.
Follow the plan step by step and make the edits directly in the workspace.
Keep changes minimal and consistent with the surrounding code style.
Report one change record per file you created, modified or deleted.
"""

VERIFIER_SYSTEM_PROMPT = """\
You are a meticulous reviewer and test author.
Review the listed changes against the original request, write focused tests for the
changed behavior in the tests directory given below, and run them.
Report every defect you find as a bug with its file, line (if known), a description
and a severity. Set passed to true only when the change is correct and the tests pass.
Do not fix the code under review yourself.
"""

FIXER_SYSTEM_PROMPT = """\
You are a senior engineer fixing defects found in code review.
Fix each listed bug with the smallest correct edit. Do not refactor unrelated code.
Report what you fixed and one change record per file you touched.
"""

SINGLE_PASS_SYSTEM_PROMPT = """\
You are a senior engineer handling a small change end to end.
Plan the change, implement it, then check your own work (run existing tests when
they exist) and fix anything you broke. Report the plan, one change record per file
you touched, and whether your verification passed.
"""


def _bullet_list(items: Sequence[str], *, empty: str = "(none)") -> str:
    cleaned = [str(item).strip() for item in items if str(item).strip()]
    if not cleaned:
        return empty
    return "\n".join(f"- {item}" for item in cleaned)


def _changes_block(changes: Sequence[ChangeRecord]) -> str:
    if not changes:
        return "(no changes recorded)"
    return "\n".join(
        f"- {c.file} [{c.action.value}]" + (f": {c.summary}" if c.summary else "")
        for c in changes
    )


def build_analyzer_prompt(original_prompt: str, target_paths: Sequence[str] = ()) -> str:
    return (
        f"## Change request\n{original_prompt.strip()}\n\n"
        f"## Paths the requester pointed at\n{_bullet_list(target_paths)}\n\n"
        "Assess the complexity of this change and recommend a pipeline mode."
    )


def build_locator_prompt(original_prompt: str) -> str:
    return (
        f"## Change request\n{original_prompt.strip()}\n\n"
        "Find the files this change concerns."
    )


def build_planner_prompt(original_prompt: str, target_paths: Sequence[str] = ()) -> str:
    """Enrich the raw request with target-path hints for the planner."""
    parts = [f"## Task\n{original_prompt.strip()}"]
    if any(str(p).strip() for p in target_paths):
        parts.append(
            "## Relevant paths\nStart your exploration here; other files may also need changes.\n"
            + _bullet_list(target_paths)
        )
    parts.append("Produce the implementation plan.")
    return "\n\n".join(parts)


def build_implementer_prompt(original_prompt: str, plan: PlanResult) -> str:
    steps = "\n".join(
        f"{step.step}. [{step.action}] {step.file}: {step.description}".rstrip(": ")
        for step in plan.plan
    )
    return (
        f"## Task\n{original_prompt.strip()}\n\n"
        f"## Plan\n{steps}\n\n"
        f"## Files to modify\n{_bullet_list(plan.files_to_modify)}\n\n"
        f"## Considerations\n{_bullet_list(plan.considerations)}\n\n"
        "Implement the plan now."
    )


def build_verifier_prompt(
    original_prompt: str,
    changes: Sequence[ChangeRecord],
    tests_dir: str,
) -> str:
    return (
        f"## Original request\n{original_prompt.strip()}\n\n"
        f"## Changes to verify\n{_changes_block(changes)}\n\n"
        f"## Tests directory\n{tests_dir}\n\n"
        "Review the changes, write tests for them in the tests directory, run the tests, "
        "and report the result."
    )


def build_fixer_prompt(
    original_prompt: str,
    bugs: Sequence[Bug],
    touched_files: Sequence[str],
) -> str:
    bug_payload = json.dumps(
        [bug.model_dump(mode="json") for bug in bugs], indent=2, ensure_ascii=False
    )
    return (
        f"## Original request\n{original_prompt.strip()}\n\n"
        f"## Bugs to fix\n{bug_payload}\n\n"
        f"## Files changed so far\n{_bullet_list(touched_files)}\n\n"
        "Fix every bug listed above."
    )


def build_single_pass_prompt(original_prompt: str, target_paths: Sequence[str] = ()) -> str:
    return (
        f"## Task\n{original_prompt.strip()}\n\n"
        f"## Relevant paths\n{_bullet_list(target_paths)}\n\n"
        "Plan, implement and verify this change in one pass."
    )
