"""Fixer stage: repairs the bugs reported by the last verification."""

from __future__ import annotations

from collections.abc import Sequence

from patchline.capabilities import Capability, CapabilitySet
from patchline.changes import upsert_changes
from patchline.prompts import FIXER_SYSTEM_PROMPT, build_fixer_prompt
from patchline.schemas import Bug, FixerResult, PipelineStage, PipelineState
from patchline.stages.base import StageAgent


class FixerStage(StageAgent[FixerResult]):
    stage = PipelineStage.FIXER
    capabilities = CapabilitySet(
        [
            Capability.READ_FILE,
            Capability.EDIT_FILE,
            Capability.WRITE_FILE,
            Capability.RUN_SHELL,
        ]
    )
    result_schema = FixerResult
    system_prompt = FIXER_SYSTEM_PROMPT

    def run(self, state: PipelineState, bugs: Sequence[Bug]) -> FixerResult:
        prompt = build_fixer_prompt(state.original_prompt, bugs, state.touched_files())
        result, _ = self._invoke(state, prompt)
        # Only reached on success, so a failed call leaves changes alone.
        upsert_changes(state.changes, result.changes, root=state.workspace_path)
        return result
