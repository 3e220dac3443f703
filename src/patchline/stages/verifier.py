"""Verifier stage: reviews the change set, writes tests and runs them."""

from __future__ import annotations

import logging

from patchline.capabilities import Capability, CapabilitySet
from patchline.prompts import VERIFIER_SYSTEM_PROMPT, build_verifier_prompt
from patchline.schemas import PipelineStage, PipelineState, VerifierResult
from patchline.stages.base import StageAgent
from patchline.workspace import resolve_tests_dir

logger = logging.getLogger(__name__)


class VerifierStage(StageAgent[VerifierResult]):
    stage = PipelineStage.VERIFIER
    capabilities = CapabilitySet(
        [
            Capability.READ_FILE,
            Capability.RUN_SHELL,
            Capability.SEARCH_CONTENTS,
            Capability.LIST_FILES,
            Capability.WRITE_FILE,
            Capability.EDIT_FILE,
        ]
    )
    result_schema = VerifierResult
    system_prompt = VERIFIER_SYSTEM_PROMPT

    def run(self, state: PipelineState) -> VerifierResult:
        # Tests written here stay out of state.changes.
        tests_dir = resolve_tests_dir(
            state.workspace_path, state.touched_files(), self.config.tests_dirname
        )
        prompt = build_verifier_prompt(state.original_prompt, state.changes, str(tests_dir))
        result, _ = self._invoke(state, prompt)
        logger.info(
            "[%s] verification passed=%s tests_passed=%s bugs=%d",
            state.task_id[:8],
            result.passed,
            result.tests_passed,
            len(result.bugs),
        )
        return result
