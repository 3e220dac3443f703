"""Implementer stage: applies the plan and reports the files it touched."""

from __future__ import annotations

from patchline.capabilities import Capability, CapabilitySet
from patchline.changes import upsert_changes
from patchline.prompts import IMPLEMENTER_SYSTEM_PROMPT, build_implementer_prompt
from patchline.schemas import ImplementerResult, PipelineStage, PipelineState, PlanResult
from patchline.stages.base import StageAgent


class ImplementerStage(StageAgent[ImplementerResult]):
    stage = PipelineStage.IMPLEMENTER
    capabilities = CapabilitySet(
        [
            Capability.READ_FILE,
            Capability.WRITE_FILE,
            Capability.EDIT_FILE,
            Capability.SEARCH_CONTENTS,
            Capability.LIST_FILES,
            Capability.RUN_SHELL,
        ]
    )
    result_schema = ImplementerResult
    system_prompt = IMPLEMENTER_SYSTEM_PROMPT

    def run(self, state: PipelineState, plan: PlanResult) -> ImplementerResult:
        result, _ = self._invoke(state, build_implementer_prompt(state.original_prompt, plan))
        upsert_changes(state.changes, result.changes, root=state.workspace_path)
        return result
