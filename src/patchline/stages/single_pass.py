"""Single-pass stage for ``simple`` mode: plan, implement and self-check in one call."""

from __future__ import annotations

from patchline.capabilities import Capability, CapabilitySet
from patchline.changes import upsert_changes
from patchline.prompts import SINGLE_PASS_SYSTEM_PROMPT, build_single_pass_prompt
from patchline.schemas import PipelineStage, PipelineState, SinglePassResult
from patchline.stages.base import StageAgent


class SinglePassStage(StageAgent[SinglePassResult]):
    stage = PipelineStage.SINGLE_PASS
    capabilities = CapabilitySet(list(Capability))
    result_schema = SinglePassResult
    system_prompt = SINGLE_PASS_SYSTEM_PROMPT

    def run(self, state: PipelineState) -> SinglePassResult:
        result, _ = self._invoke(
            state, build_single_pass_prompt(state.original_prompt, state.target_paths)
        )
        upsert_changes(state.changes, result.changes, root=state.workspace_path)
        return result
