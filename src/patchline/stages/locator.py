"""Locator stage: finds the files a request concerns before planning."""

from __future__ import annotations

from patchline.capabilities import READ_ONLY
from patchline.changes import normalize_change_path
from patchline.prompts import LOCATOR_SYSTEM_PROMPT, build_locator_prompt
from patchline.schemas import LocatorResult, PipelineStage, PipelineState
from patchline.stages.base import StageAgent


class LocatorStage(StageAgent[LocatorResult]):
    stage = PipelineStage.LOCATOR
    capabilities = READ_ONLY
    result_schema = LocatorResult
    system_prompt = LOCATOR_SYSTEM_PROMPT

    def run(self, state: PipelineState) -> LocatorResult:
        """Locate relevant files and record them on ``state.located_paths``."""
        result, _ = self._invoke(state, build_locator_prompt(state.original_prompt))
        located: list[str] = []
        for path in result.paths:
            key = normalize_change_path(path, state.workspace_path)
            if key and key not in located:
                located.append(key)
        state.located_paths = located
        return result
