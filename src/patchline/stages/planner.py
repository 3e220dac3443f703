"""Planner stage: read-only exploration that produces the implementation plan."""

from __future__ import annotations

import logging

from patchline.capabilities import READ_ONLY
from patchline.errors import MalformedPlan
from patchline.prompts import PLANNER_SYSTEM_PROMPT, build_planner_prompt
from patchline.schemas import PipelineStage, PipelineState, PlanResult
from patchline.stages.base import StageAgent

logger = logging.getLogger(__name__)


class PlannerStage(StageAgent[PlanResult]):
    stage = PipelineStage.PLANNER
    capabilities = READ_ONLY
    result_schema = PlanResult
    system_prompt = PLANNER_SYSTEM_PROMPT

    def run(self, state: PipelineState, prompt: str | None = None) -> PlanResult:
        """Plan the change for *state*.

        *prompt* replaces the default target-path enrichment when a caller
        has already built a richer planning prompt. Raises
        :class:`MalformedPlan` when the plan has no steps; ``state.plan`` is
        left untouched in that case.
        """
        paths = state.target_paths or state.located_paths
        text = prompt or build_planner_prompt(state.original_prompt, paths)
        plan, _ = self._invoke(state, text)
        if not plan.plan:
            raise MalformedPlan("Planner returned no plan steps")
        logger.info(
            "[%s] plan has %d step(s) across %d file(s)",
            state.task_id[:8],
            len(plan.plan),
            len(plan.files_to_modify),
        )
        return plan
