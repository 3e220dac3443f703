"""Complexity analyzer used by ``auto`` mode to pick the effective mode."""

from __future__ import annotations

from patchline.capabilities import READ_ONLY
from patchline.prompts import ANALYZER_SYSTEM_PROMPT, build_analyzer_prompt
from patchline.schemas import ComplexityAnalysis, PipelineStage, PipelineState
from patchline.stages.base import StageAgent

FALLBACK_ANALYSIS = ComplexityAnalysis(
    complexity="medium",
    recommended_mode="full",
    needs_tests=True,
    estimated_files=5,
    reason="Analyzer failed - using default medium complexity",
)


class AnalyzerStage(StageAgent[ComplexityAnalysis]):
    stage = PipelineStage.ANALYZER
    capabilities = READ_ONLY
    result_schema = ComplexityAnalysis
    system_prompt = ANALYZER_SYSTEM_PROMPT

    def run(self, state: PipelineState) -> ComplexityAnalysis:
        analysis, _ = self._invoke(
            state, build_analyzer_prompt(state.original_prompt, state.target_paths)
        )
        return analysis
