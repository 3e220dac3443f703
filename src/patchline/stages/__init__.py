"""Stage agents driven by the pipeline orchestrator."""

from patchline.stages.analyzer import FALLBACK_ANALYSIS, AnalyzerStage
from patchline.stages.base import StageAgent
from patchline.stages.fixer import FixerStage
from patchline.stages.implementer import ImplementerStage
from patchline.stages.locator import LocatorStage
from patchline.stages.planner import PlannerStage
from patchline.stages.single_pass import SinglePassStage
from patchline.stages.verifier import VerifierStage

__all__ = [
    "FALLBACK_ANALYSIS",
    "AnalyzerStage",
    "FixerStage",
    "ImplementerStage",
    "LocatorStage",
    "PlannerStage",
    "SinglePassStage",
    "StageAgent",
    "VerifierStage",
]
