"""Pipeline orchestration: configuration, the run state machine and the run pool."""

from patchline.pipeline.config import PipelineConfig
from patchline.pipeline.orchestrator import PipelineOrchestrator, needs_fix
from patchline.pipeline.pool import PipelinePool

__all__ = ["PipelineConfig", "PipelineOrchestrator", "PipelinePool", "needs_fix"]
