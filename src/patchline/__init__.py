"""Patchline - plan, implement, verify and fix code changes with a coding agent."""

from importlib.metadata import PackageNotFoundError, version

from patchline.claude_code import ClaudeCodeGateway
from patchline.pipeline import PipelineConfig, PipelineOrchestrator, PipelinePool
from patchline.schemas import PipelineMode, PipelineRunResult, PipelineState, TaskRequest

__all__ = [
    "ClaudeCodeGateway",
    "PipelineConfig",
    "PipelineMode",
    "PipelineOrchestrator",
    "PipelinePool",
    "PipelineRunResult",
    "PipelineState",
    "TaskRequest",
]

try:
    __version__ = version("patchline")
except PackageNotFoundError:
    __version__ = "0.0.0"
