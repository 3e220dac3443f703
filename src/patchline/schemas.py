"""Pydantic models for structured data throughout the pipeline."""

from __future__ import annotations

import datetime as dt
import uuid
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Agent stream events
# ---------------------------------------------------------------------------


class EventKind(str, Enum):
    """Known event types emitted by ``claude -p --output-format stream-json``."""

    SYSTEM = "system"
    AGENT_MESSAGE = "agent_message"
    TOOL_USE = "tool_use"
    RESULT = "result"
    ERROR = "error"
    UNKNOWN = "unknown"


class AgentEvent(BaseModel):
    """A single parsed JSONL event from an agent run."""

    kind: EventKind = EventKind.UNKNOWN
    raw: dict[str, Any] = Field(default_factory=dict)
    text: str | None = None
    tool_names: list[str] = Field(default_factory=list)


class UsageInfo(BaseModel):
    """Token usage reported by the completion service."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0
    model: str | None = None

    def __add__(self, other: UsageInfo) -> UsageInfo:
        return UsageInfo(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            cost_usd=self.cost_usd + other.cost_usd,
            model=self.model or other.model,
        )


class GatewayResponse(BaseModel):
    """Validated outcome of one gateway invocation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    parsed: Any
    session_id: str | None = None
    final_message: str = ""
    usage: UsageInfo = Field(default_factory=UsageInfo)
    tool_uses: list[str] = Field(default_factory=list)
    num_turns: int = 0
    duration_seconds: float = 0.0


# ---------------------------------------------------------------------------
# Change records
# ---------------------------------------------------------------------------


class ChangeAction(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


class ChangeRecord(BaseModel):
    """One file-level edit produced by a stage, keyed logically by ``file``."""

    file: str = Field(min_length=1)
    action: ChangeAction
    summary: str = ""

    @field_validator("file")
    @classmethod
    def _strip_file(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("file must be a non-empty path")
        return stripped


# ---------------------------------------------------------------------------
# Stage results
# ---------------------------------------------------------------------------


class LocatorResult(BaseModel):
    """Files the locator judged relevant to the request."""

    paths: list[str]
    reason: str = ""


class PlanStep(BaseModel):
    step: int
    file: str
    action: Literal["create", "modify", "delete"]
    description: str = ""


class PlanResult(BaseModel):
    """Planner output. Produced once per run and not mutated afterwards."""

    model_config = ConfigDict(frozen=True)

    plan: list[PlanStep] = Field(default_factory=list)
    files_to_modify: list[str] = Field(default_factory=list)
    considerations: list[str] = Field(default_factory=list)


class ImplementerResult(BaseModel):
    changes: list[ChangeRecord]
    summary: str = ""


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Bug(BaseModel):
    """A defect reported by the verifier; the unit of work for the fixer."""

    model_config = ConfigDict(populate_by_name=True)

    file: str
    line: int | None = None
    description: str = Field(validation_alias=AliasChoices("description", "issue"))
    severity: Severity = Severity.MEDIUM


class TestCaseResult(BaseModel):
    __test__ = False  # Prevent pytest from collecting this model as a test class.

    name: str
    passed: bool
    output: str = ""


class VerifierResult(BaseModel):
    passed: bool
    bugs: list[Bug] = Field(default_factory=list)
    test_results: list[TestCaseResult] = Field(default_factory=list)
    tests_written: list[str] = Field(default_factory=list)
    tests_passed: bool
    suggestions: list[str] = Field(default_factory=list)


class FixRecord(BaseModel):
    file: str
    bug: str = ""
    fix: str = ""


class FixerResult(BaseModel):
    fixed: list[FixRecord]
    changes: list[ChangeRecord]


class ComplexityAnalysis(BaseModel):
    """Output of the auto-mode classifier."""

    complexity: Literal["low", "medium", "high"] = "medium"
    recommended_mode: Literal["simple", "fast", "full"] = "full"
    needs_tests: bool = True
    estimated_files: int = 0
    reason: str = ""


class SinglePassVerification(BaseModel):
    passed: bool = False
    issues_fixed: list[str] = Field(default_factory=list)


class SinglePassResult(BaseModel):
    """Combined plan + implement + verify output for ``simple`` mode."""

    plan: list[PlanStep] = Field(default_factory=list)
    changes: list[ChangeRecord] = Field(default_factory=list)
    verification: SinglePassVerification = Field(default_factory=SinglePassVerification)
    summary: str = ""


# ---------------------------------------------------------------------------
# Pipeline state
# ---------------------------------------------------------------------------


class PipelineMode(str, Enum):
    SIMPLE = "simple"
    AUTO = "auto"
    FAST = "fast"
    FULL = "full"


class PipelineStage(str, Enum):
    ANALYZER = "analyzer"
    LOCATOR = "locator"
    SINGLE_PASS = "single_pass"
    PLANNER = "planner"
    IMPLEMENTER = "implementer"
    VERIFIER = "verifier"
    FIXER = "fixer"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _utc_now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


class TaskRequest(BaseModel):
    """Input handed to the pipeline by a task source."""

    prompt: str = Field(min_length=1)
    workspace_path: str
    target_paths: list[str] = Field(default_factory=list)
    model: str | None = None
    pipeline_mode: PipelineMode = PipelineMode.AUTO
    planner_prompt: str | None = None


class PipelineState(BaseModel):
    """The single mutable record threaded through every stage of a run.

    Identity fields are frozen; ``changes`` may only be mutated through
    :func:`patchline.changes.upsert_changes`.
    """

    model_config = ConfigDict(validate_assignment=True)

    task_id: str = Field(default_factory=lambda: uuid.uuid4().hex, frozen=True)
    original_prompt: str = Field(frozen=True)
    workspace_path: str = Field(frozen=True)
    target_paths: tuple[str, ...] = Field(default=(), frozen=True)
    model: str = Field(frozen=True)
    pipeline_mode: PipelineMode = Field(default=PipelineMode.AUTO, frozen=True)

    changes: list[ChangeRecord] = Field(default_factory=list)
    session_ids: dict[str, str] = Field(default_factory=dict)

    effective_mode: PipelineMode | None = None
    complexity: ComplexityAnalysis | None = None
    located_paths: list[str] = Field(default_factory=list)
    plan: PlanResult | None = None
    verification: VerifierResult | None = None
    fix_iterations: int = 0
    current_stage: PipelineStage | None = None
    stages_completed: list[PipelineStage] = Field(default_factory=list)
    status: RunStatus = RunStatus.PENDING
    error: str | None = None
    usage: dict[str, UsageInfo] = Field(default_factory=dict)
    logs: list[dict[str, str]] = Field(default_factory=list)
    started_at: str = Field(default_factory=_utc_now)
    finished_at: str | None = None

    def mark_stage_completed(self, stage: PipelineStage) -> None:
        if stage not in self.stages_completed:
            self.stages_completed.append(stage)

    def record_usage(self, stage: PipelineStage, usage: UsageInfo) -> None:
        previous = self.usage.get(stage.value)
        self.usage[stage.value] = usage if previous is None else previous + usage

    def total_usage(self) -> UsageInfo:
        total = UsageInfo()
        for usage in self.usage.values():
            total = total + usage
        return total

    def touched_files(self) -> list[str]:
        return [change.file for change in self.changes]


class PipelineRunResult(BaseModel):
    """What a run hands back to whoever invoked the pipeline."""

    task_id: str
    status: RunStatus
    success: bool
    effective_mode: PipelineMode | None = None
    stages_completed: list[PipelineStage] = Field(default_factory=list)
    located_paths: list[str] = Field(default_factory=list)
    changes: list[ChangeRecord] = Field(default_factory=list)
    verification: VerifierResult | None = None
    session_ids: dict[str, str] = Field(default_factory=dict)
    fix_iterations: int = 0
    error: str | None = None
    stage_failed: PipelineStage | None = None
    usage: UsageInfo = Field(default_factory=UsageInfo)
    duration_seconds: float = 0.0

    @classmethod
    def from_state(cls, state: PipelineState, *, duration_seconds: float = 0.0) -> PipelineRunResult:
        failed = state.status in (RunStatus.FAILED, RunStatus.CANCELLED)
        return cls(
            task_id=state.task_id,
            status=state.status,
            success=state.status == RunStatus.DONE,
            effective_mode=state.effective_mode,
            stages_completed=list(state.stages_completed),
            located_paths=list(state.located_paths),
            changes=[c.model_copy() for c in state.changes],
            verification=state.verification,
            session_ids=dict(state.session_ids),
            fix_iterations=state.fix_iterations,
            error=state.error,
            stage_failed=state.current_stage if failed else None,
            usage=state.total_usage(),
            duration_seconds=duration_seconds,
        )
