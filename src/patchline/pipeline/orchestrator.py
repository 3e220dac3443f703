"""Pipeline orchestrator: drives one task through the stage state machine.

    (Analyze) -> (Locate) -> Plan -> Implement -> Verify -> (Fix -> Verify)* -> Done | Failed

``simple`` mode replaces the whole chain with a single combined stage and
``fast`` stops after Implement. ``full`` runs everything, locating relevant
files first when the request names none. ``auto`` asks the analyzer which
mode to use.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from patchline.errors import (
    PatchlineError,
    PipelineCancelled,
    RetryBudgetExhausted,
    SchemaViolation,
)
from patchline.gateway import AgentGateway
from patchline.pipeline.config import PipelineConfig
from patchline.schemas import (
    PipelineMode,
    PipelineRunResult,
    PipelineStage,
    PipelineState,
    PlanResult,
    RunStatus,
    Severity,
    TaskRequest,
    VerifierResult,
)
from patchline.stages import (
    FALLBACK_ANALYSIS,
    AnalyzerStage,
    FixerStage,
    ImplementerStage,
    LocatorStage,
    PlannerStage,
    SinglePassStage,
    VerifierStage,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LOG_MESSAGE_MAX_CHARS = 2000


def needs_fix(result: VerifierResult, blocking_severities: set[Severity] | frozenset[Severity]) -> bool:
    """Return True when *result* should send the run into a fix cycle."""
    if not result.passed or not result.tests_passed:
        return True
    return any(bug.severity in blocking_severities for bug in result.bugs)


class PipelineOrchestrator:
    """Runs a :class:`TaskRequest` to completion and reports the outcome.

    Parameters
    ----------
    gateway:
        Completion-service backend shared by every stage.
    config:
        Budgets, limits and fix-loop policy.
    log_callback:
        Optional callback ``(level, message)`` for real-time log streaming.
    """

    def __init__(
        self,
        gateway: AgentGateway,
        config: PipelineConfig | None = None,
        log_callback: Callable[[str, str], None] | None = None,
    ) -> None:
        self.gateway = gateway
        self.config = config or PipelineConfig()
        self.state: PipelineState | None = None
        self._stop_event = threading.Event()
        self._log_callback = log_callback

    # ------------------------------------------------------------------
    # Public controls
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Request cancellation; the active gateway call is terminated."""
        self._stop_event.set()
        if self.state is not None:
            self._log(self.state, "warn", "Stop requested")

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def run(self, request: TaskRequest) -> PipelineRunResult:
        """Execute *request* and return its result.

        Stage failures never propagate: they end the run with
        ``status=failed`` and the error recorded on the result.
        """
        state = PipelineState(
            original_prompt=request.prompt,
            workspace_path=str(Path(request.workspace_path).expanduser().resolve()),
            target_paths=tuple(request.target_paths),
            model=request.model or self.config.default_model,
            pipeline_mode=request.pipeline_mode,
        )
        self.state = state
        started = time.monotonic()
        state.status = RunStatus.RUNNING
        self._log(
            state,
            "info",
            f"Pipeline started (mode={state.pipeline_mode.value}, model={state.model})",
        )

        try:
            if not Path(state.workspace_path).is_dir():
                raise PatchlineError(f"Workspace does not exist: {state.workspace_path}")
            self._execute(state, request)
            state.status = RunStatus.DONE
            self._log(state, "info", f"Pipeline finished: {len(state.changes)} file(s) changed")
        except PipelineCancelled:
            state.status = RunStatus.CANCELLED
            state.error = "Task was cancelled"
            self._log(state, "warn", "Pipeline cancelled")
        except RetryBudgetExhausted as exc:
            state.status = RunStatus.FAILED
            state.error = str(exc)
            self._log(state, "error", f"Pipeline failed: {exc}")
        except PatchlineError as exc:
            state.status = RunStatus.FAILED
            state.error = f"{type(exc).__name__}: {exc}"
            self._log(state, "error", f"Pipeline failed: {state.error}")
        except Exception as exc:
            logger.exception("Unexpected pipeline error")
            state.status = RunStatus.FAILED
            state.error = f"Unexpected error: {exc}"
            self._log(state, "error", f"Pipeline failed: {state.error}")
        finally:
            state.finished_at = dt.datetime.now(dt.timezone.utc).isoformat()

        return PipelineRunResult.from_state(state, duration_seconds=time.monotonic() - started)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _execute(self, state: PipelineState, request: TaskRequest) -> None:
        mode = self._resolve_mode(state)
        state.effective_mode = mode
        if mode == PipelineMode.SIMPLE:
            self._run_single_pass(state)
            return

        if mode == PipelineMode.FULL and not state.target_paths and not request.planner_prompt:
            self._run_locator(state)
        plan = self._run_planner(state, request.planner_prompt)
        self._run_implementer(state, plan)
        if mode == PipelineMode.FAST:
            return
        if not state.changes:
            self._log(state, "info", "No changes to verify; skipping verification")
            return
        self._run_verify_loop(state)

    def _resolve_mode(self, state: PipelineState) -> PipelineMode:
        if state.pipeline_mode != PipelineMode.AUTO:
            return state.pipeline_mode

        self._enter(state, PipelineStage.ANALYZER)
        try:
            analysis = self._stage(AnalyzerStage).run(state)
        except PipelineCancelled:
            raise
        except PatchlineError as exc:
            self._log(
                state,
                "warn",
                f"Analyzer failed ({type(exc).__name__}: {exc}); falling back to full mode",
            )
            analysis = FALLBACK_ANALYSIS
        state.complexity = analysis
        state.mark_stage_completed(PipelineStage.ANALYZER)
        self._log(
            state,
            "info",
            f"Complexity={analysis.complexity}, mode={analysis.recommended_mode}: {analysis.reason}",
        )
        return PipelineMode(analysis.recommended_mode)

    def _run_single_pass(self, state: PipelineState) -> None:
        self._enter(state, PipelineStage.SINGLE_PASS)
        result = self._stage(SinglePassStage).run(state)
        if result.plan:
            state.plan = PlanResult(
                plan=result.plan, files_to_modify=state.touched_files()
            )
        state.mark_stage_completed(PipelineStage.SINGLE_PASS)
        level = "info" if result.verification.passed else "warn"
        self._log(
            state,
            level,
            f"Single pass changed {len(result.changes)} file(s); "
            f"self-check passed={result.verification.passed}",
        )

    def _run_locator(self, state: PipelineState) -> None:
        self._enter(state, PipelineStage.LOCATOR)
        try:
            result = self._stage(LocatorStage).run(state)
        except PipelineCancelled:
            raise
        except PatchlineError as exc:
            state.located_paths = []
            self._log(
                state,
                "warn",
                f"Locator failed ({type(exc).__name__}: {exc}); planning without located paths",
            )
        else:
            self._log(
                state,
                "info",
                f"Located {len(state.located_paths)} relevant file(s): {result.reason}".rstrip(": "),
            )
        state.mark_stage_completed(PipelineStage.LOCATOR)

    def _run_planner(self, state: PipelineState, prompt: str | None) -> PlanResult:
        self._enter(state, PipelineStage.PLANNER)
        plan = self._stage(PlannerStage).run(state, prompt)
        state.plan = plan
        state.mark_stage_completed(PipelineStage.PLANNER)
        self._log(state, "info", f"Plan ready: {len(plan.plan)} step(s)")
        return plan

    def _run_implementer(self, state: PipelineState, plan: PlanResult) -> None:
        self._enter(state, PipelineStage.IMPLEMENTER)
        result = self._stage(ImplementerStage).run(state, plan)
        state.mark_stage_completed(PipelineStage.IMPLEMENTER)
        self._log(state, "info", f"Implementation reported {len(result.changes)} change(s)")

    def _run_verify_loop(self, state: PipelineState) -> None:
        verifier = self._stage(VerifierStage)
        fixer = self._stage(FixerStage)
        blocking = self.config.blocking_severities

        while True:
            self._enter(state, PipelineStage.VERIFIER)
            result = self._retry_schema_once(state, lambda: verifier.run(state))
            state.verification = result
            state.mark_stage_completed(PipelineStage.VERIFIER)
            if not needs_fix(result, blocking):
                self._log(state, "info", "Verification passed")
                return

            self._log(
                state,
                "warn",
                f"Verification failed with {len(result.bugs)} bug(s) "
                f"(passed={result.passed}, tests_passed={result.tests_passed})",
            )
            if state.fix_iterations >= self.config.max_fix_iterations:
                raise RetryBudgetExhausted(state.fix_iterations, len(result.bugs))

            state.fix_iterations += 1
            self._enter(state, PipelineStage.FIXER)
            bugs = list(result.bugs)
            fixed = self._retry_schema_once(state, lambda: fixer.run(state, bugs))
            state.mark_stage_completed(PipelineStage.FIXER)
            self._log(
                state,
                "info",
                f"Fix cycle {state.fix_iterations}/{self.config.max_fix_iterations}: "
                f"{len(fixed.fixed)} fix(es), {len(fixed.changes)} change(s)",
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _stage(self, stage_cls: type[T]) -> T:
        return stage_cls(self.gateway, self.config, cancel_event=self._stop_event)

    def _enter(self, state: PipelineState, stage: PipelineStage) -> None:
        if self._stop_event.is_set():
            raise PipelineCancelled("Task was cancelled")
        state.current_stage = stage
        self._log(state, "info", f"Stage: {stage.value}")

    def _retry_schema_once(self, state: PipelineState, call: Callable[[], T]) -> T:
        try:
            return call()
        except SchemaViolation as exc:
            self._log(state, "warn", f"Schema violation, retrying once: {exc}")
            return call()

    def _log(self, state: PipelineState, level: str, message: str) -> None:
        stage = state.current_stage.value if state.current_stage else ""
        state.logs.append(
            {
                "ts": dt.datetime.now(dt.timezone.utc).isoformat(),
                "level": level,
                "stage": stage,
                "message": message[:_LOG_MESSAGE_MAX_CHARS],
            }
        )
        if self._log_callback:
            try:
                self._log_callback(level, message)
            except Exception:
                logger.exception("log_callback raised")
        getattr(logger, level if level != "warn" else "warning", logger.info)(
            "[%s] %s", state.task_id[:8], message
        )
