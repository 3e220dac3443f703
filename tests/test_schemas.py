"""Unit tests for schemas module."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from patchline.schemas import (
    Bug,
    ChangeAction,
    ChangeRecord,
    ComplexityAnalysis,
    FixerResult,
    PipelineMode,
    PipelineRunResult,
    PipelineStage,
    PipelineState,
    PlanResult,
    RunStatus,
    Severity,
    UsageInfo,
    VerifierResult,
)


def _state(**overrides) -> PipelineState:
    data = {
        "original_prompt": "add input validation",
        "workspace_path": "/tmp/ws",
        "model": "sonnet",
    }
    data.update(overrides)
    return PipelineState(**data)


class TestChangeRecord:
    def test_strips_file(self):
        rec = ChangeRecord(file="  x.ts ", action="modified")
        assert rec.file == "x.ts"
        assert rec.action == ChangeAction.MODIFIED

    def test_rejects_blank_file(self):
        with pytest.raises(ValidationError):
            ChangeRecord(file="   ", action="created")

    def test_rejects_unknown_action(self):
        with pytest.raises(ValidationError):
            ChangeRecord(file="x.ts", action="renamed")


class TestBug:
    def test_accepts_issue_alias(self):
        bug = Bug.model_validate({"file": "x.ts", "line": 12, "issue": "missing null check"})
        assert bug.description == "missing null check"
        assert bug.severity == Severity.MEDIUM

    def test_accepts_description(self):
        bug = Bug.model_validate(
            {"file": "x.ts", "description": "off by one", "severity": "critical"}
        )
        assert bug.line is None
        assert bug.severity == Severity.CRITICAL


class TestStageResults:
    def test_plan_result_is_frozen(self):
        plan = PlanResult.model_validate(
            {"plan": [{"step": 1, "file": "x.ts", "action": "modify", "description": "d"}]}
        )
        with pytest.raises(ValidationError):
            plan.files_to_modify = ["y.ts"]

    def test_plan_step_action_is_constrained(self):
        with pytest.raises(ValidationError):
            PlanResult.model_validate({"plan": [{"step": 1, "file": "x", "action": "rename"}]})

    def test_fixer_result_requires_both_arrays(self):
        with pytest.raises(ValidationError):
            FixerResult.model_validate({"fixed": []})

    def test_verifier_defaults(self):
        result = VerifierResult(passed=True, tests_passed=True)
        assert result.bugs == []
        assert result.tests_written == []

    def test_verifier_must_report_test_outcome(self):
        with pytest.raises(ValidationError, match="tests_passed"):
            VerifierResult.model_validate({"passed": True, "bugs": []})

    def test_complexity_defaults_to_full(self):
        assert ComplexityAnalysis().recommended_mode == "full"


class TestUsageInfo:
    def test_addition_sums_counts(self):
        total = UsageInfo(input_tokens=1, output_tokens=2, total_tokens=3, cost_usd=0.5) + UsageInfo(
            input_tokens=10, output_tokens=20, total_tokens=30, cost_usd=0.25, model="sonnet"
        )
        assert total.input_tokens == 11
        assert total.output_tokens == 22
        assert total.total_tokens == 33
        assert total.cost_usd == pytest.approx(0.75)
        assert total.model == "sonnet"


class TestPipelineState:
    def test_identity_fields_are_frozen(self):
        state = _state()
        for field, value in (
            ("task_id", "other"),
            ("original_prompt", "other"),
            ("workspace_path", "/elsewhere"),
            ("model", "opus"),
            ("target_paths", ("a",)),
        ):
            with pytest.raises(ValidationError):
                setattr(state, field, value)

    def test_task_ids_are_unique(self):
        assert _state().task_id != _state().task_id

    def test_assignment_is_validated(self):
        state = _state()
        with pytest.raises(ValidationError):
            state.status = "exploded"

    def test_mark_stage_completed_is_idempotent(self):
        state = _state()
        state.mark_stage_completed(PipelineStage.VERIFIER)
        state.mark_stage_completed(PipelineStage.VERIFIER)
        assert state.stages_completed == [PipelineStage.VERIFIER]

    def test_record_usage_accumulates_per_stage(self):
        state = _state()
        state.record_usage(PipelineStage.VERIFIER, UsageInfo(total_tokens=5))
        state.record_usage(PipelineStage.VERIFIER, UsageInfo(total_tokens=7))
        state.record_usage(PipelineStage.FIXER, UsageInfo(total_tokens=1))
        assert state.usage["verifier"].total_tokens == 12
        assert state.total_usage().total_tokens == 13


class TestPipelineRunResult:
    def test_failed_run_reports_stage(self):
        state = _state(pipeline_mode=PipelineMode.FULL)
        state.current_stage = PipelineStage.PLANNER
        state.status = RunStatus.FAILED
        state.error = "MalformedPlan: empty"
        result = PipelineRunResult.from_state(state, duration_seconds=1.5)
        assert result.success is False
        assert result.stage_failed == PipelineStage.PLANNER
        assert result.duration_seconds == 1.5

    def test_done_run_has_no_failed_stage(self):
        state = _state()
        state.current_stage = PipelineStage.IMPLEMENTER
        state.status = RunStatus.DONE
        result = PipelineRunResult.from_state(state)
        assert result.success is True
        assert result.stage_failed is None

    def test_result_changes_are_copies(self):
        state = _state()
        state.changes.append(ChangeRecord(file="x.ts", action="modified"))
        result = PipelineRunResult.from_state(state)
        state.changes.clear()
        assert [c.file for c in result.changes] == ["x.ts"]
