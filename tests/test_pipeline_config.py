"""Tests for PipelineConfig defaults, validation and env loading."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from patchline.pipeline.config import PipelineConfig
from patchline.schemas import PipelineStage, Severity


def test_defaults() -> None:
    config = PipelineConfig()
    assert config.max_fix_iterations == 2
    assert config.blocking_severities == set()
    assert config.max_turns_for(PipelineStage.PLANNER) == 30
    assert config.max_turns_for(PipelineStage.LOCATOR) == 15
    assert config.max_turns_for(PipelineStage.SINGLE_PASS) == 80
    assert config.tests_dirname == "tests"


def test_stage_turn_overrides_merge_with_defaults() -> None:
    config = PipelineConfig(stage_max_turns={"verifier": 12, PipelineStage.FIXER: 5})
    assert config.max_turns_for(PipelineStage.VERIFIER) == 12
    assert config.max_turns_for(PipelineStage.FIXER) == 5
    assert config.max_turns_for(PipelineStage.IMPLEMENTER) == 50


def test_unknown_stage_in_turns_is_rejected() -> None:
    with pytest.raises(ValidationError, match="Unknown stage"):
        PipelineConfig(stage_max_turns={"reviewer": 3})


def test_negative_fix_budget_is_rejected() -> None:
    with pytest.raises(ValidationError):
        PipelineConfig(max_fix_iterations=-1)


def test_retry_delay_bounds_are_checked() -> None:
    with pytest.raises(ValidationError, match="retry_max_delay_seconds"):
        PipelineConfig(retry_base_delay_seconds=10, retry_max_delay_seconds=1)


def test_retry_policy_mirrors_config() -> None:
    policy = PipelineConfig(gateway_max_attempts=5, retry_base_delay_seconds=1).retry_policy()
    assert policy.max_attempts == 5
    assert policy.base_delay_seconds == 1
    assert policy.max_delay_seconds == 30.0


def test_from_env_reads_prefixed_variables() -> None:
    env = {
        "PATCHLINE_CLAUDE_BINARY": "/opt/claude",
        "PATCHLINE_MODEL": "opus",
        "PATCHLINE_MAX_FIX_ITERATIONS": "3",
        "PATCHLINE_BLOCKING_SEVERITIES": "critical, HIGH",
        "PATCHLINE_TIMEOUT_SECONDS": "60",
        "UNRELATED": "x",
    }
    config = PipelineConfig.from_env(env)
    assert config.claude_binary == "/opt/claude"
    assert config.default_model == "opus"
    assert config.max_fix_iterations == 3
    assert config.blocking_severities == {Severity.CRITICAL, Severity.HIGH}
    assert config.timeout_seconds == 60


def test_from_env_overrides_win() -> None:
    config = PipelineConfig.from_env({"PATCHLINE_MAX_FIX_ITERATIONS": "3"}, max_fix_iterations=1)
    assert config.max_fix_iterations == 1


def test_from_env_rejects_garbage() -> None:
    with pytest.raises(ValidationError):
        PipelineConfig.from_env({"PATCHLINE_MAX_FIX_ITERATIONS": "lots"})
