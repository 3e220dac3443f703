"""Pipeline configuration model."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

from pydantic import BaseModel, Field, field_validator, model_validator

from patchline.gateway import RetryPolicy
from patchline.schemas import PipelineStage, Severity

logger = logging.getLogger(__name__)

ENV_PREFIX = "PATCHLINE_"

DEFAULT_STAGE_MAX_TURNS: dict[str, int] = {
    PipelineStage.ANALYZER.value: 10,
    PipelineStage.LOCATOR.value: 15,
    PipelineStage.PLANNER.value: 30,
    PipelineStage.IMPLEMENTER.value: 50,
    PipelineStage.VERIFIER.value: 40,
    PipelineStage.FIXER.value: 30,
    PipelineStage.SINGLE_PASS.value: 80,
}


class PipelineConfig(BaseModel):
    """Settings shared by every run of a :class:`PipelineOrchestrator`."""

    claude_binary: str = "claude"
    default_model: str = "sonnet"

    # Fix loop: fixed-count budget, fail closed once exhausted.
    max_fix_iterations: int = Field(default=2, ge=0)
    # Bug severities that force a fix cycle even when the verifier reports passed.
    blocking_severities: set[Severity] = Field(default_factory=set)

    stage_max_turns: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_STAGE_MAX_TURNS))

    # Per-invocation limits in seconds. 0 disables either.
    timeout_seconds: float = Field(default=1800, ge=0)
    inactivity_timeout_seconds: float = Field(default=600, ge=0)

    gateway_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=2.0, ge=0)
    retry_max_delay_seconds: float = Field(default=30.0, ge=0)

    max_concurrent_runs: int = Field(default=2, ge=1)
    tests_dirname: str = "tests"

    @field_validator("stage_max_turns", mode="before")
    @classmethod
    def _merge_stage_turns(cls, value: object) -> dict[str, int]:
        merged = dict(DEFAULT_STAGE_MAX_TURNS)
        if isinstance(value, Mapping):
            for key, turns in value.items():
                name = getattr(key, "value", key)
                if name not in merged:
                    valid = ", ".join(sorted(merged))
                    raise ValueError(f"Unknown stage {name!r} in stage_max_turns. Valid: {valid}")
                merged[str(name)] = int(turns)
        return merged

    @model_validator(mode="after")
    def _validate_delays(self) -> PipelineConfig:
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            raise ValueError("retry_max_delay_seconds must be >= retry_base_delay_seconds")
        return self

    def max_turns_for(self, stage: PipelineStage) -> int:
        return self.stage_max_turns.get(stage.value, 0)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.gateway_max_attempts,
            base_delay_seconds=self.retry_base_delay_seconds,
            max_delay_seconds=self.retry_max_delay_seconds,
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: object) -> PipelineConfig:
        """Build a config from ``PATCHLINE_*`` environment variables.

        Recognised variables: ``PATCHLINE_CLAUDE_BINARY``, ``PATCHLINE_MODEL``,
        ``PATCHLINE_MAX_FIX_ITERATIONS``, ``PATCHLINE_BLOCKING_SEVERITIES``
        (comma-separated), ``PATCHLINE_TIMEOUT_SECONDS``,
        ``PATCHLINE_INACTIVITY_TIMEOUT_SECONDS``, ``PATCHLINE_GATEWAY_MAX_ATTEMPTS``,
        ``PATCHLINE_MAX_CONCURRENT_RUNS`` and ``PATCHLINE_TESTS_DIRNAME``.
        Explicit keyword *overrides* win over the environment.
        """
        env = os.environ if environ is None else environ
        mapping = {
            "CLAUDE_BINARY": "claude_binary",
            "MODEL": "default_model",
            "MAX_FIX_ITERATIONS": "max_fix_iterations",
            "TIMEOUT_SECONDS": "timeout_seconds",
            "INACTIVITY_TIMEOUT_SECONDS": "inactivity_timeout_seconds",
            "GATEWAY_MAX_ATTEMPTS": "gateway_max_attempts",
            "MAX_CONCURRENT_RUNS": "max_concurrent_runs",
            "TESTS_DIRNAME": "tests_dirname",
        }
        values: dict[str, object] = {}
        for suffix, field_name in mapping.items():
            raw = str(env.get(ENV_PREFIX + suffix, "")).strip()
            if raw:
                values[field_name] = raw
        severities = str(env.get(ENV_PREFIX + "BLOCKING_SEVERITIES", "")).strip()
        if severities:
            values["blocking_severities"] = [
                part.strip().lower() for part in severities.split(",") if part.strip()
            ]
        values.update(overrides)
        logger.debug("PipelineConfig from env: %s", sorted(values))
        return cls.model_validate(values)
