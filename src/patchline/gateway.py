"""Agent invocation gateway: the one boundary to the completion service.

Every stage talks to the coding agent through :class:`AgentGateway`. The
gateway owns three guarantees so stage code never has to:

- the returned payload matches the requested result schema, or
  :class:`~patchline.errors.SchemaViolation` is raised;
- the agent only uses tools allowed by the stage's capability grant;
- transient failures are retried with exponential backoff.
"""

from __future__ import annotations

import abc
import json
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from patchline.capabilities import CapabilitySet
from patchline.errors import GatewayError, PipelineCancelled, SchemaViolation
from patchline.schemas import GatewayResponse, UsageInfo

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)

_RAW_EXCERPT_CHARS = 500
_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*\n(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass(slots=True)
class InvocationOptions:
    """Per-call settings for :meth:`AgentGateway.invoke`."""

    working_directory: str | Path
    allowed_capabilities: CapabilitySet
    system_prompt: str = ""
    model: str = ""
    max_turns: int = 0
    timeout_seconds: float = 0
    inactivity_timeout_seconds: float = 0
    resume_session: str | None = None
    cancel_event: threading.Event | None = None


@dataclass(slots=True)
class RetryPolicy:
    """Exponential backoff for retryable gateway failures."""

    max_attempts: int = 3
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Return the sleep before retry number *attempt* (1-based)."""
        return min(self.base_delay_seconds * (2 ** max(0, attempt - 1)), self.max_delay_seconds)


@dataclass(slots=True)
class RawInvocation:
    """What a concrete gateway hands back before schema validation."""

    final_message: str
    session_id: str | None = None
    usage: UsageInfo | None = None
    tool_uses: list[str] = field(default_factory=list)
    num_turns: int = 0
    structured: Any = None


class AgentGateway(abc.ABC):
    """Common interface for completion-service backends.

    Subclasses implement :meth:`_invoke_once`, which performs exactly one
    call and raises a :class:`~patchline.errors.GatewayError` subclass on
    failure. :meth:`invoke` layers retries and schema validation on top.
    """

    #: Human-readable backend name used in logs.
    name: str = "base"

    def __init__(self, retry_policy: RetryPolicy | None = None) -> None:
        self.retry_policy = retry_policy or RetryPolicy()

    def invoke(
        self,
        prompt: str,
        options: InvocationOptions,
        result_schema: type[ResultT],
    ) -> GatewayResponse:
        """Run *prompt* under *options* and return a validated response.

        ``response.parsed`` is an instance of *result_schema*.
        """
        full_prompt = f"{prompt.rstrip()}\n\n{render_schema_instructions(result_schema)}"
        policy = self.retry_policy
        attempts = max(1, policy.max_attempts)
        started = time.monotonic()

        for attempt in range(1, attempts + 1):
            _raise_if_cancelled(options)
            try:
                raw = self._invoke_once(full_prompt, options)
            except GatewayError as exc:
                if not exc.retryable or attempt >= attempts:
                    raise
                delay = policy.delay_for(attempt)
                logger.warning(
                    "%s invocation failed (attempt %s/%s): %s; retrying in %.1fs",
                    self.name,
                    attempt,
                    attempts,
                    exc,
                    delay,
                )
                _sleep_unless_cancelled(delay, options)
                continue

            parsed = validate_payload(
                raw.structured if raw.structured is not None else raw.final_message,
                result_schema,
                session_id=raw.session_id,
            )
            return GatewayResponse(
                parsed=parsed,
                session_id=raw.session_id,
                final_message=raw.final_message,
                usage=raw.usage or UsageInfo(),
                tool_uses=list(raw.tool_uses),
                num_turns=raw.num_turns,
                duration_seconds=time.monotonic() - started,
            )

        raise AssertionError("unreachable")  # pragma: no cover

    @abc.abstractmethod
    def _invoke_once(self, prompt: str, options: InvocationOptions) -> RawInvocation:
        """Perform one call to the completion service."""

    def stop(self) -> None:  # noqa: B027 - optional hook
        """Request cancellation of any in-flight call."""


# ---------------------------------------------------------------------------
# Schema helpers
# ---------------------------------------------------------------------------


def render_schema_instructions(result_schema: type[BaseModel]) -> str:
    """Describe the expected final payload so the agent can self-format."""
    schema = json.dumps(result_schema.model_json_schema(), indent=2, sort_keys=True)
    return (
        "When you are finished, reply with ONLY a single JSON object matching this "
        "JSON Schema. No prose before or after it, no markdown fences.\n"
        f"{schema}"
    )


def extract_json_payload(text: str) -> Any:
    """Pull a JSON value out of an agent's final message.

    Tries the whole message, then fenced ```json blocks (last first), then
    the outermost ``{...}`` span. Raises :class:`ValueError` when nothing
    parses.
    """
    stripped = (text or "").strip()
    if not stripped:
        raise ValueError("empty final message")

    candidates = [stripped]
    candidates.extend(reversed(_FENCED_JSON_RE.findall(stripped)))
    start, end = stripped.find("{"), stripped.rfind("}")
    if 0 <= start < end:
        candidates.append(stripped[start : end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise ValueError("no JSON object found in final message")


def validate_payload(
    payload: Any,
    result_schema: type[ResultT],
    *,
    session_id: str | None = None,
) -> ResultT:
    """Validate *payload* (text or decoded JSON) against *result_schema*."""
    raw_text = payload if isinstance(payload, str) else json.dumps(payload, default=str)
    excerpt = raw_text[:_RAW_EXCERPT_CHARS]
    if isinstance(payload, str):
        try:
            payload = extract_json_payload(payload)
        except ValueError as exc:
            raise SchemaViolation(
                f"{result_schema.__name__}: {exc}",
                raw_excerpt=excerpt,
                session_id=session_id,
            ) from exc
    if not isinstance(payload, dict):
        raise SchemaViolation(
            f"{result_schema.__name__}: expected a JSON object, got {type(payload).__name__}",
            raw_excerpt=excerpt,
            session_id=session_id,
        )
    try:
        return result_schema.model_validate(payload)
    except ValidationError as exc:
        raise SchemaViolation(
            f"{result_schema.__name__}: {exc.error_count()} validation error(s): "
            + "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in exc.errors()[:5]
            ),
            raw_excerpt=excerpt,
            session_id=session_id,
        ) from exc


def _raise_if_cancelled(options: InvocationOptions) -> None:
    if options.cancel_event is not None and options.cancel_event.is_set():
        raise PipelineCancelled("Invocation cancelled by stop request")


def _sleep_unless_cancelled(delay: float, options: InvocationOptions) -> None:
    if options.cancel_event is None:
        time.sleep(delay)
        return
    if options.cancel_event.wait(delay):
        raise PipelineCancelled("Invocation cancelled by stop request")


# ── Registry ──────────────────────────────────────────────────────

_REGISTRY: dict[str, type[AgentGateway]] = {}


def register_gateway(key: str, cls: type[AgentGateway]) -> None:
    """Register a gateway class under a lookup key."""
    normalized_key = (key or "").strip()
    if not normalized_key:
        raise ValueError("Gateway key must be a non-empty string")
    if not isinstance(cls, type) or not issubclass(cls, AgentGateway):
        raise TypeError("Registered gateway must be an AgentGateway subclass")

    existing = _REGISTRY.get(normalized_key)
    if existing is not None and existing is not cls:
        raise ValueError(
            f"Gateway '{normalized_key}' is already registered with {existing.__name__}"
        )
    _REGISTRY[normalized_key] = cls


def get_gateway_class(key: str) -> type[AgentGateway]:
    """Look up a registered gateway class by key."""
    normalized_key = (key or "").strip()
    if normalized_key not in _REGISTRY:
        available = ", ".join(sorted(_REGISTRY)) or "(none)"
        raise KeyError(f"Unknown gateway '{normalized_key}'. Available: {available}")
    return _REGISTRY[normalized_key]


def list_gateways() -> list[str]:
    """Return all registered gateway keys."""
    return sorted(_REGISTRY)
