"""Exception hierarchy for gateway, stage, and pipeline failures.

Verification failures are *not* exceptions: a verifier reporting
``passed=False`` is normal flow control that drives the fix loop.
"""

from __future__ import annotations


class PatchlineError(RuntimeError):
    """Base class for all Patchline failures."""


# ---------------------------------------------------------------------------
# Gateway failures
# ---------------------------------------------------------------------------


class GatewayError(PatchlineError):
    """A single agent invocation failed.

    ``retryable`` tells the caller whether re-invoking the same call can
    reasonably succeed (transport hiccups, hangs) or not (malformed output,
    exhausted turn budget).
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        session_id: str | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.session_id = session_id
        if retryable is not None:
            self.retryable = retryable


class GatewayTransportError(GatewayError):
    """The completion service could not be reached or exited abnormally."""

    retryable = True


class GatewayTimeout(GatewayError):
    """The invocation exceeded its hard or inactivity timeout."""

    retryable = True


class TurnBudgetExhausted(GatewayError):
    """The agent hit ``max_turns`` before producing a final answer."""


class SchemaViolation(GatewayError):
    """The final payload did not match the expected result schema."""

    def __init__(
        self,
        message: str,
        *,
        raw_excerpt: str = "",
        session_id: str | None = None,
    ) -> None:
        super().__init__(message, session_id=session_id)
        self.raw_excerpt = raw_excerpt


class CapabilityViolation(GatewayError):
    """The agent attempted a tool outside the stage's capability grant."""

    def __init__(
        self,
        tool_name: str,
        allowed: list[str],
        *,
        session_id: str | None = None,
    ) -> None:
        allowed_text = ", ".join(allowed) or "(none)"
        super().__init__(
            f"Tool '{tool_name}' is not permitted (allowed: {allowed_text})",
            session_id=session_id,
        )
        self.tool_name = tool_name
        self.allowed = allowed


# ---------------------------------------------------------------------------
# Stage / run failures
# ---------------------------------------------------------------------------


class MalformedPlan(PatchlineError):
    """The planner returned a structurally valid payload without a usable plan."""


class RetryBudgetExhausted(PatchlineError):
    """Verification still failed after the configured number of fix cycles."""

    def __init__(self, iterations: int, remaining_bugs: int) -> None:
        super().__init__(
            f"Verification did not pass after {iterations} fix cycle(s); "
            f"{remaining_bugs} bug(s) remain"
        )
        self.iterations = iterations
        self.remaining_bugs = remaining_bugs


class PipelineCancelled(PatchlineError):
    """The run was cancelled by a stop request."""
