"""Gateway backed by the Anthropic Claude Code CLI (``claude``)."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

from patchline.capabilities import CapabilitySet
from patchline.errors import (
    CapabilityViolation,
    GatewayTimeout,
    GatewayTransportError,
    PipelineCancelled,
    TurnBudgetExhausted,
)
from patchline.gateway import (
    AgentGateway,
    InvocationOptions,
    RawInvocation,
    RetryPolicy,
    register_gateway,
)
from patchline.prompt_logging import format_prompt_log_line
from patchline.runner_common import coerce_int, execute_streaming_json_command, resolve_binary
from patchline.schemas import AgentEvent, EventKind, UsageInfo

logger = logging.getLogger(__name__)

_CAPABILITY_ABORT_PREFIX = "capability:"
_MAX_TURNS_SUBTYPE = "error_max_turns"


class ClaudeCodeGateway(AgentGateway):
    """Spawn ``claude -p`` and parse its stream-json output.

    The prompt is piped through stdin and the run is configured as::

        claude -p --output-format stream-json --verbose \\
            --allowedTools Read,Grep,Glob --disallowedTools Write,Edit,... \\
            --max-turns 30 --model sonnet [--append-system-prompt ...] [--resume ID]

    Parameters
    ----------
    claude_binary:
        Path or name of the Claude Code CLI binary.
    env_overrides:
        Extra environment variables forwarded to the child process.
    retry_policy:
        Backoff policy for transport failures and timeouts.
    """

    name = "Claude Code"

    def __init__(
        self,
        claude_binary: str = "claude",
        env_overrides: dict[str, str] | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__(retry_policy)
        self.claude_binary = claude_binary
        self.env_overrides = env_overrides or {}
        self._stop_event = threading.Event()

    def stop(self) -> None:
        """Kill every active ``claude`` subprocess and refuse further calls.

        The stop is sticky: it shuts the gateway down for all runs sharing
        it. To cancel a single run, set its ``InvocationOptions.cancel_event``.
        """
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    # ------------------------------------------------------------------
    # Command building
    # ------------------------------------------------------------------

    def build_command(self, options: InvocationOptions) -> list[str]:
        capabilities: CapabilitySet = options.allowed_capabilities
        cmd = [
            resolve_binary(self.claude_binary),
            "-p",
            "--output-format",
            "stream-json",
            "--verbose",
        ]
        allowed = capabilities.tool_names()
        if allowed:
            cmd.extend(["--allowedTools", ",".join(allowed)])
        denied = capabilities.denied_tool_names()
        if denied:
            cmd.extend(["--disallowedTools", ",".join(denied)])

        max_turns = max(0, coerce_int(options.max_turns))
        if max_turns > 0:
            cmd.extend(["--max-turns", str(max_turns)])

        model = (options.model or "").strip()
        if model:
            cmd.extend(["--model", model])

        system_prompt = (options.system_prompt or "").strip()
        if system_prompt:
            cmd.extend(["--append-system-prompt", system_prompt])

        if options.resume_session:
            cmd.extend(["--resume", options.resume_session])
        return cmd

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _invoke_once(self, prompt: str, options: InvocationOptions) -> RawInvocation:
        cwd = Path(options.working_directory).resolve()
        if not cwd.is_dir():
            raise GatewayTransportError(
                f"working directory does not exist: {cwd}", retryable=False
            )
        if self._stop_event.is_set():
            raise PipelineCancelled("Claude Code gateway was stopped")
        cancel_event = _merge_cancel_events(self._stop_event, options.cancel_event)

        capabilities = options.allowed_capabilities
        cmd = self.build_command(options)
        logger.info(
            "Running Claude Code (cwd=%s, tools=%s, max_turns=%s). %s",
            cwd,
            ",".join(capabilities.tool_names()) or "-",
            options.max_turns or "unlimited",
            format_prompt_log_line(prompt),
        )

        def _inspect(event: AgentEvent) -> str | None:
            for tool in event.tool_names:
                if not capabilities.permits_tool(tool):
                    return f"{_CAPABILITY_ABORT_PREFIX}{tool}"
            return None

        try:
            execution = execute_streaming_json_command(
                cmd=cmd,
                cwd=cwd,
                env={**os.environ, **self.env_overrides},
                parse_stdout_line=parse_stream_line,
                process_name="Claude Code",
                stdin_text=prompt,
                timeout_seconds=options.timeout_seconds,
                inactivity_timeout_seconds=options.inactivity_timeout_seconds,
                cancel_event=cancel_event,
                inspect_event=_inspect,
            )
        except FileNotFoundError as exc:
            raise GatewayTransportError(
                f"Claude Code binary not found: {self.claude_binary}", retryable=False
            ) from exc
        except OSError as exc:
            raise GatewayTransportError(f"Failed to execute claude: {exc}") from exc

        session_id = find_session_id(execution.events)

        if execution.cancelled:
            raise PipelineCancelled("Claude Code invocation cancelled by stop request")
        if execution.abort_reason.startswith(_CAPABILITY_ABORT_PREFIX):
            tool = execution.abort_reason[len(_CAPABILITY_ABORT_PREFIX) :]
            raise CapabilityViolation(tool, capabilities.tool_names(), session_id=session_id)
        if execution.timed_out:
            limit = (
                options.timeout_seconds
                if execution.timeout_kind == "hard"
                else options.inactivity_timeout_seconds
            )
            raise GatewayTimeout(
                f"Claude Code {execution.timeout_kind} timeout after {limit}s",
                session_id=session_id,
            )

        result_event = _last_result_event(execution.events)
        if result_event is None:
            detail = execution.stderr_text or f"exit status {execution.exit_code}"
            raise GatewayTransportError(
                f"Claude Code produced no result event: {detail[:500]}", session_id=session_id
            )

        subtype = str(result_event.raw.get("subtype") or "")
        num_turns = max(0, coerce_int(result_event.raw.get("num_turns")))
        if subtype == _MAX_TURNS_SUBTYPE:
            raise TurnBudgetExhausted(
                f"Claude Code stopped after {num_turns} turn(s) (max_turns={options.max_turns})",
                session_id=session_id,
            )
        if result_event.raw.get("is_error") or execution.exit_code != 0:
            message = result_event.text or execution.stderr_text or subtype or "unknown error"
            raise GatewayTransportError(
                f"Claude Code run failed: {message[:500]}", session_id=session_id
            )

        return RawInvocation(
            final_message=result_event.text or _last_agent_text(execution.events),
            session_id=session_id,
            usage=extract_usage(result_event.raw),
            tool_uses=[tool for ev in execution.events for tool in ev.tool_names],
            num_turns=num_turns,
            structured=result_event.raw.get("structured_output"),
        )


# ---------------------------------------------------------------------------
# Stream parsing helpers
# ---------------------------------------------------------------------------


def parse_stream_line(line: str) -> AgentEvent | None:
    """Parse one line of Claude Code stream-json output.

    Events look like::

        {"type": "system", "subtype": "init", "session_id": "..."}
        {"type": "assistant", "message": {"content": [...]}, "session_id": "..."}
        {"type": "result", "subtype": "success", "result": "...", "session_id": "..."}
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Non-JSON line from claude: %s", line[:200])
        return None
    if not isinstance(data, dict):
        return None

    etype = str(data.get("type") or "").strip().lower()
    if etype == "system":
        return AgentEvent(kind=EventKind.SYSTEM, raw=data)
    if etype == "result":
        result = data.get("result")
        return AgentEvent(
            kind=EventKind.RESULT,
            raw=data,
            text=result if isinstance(result, str) else None,
        )
    if etype == "assistant":
        texts, tools = _split_assistant_content(data.get("message"))
        return AgentEvent(
            kind=EventKind.TOOL_USE if tools else EventKind.AGENT_MESSAGE,
            raw=data,
            text="\n".join(texts).strip() or None,
            tool_names=tools,
        )
    if etype == "error" or "error" in data:
        err = data.get("error")
        text = err.get("message") if isinstance(err, dict) else err
        return AgentEvent(kind=EventKind.ERROR, raw=data, text=str(text or "") or None)
    return AgentEvent(kind=EventKind.UNKNOWN, raw=data)


def _split_assistant_content(message: Any) -> tuple[list[str], list[str]]:
    """Return ``(text_blocks, tool_names)`` from an assistant message."""
    if not isinstance(message, dict):
        return [], []
    content = message.get("content")
    if isinstance(content, str):
        return [content], []
    texts: list[str] = []
    tools: list[str] = []
    for block in content if isinstance(content, list) else []:
        if not isinstance(block, dict):
            continue
        if block.get("type") == "text":
            texts.append(str(block.get("text") or ""))
        elif block.get("type") == "tool_use":
            tools.append(str(block.get("name") or "unknown"))
    return texts, tools


def find_session_id(events: list[AgentEvent]) -> str | None:
    """Return the most recent ``session_id`` seen in the stream."""
    for ev in reversed(events):
        value = ev.raw.get("session_id")
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _last_result_event(events: list[AgentEvent]) -> AgentEvent | None:
    for ev in reversed(events):
        if ev.kind == EventKind.RESULT:
            return ev
    return None


def _last_agent_text(events: list[AgentEvent]) -> str:
    for ev in reversed(events):
        if ev.kind in (EventKind.AGENT_MESSAGE, EventKind.TOOL_USE) and ev.text:
            return ev.text
    return ""


def extract_usage(data: dict[str, Any]) -> UsageInfo:
    """Extract token usage and cost from a result event."""
    usage_raw = data.get("usage")
    if not isinstance(usage_raw, dict):
        usage_raw = {}
    input_tokens = max(0, coerce_int(usage_raw.get("input_tokens")))
    output_tokens = max(0, coerce_int(usage_raw.get("output_tokens")))
    cache_tokens = max(0, coerce_int(usage_raw.get("cache_read_input_tokens"))) + max(
        0, coerce_int(usage_raw.get("cache_creation_input_tokens"))
    )
    try:
        cost = float(data.get("total_cost_usd") or 0.0)
    except (TypeError, ValueError):
        cost = 0.0
    return UsageInfo(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens + cache_tokens,
        cost_usd=cost,
        model=data.get("model") if isinstance(data.get("model"), str) else None,
    )


def _merge_cancel_events(
    primary: threading.Event,
    secondary: threading.Event | None,
) -> threading.Event:
    """Return an event that is set when either input is set."""
    if secondary is None:
        return primary
    return _AnyEvent(primary, secondary)


class _AnyEvent(threading.Event):
    """Read-only view that reports set when any wrapped event is set."""

    def __init__(self, *events: threading.Event) -> None:
        super().__init__()
        self._events = events

    def is_set(self) -> bool:
        return any(ev.is_set() for ev in self._events)


# ── Register with the gateway registry ───────────────────────────
register_gateway("claude_code", ClaudeCodeGateway)
