"""Subprocess streaming helpers shared by CLI-backed gateways."""

from __future__ import annotations

import logging
import math
import os
import queue
import shutil
import subprocess
import threading
import time
from collections import deque
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from patchline.schemas import AgentEvent

logger = logging.getLogger(__name__)
if os.name != "nt":  # pragma: no cover - platform-specific import
    import signal

_MAX_CAPTURED_EVENTS = 20_000
_MAX_CAPTURED_STDERR_LINES = 5_000


def _process_isolation_kwargs() -> dict[str, object]:
    """Return subprocess kwargs that keep the child out of our signal group."""
    if os.name == "nt":
        flags = int(getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)) | int(
            getattr(subprocess, "CREATE_NO_WINDOW", 0)
        )
        return {"creationflags": flags} if flags else {}
    return {"start_new_session": True}


def resolve_binary(name: str) -> str:
    """Resolve a binary name to a full executable path when possible."""
    expanded = os.path.expandvars(os.path.expanduser(str(name or "").strip()))
    if len(expanded) >= 2 and expanded[0] == expanded[-1] and expanded[0] in {"'", '"'}:
        expanded = expanded[1:-1].strip()
    if not expanded:
        return ""
    return shutil.which(expanded) or expanded


def coerce_int(value: Any) -> int:
    """Best-effort integer coercion for loosely typed CLI payloads."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "")
        if not cleaned:
            return 0
        try:
            return int(cleaned)
        except ValueError:
            try:
                return int(float(cleaned))
            except (TypeError, ValueError, OverflowError):
                return 0
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return 0


@dataclass(slots=True)
class StreamExecutionResult:
    """Captured output and termination metadata from a streaming subprocess."""

    events: list[AgentEvent]
    raw_lines: list[str]
    stderr_lines: list[str]
    exit_code: int
    timed_out: bool = False
    timeout_kind: str = ""
    cancelled: bool = False
    abort_reason: str = ""

    @property
    def stderr_text(self) -> str:
        return "\n".join(self.stderr_lines).strip()


def execute_streaming_json_command(
    *,
    cmd: list[str],
    cwd: Path,
    env: dict[str, str],
    parse_stdout_line: Callable[[str], AgentEvent | None],
    process_name: str,
    stdin_text: str | None = None,
    timeout_seconds: float = 0,
    inactivity_timeout_seconds: float = 0,
    cancel_event: threading.Event | None = None,
    inspect_event: Callable[[AgentEvent], str | None] | None = None,
) -> StreamExecutionResult:
    """Run *cmd* and parse its stdout JSONL as it streams.

    ``timeout_seconds`` is a hard wall-clock deadline and
    ``inactivity_timeout_seconds`` bounds the silence between output lines;
    ``0`` disables either. ``inspect_event`` sees every parsed event and may
    return a reason string to kill the child immediately.
    """
    proc = subprocess.Popen(
        cmd,
        cwd=cwd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.PIPE if stdin_text is not None else subprocess.DEVNULL,
        text=True,
        encoding="utf-8",
        errors="replace",
        env=env,
        **_process_isolation_kwargs(),
    )
    if proc.stdout is None or proc.stderr is None:
        raise RuntimeError(f"{process_name} subprocess pipes are unexpectedly unavailable")

    events: deque[AgentEvent] = deque(maxlen=_MAX_CAPTURED_EVENTS)
    raw_lines: deque[str] = deque(maxlen=_MAX_CAPTURED_EVENTS)
    stderr_lines: deque[str] = deque(maxlen=_MAX_CAPTURED_STDERR_LINES)
    stream_queue: queue.Queue[tuple[str, str | object]] = queue.Queue()
    done_sentinel = object()

    def _pump_stream(stream_name: str, stream: Any) -> None:
        try:
            for line in stream:
                stream_queue.put((stream_name, line.rstrip("\n\r")))
        finally:
            stream_queue.put((stream_name, done_sentinel))

    def _pump_stdin(stream: Any, text: str) -> None:
        try:
            stream.write(text)
            stream.flush()
        except OSError:
            logger.debug("%s stdin write failed", process_name)
        finally:
            with suppress(OSError):
                stream.close()

    threads = [
        threading.Thread(target=_pump_stream, args=("stdout", proc.stdout), daemon=True),
        threading.Thread(target=_pump_stream, args=("stderr", proc.stderr), daemon=True),
    ]
    if stdin_text is not None and proc.stdin is not None:
        threads.append(
            threading.Thread(target=_pump_stdin, args=(proc.stdin, stdin_text), daemon=True)
        )
    for thread in threads:
        thread.start()

    started = time.monotonic()
    last_activity = started
    closed_streams: set[str] = set()
    timed_out = False
    timeout_kind = ""
    cancelled = False
    abort_reason = ""

    def _collect(stream_name: str, line: str) -> str:
        if stream_name == "stderr":
            stderr_lines.append(line)
            return ""
        raw_lines.append(line)
        event = parse_stdout_line(line)
        if event is None:
            return ""
        events.append(event)
        if inspect_event is None:
            return ""
        return inspect_event(event) or ""

    try:
        while len(closed_streams) < 2:
            now = time.monotonic()
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                break
            if timeout_seconds > 0 and now - started >= timeout_seconds:
                timed_out, timeout_kind = True, "hard"
                break
            if inactivity_timeout_seconds > 0 and now - last_activity >= inactivity_timeout_seconds:
                timed_out, timeout_kind = True, "inactivity"
                break

            try:
                stream_name, payload = stream_queue.get(timeout=0.25)
            except queue.Empty:
                if proc.poll() is not None and not any(t.is_alive() for t in threads[:2]):
                    break
                continue

            if payload is done_sentinel:
                closed_streams.add(stream_name)
                continue
            last_activity = time.monotonic()
            if not payload:
                continue
            abort_reason = _collect(stream_name, str(payload))
            if abort_reason:
                break

        if cancelled or timed_out or abort_reason:
            reason = abort_reason or ("stop request" if cancelled else f"{timeout_kind} timeout")
            terminate_process(proc, process_name=process_name, reason=reason)

        _wait_for_process(proc)

        if not (cancelled or timed_out or abort_reason):
            # Drain lines buffered just before exit.
            while True:
                try:
                    stream_name, payload = stream_queue.get_nowait()
                except queue.Empty:
                    break
                if payload is done_sentinel or not payload:
                    continue
                abort_reason = _collect(stream_name, str(payload))
                if abort_reason:
                    break

        return StreamExecutionResult(
            events=list(events),
            raw_lines=list(raw_lines),
            stderr_lines=list(stderr_lines),
            exit_code=proc.returncode if proc.returncode is not None else -1,
            timed_out=timed_out,
            timeout_kind=timeout_kind,
            cancelled=cancelled,
            abort_reason=abort_reason,
        )
    finally:
        for thread in threads:
            thread.join(timeout=1.0)
        for stream in (proc.stdin, proc.stdout, proc.stderr):
            if stream is not None and not stream.closed:
                with suppress(OSError):
                    stream.close()


def _wait_for_process(proc: subprocess.Popen[str]) -> None:
    """Wait for child exit and force-kill if it refuses to terminate."""
    try:
        proc.wait(timeout=5.0)
    except subprocess.TimeoutExpired:  # pragma: no cover
        proc.kill()
        proc.wait(timeout=5.0)


def terminate_process(
    proc: subprocess.Popen[str],
    *,
    process_name: str,
    reason: str,
    grace_seconds: float = 1.5,
) -> None:
    """Terminate *proc* (and its process group), escalating to kill."""
    if proc.poll() is not None:
        return
    logger.warning("Stopping %s (%s)", process_name, reason)
    _signal(proc, "SIGTERM")
    with suppress(OSError):
        proc.terminate()
    try:
        proc.wait(timeout=max(0.1, grace_seconds))
        return
    except subprocess.TimeoutExpired:
        logger.warning("%s did not exit after terminate; forcing kill.", process_name)
    _signal(proc, "SIGKILL")
    with suppress(OSError):
        proc.kill()


def _signal(proc: subprocess.Popen[str], signame: str) -> None:
    """Best-effort signal delivery to the child's process group on POSIX."""
    if os.name == "nt":  # pragma: no cover - Windows-only runtime branch
        return
    pid = int(getattr(proc, "pid", 0) or 0)
    if pid <= 0:
        return
    with suppress(OSError, ProcessLookupError):
        os.killpg(os.getpgid(pid), getattr(signal, signame))
