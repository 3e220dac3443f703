"""Readiness checks run before starting a pipeline."""

from __future__ import annotations

import os
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path

from patchline.workspace import find_repository_root

_CLAUDE_AUTH_ENV_VARS = ("ANTHROPIC_API_KEY", "CLAUDE_API_KEY", "CLAUDE_CODE_OAUTH_TOKEN")

_PLACEHOLDER_SECRET_VALUES = {
    "sk-...",
    "sk-ant-...",
    "api-key",
    "token",
    "xxx",
    "your-key",
    "your_api_key",
    "your-api-key",
}
_PLACEHOLDER_SECRET_SUBSTRINGS = (
    "your-key-here",
    "your_api_key_here",
    "your-anthropic-api-key",
    "replace-me",
    "changeme",
    "placeholder",
)


@dataclass(frozen=True)
class PreflightCheck:
    """A single readiness check result."""

    key: str
    label: str
    status: str  # "pass" | "warn" | "fail"
    detail: str
    hint: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "key": self.key,
            "label": self.label,
            "status": self.status,
            "detail": self.detail,
            "hint": self.hint,
        }


@dataclass(frozen=True)
class PreflightReport:
    checks: list[PreflightCheck]
    workspace_path: str
    claude_binary: str = "claude"

    @property
    def ready(self) -> bool:
        return all(check.status != "fail" for check in self.checks)

    def failure_messages(self) -> list[str]:
        return [
            f"{check.label}: {check.hint or check.detail}"
            for check in self.checks
            if check.status == "fail"
        ]

    def to_dict(self) -> dict[str, object]:
        return {
            "workspace_path": self.workspace_path,
            "claude_binary": self.claude_binary,
            "checks": [c.to_dict() for c in self.checks],
            "ready": self.ready,
        }


def _looks_like_placeholder_secret(value: str) -> bool:
    normalized = (value or "").strip().strip('"').strip("'").lower()
    if not normalized or normalized in _PLACEHOLDER_SECRET_VALUES:
        return True
    if normalized.startswith("<") and normalized.endswith(">"):
        return True
    if normalized.endswith("..."):
        return True
    return any(token in normalized for token in _PLACEHOLDER_SECRET_SUBSTRINGS)


def binary_exists(binary: str) -> bool:
    """Return ``True`` when an executable exists for *binary*."""
    binary = os.path.expandvars(os.path.expanduser(str(binary or "").strip()))
    if not binary:
        return False
    try:
        candidate = Path(binary)
        if candidate.is_file():
            return os.name == "nt" or os.access(candidate, os.X_OK)
    except OSError:
        pass
    return shutil.which(binary) is not None


def has_claude_auth() -> bool:
    """Detect Claude auth in env vars or local auth files."""
    for name in _CLAUDE_AUTH_ENV_VARS:
        value = os.getenv(name, "").strip()
        if value and not _looks_like_placeholder_secret(value):
            return True
    home = Path.home()
    return any(
        path.exists()
        for path in (
            home / ".claude.json",
            home / ".claude" / ".credentials.json",
            home / ".config" / "claude" / "auth.json",
        )
    )


def workspace_write_error(workspace: Path) -> str | None:
    """Return a human-readable write failure for *workspace*, if any."""
    probe_path = workspace / f".patchline-preflight-{uuid.uuid4().hex}.tmp"
    try:
        probe_path.write_text("ok", encoding="utf-8")
        probe_path.unlink(missing_ok=True)
    except OSError as exc:
        return f"Workspace is not writable: {exc}"
    return None


def build_preflight_report(
    workspace_path: str | Path,
    *,
    claude_binary: str = "claude",
) -> PreflightReport:
    """Check the claude binary, its authentication and the workspace."""
    workspace = Path(workspace_path).expanduser().resolve()
    checks: list[PreflightCheck] = []

    if binary_exists(claude_binary):
        checks.append(
            PreflightCheck("claude_binary", "Claude Code CLI binary available", "pass", claude_binary)
        )
    else:
        checks.append(
            PreflightCheck(
                "claude_binary",
                "Claude Code CLI binary available",
                "fail",
                f"'{claude_binary}' was not found on PATH",
                hint="Install Claude Code or set PATCHLINE_CLAUDE_BINARY.",
            )
        )

    if has_claude_auth():
        checks.append(
            PreflightCheck("claude_auth", "Claude authentication detected", "pass", "Found credentials")
        )
    else:
        checks.append(
            PreflightCheck(
                "claude_auth",
                "Claude authentication detected",
                "warn",
                "No ANTHROPIC_API_KEY or Claude credentials file found",
                hint="Set ANTHROPIC_API_KEY or run 'claude login'.",
            )
        )

    if not workspace.is_dir():
        checks.append(
            PreflightCheck(
                "workspace", "Workspace directory exists", "fail", f"{workspace} is not a directory"
            )
        )
    else:
        write_error = workspace_write_error(workspace)
        checks.append(
            PreflightCheck(
                "workspace",
                "Workspace directory is writable",
                "fail" if write_error else "pass",
                write_error or str(workspace),
            )
        )
        root = find_repository_root(workspace)
        checks.append(
            PreflightCheck(
                "repository",
                "Workspace is inside a git repository",
                "pass" if root else "warn",
                str(root) if root else "No repository root found; tests go under the workspace",
            )
        )

    return PreflightReport(checks=checks, workspace_path=str(workspace), claude_binary=claude_binary)
