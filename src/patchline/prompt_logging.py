"""Prompt logging that stays metadata-only unless explicitly enabled."""

from __future__ import annotations

import hashlib
import logging
import os
import re
from typing import Final

_PROMPT_DEBUG_ENV: Final[str] = "PATCHLINE_PROMPT_DEBUG"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}

_SECRET_PATTERNS = (
    re.compile(
        r"(?i)\b(api[_-]?key|access[_-]?token|client[_-]?secret|authorization|token|secret|password)"
        r"\b(\s*[:=]\s*)([^\s,;]+)"
    ),
    re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._\-+/=]{10,}"),
    re.compile(r"\bsk-(?:ant-|proj-)?[A-Za-z0-9_-]{16,}\b"),
    re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"),
    re.compile(r"\bAKIA[0-9A-Z]{16}\b"),
)


def is_prompt_debug_enabled() -> bool:
    """Return True when full prompt text may be logged."""
    raw = os.getenv(_PROMPT_DEBUG_ENV, "").strip().lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    return logging.getLogger("patchline").isEnabledFor(logging.DEBUG)


def count_secret_hits(text: str) -> int:
    """Count substrings of *text* that look like credentials."""
    return sum(len(pattern.findall(text or "")) for pattern in _SECRET_PATTERNS)


def prompt_metadata(prompt: str) -> dict[str, int | str]:
    """Return compact, secret-safe metadata about *prompt*."""
    text = str(prompt or "")
    return {
        "length_chars": len(text),
        "sha256": hashlib.sha256(text.encode("utf-8")).hexdigest()[:16],
        "redaction_hits": count_secret_hits(text),
    }


def format_prompt_log_line(prompt: str, *, label: str = "Prompt", debug: bool | None = None) -> str:
    """Format *prompt* for a log line: full text in debug mode, metadata otherwise."""
    text = str(prompt or "")
    enabled = is_prompt_debug_enabled() if debug is None else debug
    if enabled:
        return f"{label}: {text}"
    meta = prompt_metadata(text)
    return (
        f"{label} metadata: len={meta['length_chars']}, sha256={meta['sha256']}, "
        f"redaction_hits={meta['redaction_hits']} "
        f"(set {_PROMPT_DEBUG_ENV}=1 to include full prompt text)"
    )
