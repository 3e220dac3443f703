"""Workspace probes: repository root discovery and test directory resolution."""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Iterable
from pathlib import Path

logger = logging.getLogger(__name__)


class GitError(RuntimeError):
    """Raised when a git command fails unexpectedly."""


def _git_subprocess_isolation_kwargs() -> dict[str, object]:
    if os.name != "nt":
        return {}
    flags = int(getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)) | int(
        getattr(subprocess, "CREATE_NO_WINDOW", 0)
    )
    return {"creationflags": flags} if flags else {}


def _run_git(
    *args: str,
    cwd: Path,
    check: bool = True,
    timeout: int = 15,
) -> subprocess.CompletedProcess[str]:
    """Run a git command and return the CompletedProcess."""
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        timeout=timeout,
        **_git_subprocess_isolation_kwargs(),
    )
    if check and result.returncode != 0:
        raise GitError(
            f"`git {' '.join(args)}` failed (rc={result.returncode}): {result.stderr.strip()}"
        )
    return result


def _git_toplevel(directory: Path) -> Path | None:
    try:
        out = _run_git("rev-parse", "--show-toplevel", cwd=directory).stdout.strip()
    except (GitError, OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("git toplevel probe failed in %s: %s", directory, exc)
        return None
    return Path(out).resolve() if out else None


def _walk_for_git_marker(directory: Path) -> Path | None:
    for candidate in (directory, *directory.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


def _nearest_existing_dir(path: Path) -> Path | None:
    for candidate in (path, *path.parents):
        if candidate.is_dir():
            return candidate
    return None


def find_repository_root(
    workspace_path: str | Path,
    candidate_files: Iterable[str] = (),
) -> Path | None:
    """Return the repository root that contains the touched files.

    Each candidate (relative to *workspace_path* unless absolute) is probed
    with ``git rev-parse --show-toplevel`` from its directory; when git is
    unavailable the probe walks up looking for a ``.git`` marker. The
    workspace itself is probed last. Returns ``None`` if nothing is found.
    """
    workspace = Path(workspace_path).resolve()
    directories: list[Path] = []
    for name in candidate_files:
        text = str(name or "").strip()
        if not text:
            continue
        path = Path(text)
        path = path if path.is_absolute() else workspace / path
        directory = _nearest_existing_dir(path.parent)
        if directory is not None and directory not in directories:
            directories.append(directory)
    if workspace.is_dir() and workspace not in directories:
        directories.append(workspace)

    for directory in directories:
        root = _git_toplevel(directory) or _walk_for_git_marker(directory)
        if root is not None:
            return root
    return None


def resolve_tests_dir(
    workspace_path: str | Path,
    touched_files: Iterable[str] = (),
    tests_dirname: str = "tests",
) -> Path:
    """Return ``<repo_root>/<tests_dirname>``, else ``<workspace>/<tests_dirname>``."""
    root = find_repository_root(workspace_path, touched_files)
    base = root if root is not None else Path(workspace_path).resolve()
    return base / tests_dirname
