"""Change-set merge helpers.

A run's change set holds at most one record per file. Every stage that
contributes changes goes through :func:`upsert_changes`, which keys records
by their path relative to the workspace so ``x.ts``, ``./x.ts`` and
``<workspace>/x.ts`` all land on the same entry.
"""

from __future__ import annotations

import logging
import os
import posixpath
from collections.abc import Iterable
from pathlib import Path

from patchline.schemas import ChangeRecord

logger = logging.getLogger(__name__)


def _relative_to_root(path: Path, root: str | Path) -> str | None:
    """Return *path* relative to *root* in posix form, or None when outside."""
    base = Path(root).expanduser()
    candidate = path if path.is_absolute() else base / path
    bases = {Path(os.path.normpath(base.absolute())), base.resolve()}
    candidates = (Path(os.path.normpath(candidate.absolute())), candidate.resolve())
    for item in candidates:
        for anchor in bases:
            try:
                return item.relative_to(anchor).as_posix()
            except ValueError:
                continue
    return None


def normalize_change_path(path: str, root: str | Path | None = None) -> str:
    """Return a comparable key for *path*.

    Separators become ``/`` and ``.``/``..`` segments are collapsed. With a
    *root*, paths inside it (absolute or relative) are made relative to it;
    paths outside it keep their normalised absolute form.
    """
    text = str(path or "").strip().replace("\\", "/")
    if not text:
        return ""
    if root is not None:
        relative = _relative_to_root(Path(text), root)
        if relative is not None:
            text = relative
    normalized = posixpath.normpath(text)
    return "" if normalized == "." else normalized


def upsert_changes(
    changes: list[ChangeRecord],
    incoming: Iterable[ChangeRecord],
    *,
    root: str | Path | None = None,
) -> list[ChangeRecord]:
    """Merge *incoming* into *changes* in place, keyed by file.

    A record whose file is already present replaces the existing entry at
    its original position; any other record is appended. When *root* is
    given, stored records carry the workspace-relative path. Returns
    *changes* for convenience.
    """
    index_by_file: dict[str, int] = {}
    for idx, change in enumerate(changes):
        index_by_file.setdefault(normalize_change_path(change.file, root), idx)

    for change in incoming:
        key = normalize_change_path(change.file, root)
        if root is not None and key and key != change.file:
            change = change.model_copy(update={"file": key})
        existing_idx = index_by_file.get(key)
        if existing_idx is None:
            index_by_file[key] = len(changes)
            changes.append(change)
            continue
        previous = changes[existing_idx]
        if previous != change:
            logger.debug(
                "Replacing change for %s (%s -> %s)",
                change.file,
                previous.action.value,
                change.action.value,
            )
        changes[existing_idx] = change
    return changes


def dedupe_changes(
    changes: Iterable[ChangeRecord], *, root: str | Path | None = None
) -> list[ChangeRecord]:
    """Collapse a raw list so each file appears once (last record wins)."""
    return upsert_changes([], changes, root=root)
