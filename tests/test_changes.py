"""Tests for change-set merging."""

from __future__ import annotations

from pathlib import Path

import pytest

from patchline.changes import dedupe_changes, normalize_change_path, upsert_changes
from patchline.schemas import ChangeAction, ChangeRecord


def _rec(file: str, action: str = "modified", summary: str = "") -> ChangeRecord:
    return ChangeRecord(file=file, action=ChangeAction(action), summary=summary)


def test_normalize_change_path_unifies_separators_and_prefix() -> None:
    assert normalize_change_path("./src/app.py") == "src/app.py"
    assert normalize_change_path("src\\app.py") == "src/app.py"
    assert normalize_change_path("src//app.py") == "src/app.py"
    assert normalize_change_path("  ") == ""


def test_upsert_appends_new_files_in_order() -> None:
    changes = [_rec("a.py")]
    upsert_changes(changes, [_rec("b.py"), _rec("c.py", "created")])
    assert [c.file for c in changes] == ["a.py", "b.py", "c.py"]


def test_upsert_replaces_existing_file_in_place() -> None:
    changes = [_rec("a.py", summary="first"), _rec("b.py"), _rec("c.py")]
    upsert_changes(changes, [_rec("b.py", "deleted", "gone")])

    assert [c.file for c in changes] == ["a.py", "b.py", "c.py"]
    assert changes[1].action == ChangeAction.DELETED
    assert changes[1].summary == "gone"


def test_upsert_matches_equivalent_paths() -> None:
    changes = [_rec("src/x.ts", summary="old")]
    upsert_changes(changes, [_rec("./src/x.ts", summary="new")])
    assert len(changes) == 1
    assert changes[0].summary == "new"


def test_upsert_is_idempotent() -> None:
    fix = [_rec("x.ts", summary="added validation + null check")]
    once = upsert_changes([_rec("x.ts", summary="added validation")], fix)
    twice = upsert_changes(
        upsert_changes([_rec("x.ts", summary="added validation")], fix), fix
    )
    assert once == twice


def test_upsert_keeps_one_record_per_file_across_many_rounds() -> None:
    changes: list[ChangeRecord] = []
    rounds = [
        [_rec("a.py"), _rec("b.py")],
        [_rec("b.py", summary="fix 1"), _rec("c.py", "created")],
        [_rec("a.py", summary="fix 2"), _rec("b.py", summary="fix 3")],
    ]
    for incoming in rounds:
        upsert_changes(changes, incoming)

    files = [c.file for c in changes]
    assert files == ["a.py", "b.py", "c.py"]
    assert len(files) == len(set(files))
    assert changes[1].summary == "fix 3"


def test_upsert_within_one_batch_last_record_wins() -> None:
    changes: list[ChangeRecord] = []
    upsert_changes(changes, [_rec("a.py", summary="one"), _rec("a.py", summary="two")])
    assert len(changes) == 1
    assert changes[0].summary == "two"


def test_dedupe_changes_returns_new_list() -> None:
    raw = [_rec("a.py", summary="1"), _rec("b.py"), _rec("a.py", summary="2")]
    deduped = dedupe_changes(raw)
    assert [c.file for c in deduped] == ["a.py", "b.py"]
    assert deduped[0].summary == "2"
    assert len(raw) == 3


def test_normalize_change_path_collapses_dot_segments() -> None:
    assert normalize_change_path("src/../x.ts") == "x.ts"
    assert normalize_change_path("src/./lib/x.ts") == "src/lib/x.ts"


def test_normalize_change_path_relative_to_workspace(tmp_path: Path) -> None:
    assert normalize_change_path(str(tmp_path / "src" / "x.ts"), tmp_path) == "src/x.ts"
    assert normalize_change_path("src/x.ts", tmp_path) == "src/x.ts"
    assert normalize_change_path(str(tmp_path / "src" / ".." / "x.ts"), tmp_path) == "x.ts"


def test_normalize_change_path_outside_workspace_stays_absolute(tmp_path: Path) -> None:
    ws = tmp_path / "ws"
    ws.mkdir()
    outside = tmp_path / "other" / "x.ts"
    assert normalize_change_path(str(outside), ws) == outside.as_posix()


def test_upsert_merges_absolute_and_relative_paths_for_same_file(tmp_path: Path) -> None:
    changes = [_rec("x.ts", summary="v1")]
    upsert_changes(changes, [_rec(str(tmp_path / "x.ts"), summary="v2")], root=tmp_path)

    assert len(changes) == 1
    assert changes[0].file == "x.ts"
    assert changes[0].summary == "v2"


def test_upsert_with_root_stores_relative_paths(tmp_path: Path) -> None:
    changes: list[ChangeRecord] = []
    upsert_changes(
        changes,
        [_rec(str(tmp_path / "src" / "a.py"), "created"), _rec("./src/b.py")],
        root=tmp_path,
    )
    assert [c.file for c in changes] == ["src/a.py", "src/b.py"]


def test_upsert_with_root_follows_resolved_workspace(tmp_path: Path) -> None:
    real = tmp_path / "real"
    real.mkdir()
    link = tmp_path / "link"
    try:
        link.symlink_to(real, target_is_directory=True)
    except OSError:
        pytest.skip("symlinks unavailable")

    changes = [_rec("x.ts", summary="v1")]
    upsert_changes(changes, [_rec(str(real / "x.ts"), summary="v2")], root=link)
    assert [c.file for c in changes] == ["x.ts"]
    assert changes[0].summary == "v2"
