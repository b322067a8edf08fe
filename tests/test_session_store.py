"""Tests for SessionStore — live/archive tiers and record validation."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from story_session.errors import InvalidRecordError, PersistenceError
from story_session.provider import ChatRole
from story_session.session_store import SessionRecord, SessionStore, Turn


def _record(*contents: str, summary: str = "") -> SessionRecord:
    roles = [ChatRole.ASSISTANT, ChatRole.USER]
    history = [Turn(role=roles[i % 2], content=c) for i, c in enumerate(contents)]
    return SessionRecord(system_prompt="SYSTEM", history=history, summary=summary)


# ---------------------------------------------------------------------------
# Record format
# ---------------------------------------------------------------------------


def test_record_json_uses_camel_case_keys():
    data = json.loads(_record("opening", summary="so far").to_json())
    assert set(data) == {"systemPrompt", "history", "summary"}
    assert data["history"] == [{"role": "assistant", "content": "opening"}]
    assert data["summary"] == "so far"


def test_turn_is_immutable():
    turn = Turn(role=ChatRole.USER, content="hi")
    with pytest.raises(Exception):  # noqa: B017 - pydantic raises ValidationError
        turn.content = "changed"  # type: ignore[misc]


def test_read_round_trip(tmp_path: Path):
    store = SessionStore(tmp_path)
    record = _record("opening", "look around", "you see a door", summary="S")
    path = store.new_live_slot()
    store.write_live(path, record)
    assert store.read(path) == record


def test_read_accepts_null_system_prompt_and_missing_summary(tmp_path: Path):
    path = tmp_path / "session_x.json"
    path.write_text(json.dumps({"systemPrompt": None, "history": []}), encoding="utf-8")
    record = SessionStore(tmp_path).read(path)
    assert record.system_prompt is None
    assert record.summary == ""


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        json.dumps({"history": []}),
        json.dumps({"systemPrompt": "S"}),
        json.dumps({"systemPrompt": "S", "history": [{"role": "narrator", "content": "x"}]}),
        json.dumps(["not", "an", "object"]),
    ],
)
def test_read_rejects_invalid_records(tmp_path: Path, content: str):
    path = tmp_path / "session_bad.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(InvalidRecordError):
        SessionStore(tmp_path).read(path)


def test_read_missing_file_is_persistence_error(tmp_path: Path):
    with pytest.raises(PersistenceError):
        SessionStore(tmp_path).read(tmp_path / "session_missing.json")


# ---------------------------------------------------------------------------
# Live tier
# ---------------------------------------------------------------------------


def test_live_write_overwrites_in_place(tmp_path: Path):
    store = SessionStore(tmp_path)
    path = store.new_live_slot()
    store.write_live(path, _record("one"))
    store.write_live(path, _record("one", "two"))
    assert store.list_autosaves() == [path.name]
    assert len(store.read(path).history) == 2
    # No temp files left behind
    assert [p.name for p in store.autosaves_dir.iterdir()] == [path.name]


def test_live_write_failure_keeps_previous_record(tmp_path: Path):
    store = SessionStore(tmp_path)
    path = store.new_live_slot()
    store.write_live(path, _record("one"))
    with patch("story_session.session_store.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(OSError):
            store.write_live(path, _record("one", "two"))
    assert store.read(path) == _record("one")
    assert [p.name for p in store.autosaves_dir.iterdir()] == [path.name]


# ---------------------------------------------------------------------------
# Archive tier and naming
# ---------------------------------------------------------------------------


def test_names_are_unique_and_increasing(tmp_path: Path):
    store = SessionStore(tmp_path)
    names = [store.new_record_name() for _ in range(50)]
    assert len(set(names)) == 50
    assert names == sorted(names)
    assert all(n.startswith("session_") and n.endswith(".json") for n in names)


def test_archive_never_overwrites(tmp_path: Path):
    store = SessionStore(tmp_path)
    first = store.archive(_record("a"))
    second = store.archive(_record("a", "b"))
    assert first != second
    assert store.list_archives() == [second.name, first.name]
    assert store.read(first) == _record("a")


def test_archive_file_copies_live_record(tmp_path: Path):
    store = SessionStore(tmp_path)
    live = store.new_live_slot()
    assert store.archive_file(live) is None
    store.write_live(live, _record("a"))
    archived = store.archive_file(live)
    assert archived is not None
    assert archived.parent == store.archives_dir
    assert store.read(archived) == store.read(live)


def test_archive_io_error_is_persistence_error(tmp_path: Path):
    store = SessionStore(tmp_path)
    with patch("story_session.session_store.os.replace", side_effect=OSError("read-only")):
        with pytest.raises(PersistenceError):
            store.archive(_record("a"))


def test_missing_directories_are_empty(tmp_path: Path):
    store = SessionStore(tmp_path / "nowhere")
    assert store.list_archives() == []
    assert store.list_autosaves() == []
    assert store.latest() is None


def test_listing_ignores_foreign_files(tmp_path: Path):
    store = SessionStore(tmp_path)
    store.archive(_record("a"))
    (store.archives_dir / "notes.txt").write_text("x", encoding="utf-8")
    (store.archives_dir / ".tmp-123.json").write_text("x", encoding="utf-8")
    assert len(store.list_archives()) == 1


def test_latest_spans_both_tiers_and_honours_exclude(tmp_path: Path):
    store = SessionStore(tmp_path)
    archived = store.archive(_record("a"))
    live = store.new_live_slot()
    store.write_live(live, _record("a", "b"))
    assert store.latest() == live
    assert store.latest(exclude=live) == archived


def test_latest_prefers_last_written_over_newer_name(tmp_path: Path):
    store = SessionStore(tmp_path)
    live = store.new_live_slot()
    store.write_live(live, _record("a"))
    archived = store.archive(_record("a"))
    assert archived.name > live.name
    os.utime(archived, ns=(1_000_000_000, 1_000_000_000))
    os.utime(live, ns=(2_000_000_000, 2_000_000_000))
    assert store.latest() == live


def test_latest_tie_goes_to_live_record(tmp_path: Path):
    store = SessionStore(tmp_path)
    live = store.new_live_slot()
    store.write_live(live, _record("a"))
    archived = store.archive(_record("a"))
    for path in (live, archived):
        os.utime(path, ns=(1_000_000_000, 1_000_000_000))
    assert store.latest() == live


def test_discard_live_removes_file(tmp_path: Path):
    store = SessionStore(tmp_path)
    live = store.new_live_slot()
    store.write_live(live, _record("a"))
    store.discard_live(live)
    store.discard_live(live)
    assert store.list_autosaves() == []
