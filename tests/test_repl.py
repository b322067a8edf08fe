"""Tests for the REPL module — interactive terminal entry point."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from story_session.repl import async_main
from story_session.telemetry import StoryTracer


@pytest.fixture(autouse=True)
def _stub_provider(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORY_LLM_PROVIDER", "stub")
    monkeypatch.delenv("STORY_LLM_MODEL", raising=False)
    monkeypatch.delenv("STORY_SHORT_TERM_WINDOW", raising=False)
    monkeypatch.delenv("STORY_COMPACTION_THRESHOLD", raising=False)
    monkeypatch.delenv("STORY_OTEL_EXPORTER", raising=False)


@pytest.mark.asyncio
async def test_quit_command(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with patch("builtins.input", side_effect=["/quit"]):
        await async_main(tmp_path)
    out = capsys.readouterr().out
    assert "Story Session REPL v0.1.0" in out
    assert "StubLLMProvider" in out
    assert "Hello. The game begins." in out
    assert "Bye!" in out


@pytest.mark.asyncio
async def test_eof_exits_and_archives(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with patch("builtins.input", side_effect=EOFError):
        await async_main(tmp_path)
    assert "Bye!" in capsys.readouterr().out
    assert len(list((tmp_path / "logs" / "archives").glob("session_*.json"))) == 1


@pytest.mark.asyncio
async def test_player_turn_is_streamed(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with patch("builtins.input", side_effect=["look around", "/undo", "/undo", "/quit"]):
        await async_main(tmp_path)
    out = capsys.readouterr().out
    assert "The story continues quietly." in out
    assert "Last round undone." in out
    assert "not a complete" in out or "Not enough history" in out


@pytest.mark.asyncio
async def test_save_list_and_export(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with patch("builtins.input", side_effect=["/save", "/list", "/export", "/quit"]):
        await async_main(tmp_path)
    out = capsys.readouterr().out
    assert "Conversation saved to: session_" in out
    assert "Exported to" in out
    assert len(list((tmp_path / "exports").glob("*.md"))) == 1


@pytest.mark.asyncio
async def test_load_usage_hint(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with patch("builtins.input", side_effect=["/load", "/quit"]):
        await async_main(tmp_path)
    assert "Usage: /load <name>" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_tracer_started_and_flushed(tmp_path: Path) -> None:
    with (
        patch.object(StoryTracer, "init", autospec=True) as init,
        patch.object(StoryTracer, "shutdown", autospec=True) as shutdown,
        patch("builtins.input", side_effect=["/quit"]),
    ):
        await async_main(tmp_path)
    init.assert_called_once()
    shutdown.assert_called_once()
    assert init.call_args.args[0] is shutdown.call_args.args[0]


@pytest.mark.asyncio
async def test_orphaned_live_record_recovered_on_start(tmp_path: Path) -> None:
    live = tmp_path / "logs" / "autosaves" / "session_20200101T000000000000.json"
    live.parent.mkdir(parents=True)
    live.write_text(
        '{"systemPrompt": "S", "history": [{"role": "user", "content": "lost turn"}]}',
        encoding="utf-8",
    )
    with patch("builtins.input", side_effect=["/latest", "/export", "/quit"]):
        await async_main(tmp_path)
    assert not live.exists()
    exported = list((tmp_path / "exports").glob("*.md"))
    assert len(exported) == 1
    assert "lost turn" in exported[0].read_text(encoding="utf-8")
