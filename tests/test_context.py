"""Tests for ScenarioContextBuilder — system prompt and opening scene."""

from __future__ import annotations

from pathlib import Path

from story_session.config import ScenarioPaths
from story_session.context import DEFAULT_SUMMARIZATION_TEMPLATE, ScenarioContextBuilder


def _scenario(root: Path) -> None:
    scenario = root / "scenario"
    (scenario / "characters").mkdir(parents=True)
    (scenario / "00_world_setting.md").write_text("A drowned city.", encoding="utf-8")
    (scenario / "01_player_character.md").write_text("Mara, a diver.", encoding="utf-8")
    (scenario / "02_ai_rules.md").write_text("Never speak for Mara.", encoding="utf-8")
    (scenario / "03_opening_scene.md").write_text("  The tide is out.\n", encoding="utf-8")
    (scenario / "characters" / "b_ferryman.md").write_text("Ferryman", encoding="utf-8")
    (scenario / "characters" / "a_archivist.md").write_text("Archivist", encoding="utf-8")
    (scenario / "characters" / "notes.txt").write_text("ignored", encoding="utf-8")


def test_system_prompt_contains_all_sections(tmp_path: Path):
    _scenario(tmp_path)
    prompt = ScenarioContextBuilder(tmp_path).build_system_prompt()
    assert prompt.startswith("# System instructions")
    assert "A drowned city." in prompt
    assert "Mara, a diver." in prompt
    assert "Never speak for Mara." in prompt
    assert "ignored" not in prompt


def test_characters_sorted_and_separated(tmp_path: Path):
    _scenario(tmp_path)
    chars = ScenarioContextBuilder(tmp_path).characters()
    assert chars == "Archivist\n\n---\n\nFerryman"


def test_missing_files_degrade_to_placeholders(tmp_path: Path):
    builder = ScenarioContextBuilder(tmp_path)
    prompt = builder.build_system_prompt()
    assert "(not set)" in prompt
    assert "(no character sheets found)" in prompt
    assert builder.read_document("scenario/00_world_setting.md") == ""


def test_empty_characters_dir(tmp_path: Path):
    (tmp_path / "scenario" / "characters").mkdir(parents=True)
    assert ScenarioContextBuilder(tmp_path).characters() == "(no character sheets found)"


def test_opening_scene_stripped(tmp_path: Path):
    _scenario(tmp_path)
    assert ScenarioContextBuilder(tmp_path).opening_scene() == "The tide is out."


def test_opening_scene_fallback(tmp_path: Path):
    assert ScenarioContextBuilder(tmp_path).opening_scene() == "Hello. The game begins."


def test_custom_paths(tmp_path: Path):
    (tmp_path / "intro.md").write_text("Custom intro", encoding="utf-8")
    builder = ScenarioContextBuilder(tmp_path, ScenarioPaths(opening="intro.md"))
    assert builder.opening_scene() == "Custom intro"


def test_summarization_template_default_and_custom(tmp_path: Path):
    builder = ScenarioContextBuilder(tmp_path)
    assert builder.summarization_template() == DEFAULT_SUMMARIZATION_TEMPLATE
    assert "{{previous_summary}}" in DEFAULT_SUMMARIZATION_TEMPLATE
    assert "{{new_log}}" in DEFAULT_SUMMARIZATION_TEMPLATE

    prompts = tmp_path / "scenario" / "prompts"
    prompts.mkdir(parents=True)
    (prompts / "summarization_prompt.md").write_text("S={{previous_summary}}", encoding="utf-8")
    assert builder.summarization_template() == "S={{previous_summary}}"
