"""Scenario context — assembles the static system prompt from scenario documents."""

from __future__ import annotations

import logging
from pathlib import Path

from .config import ScenarioPaths

logger = logging.getLogger(__name__)

_NOT_SET = "(not set)"
_NO_CHARACTERS = "(no character sheets found)"
_CHARACTER_SEPARATOR = "\n\n---\n\n"
_FALLBACK_OPENING = "Hello. The game begins."

_SYSTEM_PROMPT_TEMPLATE = """\
# System instructions
You are about to play the non-player characters (NPCs) of an interactive story \
game. Follow the settings below strictly and move the story forward through \
your dialogue with the player.

---

## World and setting
{world}

---

## The protagonist (player)
{player}

---

## Characters (NPCs)
{characters}

---

## Your rules of conduct
{rules}"""

DEFAULT_SUMMARIZATION_TEMPLATE = """\
You maintain the long-term memory of an interactive story game.

Below is the summary of the story so far, followed by the newest part of the \
play log. Write an updated summary that merges both. Keep every fact that \
matters for continuity: events, decisions the player made, promises, \
relationships, items, places and open threads. Write in plain prose, past \
tense, without commentary. Do not invent anything that is not in the log.

## Summary so far
{{previous_summary}}

## New play log
{{new_log}}

## Updated summary"""


class ScenarioContextBuilder:
    """Reads scenario documents relative to a project root.

    Missing documents degrade to empty strings so a half-written scenario
    can still be played.
    """

    def __init__(self, project_root: Path | str, paths: ScenarioPaths | None = None) -> None:
        self._root = Path(project_root)
        self._paths = paths or ScenarioPaths()

    @property
    def paths(self) -> ScenarioPaths:
        return self._paths

    def read_document(self, relative_path: str) -> str:
        """Return the text of *relative_path*, or ``""`` if it cannot be read."""
        path = self._root / relative_path
        try:
            return path.read_text(encoding="utf-8")
        except OSError:
            logger.warning("Scenario file not found or unreadable: %s", relative_path)
            return ""

    def characters(self) -> str:
        """Concatenate every ``*.md`` character sheet, sorted by file name."""
        char_dir = self._root / self._paths.characters_dir
        if not char_dir.is_dir():
            logger.warning("Characters directory missing: %s", self._paths.characters_dir)
            return _NO_CHARACTERS
        sheets = sorted(p for p in char_dir.glob("*.md") if p.is_file())
        if not sheets:
            return _NO_CHARACTERS
        rel = Path(self._paths.characters_dir)
        return _CHARACTER_SEPARATOR.join(self.read_document(str(rel / p.name)) for p in sheets)

    def build_system_prompt(self) -> str:
        """Build the system prompt sent as the lead message of every turn."""
        prompt = _SYSTEM_PROMPT_TEMPLATE.format(
            world=self.read_document(self._paths.world) or _NOT_SET,
            player=self.read_document(self._paths.player) or _NOT_SET,
            characters=self.characters() or _NOT_SET,
            rules=self.read_document(self._paths.rules) or _NOT_SET,
        )
        return prompt.strip()

    def opening_scene(self) -> str:
        """Return the opening narration, or a fixed greeting when none is written."""
        opening = self.read_document(self._paths.opening).strip()
        return opening or _FALLBACK_OPENING

    def summarization_template(self) -> str:
        """Return the custom summarization prompt, or the built-in default."""
        custom = self.read_document(self._paths.summarization_prompt)
        return custom if custom.strip() else DEFAULT_SUMMARIZATION_TEMPLATE
