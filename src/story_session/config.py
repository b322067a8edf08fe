"""Configuration — immutable settings loaded from ``storygame.json`` and env."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ConfigError

CONFIG_FILE_NAME = "storygame.json"

_DEFAULT_ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"
_DEFAULT_MODEL = "openai/gpt-4o-mini"


class LlmConfig(BaseModel):
    """Settings for one kind of chat-completion call."""

    model_config = ConfigDict(frozen=True)

    provider: Literal["openrouter", "stub"] = "openrouter"
    model: str = Field(default=_DEFAULT_MODEL, min_length=1)
    endpoint: str = Field(default=_DEFAULT_ENDPOINT, pattern=r"^https?://")
    temperature: float = Field(default=0.8, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, gt=0)
    http_referer: str | None = None
    x_title: str | None = None
    timeout: float = Field(default=120.0, gt=0)


class SessionConfig(BaseModel):
    """Memory heuristics, in raw turn counts (one user or assistant message each)."""

    model_config = ConfigDict(frozen=True)

    short_term_window: int = Field(default=20, ge=1)
    compaction_threshold: int = Field(default=40, ge=1)

    @model_validator(mode="after")
    def _threshold_covers_window(self) -> SessionConfig:
        if self.compaction_threshold < self.short_term_window:
            msg = (
                f"compaction_threshold ({self.compaction_threshold}) must be >= "
                f"short_term_window ({self.short_term_window})"
            )
            raise ValueError(msg)
        return self


class ScenarioPaths(BaseModel):
    """Locations of scenario documents and logs, relative to the project root."""

    model_config = ConfigDict(frozen=True)

    world: str = "scenario/00_world_setting.md"
    player: str = "scenario/01_player_character.md"
    rules: str = "scenario/02_ai_rules.md"
    opening: str = "scenario/03_opening_scene.md"
    characters_dir: str = "scenario/characters"
    summarization_prompt: str = "scenario/prompts/summarization_prompt.md"
    logs_dir: str = "logs"
    exports_dir: str = "exports"


class StoryGameConfig(BaseModel):
    """Top-level configuration for a story session."""

    model_config = ConfigDict(frozen=True)

    chat: LlmConfig = Field(default_factory=LlmConfig)
    summarization: LlmConfig = Field(
        default_factory=lambda: LlmConfig(temperature=0.2, max_tokens=1024)
    )
    session: SessionConfig = Field(default_factory=SessionConfig)
    paths: ScenarioPaths = Field(default_factory=ScenarioPaths)


# Environment variable -> (section, key)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "STORY_SHORT_TERM_WINDOW": ("session", "short_term_window"),
    "STORY_COMPACTION_THRESHOLD": ("session", "compaction_threshold"),
}


def load_config(project_root: Path | str) -> StoryGameConfig:
    """Load ``storygame.json`` from *project_root* and apply env overrides.

    A missing file yields the defaults. Recognised environment variables:
        - ``STORY_LLM_PROVIDER``: provider for both chat and summarization
        - ``STORY_LLM_MODEL``: model for both chat and summarization
        - ``STORY_SHORT_TERM_WINDOW`` / ``STORY_COMPACTION_THRESHOLD``

    Raises:
        ConfigError: If the file is not valid JSON or fails validation.
    """
    path = Path(project_root) / CONFIG_FILE_NAME
    data: dict = {}
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Cannot read {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a JSON object")

    for section in ("chat", "summarization"):
        llm = _section(data, section, path)
        provider = os.environ.get("STORY_LLM_PROVIDER", "").strip().lower()
        if provider:
            llm["provider"] = provider
        model = os.environ.get("STORY_LLM_MODEL", "").strip()
        if model:
            llm["model"] = model
        if section == "summarization":
            llm.setdefault("temperature", 0.2)
            llm.setdefault("max_tokens", 1024)
        data[section] = llm

    for env_name, (section, key) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name, "").strip()
        if raw:
            data[section] = {**_section(data, section, path), key: raw}

    try:
        return StoryGameConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid story configuration: {exc}") from exc


def _section(data: dict, name: str, path: Path) -> dict:
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{path}: '{name}' must be a JSON object")
    return dict(value)
