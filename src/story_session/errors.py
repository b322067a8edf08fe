"""Exception hierarchy shared by the session, transport and storage layers."""

from __future__ import annotations


class StorySessionError(Exception):
    """Base class for all story-session errors."""


class NotStartedError(StorySessionError):
    """Raised when the LLM history is requested before a session exists."""


class TransportError(StorySessionError):
    """Raised when a chat-completion call fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class CredentialError(TransportError):
    """Raised when the API key is missing or rejected by the provider.

    UI collaborators react to this type by prompting for re-authentication,
    so it must stay distinguishable from a generic :class:`TransportError`.
    """


class PersistenceError(StorySessionError):
    """Raised when a session record cannot be written or read."""


class InvalidRecordError(PersistenceError):
    """Raised when a persisted record is not valid JSON or lacks required fields."""


class ConfigError(StorySessionError):
    """Raised when ``storygame.json`` or its environment overrides are invalid."""
