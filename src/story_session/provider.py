"""LLM Provider abstraction — pluggable chat-completion backends."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel

from .errors import TransportError

# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


class ChatRole(StrEnum):
    """Role of a message participant."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """Single message in a conversation."""

    role: ChatRole
    content: str


class ChatRequest(BaseModel):
    """Request payload sent to an LLM provider.

    ``model``, ``temperature`` and ``max_tokens`` override the provider's
    configured defaults when set.
    """

    messages: list[ChatMessage]
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None


class ChatResponse(BaseModel):
    """Response returned from an LLM provider."""

    content: str
    raw: Any = None
    finish_reason: str | None = None


StreamCallback = Callable[[str], None]


# ---------------------------------------------------------------------------
# LLMProvider ABC
# ---------------------------------------------------------------------------


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the canonical provider name (e.g. 'openrouter', 'stub')."""

    @abstractmethod
    async def chat(
        self,
        request: ChatRequest,
        on_chunk: StreamCallback | None = None,
        abort: threading.Event | None = None,
    ) -> ChatResponse:
        """Send a chat completion request.

        When *on_chunk* is given the response is streamed and every text
        fragment is passed to it as it arrives; the returned response still
        carries the full text. Setting *abort* stops a stream between
        fragments with a :class:`TransportError`.
        """


# ---------------------------------------------------------------------------
# Stub implementation (for testing / offline development)
# ---------------------------------------------------------------------------


class StubLLMProvider(LLMProvider):
    """Returns queued or canned responses without making real HTTP calls."""

    _CANNED = "The story continues quietly."

    def __init__(self, canned: str | None = None) -> None:
        self._canned = canned if canned is not None else self._CANNED
        self._queue: list[str | Exception] = []
        self.requests: list[ChatRequest] = []

    def name(self) -> str:
        return "stub"

    def queue_reply(self, text: str) -> None:
        """Queue *text* as the content of the next response."""
        self._queue.append(text)

    def queue_error(self, error: Exception) -> None:
        """Make the next call raise *error*."""
        self._queue.append(error)

    async def chat(
        self,
        request: ChatRequest,
        on_chunk: StreamCallback | None = None,
        abort: threading.Event | None = None,
    ) -> ChatResponse:
        """Return the next queued reply, or the canned text when the queue is empty."""
        self.requests.append(request)
        reply = self._queue.pop(0) if self._queue else self._canned
        if isinstance(reply, Exception):
            raise reply

        if on_chunk is not None:
            words = reply.split(" ")
            for i, word in enumerate(words):
                if abort is not None and abort.is_set():
                    raise TransportError("Request aborted")
                on_chunk(word if i == len(words) - 1 else f"{word} ")

        return ChatResponse(content=reply, finish_reason="stop")
