"""Summarizer — folds older turns into the running story summary."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .config import LlmConfig
from .context import DEFAULT_SUMMARIZATION_TEMPLATE
from .errors import TransportError
from .provider import ChatMessage, ChatRequest, ChatRole, LLMProvider
from .session_store import Turn

logger = logging.getLogger(__name__)

_NO_SUMMARY_YET = "(no summary yet)"


@dataclass
class SummaryResult:
    """Outcome of a summarize call.

    On failure ``summary`` is the previous summary, unchanged.
    """

    summary: str
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def format_transcript(turns: Sequence[Turn]) -> str:
    """Flatten *turns* into a plain-text play log."""
    lines: list[str] = []
    for turn in turns:
        if turn.role == ChatRole.USER:
            lines.append(f"Player: {turn.content}")
        else:
            lines.append(f"Narrator:\n{turn.content}")
    return "\n\n".join(lines)


class Summarizer:
    """Produces a new running summary from the previous one and a chunk of turns."""

    def __init__(
        self,
        provider: LLMProvider,
        config: LlmConfig | None = None,
        template: str = DEFAULT_SUMMARIZATION_TEMPLATE,
    ) -> None:
        self._provider = provider
        self._config = config or LlmConfig(temperature=0.2, max_tokens=1024)
        self._template = template

    def build_prompt(self, previous_summary: str, new_turns: Sequence[Turn]) -> str:
        return self._template.replace(
            "{{previous_summary}}", previous_summary or _NO_SUMMARY_YET
        ).replace("{{new_log}}", format_transcript(new_turns))

    async def summarize(self, previous_summary: str, new_turns: Sequence[Turn]) -> SummaryResult:
        """Return the updated summary; never raises on transport failure."""
        if not new_turns:
            return SummaryResult(summary=previous_summary)

        logger.info("Summarizing %d turns", len(new_turns))
        request = ChatRequest(
            messages=[
                ChatMessage(
                    role=ChatRole.USER,
                    content=self.build_prompt(previous_summary, new_turns),
                )
            ],
            model=self._config.model,
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
        )
        try:
            response = await self._provider.chat(request)
        except TransportError as exc:
            logger.warning("Summarization failed, keeping previous summary: %s", exc)
            return SummaryResult(summary=previous_summary, error=exc)

        text = response.content.strip()
        if not text:
            logger.warning("LLM returned an empty summary, keeping previous summary")
            return SummaryResult(
                summary=previous_summary,
                error=TransportError("LLM returned an empty summary"),
            )
        return SummaryResult(summary=text)
