"""SessionManager — live conversation state, compaction, save/load/undo.

The manager owns the turn buffer and the running summary of one story
session. Every mutation is persisted to the live record before control
returns, and every session that is replaced or disposed is archived first.

Compaction runs as a background task after an assistant turn. It works on a
snapshot of the oldest turns; turns appended while the summarizer is
awaiting stay in the buffer because only the snapshotted prefix is removed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from functools import partial
from pathlib import Path

from .config import StoryGameConfig, load_config
from .context import ScenarioContextBuilder
from .errors import ConfigError, InvalidRecordError, NotStartedError, PersistenceError
from .export import export_markdown
from .fsm import FSMState, SessionState
from .provider import ChatMessage, ChatRequest, ChatRole, LLMProvider, StreamCallback
from .session_store import SessionRecord, SessionStore, Turn
from .summarizer import Summarizer
from .telemetry import StoryTracer

logger = logging.getLogger(__name__)

_SUMMARY_HEADING = "\n\n---\n\n## Story so far\n"


class NoticeLevel(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Notice:
    """A user-facing message emitted by the manager."""

    level: NoticeLevel
    message: str


@dataclass
class UndoResult:
    success: bool
    reason: str | None = None


@dataclass
class OperationResult:
    """Outcome of a save or load action."""

    success: bool
    message: str
    path: Path | None = None


class SessionManager:
    """Coordinates one story session at a time.

    Collaborators are injected; the ones not given are built once from the
    configuration: the scenario builder and the provider are leaves, the
    summarizer sits on the provider, and the manager sits on all of them.
    """

    def __init__(
        self,
        project_root: Path | str,
        provider: LLMProvider,
        *,
        config: StoryGameConfig | None = None,
        assembler: ScenarioContextBuilder | None = None,
        summarizer: Summarizer | None = None,
        store: SessionStore | None = None,
        tracer: StoryTracer | None = None,
        on_notice: Callable[[Notice], None] | None = None,
    ) -> None:
        self._root = Path(project_root)
        self._provider = provider
        if config is not None:
            self._load_config: Callable[[], StoryGameConfig] = lambda: config
        else:
            self._load_config = partial(load_config, self._root)
        self._config = self._load_config()
        self._assembler = assembler or ScenarioContextBuilder(self._root, self._config.paths)
        self._summarizer = summarizer or Summarizer(
            provider,
            self._config.summarization,
            self._assembler.summarization_template(),
        )
        self._store = store or SessionStore(self._root / self._config.paths.logs_dir)
        self._tracer = tracer or StoryTracer()
        self._on_notice = on_notice

        self._fsm = FSMState()
        self._system_prompt: str | None = None
        self._turns: list[Turn] = []
        self._summary = ""
        self._live_path: Path | None = None
        self._is_summarizing = False
        self._compaction_task: asyncio.Task[bool] | None = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._fsm.state

    @property
    def config(self) -> StoryGameConfig:
        return self._config

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def system_prompt(self) -> str | None:
        return self._system_prompt

    @property
    def summary(self) -> str:
        return self._summary

    @property
    def live_path(self) -> Path | None:
        return self._live_path

    @property
    def is_compacting(self) -> bool:
        return self._is_summarizing

    def get_history(self) -> list[Turn]:
        """Return a copy of the live turn buffer."""
        return list(self._turns)

    def get_history_for_llm(self) -> list[ChatMessage]:
        """Build ``[lead context] + last short_term_window turns``.

        The lead message combines the system prompt with the running summary
        and is rebuilt on every call.

        Raises:
            NotStartedError: If no session has been started or loaded.
        """
        if not self._system_prompt:
            raise NotStartedError("Session has not been started. Call start_new_session() first.")
        lead = self._system_prompt
        if self._summary:
            lead = f"{lead}{_SUMMARY_HEADING}{self._summary}"
        window = self._turns[-self._config.session.short_term_window :]
        return [ChatMessage(role=ChatRole.SYSTEM, content=lead)] + [t.to_message() for t in window]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reload_configuration(self) -> None:
        """Re-read configuration; keeps the previous one if the new one is invalid."""
        try:
            self._config = self._load_config()
        except ConfigError as exc:
            logger.error("Configuration reload failed, keeping previous settings: %s", exc)
            self._notify(NoticeLevel.ERROR, f"Invalid configuration: {exc}")

    async def start_new_session(self) -> str:
        """Start a session and return the opening narration.

        If the live buffer already holds turns this is a resume: the last
        assistant message is returned and the buffer is left as is. A
        disposed session becomes active again.

        A manager that has no session yet first archives live records left
        behind by a process that did not shut down cleanly.
        """
        if self._turns:
            logger.info("Session already active, resuming")
            if self._fsm.state == SessionState.ARCHIVED:
                self._transition(SessionState.ACTIVE)
                self._persist_live()
            return self._last_assistant_content()

        self.reload_configuration()
        if self._system_prompt is None:
            self._recover_orphaned_records()
        elif self._archive_current():
            self._discard_live()

        self._system_prompt = self._assembler.build_system_prompt()
        self._summary = ""
        self._turns = []
        self._live_path = self._store.new_live_slot()
        self._transition(SessionState.ACTIVE)
        logger.info("New session started: %s", self._live_path.name)

        opening = self._assembler.opening_scene()
        await self.add_message(ChatRole.ASSISTANT, opening)
        return opening

    async def dispose(self) -> None:
        """Archive the current session unconditionally and stop compaction."""
        await self._cancel_compaction()
        if self._system_prompt is not None and self._archive_current():
            self._discard_live()
        self._transition(SessionState.ARCHIVED)

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def add_message(self, role: ChatRole | str, content: str) -> None:
        """Append a turn and persist the live record before returning.

        After an assistant turn the compaction trigger is evaluated; the
        compaction itself runs in the background.
        """
        role = ChatRole(role)
        if role == ChatRole.SYSTEM:
            raise ValueError("System messages cannot be added to the turn buffer")
        if self._live_path is None:
            raise NotStartedError("Session has not been started. Call start_new_session() first.")

        self._turns.append(Turn(role=role, content=content))
        self._persist_live()

        if role == ChatRole.ASSISTANT:
            self._schedule_compaction()

    async def take_turn(
        self,
        user_text: str,
        on_chunk: StreamCallback | None = None,
        abort: threading.Event | None = None,
    ) -> str:
        """Run one player -> narrator round and return the narration.

        The player's turn is persisted before the network call. Transport
        errors propagate to the caller and leave the player's turn in place.
        """
        await self.add_message(ChatRole.USER, user_text)
        chat = self._config.chat
        request = ChatRequest(
            messages=self.get_history_for_llm(),
            model=chat.model,
            temperature=chat.temperature,
            max_tokens=chat.max_tokens,
        )
        with self._tracer.turn(len(self._turns)):
            response = await self._provider.chat(request, on_chunk=on_chunk, abort=abort)
        await self.add_message(ChatRole.ASSISTANT, response.content)
        return response.content

    async def undo_last_turn(self) -> UndoResult:
        """Remove the last player/narrator round."""
        if len(self._turns) < 2:
            return UndoResult(success=False, reason="Not enough history to undo.")
        before, last = self._turns[-2], self._turns[-1]
        if before.role != ChatRole.USER or last.role != ChatRole.ASSISTANT:
            return UndoResult(
                success=False,
                reason="The last action was not a complete player/narrator round.",
            )
        del self._turns[-2:]
        self._persist_live()
        return UndoResult(success=True)

    # ------------------------------------------------------------------
    # Compaction
    # ------------------------------------------------------------------

    async def maybe_compact(self) -> bool:
        """Fold the oldest turns into the summary if the buffer is over threshold.

        Returns True when the summary and buffer were updated.
        """
        if self._is_summarizing or self._fsm.state != SessionState.ACTIVE:
            return False
        cfg = self._config.session
        if len(self._turns) <= cfg.compaction_threshold:
            return False
        cut = max(len(self._turns) - cfg.short_term_window, 0)
        if cut == 0:
            return False

        snapshot = self._turns[:cut]
        previous = self._summary
        self._is_summarizing = True
        self._transition(SessionState.COMPACTING)
        logger.info("Compacting %d turns, retaining %d", cut, len(self._turns) - cut)
        try:
            with self._tracer.compaction(cut, len(self._turns) - cut):
                result = await self._summarizer.summarize(previous, snapshot)
                if not result.ok:
                    self._tracer.record_event("compaction.failed", {"error": str(result.error)})
        finally:
            self._is_summarizing = False
            if self._fsm.state == SessionState.COMPACTING:
                self._transition(SessionState.ACTIVE)

        if not result.ok:
            self._notify(NoticeLevel.WARNING, f"Failed to update the story summary: {result.error}")
            return False
        if self._summary != previous or not self._prefix_is(snapshot):
            logger.warning("Session changed during compaction, discarding new summary")
            return False

        self._summary = result.summary
        self._turns = self._turns[cut:]
        self._persist_live()
        logger.info("Compaction done, %d turns retained", len(self._turns))
        return True

    async def wait_for_compaction(self) -> None:
        """Wait for the in-flight compaction task, if any."""
        task = self._compaction_task
        if task is not None and not task.done():
            await task

    def _schedule_compaction(self) -> None:
        if self._is_summarizing or self._fsm.state != SessionState.ACTIVE:
            return
        if len(self._turns) <= self._config.session.compaction_threshold:
            return
        self._compaction_task = asyncio.get_running_loop().create_task(self.maybe_compact())

    async def _cancel_compaction(self) -> None:
        task = self._compaction_task
        self._compaction_task = None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _prefix_is(self, snapshot: list[Turn]) -> bool:
        if len(self._turns) < len(snapshot):
            return False
        return all(a is b for a, b in zip(self._turns, snapshot, strict=False))

    # ------------------------------------------------------------------
    # Save / load
    # ------------------------------------------------------------------

    async def save_session(self) -> OperationResult:
        """Write the current state to a new archive record."""
        if not self._turns:
            return self._result(False, "No conversation to save.", NoticeLevel.INFO)
        try:
            path = self._store.archive(self._snapshot())
        except PersistenceError as exc:
            logger.error("Failed to save session: %s", exc)
            return self._result(False, f"Failed to save session: {exc}", NoticeLevel.ERROR)
        return self._result(True, f"Conversation saved to: {path.name}", NoticeLevel.INFO, path)

    def list_saved_sessions(self) -> list[str]:
        """Archive names, newest first."""
        return self._store.list_archives()

    async def load_session(self, name: str) -> OperationResult:
        """Load the archive called *name*."""
        return await self._load_from(self._store.archive_path(name))

    async def load_latest_session(self) -> OperationResult:
        """Load the newest record across the live and archive tiers."""
        target = self._store.latest(exclude=self._live_path)
        if target is None:
            return self._result(False, "No saved sessions found.", NoticeLevel.INFO)
        return await self._load_from(target)

    async def _load_from(self, path: Path) -> OperationResult:
        await self._cancel_compaction()
        if self._system_prompt is not None and not self._archive_current():
            return self._result(
                False,
                "Could not archive the current session; load aborted.",
                NoticeLevel.ERROR,
            )
        try:
            record = self._store.read(path)
            if not record.system_prompt:
                raise InvalidRecordError(f"{path.name} has no system prompt")
        except PersistenceError as exc:
            logger.error("Failed to load session: %s", exc)
            return self._result(False, f"Failed to load session: {exc}", NoticeLevel.ERROR)

        self.reload_configuration()
        self._discard_live()
        self._system_prompt = record.system_prompt
        self._turns = list(record.history)
        self._summary = record.summary
        self._live_path = self._store.new_live_slot()
        self._transition(SessionState.ACTIVE)
        self._persist_live()
        logger.info("Session loaded from %s", path.name)
        return self._result(True, f"Session loaded from {path.name}", NoticeLevel.INFO, path)

    def export_markdown(self, name: str | None = None) -> Path:
        """Export the archive *name*, or the current live record, to Markdown."""
        if name is not None:
            source = self._store.archive_path(name)
        elif self._live_path is not None:
            source = self._live_path
        else:
            raise NotStartedError("No session to export.")
        return export_markdown(self._store, source, self._root / self._config.paths.exports_dir)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _snapshot(self) -> SessionRecord:
        return SessionRecord(
            system_prompt=self._system_prompt,
            history=list(self._turns),
            summary=self._summary,
        )

    def _persist_live(self) -> None:
        if self._live_path is None:
            return
        try:
            with self._tracer.persistence("live"):
                self._store.write_live(self._live_path, self._snapshot())
        except OSError as exc:
            logger.warning("Live record write failed, keeping in-memory state: %s", exc)

    def _archive_current(self) -> bool:
        try:
            with self._tracer.persistence("archive"):
                self._store.archive(self._snapshot())
        except PersistenceError as exc:
            logger.error("Failed to archive session: %s", exc)
            self._notify(NoticeLevel.ERROR, f"Failed to archive session: {exc}")
            return False
        return True

    def _discard_live(self) -> None:
        if self._live_path is not None:
            self._store.discard_live(self._live_path)

    def _recover_orphaned_records(self) -> None:
        for name in self._store.list_autosaves():
            path = self._store.autosave_path(name)
            try:
                archived = self._store.archive_file(path)
            except PersistenceError as exc:
                logger.warning("Leaving unreadable live record %s in place: %s", name, exc)
                continue
            if archived is not None:
                logger.info("Recovered live record %s as %s", name, archived.name)
            self._store.discard_live(path)

    def _last_assistant_content(self) -> str:
        for turn in reversed(self._turns):
            if turn.role == ChatRole.ASSISTANT:
                return turn.content
        return ""

    def _transition(self, target: SessionState) -> None:
        self._fsm = self._fsm.transition(target)

    def _notify(self, level: NoticeLevel, message: str) -> None:
        if self._on_notice is not None:
            self._on_notice(Notice(level=level, message=message))

    def _result(
        self,
        success: bool,
        message: str,
        level: NoticeLevel,
        path: Path | None = None,
    ) -> OperationResult:
        self._notify(level, message)
        return OperationResult(success=success, message=message, path=path)
