"""SessionStore — durable live and archive tiers for session records.

Layout under the logs directory::

    logs/
        autosaves/session_<stamp>.json   # live records, overwritten in place
        archives/session_<stamp>.json    # immutable snapshots

Record names embed a UTC timestamp with microseconds, so sorting by name
sorts by creation time. A live record keeps its name while it is rewritten,
so "most recent" across tiers is decided by last write, not by name.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidRecordError, PersistenceError
from .provider import ChatMessage, ChatRole

logger = logging.getLogger(__name__)

AUTOSAVES_DIR = "autosaves"
ARCHIVES_DIR = "archives"
_PREFIX = "session_"
_SUFFIX = ".json"
_STAMP_FORMAT = "%Y%m%dT%H%M%S%f"


class Turn(BaseModel):
    """One role-tagged message of the conversation. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    role: ChatRole
    content: str

    def to_message(self) -> ChatMessage:
        return ChatMessage(role=self.role, content=self.content)


class SessionRecord(BaseModel):
    """On-disk projection of a session: ``{systemPrompt, history, summary}``."""

    model_config = ConfigDict(populate_by_name=True)

    system_prompt: str | None = Field(alias="systemPrompt")
    history: list[Turn]
    summary: str = ""

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


class SessionStore:
    """Filesystem store with a live (autosave) tier and an archive tier."""

    def __init__(self, logs_dir: Path | str) -> None:
        self._base = Path(logs_dir)
        self._last_stamp: datetime | None = None

    @property
    def autosaves_dir(self) -> Path:
        return self._base / AUTOSAVES_DIR

    @property
    def archives_dir(self) -> Path:
        return self._base / ARCHIVES_DIR

    def autosave_path(self, name: str) -> Path:
        return self.autosaves_dir / name

    def archive_path(self, name: str) -> Path:
        return self.archives_dir / name

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    def new_record_name(self) -> str:
        """Return a fresh, strictly increasing ``session_<stamp>.json`` name."""
        now = datetime.now(UTC)
        if self._last_stamp is not None and now <= self._last_stamp:
            now = self._last_stamp + timedelta(microseconds=1)
        self._last_stamp = now
        return f"{_PREFIX}{now.strftime(_STAMP_FORMAT)}{_SUFFIX}"

    def _unused_name(self, directory: Path) -> str:
        name = self.new_record_name()
        while (directory / name).exists():
            name = self.new_record_name()
        return name

    # ------------------------------------------------------------------
    # Live tier
    # ------------------------------------------------------------------

    def new_live_slot(self) -> Path:
        """Return the path of a new live record (not yet written)."""
        return self.autosaves_dir / self._unused_name(self.autosaves_dir)

    def write_live(self, path: Path, record: SessionRecord) -> None:
        """Overwrite *path* with *record* atomically.

        The record is written to a temporary file in the same directory and
        renamed over the target, so readers see either the old or the new
        record. Raises ``OSError`` on failure.
        """
        _atomic_write(path, record.to_json())
        logger.debug("Live record written: %s", path.name)

    def discard_live(self, path: Path) -> None:
        """Remove a superseded live record. Only call once its state is archived."""
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove live record %s: %s", path.name, exc)
        else:
            logger.debug("Live record removed: %s", path.name)

    # ------------------------------------------------------------------
    # Archive tier
    # ------------------------------------------------------------------

    def archive(self, record: SessionRecord) -> Path:
        """Write *record* as a new archive. Existing archives are never touched."""
        directory = self.archives_dir
        try:
            directory.mkdir(parents=True, exist_ok=True)
            path = directory / self._unused_name(directory)
            _atomic_write(path, record.to_json())
        except OSError as exc:
            raise PersistenceError(f"Failed to write archive: {exc}") from exc
        logger.info("Session archived: %s", path.name)
        return path

    def archive_file(self, path: Path) -> Path | None:
        """Copy the record at *path* into a new archive; ``None`` if it is missing."""
        if not path.exists():
            return None
        return self.archive(self.read(path))

    # ------------------------------------------------------------------
    # Listing / reading
    # ------------------------------------------------------------------

    def list_archives(self) -> list[str]:
        """Archive names, newest first."""
        return _list_records(self.archives_dir)

    def list_autosaves(self) -> list[str]:
        """Live record names, newest first."""
        return _list_records(self.autosaves_dir)

    def latest(self, exclude: Path | None = None) -> Path | None:
        """Return the most recently written record across both tiers.

        Ordered by modification time; on a tie the live record wins, then
        the newer name. *exclude* is skipped.
        """
        candidates = [(p, 1) for p in map(self.autosave_path, self.list_autosaves())]
        candidates += [(p, 0) for p in map(self.archive_path, self.list_archives())]
        ranked = []
        for path, is_live in candidates:
            if path == exclude:
                continue
            try:
                mtime = path.stat().st_mtime_ns
            except OSError:
                continue
            ranked.append(((mtime, is_live, path.name), path))
        if not ranked:
            return None
        return max(ranked, key=lambda item: item[0])[1]

    def read(self, path: Path) -> SessionRecord:
        """Read and validate the record at *path*."""
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Failed to read {path.name}: {exc}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise InvalidRecordError(f"{path.name} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict) or "systemPrompt" not in data or "history" not in data:
            raise InvalidRecordError(f"{path.name} is missing systemPrompt or history")
        try:
            return SessionRecord.model_validate(data)
        except ValidationError as exc:
            raise InvalidRecordError(f"{path.name} has an invalid layout: {exc}") from exc


def _list_records(directory: Path) -> list[str]:
    if not directory.is_dir():
        return []
    names = [
        p.name
        for p in directory.iterdir()
        if p.is_file() and p.name.startswith(_PREFIX) and p.name.endswith(_SUFFIX)
    ]
    return sorted(names, reverse=True)


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=_SUFFIX)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise
