"""Markdown export of session records."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from .errors import InvalidRecordError, PersistenceError
from .provider import ChatRole
from .session_store import SessionRecord, SessionStore


def format_markdown(record: SessionRecord, source_name: str, exported_at: datetime | None = None) -> str:
    """Render *record* as a readable story log."""
    when = exported_at or datetime.now()
    parts = [
        "# Story Log Export\n\n",
        f"*Exported from: {source_name}*\n",
        f"*Exported on: {when:%Y-%m-%d %H:%M:%S}*\n\n",
    ]
    if record.system_prompt:
        parts.append("## Scenario Settings (System Prompt)\n\n")
        parts.append(f"```\n{record.system_prompt}\n```\n\n")
    if record.summary:
        parts.append("## Story Summary (Long-term Memory)\n\n")
        parts.append(f"{record.summary}\n\n")
    parts.append("## Recent Conversation (Short-term Memory)\n\n---\n\n")
    for turn in record.history:
        if turn.role == ChatRole.USER:
            parts.append(f"**You:**\n{turn.content}\n\n")
        elif turn.role == ChatRole.ASSISTANT:
            parts.append(f"{turn.content}\n\n---\n\n")
    return "".join(parts)


def export_markdown(store: SessionStore, record_path: Path, exports_dir: Path) -> Path:
    """Write ``exports_dir/<record stem>.md`` for the record at *record_path*."""
    record = store.read(record_path)
    if not record.history:
        raise InvalidRecordError(f"{record_path.name} contains no conversation history")
    out = exports_dir / f"{record_path.stem}.md"
    try:
        exports_dir.mkdir(parents=True, exist_ok=True)
        out.write_text(format_markdown(record, record_path.name), encoding="utf-8")
    except OSError as exc:
        raise PersistenceError(f"Failed to export {record_path.name}: {exc}") from exc
    return out
