"""Finite State Machine for the session lifecycle."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel


class SessionState(StrEnum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    COMPACTING = "compacting"
    ARCHIVED = "archived"


# Valid lifecycle transitions. ACTIVE -> ACTIVE covers load over a live session.
_TRANSITIONS: dict[SessionState, list[SessionState]] = {
    SessionState.UNINITIALIZED: [SessionState.ACTIVE, SessionState.ARCHIVED],
    SessionState.ACTIVE: [SessionState.ACTIVE, SessionState.COMPACTING, SessionState.ARCHIVED],
    SessionState.COMPACTING: [SessionState.ACTIVE, SessionState.ARCHIVED],
    SessionState.ARCHIVED: [SessionState.ACTIVE, SessionState.ARCHIVED],
}


class FSMState(BaseModel):
    state: SessionState = SessionState.UNINITIALIZED

    def can_transition(self, target: SessionState) -> bool:
        return target in _TRANSITIONS.get(self.state, [])

    def transition(self, target: SessionState) -> FSMState:
        if not self.can_transition(target):
            raise ValueError(f"Invalid transition: {self.state} -> {target}")
        return FSMState(state=target)
