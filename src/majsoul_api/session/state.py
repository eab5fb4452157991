from __future__ import annotations

from enum import Enum


class SessionStates(str, Enum):
    LOGGED_OUT = "logged_out"
    LOGGING_IN = "logging_in"
    LOGGED_IN = "logged_in"


ALLOWED_TRANSITIONS = {
    SessionStates.LOGGED_OUT: {SessionStates.LOGGING_IN},
    SessionStates.LOGGING_IN: {SessionStates.LOGGED_IN, SessionStates.LOGGED_OUT},
    SessionStates.LOGGED_IN: {SessionStates.LOGGED_OUT},
}


def can_transition(from_state: SessionStates | str, to_state: SessionStates | str) -> bool:
    """Return True if a transition from from_state -> to_state is allowed."""
    f = SessionStates(from_state) if not isinstance(from_state, SessionStates) else from_state
    t = SessionStates(to_state) if not isinstance(to_state, SessionStates) else to_state
    return t in ALLOWED_TRANSITIONS.get(f, set())
