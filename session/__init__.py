"""Session - supervision of the single transport session."""

from session.reconnection import ReconnectionPolicy, ReconnectionExhausted
from session.session_info import SessionInfo, SessionInfoStore
from session.supervisor import SessionSupervisor, SessionNotReady, SessionSnapshot

__all__ = [
    "ReconnectionPolicy",
    "ReconnectionExhausted",
    "SessionInfo",
    "SessionInfoStore",
    "SessionSupervisor",
    "SessionNotReady",
    "SessionSnapshot",
]
