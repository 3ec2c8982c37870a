"""Transport session lifecycle: states, events and the transition table.

Every event the session supervisor reacts to is one of the frozen dataclasses
below; ``LifecycleEvent`` is their closed union. Transport implementations
emit the transport-side events, the supervisor emits the rest. ``next_state``
is the only place where the state machine is defined.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field


class SessionState(str, Enum):
    """State of the single transport session."""
    UNINITIALIZED = "UNINITIALIZED"
    AWAITING_CREDENTIAL = "AWAITING_CREDENTIAL"
    AUTHENTICATED = "AUTHENTICATED"
    READY = "READY"
    DEGRADED = "DEGRADED"
    RECONNECTING = "RECONNECTING"
    FAILED = "FAILED"


# =============================================================================
# Transport events
# =============================================================================

@dataclass(frozen=True)
class AuthChallenge:
    """The transport wants an out-of-band credential (e.g. a pairing QR code)."""
    code: str


@dataclass(frozen=True)
class Authenticated:
    """The credential was accepted."""


@dataclass(frozen=True)
class ReadySignal:
    """The transport's own ready signal. It is not always emitted."""


@dataclass(frozen=True)
class AuthFailure:
    reason: str


@dataclass(frozen=True)
class Disconnected:
    reason: str


@dataclass(frozen=True)
class Conflict:
    """Another client took over the session."""
    state: str


@dataclass(frozen=True)
class TransportFailed:
    reason: str


# =============================================================================
# Supervisor events
# =============================================================================

@dataclass(frozen=True)
class StartRequested:
    """An operator (or the process) called start()."""


@dataclass(frozen=True)
class ProbeConfirmed:
    """A capability probe confirmed a working session after authentication."""


@dataclass(frozen=True)
class ProbeFailed:
    reason: str


@dataclass(frozen=True)
class ProbeRecovered:
    """A probe succeeded again while degraded."""


@dataclass(frozen=True)
class HeartbeatLost:
    consecutive_failures: int


@dataclass(frozen=True)
class ReconnectStarted:
    attempt: int


@dataclass(frozen=True)
class SessionFailed:
    reason: str


@dataclass(frozen=True)
class SessionStopped:
    """The session was torn down on purpose (shutdown or refresh)."""


TransportEvent = Union[
    AuthChallenge,
    Authenticated,
    ReadySignal,
    AuthFailure,
    Disconnected,
    Conflict,
    TransportFailed,
]

LifecycleEvent = Union[
    TransportEvent,
    StartRequested,
    ProbeConfirmed,
    ProbeFailed,
    ProbeRecovered,
    HeartbeatLost,
    ReconnectStarted,
    SessionFailed,
    SessionStopped,
]

# Events that mean the current connection is gone
CONNECTION_LOST_EVENTS = (
    Disconnected,
    Conflict,
    TransportFailed,
    AuthFailure,
    HeartbeatLost,
    ReconnectStarted,
)

_LIVE_STATES = frozenset({
    SessionState.AWAITING_CREDENTIAL,
    SessionState.AUTHENTICATED,
    SessionState.READY,
    SessionState.DEGRADED,
    SessionState.RECONNECTING,
})


def next_state(state: SessionState, event: LifecycleEvent) -> SessionState:
    """Return the state reached from ``state`` on ``event``.

    Events that make no sense in the current state leave it unchanged.
    """
    if isinstance(event, StartRequested):
        if state in (SessionState.UNINITIALIZED, SessionState.FAILED):
            return SessionState.AWAITING_CREDENTIAL
        return state

    # FAILED is terminal until an operator starts the session again
    if state is SessionState.FAILED:
        return state

    if isinstance(event, SessionFailed):
        return SessionState.FAILED

    if isinstance(event, SessionStopped):
        return SessionState.UNINITIALIZED

    if state is SessionState.UNINITIALIZED:
        return state

    if isinstance(event, CONNECTION_LOST_EVENTS):
        return SessionState.RECONNECTING if state in _LIVE_STATES else state

    if isinstance(event, AuthChallenge):
        return state

    if isinstance(event, Authenticated):
        if state in (SessionState.AWAITING_CREDENTIAL, SessionState.RECONNECTING):
            return SessionState.AUTHENTICATED
        return state

    if isinstance(event, ReadySignal):
        if state in (
            SessionState.AWAITING_CREDENTIAL,
            SessionState.AUTHENTICATED,
            SessionState.RECONNECTING,
            SessionState.DEGRADED,
        ):
            return SessionState.READY
        return state

    if isinstance(event, ProbeConfirmed):
        return SessionState.READY if state is SessionState.AUTHENTICATED else state

    if isinstance(event, ProbeFailed):
        return SessionState.DEGRADED if state is SessionState.READY else state

    if isinstance(event, ProbeRecovered):
        return SessionState.READY if state is SessionState.DEGRADED else state

    return state


# =============================================================================
# Alerts
# =============================================================================

class AlertSeverity(str, Enum):
    """Severity of a session-health notification."""
    NOTICE = "notice"
    WARNING = "warning"
    CRITICAL = "critical"
    RECOVERED = "recovered"
    FAILED = "failed"


class SessionAlert(BaseModel):
    """Notification sent to the alerting channel."""
    severity: AlertSeverity
    message: str
    session_age_hours: float = 0.0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    detail: Optional[str] = None


def severity_for_age(age_hours: float) -> AlertSeverity:
    """Escalate with session age: a week is critical, five days a warning."""
    if age_hours >= 168:
        return AlertSeverity.CRITICAL
    if age_hours >= 120:
        return AlertSeverity.WARNING
    return AlertSeverity.NOTICE
