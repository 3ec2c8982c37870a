"""Core data models - ERP-neutral delivery types and the session lifecycle.

ERP-specific payloads are mapped to these types in /connectors/.
"""

from core.models.documents import (
    # Parsers
    DecimalValue,
    DateValue,

    # Documents
    DocumentCategory,
    PendingDocument,
    Artifact,
    CounterpartyContact,
    MissedDeliveryRecord,

    # Cycle results
    ItemStatus,
    ItemOutcome,
    CycleResult,
)

from core.models.lifecycle import (
    SessionState,
    LifecycleEvent,
    TransportEvent,
    AuthChallenge,
    Authenticated,
    ReadySignal,
    AuthFailure,
    Disconnected,
    Conflict,
    TransportFailed,
    StartRequested,
    ProbeConfirmed,
    ProbeFailed,
    ProbeRecovered,
    HeartbeatLost,
    ReconnectStarted,
    SessionFailed,
    SessionStopped,
    next_state,
    AlertSeverity,
    SessionAlert,
    severity_for_age,
)

__all__ = [
    # Parsers
    "DecimalValue",
    "DateValue",

    # Documents
    "DocumentCategory",
    "PendingDocument",
    "Artifact",
    "CounterpartyContact",
    "MissedDeliveryRecord",

    # Cycle results
    "ItemStatus",
    "ItemOutcome",
    "CycleResult",

    # Session lifecycle
    "SessionState",
    "LifecycleEvent",
    "TransportEvent",
    "AuthChallenge",
    "Authenticated",
    "ReadySignal",
    "AuthFailure",
    "Disconnected",
    "Conflict",
    "TransportFailed",
    "StartRequested",
    "ProbeConfirmed",
    "ProbeFailed",
    "ProbeRecovered",
    "HeartbeatLost",
    "ReconnectStarted",
    "SessionFailed",
    "SessionStopped",
    "next_state",

    # Alerts
    "AlertSeverity",
    "SessionAlert",
    "severity_for_age",
]
