"""Messaging transport - the single chat session the service sends through.

The supervisor depends ONLY on the TransportSession interface; the gateway
implementation is wired in by the service composition in /workers/.
"""

from transport.base import (
    TransportSession,
    TransportError,
    EventEmitter,
    ProbeStatus,
    ProbeResult,
    OutboundMessage,
    SendResult,
)
from transport.gateway import (
    WhatsAppGatewaySession,
    events_for_status,
    chat_id,
)

__all__ = [
    "TransportSession",
    "TransportError",
    "EventEmitter",
    "ProbeStatus",
    "ProbeResult",
    "OutboundMessage",
    "SendResult",
    "WhatsAppGatewaySession",
    "events_for_status",
    "chat_id",
]
