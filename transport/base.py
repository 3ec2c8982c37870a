"""Abstract messaging transport session.

A TransportSession owns the single connection to the chat transport. It is
deliberately dumb: it reports what the transport says through lifecycle
events and answers probes, while the SessionSupervisor decides what those
events mean.

Key Design Principles:
- Events are delivered by awaiting the ``emit`` callback given to ``start``
- ``send`` is a single attempt; retrying is the caller's decision
- The capability probe queries session identity directly and is the only
  accepted secondary evidence of readiness
"""

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from core.models.lifecycle import TransportEvent


EventEmitter = Callable[[TransportEvent], Awaitable[None]]


class TransportError(Exception):
    """Failure talking to the transport (gateway unreachable, bad response)."""
    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


# =============================================================================
# Probe and Send Results
# =============================================================================

class ProbeStatus(str, Enum):
    CONNECTED = "CONNECTED"   # Session identity confirmed
    UNKNOWN = "UNKNOWN"       # Transport answered but could not confirm
    ERROR = "ERROR"           # Probe itself failed


class ProbeResult(BaseModel):
    status: ProbeStatus
    identity: Optional[str] = Field(default=None, description="Own account id when connected")
    detail: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.status is ProbeStatus.CONNECTED


class OutboundMessage(BaseModel):
    """Text message with an optional file attachment (sent as caption + file)."""
    text: str
    attachment: Optional[Path] = None


class SendResult(BaseModel):
    accepted: bool
    message_id: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, message_id: Optional[str] = None) -> "SendResult":
        return cls(accepted=True, message_id=message_id)

    @classmethod
    def rejected(cls, reason: str) -> "SendResult":
        return cls(accepted=False, reason=reason)


# =============================================================================
# Abstract Session
# =============================================================================

class TransportSession(ABC):
    """Abstract base class for transport sessions.

    Implementations:
    - transport/gateway.py (WhatsApp Web through an HTTP gateway)
    """

    @abstractmethod
    async def start(self, emit: EventEmitter) -> None:
        """Begin or resume a session.

        Returns once the transport has accepted the start request. Progress
        (pairing code, authentication, readiness, failures) arrives later
        through ``emit``.

        Raises:
            TransportError: The start request itself failed
        """
        pass

    @abstractmethod
    async def probe_state(self) -> ProbeResult:
        """Query session identity directly. Never raises."""
        pass

    @abstractmethod
    async def send(self, recipient: str, message: OutboundMessage) -> SendResult:
        """Send one message to a normalized phone number.

        Raises:
            TransportError: The transport could not be reached
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Tear the session down. No events are emitted afterwards."""
        pass

    def get_transport_name(self) -> str:
        return self.__class__.__name__
