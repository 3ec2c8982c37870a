"""Abstract ERP Document Source Interface.

This module defines the interface every ERP connector implements for the
delivery service. It is intentionally ERP-agnostic - no SAP specifics here.

Connectors implement this interface to:
1. Connect and authenticate with their ERP
2. List documents that have not been delivered yet (paged, stable order)
3. Set the single idempotency flag once a document was delivered
4. Look up counterparty contact details for secondary notifications

Key Design Principles:
- All methods return NORMALIZED objects (PendingDocument, CounterpartyContact)
- The orchestrator and API routes depend ONLY on this interface
- The ERP flag is the only record of "already delivered"; connectors never
  cache it locally
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

from core.models.documents import CounterpartyContact, PendingDocument


# =============================================================================
# Errors
# =============================================================================

class ERPError(Exception):
    """Base exception for ERP errors."""
    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class ERPAuthenticationError(ERPError):
    """Authentication failed (401/403)."""
    pass


class ERPNotFoundError(ERPError):
    """Resource not found (404)."""
    pass


class ERPRateLimitError(ERPError):
    """Rate limit exceeded (429)."""
    def __init__(self, message: str, retry_after: int = 60):
        super().__init__(message, 429)
        self.retry_after = retry_after


class ERPValidationError(ERPError):
    """Request rejected by the ERP (400)."""
    pass


# =============================================================================
# Enums and Config
# =============================================================================

class ERPConnectionStatus(str, Enum):
    """Connection status to ERP system."""
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    AUTHENTICATING = "AUTHENTICATING"
    FAILED = "FAILED"


@dataclass
class DocumentQuery:
    """Which documents a cycle asks for."""
    from_date: date                         # Inclusive issue-date floor, always sent
    max_documents: int = 50                 # Cap per cycle
    page_size: int = 50


@dataclass
class ConnectorSettings:
    """Generic connector configuration, extended by specific connectors."""
    connector_type: str                     # "sap_b1", ...
    base_url: str = ""
    username: str = ""
    password: str = ""
    company: str = ""
    verify_ssl: bool = True
    timeout_seconds: int = 30
    custom_settings: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Abstract Document Source
# =============================================================================

class DocumentSource(ABC):
    """Abstract base class for the ERP side of delivery.

    Implementations:
    - connectors/sap_b1/sl_connector.py
    """

    def __init__(self, settings: ConnectorSettings):
        self.settings = settings
        self._connection_status = ERPConnectionStatus.DISCONNECTED

    @property
    def connection_status(self) -> ERPConnectionStatus:
        return self._connection_status

    @abstractmethod
    async def connect(self) -> bool:
        """Establish connection to the ERP system.

        Returns:
            True if connection successful
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def list_pending(self, query: DocumentQuery) -> List[PendingDocument]:
        """List documents whose delivered flag is not set.

        Ordered by the ERP's stable document key, at most
        ``query.max_documents`` items.

        Raises:
            ERPError: Query failed
        """
        pass

    @abstractmethod
    async def mark_delivered(self, document: PendingDocument, delivered_on: date) -> None:
        """Set the delivered flag and delivery date on one document.

        Raises:
            ERPError: Update failed; the flag must be assumed unset
        """
        pass

    @abstractmethod
    async def get_contact(self, counterparty_id: str) -> CounterpartyContact:
        """Registered email / cellular of a counterparty.

        Raises:
            ERPNotFoundError: Unknown counterparty
            ERPError: Lookup failed
        """
        pass

    def get_connector_name(self) -> str:
        return self.settings.connector_type


# =============================================================================
# Connector Factory
# =============================================================================

_connector_registry: Dict[str, type] = {}


def register_connector(connector_type: str):
    """Decorator to register a connector implementation."""
    def decorator(cls):
        _connector_registry[connector_type] = cls
        return cls
    return decorator


def create_connector(settings: ConnectorSettings) -> DocumentSource:
    """Create a connector instance from settings.

    Raises:
        ValueError: If connector_type is not registered
    """
    connector_type = settings.connector_type.lower()

    if connector_type not in _connector_registry:
        available = list(_connector_registry.keys())
        raise ValueError(
            f"Unknown connector type: {connector_type}. "
            f"Available: {available}"
        )

    connector_class = _connector_registry[connector_type]
    return connector_class(settings)


def list_available_connectors() -> List[str]:
    """List all registered connector types."""
    return list(_connector_registry.keys())
