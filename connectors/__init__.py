"""ERP Connectors - Pluggable ERP system integrations.

This package contains the abstract document-source interface and concrete
implementations for specific ERP systems (SAP Business One, ...).

Delivery models are ERP-neutral. This package handles:
- ERP-specific authentication
- Data transformation (ERP payloads -> PendingDocument)
- API communication
- Setting the delivered flag

Key Design Principle:
- The orchestrator and API routes depend ONLY on the DocumentSource interface
- All methods return NORMALIZED types (PendingDocument, CounterpartyContact)
- No SAP-specific types should leak through the interface

To add a new ERP:
1. Create a new folder (e.g., odoo/)
2. Implement DocumentSource
3. Register using @register_connector decorator
"""

from connectors.erp_base import (
    # Core interface
    DocumentSource,
    DocumentQuery,
    ConnectorSettings,
    ERPConnectionStatus,

    # Errors
    ERPError,
    ERPAuthenticationError,
    ERPNotFoundError,
    ERPRateLimitError,
    ERPValidationError,

    # Factory functions
    create_connector,
    register_connector,
    list_available_connectors,
)

# Registers the "sap_b1" connector
import connectors.sap_b1  # noqa: F401

__all__ = [
    # Core interface
    "DocumentSource",
    "DocumentQuery",
    "ConnectorSettings",
    "ERPConnectionStatus",

    # Errors
    "ERPError",
    "ERPAuthenticationError",
    "ERPNotFoundError",
    "ERPRateLimitError",
    "ERPValidationError",

    # Factory
    "create_connector",
    "register_connector",
    "list_available_connectors",
]
