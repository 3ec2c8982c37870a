"""SAP Business One Connector Package.

Implements the DocumentSource interface for the SAP B1 Service Layer.
"""

from connectors.sap_b1.sl_connector import SAPBusinessOneConnector
from connectors.sap_b1.sl_client import SLApiClient, SLApiConfig, RetryConfig
from connectors.sap_b1.sl_models import (
    SLInvoice,
    SLBusinessPartner,
    delivered_patch,
    pending_filter,
)

__all__ = [
    # Connector
    "SAPBusinessOneConnector",
    # Client
    "SLApiClient",
    "SLApiConfig",
    "RetryConfig",
    # Models
    "SLInvoice",
    "SLBusinessPartner",
    "delivered_patch",
    "pending_filter",
]
