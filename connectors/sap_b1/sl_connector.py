"""SAP Business One Connector.

Implements the DocumentSource interface for the SAP B1 Service Layer.
"""

import logging
from datetime import date
from typing import List

from pydantic import ValidationError

from connectors.erp_base import (
    ConnectorSettings,
    DocumentQuery,
    DocumentSource,
    ERPConnectionStatus,
    ERPError,
    register_connector,
)
from connectors.sap_b1.sl_client import SLApiClient, SLApiConfig
from connectors.sap_b1.sl_models import (
    INVOICE_SELECT,
    SLBusinessPartner,
    SLInvoice,
    delivered_patch,
    pending_filter,
)
from core.config import ERPConfig
from core.models.documents import CounterpartyContact, PendingDocument

logger = logging.getLogger(__name__)


@register_connector("sap_b1")
class SAPBusinessOneConnector(DocumentSource):
    """SAP Business One connector implementation.

    Reads A/R invoices that still have ``U_WhatsAppSent`` unset and writes
    the flag back once a document was delivered.

    Required settings:
    - base_url: Service Layer root (e.g. https://sap:50000)
    - company: Company database
    - username / password
    """

    def __init__(self, settings: ConnectorSettings, client: SLApiClient = None):
        super().__init__(settings)
        self._client = client or SLApiClient(
            SLApiConfig(
                base_url=settings.base_url,
                company_db=settings.company,
                username=settings.username,
                password=settings.password,
                verify_ssl=settings.verify_ssl,
                timeout_seconds=settings.timeout_seconds,
            )
        )

    @classmethod
    def from_config(cls, config: ERPConfig) -> "SAPBusinessOneConnector":
        return cls(ConnectorSettings(
            connector_type="sap_b1",
            base_url=config.base_url,
            username=config.username,
            password=config.password,
            company=config.company_db,
            verify_ssl=config.verify_ssl,
            timeout_seconds=config.timeout_seconds,
        ))

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def connect(self) -> bool:
        """Log in to the Service Layer."""
        self._connection_status = ERPConnectionStatus.AUTHENTICATING
        try:
            await self._client.connect()
        except ERPError as e:
            logger.error(f"SAP connection failed: {e}")
            self._connection_status = ERPConnectionStatus.FAILED
            return False
        self._connection_status = ERPConnectionStatus.CONNECTED
        return True

    async def disconnect(self) -> None:
        await self._client.disconnect()
        self._connection_status = ERPConnectionStatus.DISCONNECTED

    async def _ensure_connected(self) -> None:
        if not self._client.connected:
            await self._client.connect()
            self._connection_status = ERPConnectionStatus.CONNECTED

    # =========================================================================
    # Documents
    # =========================================================================

    async def list_pending(self, query: DocumentQuery) -> List[PendingDocument]:
        await self._ensure_connected()
        rows = await self._client.list_paged(
            "Invoices",
            filter=pending_filter(query.from_date),
            select=INVOICE_SELECT,
            orderby="DocEntry asc",
            page_size=query.page_size,
            limit=query.max_documents,
        )

        documents = []
        for row in rows:
            try:
                documents.append(SLInvoice.model_validate(row).to_pending())
            except ValidationError as e:
                logger.warning(f"Skipping malformed invoice DocEntry={row.get('DocEntry')}: {e}")
        logger.info(f"SAP returned {len(documents)} undelivered invoice(s)")
        return documents

    async def mark_delivered(self, document: PendingDocument, delivered_on: date) -> None:
        await self._ensure_connected()
        await self._client.update("Invoices", document.id, delivered_patch(delivered_on))
        logger.info(f"Marked invoice {document.number} (DocEntry {document.id}) as delivered")

    async def get_contact(self, counterparty_id: str) -> CounterpartyContact:
        await self._ensure_connected()
        quoted = counterparty_id.replace("'", "''")
        data = await self._client.get(
            "BusinessPartners",
            f"'{quoted}'",
            select=["CardCode", "CardName", "EmailAddress", "Cellular", "Phone1"],
        )
        return SLBusinessPartner.model_validate(data).to_contact()
