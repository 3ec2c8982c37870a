"""SAP Business One Service Layer data models.

These are SAP-specific models that map to the Service Layer schema.
They are separate from the delivery models in /core/models/.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from core.models.documents import (
    CounterpartyContact,
    DateValue,
    DecimalValue,
    DocumentCategory,
    PendingDocument,
)

# User-defined fields the service relies on
FLAG_FIELD = "U_WhatsAppSent"
FLAG_DATE_FIELD = "U_WhatsAppDate"
PHONE_FIELD = "U_WhatsAppPhone"

INVOICE_SELECT = [
    "DocEntry",
    "DocNum",
    "DocDate",
    "CardCode",
    "CardName",
    "DocTotal",
    "Comments",
    "SalesPersonCode",
    PHONE_FIELD,
]


class SLBaseModel(BaseModel):
    """Base model for Service Layer entities."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SLInvoice(SLBaseModel):
    """A/R invoice as returned by the Service Layer.

    Maps to: /b1s/v1/Invoices
    """
    doc_entry: int = Field(..., alias="DocEntry")
    doc_num: int = Field(..., alias="DocNum")
    doc_date: DateValue = Field(..., alias="DocDate")
    card_code: str = Field(..., alias="CardCode")
    card_name: Optional[str] = Field(None, alias="CardName")
    doc_total: DecimalValue = Field(Decimal("0"), alias="DocTotal")
    comments: Optional[str] = Field(None, alias="Comments")
    sales_person_code: Optional[int] = Field(None, alias="SalesPersonCode")
    whatsapp_phone: Optional[str] = Field(None, alias=PHONE_FIELD)

    def to_pending(self) -> PendingDocument:
        number = str(self.doc_num)
        # -1 is SAP's "no salesperson"
        salesperson = self.sales_person_code
        if salesperson is not None and salesperson < 0:
            salesperson = None
        return PendingDocument(
            id=str(self.doc_entry),
            number=number,
            issue_date=self.doc_date,
            category=DocumentCategory.from_number(number),
            counterparty_id=self.card_code,
            counterparty_name=self.card_name or "",
            amount=self.doc_total,
            contact_phone=self.whatsapp_phone,
            comment=self.comments,
            salesperson_code=salesperson,
        )


class SLBusinessPartner(SLBaseModel):
    """Business partner contact fields.

    Maps to: /b1s/v1/BusinessPartners('<CardCode>')
    """
    card_code: str = Field(..., alias="CardCode")
    card_name: Optional[str] = Field(None, alias="CardName")
    email_address: Optional[str] = Field(None, alias="EmailAddress")
    cellular: Optional[str] = Field(None, alias="Cellular")
    phone1: Optional[str] = Field(None, alias="Phone1")

    def to_contact(self) -> CounterpartyContact:
        return CounterpartyContact(
            counterparty_id=self.card_code,
            email=self.email_address,
            cellular=self.cellular,
        )


def delivered_patch(delivered_on: date) -> dict:
    """PATCH body that marks an invoice as delivered."""
    return {
        FLAG_FIELD: "Y",
        FLAG_DATE_FIELD: delivered_on.isoformat(),
    }


def pending_filter(from_date: date) -> str:
    """OData filter for invoices issued on or after ``from_date`` and not yet delivered.

    The date floor is mandatory so historical invoices are never swept up.
    """
    if from_date is None:
        raise ValueError("pending_filter requires an issue-date floor")
    unsent = f"({FLAG_FIELD} eq null or {FLAG_FIELD} eq 'N')"
    return f"DocDate ge '{from_date.isoformat()}' and {unsent}"
