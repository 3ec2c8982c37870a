"""Delivery data models - ERP-neutral document and artifact types.

These models are what the delivery orchestrator, the reporter and the
dashboard see. ERP-specific field names are mapped in /connectors/.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


# =============================================================================
# Value Parsers
# =============================================================================

def _parse_decimal(value):
    """Parse decimal from ints, floats and plain numeric strings."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip().replace(",", "")
        return Decimal(s) if s else Decimal("0")
    return value


def _parse_date(value):
    """Parse ISO dates, tolerating a trailing time component."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if "T" in s:
            s = s.split("T", 1)[0]
        return datetime.strptime(s, "%Y-%m-%d").date()
    return value


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


DecimalValue = Annotated[Decimal, BeforeValidator(_parse_decimal)]
DateValue = Annotated[date, BeforeValidator(_parse_date)]
OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================

class DocumentCategory(str, Enum):
    """Kind of document, derived from the shape of its number."""
    PRIMARY = "PRIMARY"      # Customer invoice
    INTERNAL = "INTERNAL"    # Internal-use receipt

    @classmethod
    def from_number(cls, number: str) -> "DocumentCategory":
        """Seven-digit numbers starting with 9 belong to the internal series."""
        digits = str(number).strip()
        if len(digits) == 7 and digits.startswith("9"):
            return cls.INTERNAL
        return cls.PRIMARY


class ItemStatus(str, Enum):
    """Outcome of processing one document in a cycle."""
    DELIVERED = "DELIVERED"
    ARTIFACT_MISSING = "ARTIFACT_MISSING"
    ARTIFACT_UNREADABLE = "ARTIFACT_UNREADABLE"
    NO_RECIPIENT = "NO_RECIPIENT"
    SEND_FAILED = "SEND_FAILED"
    MARK_FAILED = "MARK_FAILED"
    HALTED = "HALTED"


# =============================================================================
# Documents and Artifacts
# =============================================================================

class PendingDocument(BaseModel):
    """A document waiting to be delivered.

    Created by the ERP; the only field the service ever writes back is the
    idempotency flag, and that happens through the DocumentSource, not here.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Opaque ERP key used for updates")
    number: str = Field(..., description="Human-facing document number")
    issue_date: DateValue = Field(..., description="Document date")
    category: DocumentCategory = Field(default=DocumentCategory.PRIMARY)
    counterparty_id: str = Field(..., description="ERP counterparty code")
    counterparty_name: str = Field(default="", description="Counterparty display name")
    amount: DecimalValue = Field(default=Decimal("0"))
    contact_phone: OptionalText = Field(default=None, description="Phone registered on the document")
    comment: OptionalText = Field(default=None)
    salesperson_code: Optional[int] = Field(default=None, description="Salesperson to notify")


class Artifact(BaseModel):
    """A locally cached PDF that proves a document was issued."""
    document_number: str
    file_path: Path
    size_bytes: int = 0
    page_count: Optional[int] = None

    @property
    def filename(self) -> str:
        return self.file_path.name


class CounterpartyContact(BaseModel):
    """Contact channels registered for a counterparty."""
    counterparty_id: str
    email: OptionalText = None
    cellular: OptionalText = None


class MissedDeliveryRecord(BaseModel):
    """A document that could not be delivered during a cycle."""
    document_id: str
    document_number: str
    counterparty_name: str = ""
    error_message: str
    timestamp: datetime = Field(default_factory=_utcnow)


# =============================================================================
# Cycle Results
# =============================================================================

class ItemOutcome(BaseModel):
    """What happened to one document during a cycle."""
    document_id: str
    document_number: str
    status: ItemStatus
    detail: Optional[str] = None


class CycleResult(BaseModel):
    """Summary of one delivery cycle."""
    cycle_id: str
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None
    skipped: bool = False
    halted: bool = False
    halt_reason: Optional[str] = None
    error: Optional[str] = None
    candidates: int = 0
    outcomes: List[ItemOutcome] = Field(default_factory=list)
    remaining_ids: List[str] = Field(default_factory=list)

    @property
    def delivered(self) -> List[ItemOutcome]:
        return [o for o in self.outcomes if o.status is ItemStatus.DELIVERED]

    @property
    def failed(self) -> List[ItemOutcome]:
        return [
            o for o in self.outcomes
            if o.status not in (ItemStatus.DELIVERED, ItemStatus.HALTED)
        ]
