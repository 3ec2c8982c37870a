"""In-memory log of documents that could not be delivered.

Records accumulate across cycles until the daily report is sent, then the
log is cleared. A document that fails several times appears once in the
report, with its most recent error.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from core.models.documents import MissedDeliveryRecord, PendingDocument


class MissedDeliveryLog:

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._records: List[MissedDeliveryRecord] = []

    def record(self, document: PendingDocument, error: str) -> MissedDeliveryRecord:
        entry = MissedDeliveryRecord(
            document_id=document.id,
            document_number=document.number,
            counterparty_name=document.counterparty_name,
            error_message=error,
            timestamp=self._clock(),
        )
        self._records.append(entry)
        return entry

    def all(self) -> List[MissedDeliveryRecord]:
        return list(self._records)

    def unique(self) -> List[MissedDeliveryRecord]:
        """One record per document id, the latest error winning.

        Ordered by when each document last failed.
        """
        latest: Dict[str, MissedDeliveryRecord] = {}
        for entry in self._records:
            # Re-insert so dict order follows the latest failure
            latest.pop(entry.document_id, None)
            latest[entry.document_id] = entry
        return list(latest.values())

    def clear(self, upto: Optional[int] = None) -> None:
        """Drop every record, or only the first ``upto`` (those already reported)."""
        if upto is None:
            self._records.clear()
        else:
            del self._records[:upto]

    def __len__(self) -> int:
        return len(self._records)
