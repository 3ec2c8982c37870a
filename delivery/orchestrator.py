"""Delivery orchestrator - one cycle of document delivery.

A cycle fetches undelivered documents from the ERP and processes them
strictly one after another:

    readiness check -> artifact lookup -> recipient -> send -> mark -> notify -> cleanup

Per-document failures become MissedDeliveryRecords and never stop the
batch. Session readiness is the only hard boundary: when the session is not
READY the remaining documents are left for the next cycle.

The delivered flag in the ERP is the only record of what was sent, so the
candidate set is fetched fresh every cycle.
"""

import asyncio
import time
import uuid
from datetime import date, datetime, timezone
from typing import Callable, List, Optional

from connectors.erp_base import DocumentQuery, DocumentSource, ERPError
from core.config import DeliveryConfig
from core.models.documents import (
    Artifact,
    CycleResult,
    ItemOutcome,
    ItemStatus,
    PendingDocument,
)
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics, record_delivery_outcome
from core.storage.artifacts import ArtifactStore, ArtifactUnreadableError
from delivery.messages import MessageComposer
from delivery.missed import MissedDeliveryLog
from delivery.phone import is_plausible_mobile, normalize_phone
from session.supervisor import SessionNotReady, SessionSupervisor
from transport.base import OutboundMessage

logger = get_logger(__name__)


class DeliveryOrchestrator:
    """Runs delivery cycles against one supervisor, ERP and artifact store.

    Usage:
        orchestrator = DeliveryOrchestrator(supervisor, source, store, missed, config.delivery)
        result = await orchestrator.run_cycle()
    """

    def __init__(
        self,
        supervisor: SessionSupervisor,
        source: DocumentSource,
        store: ArtifactStore,
        missed: Optional[MissedDeliveryLog] = None,
        config: Optional[DeliveryConfig] = None,
        composer: Optional[MessageComposer] = None,
        sleep: Callable = asyncio.sleep,
        today: Callable[[], date] = date.today,
    ):
        self.config = config or DeliveryConfig()
        self._supervisor = supervisor
        self._source = source
        self._store = store
        self.missed = missed if missed is not None else MissedDeliveryLog()
        self._composer = composer or MessageComposer(
            test_mode=self.config.test_mode,
            company_name=self.config.company_name,
        )
        self._sleep = sleep
        self._today = today
        self._cycle_lock = asyncio.Lock()
        self.last_result: Optional[CycleResult] = None

    @property
    def running(self) -> bool:
        return self._cycle_lock.locked()

    # =========================================================================
    # Cycle
    # =========================================================================

    async def run_cycle(self) -> CycleResult:
        """Run one delivery cycle. Overlapping calls are skipped."""
        result = CycleResult(cycle_id=f"cycle-{uuid.uuid4().hex[:8]}")

        if self._cycle_lock.locked():
            logger.info("Delivery cycle already running, skipping this tick")
            result.skipped = True
            result.finished_at = datetime.now(timezone.utc)
            get_metrics().record_cycle_skipped()
            return result

        async with self._cycle_lock:
            with with_correlation(cycle_id=result.cycle_id, job="delivery"):
                started = time.monotonic()
                get_metrics().record_cycle_started()
                try:
                    await self._run(result)
                finally:
                    result.finished_at = datetime.now(timezone.utc)
                    duration_ms = (time.monotonic() - started) * 1000
                    get_metrics().record_cycle_completed(halted=result.halted, duration_ms=duration_ms)
                    self.last_result = result
                    logger.info(
                        "Delivery cycle finished",
                        extra_fields={
                            "candidates": result.candidates,
                            "delivered": len(result.delivered),
                            "failed": len(result.failed),
                            "halted": result.halted,
                        },
                    )
        return result

    def _halt(self, result: CycleResult, remaining: List[PendingDocument]) -> None:
        state = self._supervisor.state.value
        result.halted = True
        result.halt_reason = f"session {state}"
        result.remaining_ids = [d.id for d in remaining]
        logger.warning(
            f"Session is {state}; halting batch, {len(remaining)} document(s) left for next cycle"
        )

    async def _run(self, result: CycleResult) -> None:
        if not self._supervisor.is_ready:
            self._halt(result, [])
            return

        query = DocumentQuery(
            from_date=self.config.from_date,
            max_documents=self.config.max_documents_per_cycle,
            page_size=self.config.max_documents_per_cycle,
        )
        try:
            documents = await self._source.list_pending(query)
        except ERPError as e:
            logger.error(f"Could not fetch pending documents: {e}")
            result.error = str(e)
            return

        result.candidates = len(documents)
        if not documents:
            logger.info("No pending documents")
            return
        logger.info(f"Processing {len(documents)} pending document(s)")

        for index, document in enumerate(documents):
            if not self._supervisor.is_ready:
                self._halt(result, documents[index:])
                return

            with with_correlation(document_id=document.id, document_number=document.number):
                try:
                    outcome = await self._process(document)
                except Exception as e:
                    logger.exception(f"Unexpected error processing document {document.number}")
                    self.missed.record(document, f"unexpected error: {type(e).__name__}: {e}")
                    outcome = ItemOutcome(
                        document_id=document.id,
                        document_number=document.number,
                        status=ItemStatus.SEND_FAILED,
                        detail=str(e),
                    )

            if outcome.status is ItemStatus.HALTED:
                result.outcomes.append(outcome)
                self._halt(result, documents[index:])
                return

            result.outcomes.append(outcome)
            await self._sleep(self.config.inter_item_delay_seconds)

    # =========================================================================
    # Per-document processing
    # =========================================================================

    def resolve_recipient(self, document: PendingDocument) -> Optional[str]:
        """Test phone in test mode, else the document's phone, else the admin."""
        cfg = self.config
        if cfg.test_mode:
            raw = cfg.test_phone
        elif is_plausible_mobile(document.contact_phone, cfg.min_phone_digits):
            raw = document.contact_phone
        else:
            raw = cfg.admin_phone
        return normalize_phone(raw, cfg.country_code)

    def _outcome(
        self,
        document: PendingDocument,
        status: ItemStatus,
        started: float,
        detail: Optional[str] = None,
    ) -> ItemOutcome:
        record_delivery_outcome(status.value, (time.monotonic() - started) * 1000)
        return ItemOutcome(
            document_id=document.id,
            document_number=document.number,
            status=status,
            detail=detail,
        )

    def _miss(self, document: PendingDocument, status: ItemStatus, started: float, error: str) -> ItemOutcome:
        self.missed.record(document, error)
        logger.warning(f"Document {document.number} not delivered: {error}")
        return self._outcome(document, status, started, error)

    def _discard(self, artifact: Artifact) -> None:
        try:
            self._store.delete(artifact)
        except OSError as e:
            logger.error(f"Could not delete artifact {artifact.filename}: {e}")

    async def _process(self, document: PendingDocument) -> ItemOutcome:
        started = time.monotonic()

        artifact = self._store.find(document.number)
        if artifact is None:
            return self._miss(document, ItemStatus.ARTIFACT_MISSING, started, "artifact not found")

        if self.config.verify_artifacts:
            try:
                artifact = self._store.verify(artifact)
            except ArtifactUnreadableError as e:
                return self._miss(document, ItemStatus.ARTIFACT_UNREADABLE, started, f"artifact unreadable: {e}")

        recipient = self.resolve_recipient(document)
        if recipient is None:
            return self._miss(document, ItemStatus.NO_RECIPIENT, started, "no recipient phone available")

        message = OutboundMessage(
            text=self._composer.customer_message(document),
            attachment=artifact.file_path,
        )
        try:
            sent = await self._supervisor.send(recipient, message)
        except SessionNotReady as e:
            logger.warning(f"Send refused: {e}")
            return self._outcome(document, ItemStatus.HALTED, started, str(e))

        if not sent.accepted:
            return self._miss(document, ItemStatus.SEND_FAILED, started, f"send rejected: {sent.reason}")
        logger.info(f"Document {document.number} accepted by transport", extra_fields={"message_id": sent.message_id})

        try:
            await self._source.mark_delivered(document, self._today())
        except Exception as e:
            # Already sent: drop the artifact so the document is never sent twice
            self._discard(artifact)
            return self._miss(
                document,
                ItemStatus.MARK_FAILED,
                started,
                f"sent but could not be marked delivered: {type(e).__name__}: {e}",
            )

        await self._notify_salesperson(document)
        self._discard(artifact)
        logger.info(f"Document {document.number} delivered")
        return self._outcome(document, ItemStatus.DELIVERED, started)

    async def _notify_salesperson(self, document: PendingDocument) -> None:
        """Tell the document's salesperson it went out. Failures are only logged."""
        code = document.salesperson_code
        if code is None:
            return
        salesperson = self.config.salespeople.get(code)
        if salesperson is None:
            logger.info(f"No phone configured for salesperson {code}")
            return

        metrics = get_metrics()
        try:
            try:
                contact = await self._source.get_contact(document.counterparty_id)
            except ERPError as e:
                logger.warning(f"Contact lookup for {document.counterparty_id} failed: {e}")
                contact = None

            text = self._composer.salesperson_message(document, salesperson.name, contact)
            raw = self.config.test_phone if self.config.test_mode else salesperson.phone
            recipient = normalize_phone(raw, self.config.country_code)
            if recipient is None:
                logger.warning(f"Salesperson {code} has no usable phone")
                metrics.record_secondary_notification(sent=False)
                return

            result = await self._supervisor.send(recipient, OutboundMessage(text=text))
        except Exception as e:
            metrics.record_secondary_notification(sent=False)
            logger.warning(f"Salesperson notification for {document.number} failed: {type(e).__name__}: {e}")
            return

        metrics.record_secondary_notification(sent=result.accepted)
        if result.accepted:
            logger.info(f"Salesperson {salesperson.name} notified")
        else:
            logger.warning(f"Salesperson notification rejected: {result.reason}")
