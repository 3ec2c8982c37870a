"""Service composition.

Wires configuration, the ERP connector, the transport session and its
supervisor, the orchestrator and the periodic jobs into one object that
runs on a single event loop.
"""

import asyncio
import logging
from typing import List, Optional

from alerts.channels import create_alert_channel
from alerts.email import EmailSender
from alerts.reporter import MissedDeliveryReporter
from connectors.erp_base import DocumentSource
from connectors.sap_b1 import SAPBusinessOneConnector
from core.config import ServiceConfig
from core.storage.artifacts import ArtifactStore
from delivery.messages import MessageComposer
from delivery.missed import MissedDeliveryLog
from delivery.orchestrator import DeliveryOrchestrator
from delivery.retention import ArtifactRetention, SweepResult
from session.session_info import SessionInfoStore
from session.supervisor import SessionSupervisor
from transport.base import TransportSession
from transport.gateway import WhatsAppGatewaySession
from workers.schedule import run_at

logger = logging.getLogger(__name__)


class DeliveryService:
    """Everything the delivery process runs, built from one ServiceConfig.

    Collaborators can be injected for tests and scripts.
    """

    def __init__(
        self,
        config: ServiceConfig,
        source: Optional[DocumentSource] = None,
        transport: Optional[TransportSession] = None,
    ):
        self.config = config
        delivery = config.delivery

        self.store = ArtifactStore(delivery.artifact_dir, delivery.artifact_templates, delivery.max_padding)
        self.email = EmailSender(config.alerts)
        self.alerts = create_alert_channel(config.alerts, self.email)

        self.transport = transport or WhatsAppGatewaySession(config.transport)
        self.supervisor = SessionSupervisor(
            self.transport,
            self.alerts,
            config.session,
            info_store=SessionInfoStore(config.session.session_info_path),
        )

        self.source = source or SAPBusinessOneConnector.from_config(config.erp)
        self.composer = MessageComposer(test_mode=delivery.test_mode, company_name=delivery.company_name)
        self.missed = MissedDeliveryLog()
        self.orchestrator = DeliveryOrchestrator(
            self.supervisor,
            self.source,
            self.store,
            self.missed,
            delivery,
            composer=self.composer,
        )
        self.reporter = MissedDeliveryReporter(
            self.missed,
            self.email,
            config.alerts.report_recipients,
            supervisor=self.supervisor,
            admin_phone=delivery.admin_phone,
            country_code=delivery.country_code,
            composer=self.composer,
        )
        self.retention = ArtifactRetention(self.store, config.schedule.retention_days)
        self._tasks: List[asyncio.Task] = []

    async def sweep_artifacts(self) -> SweepResult:
        return self.retention.sweep()

    async def start_session(self) -> bool:
        """Start the transport session (also used by the dashboard after FAILED)."""
        ready = await self.supervisor.start()
        if not ready:
            logger.error(f"Transport session not ready: {self.supervisor.state.value}")
        return ready

    async def start(self) -> None:
        """Connect to the ERP, start the session and the scheduled jobs.

        Returns immediately; the session start (which may wait for a pairing
        code to be scanned) runs in the background.
        """
        if self.config.delivery.test_mode:
            logger.warning(f"TEST MODE: every message goes to {self.config.delivery.test_phone}")

        if not await self.source.connect():
            logger.error("ERP connection failed; cycles will retry")

        schedule = self.config.schedule
        self._tasks = [
            asyncio.create_task(self.start_session(), name="session-start"),
            asyncio.create_task(
                run_at(
                    "delivery",
                    self.orchestrator.run_cycle,
                    minute=schedule.cycle_minute,
                    initial_delay=schedule.initial_cycle_delay_seconds,
                ),
                name="job-delivery",
            ),
            asyncio.create_task(
                run_at("report", self.reporter.send_report, minute=0, hour=schedule.report_hour),
                name="job-report",
            ),
            asyncio.create_task(
                run_at("retention", self.sweep_artifacts, minute=0, hour=schedule.retention_hour),
                name="job-retention",
            ),
        ]
        self.supervisor.start_timers()
        logger.info(
            f"Delivery service started: cycles at :{schedule.cycle_minute:02d}, "
            f"report at {schedule.report_hour:02d}:00, retention at {schedule.retention_hour:02d}:00"
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        await self.supervisor.stop()
        await self.source.disconnect()
        logger.info("Delivery service stopped")
