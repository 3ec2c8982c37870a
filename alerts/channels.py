"""Alerting channels for session-health notifications.

The supervisor produces ``SessionAlert`` objects and hands them to an
AlertingChannel. Email is the production channel; when alerting is
disabled the alerts are only logged.
"""

import logging
from abc import ABC, abstractmethod
from typing import List

from core.config import AlertConfig
from core.models.lifecycle import AlertSeverity, SessionAlert
from alerts.email import EmailSender

logger = logging.getLogger(__name__)


_SUBJECT_PREFIX = {
    AlertSeverity.NOTICE: "[NOTICE]",
    AlertSeverity.WARNING: "[WARNING]",
    AlertSeverity.CRITICAL: "[CRITICAL]",
    AlertSeverity.RECOVERED: "[RECOVERED]",
    AlertSeverity.FAILED: "[FAILED]",
}


def render_alert(alert: SessionAlert, service_name: str = "Document delivery") -> tuple:
    """Subject and plain-text body for an alert email."""
    subject = f"{_SUBJECT_PREFIX[alert.severity]} {service_name}: {alert.message}"
    lines = [
        alert.message,
        "",
        f"Severity: {alert.severity.value}",
        f"Session age: {alert.session_age_hours:.1f} hours",
        f"Time: {alert.created_at.isoformat()}",
    ]
    if alert.detail:
        lines += ["", alert.detail]
    if alert.severity in (AlertSeverity.CRITICAL, AlertSeverity.FAILED):
        lines += [
            "",
            "Document delivery is stopped until the session is re-established.",
            "Check the dashboard for a pairing code and re-link the device if needed.",
        ]
    return subject, "\n".join(lines)


class AlertingChannel(ABC):
    """Destination for session alerts."""

    @abstractmethod
    async def send_alert(self, alert: SessionAlert) -> None:
        """Deliver one alert.

        Raises:
            AlertDeliveryError: The alert could not be delivered
        """
        pass


class LoggingAlertChannel(AlertingChannel):
    """Writes alerts to the log. Used when email alerting is disabled."""

    async def send_alert(self, alert: SessionAlert) -> None:
        level = logging.WARNING
        if alert.severity in (AlertSeverity.CRITICAL, AlertSeverity.FAILED):
            level = logging.ERROR
        elif alert.severity is AlertSeverity.RECOVERED:
            level = logging.INFO
        logger.log(
            level,
            f"Session alert [{alert.severity.value}] {alert.message} "
            f"(age {alert.session_age_hours:.1f}h)",
        )


class EmailAlertChannel(AlertingChannel):
    """Emails alerts to the configured recipients."""

    def __init__(self, sender: EmailSender, recipients: List[str], service_name: str = "Document delivery"):
        self.sender = sender
        self.recipients = list(recipients)
        self.service_name = service_name

    async def send_alert(self, alert: SessionAlert) -> None:
        subject, text = render_alert(alert, self.service_name)
        await self.sender.send(self.recipients, subject, text)


def create_alert_channel(config: AlertConfig, sender: EmailSender = None) -> AlertingChannel:
    """Email channel when alerting is enabled, logging channel otherwise."""
    if not config.enabled:
        return LoggingAlertChannel()
    return EmailAlertChannel(sender or EmailSender(config), config.recipients)
