"""Alerts - session-health notifications and the email transport behind them.

The missed-delivery reporter lives in alerts.reporter and is imported
directly by the service composition.
"""

from alerts.email import EmailSender, AlertDeliveryError
from alerts.channels import (
    AlertingChannel,
    LoggingAlertChannel,
    EmailAlertChannel,
    create_alert_channel,
    render_alert,
)

__all__ = [
    "EmailSender",
    "AlertDeliveryError",
    "AlertingChannel",
    "LoggingAlertChannel",
    "EmailAlertChannel",
    "create_alert_channel",
    "render_alert",
]
