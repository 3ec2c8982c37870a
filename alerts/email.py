"""SMTP email sender shared by session alerts and the missed-delivery report."""

import asyncio
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import List, Optional, Sequence

from core.config import AlertConfig

logger = logging.getLogger(__name__)


class AlertDeliveryError(Exception):
    """An alert or report email could not be delivered."""
    pass


class EmailSender:
    """Sends plain-text + HTML emails over SMTP.

    smtplib is blocking, so each send runs in a worker thread.
    """

    def __init__(self, config: AlertConfig):
        self.config = config

    @property
    def configured(self) -> bool:
        return bool(self.config.smtp_host and self.config.sender)

    def _build(self, recipients: Sequence[str], subject: str, text: str, html: Optional[str]) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.config.sender
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg.set_content(text)
        if html:
            msg.add_alternative(html, subtype="html")
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        cfg = self.config
        if cfg.use_ssl:
            smtp = smtplib.SMTP_SSL(
                cfg.smtp_host, cfg.smtp_port,
                timeout=cfg.timeout_seconds,
                context=ssl.create_default_context(),
            )
        else:
            smtp = smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=cfg.timeout_seconds)
        with smtp:
            if not cfg.use_ssl:
                smtp.starttls(context=ssl.create_default_context())
            if cfg.smtp_username and cfg.smtp_password:
                smtp.login(cfg.smtp_username, cfg.smtp_password)
            smtp.send_message(msg)

    async def send(
        self,
        recipients: List[str],
        subject: str,
        text: str,
        html: Optional[str] = None,
    ) -> None:
        """Send one email.

        Raises:
            AlertDeliveryError: Not configured, or the SMTP exchange failed
        """
        if not recipients:
            raise AlertDeliveryError("No email recipients configured")
        if not self.configured:
            raise AlertDeliveryError("SMTP sender is not configured")

        msg = self._build(recipients, subject, text, html)
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise AlertDeliveryError(f"SMTP send failed: {e}") from e
        logger.info(f"Email sent to {', '.join(recipients)}: {subject}")
