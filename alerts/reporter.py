"""Daily report of documents that could not be delivered."""

import html
import logging
from datetime import date
from typing import Callable, List, Optional, Tuple

from alerts.email import AlertDeliveryError, EmailSender
from core.models.documents import MissedDeliveryRecord
from delivery.messages import MessageComposer
from delivery.missed import MissedDeliveryLog
from delivery.phone import normalize_phone
from transport.base import OutboundMessage

logger = logging.getLogger(__name__)


def render_report(records: List[MissedDeliveryRecord], report_date: date) -> Tuple[str, str]:
    """Plain-text and HTML bodies for the missed-delivery email."""
    header = f"{len(records)} document(s) could not be delivered ({report_date.isoformat()})"

    text_lines = [header, ""]
    for r in records:
        text_lines.append(
            f"- {r.document_number} | {r.counterparty_name or '-'} | "
            f"{r.error_message} | {r.timestamp.strftime('%Y-%m-%d %H:%M')}"
        )
    text_lines += ["", "These documents stay pending and are retried every cycle."]

    rows = "\n".join(
        "<tr>"
        f"<td>{html.escape(r.document_number)}</td>"
        f"<td>{html.escape(r.counterparty_name or '-')}</td>"
        f"<td>{html.escape(r.error_message)}</td>"
        f"<td>{r.timestamp.strftime('%Y-%m-%d %H:%M')}</td>"
        "</tr>"
        for r in records
    )
    html_body = (
        f"<h2>{html.escape(header)}</h2>"
        "<table border='1' cellpadding='4' cellspacing='0'>"
        "<tr><th>Document</th><th>Counterparty</th><th>Error</th><th>Last failure</th></tr>"
        f"{rows}</table>"
        "<p>These documents stay pending and are retried every cycle.</p>"
    )
    return "\n".join(text_lines), html_body


class MissedDeliveryReporter:
    """Emails the deduplicated missed-delivery log and clears it.

    When the session is ready and an admin phone is configured, a short
    summary is also sent over the transport.
    """

    def __init__(
        self,
        missed: MissedDeliveryLog,
        sender: EmailSender,
        recipients: List[str],
        supervisor=None,
        admin_phone: Optional[str] = None,
        country_code: str = "54",
        composer: Optional[MessageComposer] = None,
        today: Callable[[], date] = date.today,
    ):
        self.missed = missed
        self.sender = sender
        self.recipients = list(recipients)
        self.supervisor = supervisor
        self.admin_phone = admin_phone
        self.country_code = country_code
        self.composer = composer or MessageComposer()
        self._today = today

    async def send_report(self) -> bool:
        """Send the report if anything was missed.

        Returns:
            True when a report was emailed and the log cleared
        """
        # Records added while the email is in flight stay for the next report
        reported = len(self.missed)
        records = self.missed.unique()
        if not records:
            logger.info("No missed deliveries to report")
            return False

        report_date = self._today()
        text, html_body = render_report(records, report_date)
        subject = f"Missed document deliveries {report_date.isoformat()} ({len(records)})"
        try:
            await self.sender.send(self.recipients, subject, text, html_body)
        except AlertDeliveryError as e:
            logger.error(f"Missed-delivery report not sent, keeping {len(records)} record(s): {e}")
            return False

        self.missed.clear(upto=reported)
        logger.info(f"Missed-delivery report sent ({len(records)} document(s))")
        await self._notify_admin(len(records), report_date)
        return True

    async def _notify_admin(self, count: int, report_date: date) -> None:
        if self.supervisor is None or not self.supervisor.is_ready:
            return
        recipient = normalize_phone(self.admin_phone, self.country_code)
        if recipient is None:
            return
        text = self.composer.missed_summary(count, report_date, ", ".join(self.recipients))
        try:
            result = await self.supervisor.send(recipient, OutboundMessage(text=text))
        except Exception as e:
            logger.warning(f"Admin summary not sent: {type(e).__name__}: {e}")
            return
        if not result.accepted:
            logger.warning(f"Admin summary rejected: {result.reason}")
