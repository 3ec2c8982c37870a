"""
Alerting and Missed-Delivery Report Tests

1. Missed-delivery log deduplication
2. Daily report: email, clear on success, keep on failure, admin summary
3. Alert rendering and channel selection
4. SMTP sender (with smtplib patched out)
"""

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

import alerts.email as email_module
from alerts.channels import (
    EmailAlertChannel,
    LoggingAlertChannel,
    create_alert_channel,
    render_alert,
)
from alerts.email import AlertDeliveryError, EmailSender
from alerts.reporter import MissedDeliveryReporter, render_report
from core.config import AlertConfig
from core.models.documents import PendingDocument
from core.models.lifecycle import AlertSeverity, SessionAlert
from delivery.missed import MissedDeliveryLog
from transport.base import SendResult

T0 = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)


def make_doc(entry, number):
    return PendingDocument(
        id=str(entry),
        number=str(number),
        issue_date=date(2024, 3, 15),
        counterparty_id=f"C{entry}",
        counterparty_name=f"Cliente {entry}",
    )


class StepClock:

    def __init__(self):
        self.now = T0

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now


class FakeSender:

    def __init__(self, error=None):
        self.error = error
        self.sent = []

    async def send(self, recipients, subject, text, html=None):
        if self.error:
            raise self.error
        self.sent.append((list(recipients), subject, text, html))


class FakeSupervisor:

    def __init__(self, ready=True):
        self.is_ready = ready
        self.sent = []

    async def send(self, recipient, message):
        self.sent.append((recipient, message))
        return SendResult.ok("msg-1")


# =============================================================================
# Missed-delivery log
# =============================================================================

class TestMissedDeliveryLog:

    def test_latest_error_wins(self):
        log = MissedDeliveryLog(clock=StepClock())
        log.record(make_doc(1, 100), "artifact not found")
        log.record(make_doc(2, 200), "send rejected: timeout")
        log.record(make_doc(1, 100), "artifact unreadable: empty")

        records = log.unique()

        assert len(log) == 3
        assert [r.document_number for r in records] == ["200", "100"]
        assert records[1].error_message == "artifact unreadable: empty"
        assert records[1].counterparty_name == "Cliente 1"

    def test_clear(self):
        log = MissedDeliveryLog()
        log.record(make_doc(1, 100), "artifact not found")
        log.clear()
        assert log.unique() == []
        assert len(log) == 0

    def test_clear_reported_prefix(self):
        log = MissedDeliveryLog()
        log.record(make_doc(1, 100), "artifact not found")
        log.record(make_doc(2, 200), "send rejected: timeout")
        log.clear(upto=1)
        assert [r.document_number for r in log.all()] == ["200"]


# =============================================================================
# Report
# =============================================================================

class TestReporter:

    def make_reporter(self, sender, supervisor=None, admin_phone="1144440000"):
        log = MissedDeliveryLog(clock=StepClock())
        reporter = MissedDeliveryReporter(
            log,
            sender,
            ["ops@example.com"],
            supervisor=supervisor,
            admin_phone=admin_phone,
            today=lambda: date(2024, 3, 15),
        )
        return reporter, log

    def test_nothing_to_report(self):
        sender = FakeSender()
        reporter, _ = self.make_reporter(sender)
        assert asyncio.run(reporter.send_report()) is False
        assert sender.sent == []

    def test_report_sent_and_cleared(self):
        sender = FakeSender()
        supervisor = FakeSupervisor()
        reporter, log = self.make_reporter(sender, supervisor)
        log.record(make_doc(1, 100), "artifact not found")
        log.record(make_doc(1, 100), "artifact not found")
        log.record(make_doc(2, 200), "send rejected: invalid number")

        assert asyncio.run(reporter.send_report()) is True

        recipients, subject, text, html = sender.sent[0]
        assert recipients == ["ops@example.com"]
        assert "(2)" in subject
        assert "100" in text and "200" in text
        assert "<table" in html
        assert len(log) == 0
        phone, message = supervisor.sent[0]
        assert phone == "541144440000"
        assert "2 documento(s) no enviados" in message.text

    def test_email_failure_keeps_records(self):
        sender = FakeSender(error=AlertDeliveryError("SMTP send failed"))
        supervisor = FakeSupervisor()
        reporter, log = self.make_reporter(sender, supervisor)
        log.record(make_doc(1, 100), "artifact not found")

        assert asyncio.run(reporter.send_report()) is False
        assert len(log) == 1
        assert supervisor.sent == []

    def test_admin_summary_skipped_when_session_down(self):
        sender = FakeSender()
        supervisor = FakeSupervisor(ready=False)
        reporter, log = self.make_reporter(sender, supervisor)
        log.record(make_doc(1, 100), "artifact not found")

        assert asyncio.run(reporter.send_report()) is True
        assert supervisor.sent == []

    def test_failures_during_email_kept_for_next_report(self):
        reporter, log = self.make_reporter(None)

        class SlowSender(FakeSender):
            async def send(self, recipients, subject, text, html=None):
                # A delivery cycle records a new miss while SMTP is busy
                log.record(make_doc(2, 200), "send rejected: timeout")
                await asyncio.sleep(0)
                await super().send(recipients, subject, text, html)

        reporter.sender = sender = SlowSender()
        log.record(make_doc(1, 100), "artifact not found")

        assert asyncio.run(reporter.send_report()) is True

        assert "100" in sender.sent[0][2]
        assert "Cliente 2" not in sender.sent[0][2]
        assert [r.document_number for r in log.all()] == ["200"]

    def test_render_escapes_html(self):
        log = MissedDeliveryLog()
        log.record(make_doc(1, 100), "send rejected: <b>bad</b>")
        text, html = render_report(log.unique(), date(2024, 3, 15))
        assert "<b>bad</b>" in text
        assert "&lt;b&gt;bad&lt;/b&gt;" in html


# =============================================================================
# Alert channels
# =============================================================================

class TestAlertChannels:

    def test_render_critical(self):
        alert = SessionAlert(
            severity=AlertSeverity.CRITICAL,
            message="Transport session lost",
            session_age_hours=170.0,
            created_at=T0,
            detail="Manual intervention required.",
        )
        subject, text = render_alert(alert)
        assert subject.startswith("[CRITICAL]")
        assert "Session age: 170.0 hours" in text
        assert "Manual intervention required." in text
        assert "Document delivery is stopped" in text

    def test_render_notice_has_no_stop_notice(self):
        alert = SessionAlert(severity=AlertSeverity.NOTICE, message="Session is 73 hours old")
        _, text = render_alert(alert)
        assert "Document delivery is stopped" not in text

    def test_disabled_alerting_logs(self):
        channel = create_alert_channel(AlertConfig(enabled=False))
        assert isinstance(channel, LoggingAlertChannel)
        asyncio.run(channel.send_alert(SessionAlert(severity=AlertSeverity.WARNING, message="old")))

    def test_enabled_alerting_emails(self):
        sender = FakeSender()
        channel = create_alert_channel(AlertConfig(enabled=True, recipients=["ops@example.com"]), sender)
        assert isinstance(channel, EmailAlertChannel)

        asyncio.run(channel.send_alert(SessionAlert(severity=AlertSeverity.RECOVERED, message="back")))

        recipients, subject, _, _ = sender.sent[0]
        assert recipients == ["ops@example.com"]
        assert subject.startswith("[RECOVERED]")


# =============================================================================
# SMTP sender
# =============================================================================

class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None, context=None):
        self.host = host
        self.port = port
        self.calls = []
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        self.calls.append("starttls")

    def login(self, user, password):
        self.calls.append(("login", user))

    def send_message(self, msg):
        self.messages.append(msg)


class TestEmailSender:

    def config(self, **overrides):
        settings = dict(
            smtp_host="smtp.example.com",
            smtp_port=587,
            smtp_username="bot@example.com",
            smtp_password="secret",
            sender="bot@example.com",
        )
        settings.update(overrides)
        return AlertConfig(**settings)

    def test_starttls_and_login(self, monkeypatch):
        FakeSMTP.instances = []
        monkeypatch.setattr(email_module.smtplib, "SMTP", FakeSMTP)
        sender = EmailSender(self.config())

        asyncio.run(sender.send(["ops@example.com"], "Subject", "plain body", "<p>html</p>"))

        smtp = FakeSMTP.instances[0]
        assert (smtp.host, smtp.port) == ("smtp.example.com", 587)
        assert smtp.calls == ["starttls", ("login", "bot@example.com")]
        msg = smtp.messages[0]
        assert msg["To"] == "ops@example.com"
        assert msg["Subject"] == "Subject"
        assert msg.is_multipart()

    def test_smtp_error_wrapped(self, monkeypatch):
        class BrokenSMTP(FakeSMTP):
            def send_message(self, msg):
                raise email_module.smtplib.SMTPRecipientsRefused({})

        monkeypatch.setattr(email_module.smtplib, "SMTP", BrokenSMTP)
        sender = EmailSender(self.config())
        with pytest.raises(AlertDeliveryError):
            asyncio.run(sender.send(["ops@example.com"], "Subject", "body"))

    def test_no_recipients(self):
        with pytest.raises(AlertDeliveryError):
            asyncio.run(EmailSender(self.config()).send([], "Subject", "body"))

    def test_not_configured(self):
        sender = EmailSender(self.config(sender=None))
        assert not sender.configured
        with pytest.raises(AlertDeliveryError):
            asyncio.run(sender.send(["ops@example.com"], "Subject", "body"))
