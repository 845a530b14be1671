"""
Unit tests for the SMTP alert email channel.
"""
import aiosmtplib
import pytest

from energy_audit.config import NotificationSettings
from energy_audit.domain.entities import (
    EscalationLevel,
    NotificationChannel,
    NotificationChannelType,
)
from energy_audit.domain.exceptions import NotificationException
from energy_audit.infrastructure.external import LoggingChannel, SMTPEmailChannel, render_alert_email

from factories import build_alert


class FakeSMTP:
    """Stands in for aiosmtplib.SMTP and records what was sent."""

    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.logged_in = None
        self.messages = []
        FakeSMTP.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def login(self, user, password):
        self.logged_in = (user, password)

    async def send_message(self, message):
        self.messages.append(message)


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(aiosmtplib, "SMTP", FakeSMTP)
    return FakeSMTP


@pytest.fixture
def settings():
    return NotificationSettings(
        email_enabled=True,
        smtp_host="smtp.test.local",
        smtp_port=2525,
        smtp_user="alerts",
        smtp_password="secret",
        role_recipients={
            "facility_manager": ["fm@campus.edu"],
            "energy_manager": ["em@campus.edu", "fm@campus.edu"],
        },
    )


def make_level(level=1, recipients=("facility_manager", "energy_manager")):
    return EscalationLevel(
        level=level,
        channels=(NotificationChannel(NotificationChannelType.EMAIL),),
        recipients=recipients,
    )


class TestRendering:

    def test_first_level_subject(self):
        alert = build_alert(severity="high", title="Power Quality Issue: thd_voltage")

        subject, plain, html = render_alert_email(alert, make_level())

        assert subject == "[HIGH] Power Quality Issue: thd_voltage"
        assert "Building: 5" in plain
        assert "Threshold: 1000.0" in plain
        assert "<h2" in html

    def test_escalated_subject(self):
        alert = build_alert(severity="critical", title="Critical Equipment Risk: Chiller 2")

        subject, _, _ = render_alert_email(alert, make_level(level=2))

        assert subject == "[ESCALATION L2] [CRITICAL] Critical Equipment Risk: Chiller 2"


class TestRecipients:

    def test_roles_and_threshold_addresses_are_merged(self, settings):
        channel = SMTPEmailChannel(settings)
        alert = build_alert(threshold_config={"notification_emails": ["ops@campus.edu", "em@campus.edu"]})

        recipients = channel.resolve_recipients(alert, make_level())

        assert recipients == ["fm@campus.edu", "em@campus.edu", "ops@campus.edu"]

    def test_unknown_role_has_no_recipients(self, settings):
        channel = SMTPEmailChannel(settings)

        assert channel.resolve_recipients(build_alert(), make_level(recipients=("admin",))) == []


class TestSend:

    @pytest.mark.asyncio
    async def test_sends_one_message(self, settings, fake_smtp):
        channel = SMTPEmailChannel(settings)

        assert await channel.send(build_alert(alert_id=7), make_level())

        assert len(fake_smtp.instances) == 1
        smtp = fake_smtp.instances[0]
        assert smtp.kwargs["hostname"] == "smtp.test.local"
        assert smtp.kwargs["port"] == 2525
        assert smtp.logged_in == ("alerts", "secret")
        message = smtp.messages[0]
        assert message["To"] == "fm@campus.edu, em@campus.edu"
        assert message["Subject"].startswith("[MEDIUM]")

    @pytest.mark.asyncio
    async def test_disabled_channel_skips(self, settings, fake_smtp):
        settings.email_enabled = False
        channel = SMTPEmailChannel(settings)

        assert not await channel.send(build_alert(), make_level())

        assert fake_smtp.instances == []

    @pytest.mark.asyncio
    async def test_no_recipients_skips(self, settings, fake_smtp):
        channel = SMTPEmailChannel(settings)

        assert not await channel.send(build_alert(), make_level(recipients=("admin",)))

        assert fake_smtp.instances == []

    @pytest.mark.asyncio
    async def test_missing_credentials(self, settings, fake_smtp):
        settings.smtp_password = None
        channel = SMTPEmailChannel(settings)

        with pytest.raises(NotificationException) as exc_info:
            await channel.send(build_alert(), make_level())

        assert "SMTP credentials not configured" in str(exc_info.value)
        assert fake_smtp.instances == []


@pytest.mark.asyncio
async def test_logging_channel_accepts_notification(caplog):
    channel = LoggingChannel("sms")

    with caplog.at_level("INFO"):
        assert await channel.send(build_alert(alert_id=4), make_level())

    assert channel.channel_type == NotificationChannelType.SMS
    assert "[sms] alert 4" in caplog.text
