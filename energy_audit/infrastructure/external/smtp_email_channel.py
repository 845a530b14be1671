"""
SMTP email channel for alert notifications.

Provides async email sending using aiosmtplib.
"""
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

import aiosmtplib

from ...application.interfaces import NotificationChannelSender
from ...config import NotificationSettings
from ...domain.entities import Alert, EscalationLevel, NotificationChannelType
from ...domain.exceptions import NotificationException

logger = logging.getLogger(__name__)

SEVERITY_COLORS = {
    'critical': '#b71c1c',
    'high': '#e65100',
    'medium': '#f9a825',
    'low': '#2e7d32',
}


def render_alert_email(alert: Alert, level: EscalationLevel) -> tuple:
    """
    Build subject, plain text and HTML bodies for an alert.

    Returns:
        (subject, plain_body, html_body)
    """
    severity = alert.severity.value
    subject = f"[{severity.upper()}] {alert.title}"
    if level.level > 1:
        subject = f"[ESCALATION L{level.level}] {subject}"

    location = []
    if alert.building_id is not None:
        location.append(f"Building: {alert.building_id}")
    if alert.equipment_id is not None:
        location.append(f"Equipment: {alert.equipment_id}")

    plain_lines = [
        alert.title,
        "",
        alert.message,
        "",
        f"Severity: {severity}",
        f"Alert type: {alert.type.value}",
        *location,
    ]
    if alert.detected_value is not None:
        plain_lines.append(f"Detected value: {alert.detected_value}")
    if alert.threshold_value is not None:
        plain_lines.append(f"Threshold: {alert.threshold_value}")
    plain_lines.extend(["", f"Alert ID: {alert.id}"])
    plain_body = "\n".join(plain_lines)

    color = SEVERITY_COLORS.get(severity, '#424242')
    details = "".join(f"<li>{line}</li>" for line in plain_lines[4:] if line)
    html_body = (
        "<html><body>"
        f"<h2 style=\"color: {color};\">{alert.title}</h2>"
        f"<p>{alert.message}</p>"
        f"<ul>{details}</ul>"
        "</body></html>"
    )
    return subject, plain_body, html_body


class SMTPEmailChannel(NotificationChannelSender):
    """
    SMTP-based alert email channel.

    Uses aiosmtplib for async email operations with STARTTLS. Recipients
    are resolved from escalation role names through the configured role
    map, plus any addresses listed on the threshold that raised the alert.
    """

    channel_type = NotificationChannelType.EMAIL

    def __init__(self, settings: NotificationSettings):
        """
        Initialize SMTP email channel.

        Args:
            settings: Notification settings with SMTP configuration
        """
        self._settings = settings
        self._enabled = settings.email_enabled

    def resolve_recipients(self, alert: Alert, level: EscalationLevel) -> List[str]:
        recipients: List[str] = []
        for role in level.recipients:
            recipients.extend(self._settings.role_recipients.get(role, []))
        recipients.extend(alert.threshold_config.get('notification_emails') or [])
        # Preserve order, drop duplicates
        return list(dict.fromkeys(address for address in recipients if address))

    async def send(self, alert: Alert, level: EscalationLevel) -> bool:
        if not self._enabled:
            logger.warning("Email channel is disabled. Skipping alert %s", alert.id)
            return False

        recipients = self.resolve_recipients(alert, level)
        if not recipients:
            logger.warning(
                "No email recipients configured for roles %s (alert %s)",
                ", ".join(level.recipients), alert.id,
            )
            return False

        subject, plain_body, html_body = render_alert_email(alert, level)
        await self._send_message(recipients, subject, plain_body, html_body)
        return True

    async def _send_message(
        self,
        to: List[str],
        subject: str,
        plain_body: str,
        html_body: Optional[str] = None
    ) -> None:
        """
        Internal method to send one email to all recipients.

        Raises:
            NotificationException: On any SMTP failure
        """
        if not self._settings.smtp_user or not self._settings.smtp_password:
            raise NotificationException('email', 'SMTP credentials not configured')

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self._settings.smtp_from_name} <{self._settings.smtp_from_email}>"
        msg["To"] = ", ".join(to)

        msg.attach(MIMEText(plain_body, "plain", "utf-8"))
        if html_body:
            msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            async with aiosmtplib.SMTP(
                hostname=self._settings.smtp_host,
                port=self._settings.smtp_port,
                use_tls=False,
                start_tls=True,
            ) as smtp:
                await smtp.login(self._settings.smtp_user, self._settings.smtp_password)
                await smtp.send_message(msg)
        except aiosmtplib.SMTPAuthenticationError as e:
            raise NotificationException('email', f"SMTP authentication failed: {e}") from e
        except aiosmtplib.SMTPConnectError as e:
            raise NotificationException('email', f"Failed to connect to SMTP server: {e}") from e
        except aiosmtplib.SMTPException as e:
            raise NotificationException('email', str(e)) from e

        logger.info("Alert email sent to %s: %s", ", ".join(to), subject)


class LoggingChannel(NotificationChannelSender):
    """
    Channel with no delivery backend; records the notification in the log.

    Used for sms, push and webhook until a provider is wired in.
    """

    def __init__(self, channel_type: NotificationChannelType):
        self.channel_type = NotificationChannelType(channel_type)

    async def send(self, alert: Alert, level: EscalationLevel) -> bool:
        logger.info(
            "[%s] alert %s (%s) level %s -> %s: %s",
            self.channel_type.value,
            alert.id,
            alert.severity.value,
            level.level,
            ", ".join(level.recipients),
            alert.title,
        )
        return True
