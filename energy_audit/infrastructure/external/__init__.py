# External Services
from .smtp_email_channel import LoggingChannel, SMTPEmailChannel, render_alert_email

__all__ = [
    "LoggingChannel",
    "SMTPEmailChannel",
    "render_alert_email",
]
