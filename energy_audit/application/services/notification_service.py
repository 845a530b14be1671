"""
Notification dispatch for alert escalation levels.
"""
import logging
from typing import Iterable, Mapping, Optional

from ..interfaces import NotificationChannelSender
from ...domain.entities import Alert, EscalationLevel, NotificationChannelType

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Fans an alert out to every enabled channel of an escalation level.

    Delivery is best-effort: a failing channel is logged and the remaining
    channels are still attempted.
    """

    def __init__(self, senders: Optional[Iterable[NotificationChannelSender]] = None):
        self._senders: Mapping[NotificationChannelType, NotificationChannelSender] = {
            sender.channel_type: sender for sender in (senders or [])
        }

    def register_sender(self, sender: NotificationChannelSender) -> None:
        self._senders = {**self._senders, sender.channel_type: sender}

    async def dispatch(self, alert: Alert, level: EscalationLevel) -> bool:
        """
        Send the alert over the level's enabled channels.

        Args:
            alert: Alert being notified
            level: Escalation level holding channels and recipient roles

        Returns:
            True if at least one channel sent the notification
        """
        logger.info(
            f"Sending notifications for alert {alert.id} to level {level.level} "
            f"recipients: {', '.join(level.recipients)}"
        )
        delivered = False
        for channel in level.enabled_channels:
            sender = self._senders.get(channel.type)
            if sender is None:
                logger.debug(f"No sender registered for {channel.type.value}, skipping")
                continue
            try:
                if await sender.send(alert, level):
                    delivered = True
                else:
                    logger.info(f"{channel.type.value} channel skipped alert {alert.id}")
            except Exception as e:
                logger.error(
                    f"{channel.type.value} notification for alert {alert.id} failed: {e}"
                )
        return delivered
