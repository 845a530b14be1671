"""
Escalation Scheduler.

Deadlines are stored on the alert row (next_escalation_at) and swept
periodically, so pending escalations survive a process restart.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from ...domain.entities import utc_now
from ...infrastructure.database.repositories import AlertRepository

logger = logging.getLogger(__name__)


class EscalationScheduler:
    """
    Arms, clears and lists escalation deadlines.
    """

    def __init__(self, alert_repository: AlertRepository, batch_size: int = 100):
        self._alerts = alert_repository
        self._batch_size = batch_size

    async def schedule(
        self,
        alert_id: int,
        delay_minutes: float,
        now: Optional[datetime] = None,
    ) -> datetime:
        """
        Arm the escalation deadline for an alert.

        Args:
            alert_id: Alert to check later
            delay_minutes: Minutes from now until the check
            now: Reference time, defaults to the current time

        Returns:
            The deadline that was stored
        """
        deadline = (now or utc_now()) + timedelta(minutes=delay_minutes)
        await self._alerts.set_next_escalation(alert_id, deadline)
        logger.debug(f"Escalation check for alert {alert_id} scheduled at {deadline.isoformat()}")
        return deadline

    async def cancel(self, alert_id: int) -> None:
        await self._alerts.set_next_escalation(alert_id, None)

    async def due_alert_ids(self, now: Optional[datetime] = None) -> List[int]:
        """Alerts whose deadline has passed and which are still unacknowledged."""
        return await self._alerts.get_due_for_escalation(now or utc_now(), limit=self._batch_size)
