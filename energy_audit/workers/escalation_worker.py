"""
Escalation worker.

Periodically sweeps alerts whose escalation deadline has passed.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from ..application.services import AlertService
from ..domain.entities import utc_now

logger = logging.getLogger(__name__)


class EscalationWorker:
    """
    Background worker driving alert escalation.

    Deadlines live on the alert rows, so a restarted worker picks up
    escalations that came due while it was down.
    """

    def __init__(self, alert_service: AlertService, poll_interval: float = 30.0):
        """
        Initialize the escalation worker.

        Args:
            alert_service: Service that performs the escalations.
            poll_interval: Interval between sweeps in seconds.
        """
        self.alert_service = alert_service
        self.poll_interval = poll_interval

        # State
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

        # Stats
        self._sweeps = 0
        self._alerts_escalated = 0
        self._errors = 0
        self._last_sweep_time: Optional[datetime] = None

    async def start(self) -> None:
        """Start the escalation worker."""
        if self._running:
            logger.warning("Escalation worker already running")
            return

        logger.info("Starting escalation worker")
        self._running = True
        self._shutdown_event.clear()

        self._task = asyncio.create_task(
            self._run_loop(),
            name="escalation_worker",
        )

    async def stop(self) -> None:
        """Stop the escalation worker."""
        if not self._running:
            return

        logger.info("Stopping escalation worker")
        self._running = False
        self._shutdown_event.set()

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        logger.info(f"Escalation worker stopped. Escalated: {self._alerts_escalated}")

    async def _run_loop(self) -> None:
        """Main sweep loop."""
        logger.debug("Escalation worker loop started")

        while self._running:
            try:
                await self.run_once()

                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self.poll_interval,
                    )
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass

            except asyncio.CancelledError:
                break
            except Exception as e:
                self._errors += 1
                logger.error(f"Error in escalation worker loop: {e}")
                await asyncio.sleep(5)

        logger.debug("Escalation worker loop ended")

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """Run a single sweep and return the number of alerts escalated."""
        self._last_sweep_time = now or utc_now()
        escalated = await self.alert_service.process_escalations(self._last_sweep_time)
        self._sweeps += 1
        self._alerts_escalated += escalated
        return escalated

    def get_stats(self) -> Dict[str, Any]:
        """Get worker statistics."""
        return {
            "running": self._running,
            "sweeps": self._sweeps,
            "alerts_escalated": self._alerts_escalated,
            "errors": self._errors,
            "last_sweep_time": self._last_sweep_time.isoformat() if self._last_sweep_time else None,
            "poll_interval": self.poll_interval,
        }

    @property
    def is_running(self) -> bool:
        """Check if worker is running."""
        return self._running
