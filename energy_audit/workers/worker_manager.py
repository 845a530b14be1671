"""
Lifecycle coordination for the job queue and the escalation sweep.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from .escalation_worker import EscalationWorker
from ..application.services import BackgroundJobProcessor

logger = logging.getLogger(__name__)


class WorkerManager:
    """
    Starts, stops and watches the background workers.

    Workers start in registration order, job queue first, and stop in
    reverse.
    A worker found stopped by the health loop while the manager is running
    is restarted.
    """

    def __init__(
        self,
        job_processor: BackgroundJobProcessor,
        escalation_worker: EscalationWorker,
        health_check_interval: float = 60.0,
    ):
        """
        Args:
            job_processor: Background job queue.
            escalation_worker: Alert escalation sweep.
            health_check_interval: Seconds between health checks.
        """
        self.job_processor = job_processor
        self.escalation_worker = escalation_worker
        self._health_check_interval = health_check_interval

        # (name, worker, stats getter)
        self._workers: List[Tuple[str, Any, Callable[[], Dict[str, Any]]]] = [
            ("job_processor", job_processor, lambda: self.job_processor.get_status()),
            ("escalation_worker", escalation_worker, lambda: self.escalation_worker.get_stats()),
        ]

        self._running = False
        self._started_at: Optional[datetime] = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._restarts: Dict[str, int] = {name: 0 for name, _, _ in self._workers}

    async def start_all(self) -> None:
        if self._running:
            logger.warning("Worker manager already running")
            return

        self._running = True
        self._started_at = datetime.now(timezone.utc)

        for name, worker, _ in self._workers:
            logger.info(f"Starting {name}")
            await worker.start()

        self._monitor_task = asyncio.create_task(self._monitor(), name="worker_health_check")
        logger.info(f"{len(self._workers)} workers started")

    async def stop_all(self) -> None:
        if not self._running:
            return

        self._running = False

        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

        for name, worker, _ in reversed(self._workers):
            logger.info(f"Stopping {name}")
            await worker.stop()

        logger.info("All workers stopped")

    async def _monitor(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._health_check_interval)
                for name, worker, _ in self._workers:
                    if self._running and not worker.is_running:
                        logger.warning(f"{name} is not running, restarting it")
                        self._restarts[name] += 1
                        await worker.start()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Worker health check failed: {e}")

    def _worker_health(self) -> Dict[str, bool]:
        return {name: bool(worker.is_running) for name, worker, _ in self._workers}

    def get_health(self) -> Dict[str, Any]:
        """
        Returns:
            Overall health, uptime and per-worker running flags.
        """
        workers = self._worker_health()
        uptime = (
            (datetime.now(timezone.utc) - self._started_at).total_seconds()
            if self._running and self._started_at else 0
        )
        return {
            "healthy": all(workers.values()),
            "status": "running" if self._running else "stopped",
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "uptime_seconds": uptime,
            "workers": workers,
            "restarts": dict(self._restarts),
        }

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "manager": {
                "running": self._running,
                "started_at": self._started_at.isoformat() if self._started_at else None,
            },
        }
        for name, _, get_worker_stats in self._workers:
            stats[name] = get_worker_stats()
        return stats

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_healthy(self) -> bool:
        return all(self._worker_health().values())
