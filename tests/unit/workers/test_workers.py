"""
Unit tests for the escalation worker and worker manager.
"""
import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from energy_audit.workers import EscalationWorker, WorkerManager


@pytest.fixture
def mock_alert_service():
    service = AsyncMock()
    service.process_escalations = AsyncMock(return_value=2)
    return service


class TestEscalationWorker:

    @pytest.mark.asyncio
    async def test_run_once_records_stats(self, mock_alert_service):
        worker = EscalationWorker(mock_alert_service, poll_interval=30.0)
        now = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)

        escalated = await worker.run_once(now)

        assert escalated == 2
        mock_alert_service.process_escalations.assert_awaited_once_with(now)
        stats = worker.get_stats()
        assert stats["sweeps"] == 1
        assert stats["alerts_escalated"] == 2
        assert stats["last_sweep_time"] == "2024-06-01T08:00:00+00:00"
        assert not stats["running"]

    @pytest.mark.asyncio
    async def test_loop_sweeps_until_stopped(self, mock_alert_service):
        worker = EscalationWorker(mock_alert_service, poll_interval=0.01)

        await worker.start()
        assert worker.is_running
        for _ in range(50):
            if mock_alert_service.process_escalations.await_count >= 2:
                break
            await asyncio.sleep(0.01)
        await worker.stop()

        assert not worker.is_running
        assert worker.get_stats()["sweeps"] >= 2

    @pytest.mark.asyncio
    async def test_start_twice_is_ignored(self, mock_alert_service):
        worker = EscalationWorker(mock_alert_service, poll_interval=60)

        await worker.start()
        first_task = worker._task
        await worker.start()

        assert worker._task is first_task
        await worker.stop()


def make_worker(running: bool = False):
    worker = MagicMock()
    worker.start = AsyncMock()
    worker.stop = AsyncMock()
    worker.is_running = running
    return worker


class TestWorkerManager:

    @pytest.mark.asyncio
    async def test_start_and_stop_order(self):
        calls = []
        job_processor = make_worker()
        escalation_worker = make_worker()
        job_processor.start.side_effect = lambda: calls.append("job_processor.start")
        escalation_worker.start.side_effect = lambda: calls.append("escalation_worker.start")
        job_processor.stop.side_effect = lambda: calls.append("job_processor.stop")
        escalation_worker.stop.side_effect = lambda: calls.append("escalation_worker.stop")
        manager = WorkerManager(job_processor, escalation_worker, health_check_interval=60)

        await manager.start_all()
        assert manager.is_running
        await manager.stop_all()

        assert calls == [
            "job_processor.start",
            "escalation_worker.start",
            "escalation_worker.stop",
            "job_processor.stop",
        ]
        assert not manager.is_running

    @pytest.mark.asyncio
    async def test_health_reflects_workers(self):
        job_processor = make_worker(running=True)
        escalation_worker = make_worker(running=False)
        manager = WorkerManager(job_processor, escalation_worker)

        health = manager.get_health()

        assert not health["healthy"]
        assert health["status"] == "stopped"
        assert health["workers"] == {"job_processor": True, "escalation_worker": False}

        escalation_worker.is_running = True
        assert manager.is_healthy

    def test_stats_combine_workers(self):
        job_processor = make_worker()
        job_processor.get_status.return_value = {"running": True, "in_flight_jobs": [3]}
        escalation_worker = make_worker()
        escalation_worker.get_stats.return_value = {"sweeps": 4}
        manager = WorkerManager(job_processor, escalation_worker)

        stats = manager.get_stats()

        assert stats["job_processor"]["in_flight_jobs"] == [3]
        assert stats["escalation_worker"]["sweeps"] == 4
        assert stats["manager"]["running"] is False

    @pytest.mark.asyncio
    async def test_stopped_worker_is_restarted(self):
        job_processor = make_worker(running=True)
        escalation_worker = make_worker(running=False)
        manager = WorkerManager(job_processor, escalation_worker, health_check_interval=0.01)

        await manager.start_all()
        for _ in range(50):
            if manager.get_health()["restarts"]["escalation_worker"]:
                break
            await asyncio.sleep(0.01)
        await manager.stop_all()

        assert manager.get_health()["restarts"]["escalation_worker"] >= 1
        assert manager.get_health()["restarts"]["job_processor"] == 0
