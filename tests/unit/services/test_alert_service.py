"""
Unit tests for AlertService.

Tests deduplication, status updates, escalation and detectors with
mocked repositories.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from energy_audit.application.services import (
    AlertService,
    NEW_ALERT_EVENT,
    STATUS_CHANGED_EVENT,
)
from energy_audit.domain.entities import (
    AlertSeverity,
    AlertStatus,
    AlertThreshold,
    AlertType,
    AlertUpdate,
)
from energy_audit.domain.exceptions import EntityNotFoundException, ValidationException

from factories import build_alert, build_alert_create


@pytest.fixture
def mock_alert_repo():
    """Create a mock alert repository."""
    repo = AsyncMock()
    repo.find_duplicate = AsyncMock(return_value=None)
    repo.create = AsyncMock(return_value=1)
    repo.get_by_id = AsyncMock(return_value=None)
    repo.update_fields = AsyncMock(return_value=1)
    repo.mark_notification_sent = AsyncMock()
    repo.get_active = AsyncMock(return_value=([], 0))
    return repo


@pytest.fixture
def mock_threshold_repo():
    repo = AsyncMock()
    repo.get_applicable = AsyncMock(return_value=[])
    return repo


@pytest.fixture
def mock_publisher():
    publisher = AsyncMock()
    publisher.emit_to_building = AsyncMock()
    return publisher


@pytest.fixture
def mock_notifications():
    notifications = AsyncMock()
    notifications.dispatch = AsyncMock(return_value=True)
    return notifications


@pytest.fixture
def mock_scheduler():
    scheduler = AsyncMock()
    scheduler.schedule = AsyncMock()
    scheduler.cancel = AsyncMock()
    scheduler.due_alert_ids = AsyncMock(return_value=[])
    return scheduler


@pytest.fixture
def mock_facility_repo():
    repo = AsyncMock()
    repo.get_equipment = AsyncMock(return_value=None)
    repo.latest_maintenance_prediction = AsyncMock(return_value=None)
    return repo


@pytest.fixture
def service(
    mock_alert_repo,
    mock_threshold_repo,
    mock_publisher,
    mock_notifications,
    mock_scheduler,
    mock_facility_repo,
):
    """Create an AlertService with mock collaborators."""
    return AlertService(
        mock_alert_repo,
        mock_threshold_repo,
        mock_publisher,
        mock_notifications,
        mock_scheduler,
        facility_repo=mock_facility_repo,
    )


class TestCreateAlert:
    """Test alert creation and deduplication."""

    @pytest.mark.asyncio
    async def test_create_new_alert(self, service, mock_alert_repo, mock_publisher, mock_scheduler):
        stored = build_alert(alert_id=1, severity="high", building_id=5)
        mock_alert_repo.get_by_id.return_value = stored

        alert = await service.create_alert(build_alert_create(severity="high", building_id=5))

        assert alert is stored
        mock_alert_repo.create.assert_awaited_once()
        mock_publisher.emit_to_building.assert_awaited_once()
        room, event, payload = mock_publisher.emit_to_building.await_args.args
        assert (room, event, payload['id']) == ("5", NEW_ALERT_EVENT, 1)
        mock_scheduler.schedule.assert_awaited_once_with(1, 15.0)

    @pytest.mark.asyncio
    async def test_duplicate_updates_instead_of_inserting(self, service, mock_alert_repo):
        stored = build_alert(alert_id=1, building_id=5)
        mock_alert_repo.find_duplicate.side_effect = [None, stored]
        mock_alert_repo.get_by_id.return_value = stored

        first = await service.create_alert(build_alert_create(building_id=5))
        second = await service.create_alert(build_alert_create(building_id=5))

        assert first.id == second.id == 1
        assert mock_alert_repo.create.await_count == 1
        assert mock_alert_repo.update_fields.await_count == 1
        assert second.status == AlertStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_duplicate_lookup_uses_window(self, service, mock_alert_repo):
        mock_alert_repo.get_by_id.return_value = build_alert()
        before = datetime.now(timezone.utc)

        await service.create_alert(build_alert_create(building_id=5, equipment_id=None))

        alert_type, building_id, equipment_id = mock_alert_repo.find_duplicate.await_args.args
        since = mock_alert_repo.find_duplicate.await_args.kwargs['since']
        assert (alert_type, building_id, equipment_id) == (AlertType.THRESHOLD_EXCEEDED, 5, None)
        assert before - timedelta(minutes=61) < since <= before - timedelta(minutes=59)

    @pytest.mark.asyncio
    async def test_invalid_input_raises(self, service, mock_alert_repo):
        with pytest.raises(ValidationException) as exc_info:
            await service.create_alert(build_alert_create(title="", severity="severe"))

        assert "title is required" in exc_info.value.errors
        mock_alert_repo.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_low_severity_is_not_notified(self, service, mock_alert_repo, mock_notifications, mock_scheduler):
        mock_alert_repo.get_by_id.return_value = build_alert(severity="low")

        await service.create_alert(build_alert_create(severity="low"))

        mock_notifications.dispatch.assert_not_called()
        mock_scheduler.schedule.assert_not_called()

    @pytest.mark.asyncio
    async def test_threshold_escalation_minutes_override(self, service, mock_alert_repo, mock_scheduler):
        mock_alert_repo.get_by_id.return_value = build_alert(
            severity="critical",
            threshold_config={"escalation_minutes": 2},
        )

        await service.create_alert(build_alert_create(severity="critical"))

        mock_scheduler.schedule.assert_awaited_once_with(1, 2.0)

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_creation(
        self, service, mock_alert_repo, mock_notifications
    ):
        mock_alert_repo.get_by_id.return_value = build_alert(severity="critical")
        mock_notifications.dispatch.side_effect = RuntimeError("smtp down")

        alert = await service.create_alert(build_alert_create(severity="critical"))

        assert alert.id == 1
        mock_alert_repo.mark_notification_sent.assert_not_called()

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_creation(self, service, mock_alert_repo, mock_publisher):
        mock_alert_repo.get_by_id.return_value = build_alert()
        mock_publisher.emit_to_building.side_effect = ConnectionError("redis down")

        alert = await service.create_alert(build_alert_create())

        assert alert.id == 1


class TestUpdateAlert:

    @pytest.mark.asyncio
    async def test_missing_alert(self, service):
        with pytest.raises(EntityNotFoundException):
            await service.update_alert(99, AlertUpdate(status=AlertStatus.RESOLVED))

    @pytest.mark.asyncio
    async def test_acknowledge_publishes_status_change(self, service, mock_alert_repo, mock_publisher):
        mock_alert_repo.get_by_id.side_effect = [
            build_alert(alert_id=3, building_id=5),
            build_alert(alert_id=3, building_id=5, status="acknowledged"),
        ]

        alert = await service.acknowledge_alert(3, user_id=8)

        assert alert.status == AlertStatus.ACKNOWLEDGED
        changes = mock_alert_repo.update_fields.await_args.args[1]
        assert changes['status'] == AlertStatus.ACKNOWLEDGED
        assert changes['acknowledged_by'] == 8
        room, event, payload = mock_publisher.emit_to_building.await_args.args
        assert event == STATUS_CHANGED_EVENT
        assert payload['previous_status'] == "active"


class TestEscalation:

    @pytest.mark.asyncio
    async def test_escalates_due_alert(self, service, mock_alert_repo, mock_scheduler, mock_notifications):
        due = build_alert(alert_id=4, severity="critical")
        escalated = build_alert(alert_id=4, severity="critical", status="escalated", escalation_level=1)
        mock_scheduler.due_alert_ids.return_value = [4]
        mock_alert_repo.get_by_id.side_effect = [due, due, escalated]

        count = await service.process_escalations()

        assert count == 1
        changes = mock_alert_repo.update_fields.await_args.args[1]
        assert changes['status'] == AlertStatus.ESCALATED
        assert changes['escalation_level'] == 1
        level = mock_notifications.dispatch.await_args.args[1]
        assert level.level == 1
        # critical has a second level, so the deadline is re-armed
        mock_scheduler.schedule.assert_awaited_once_with(4, 5.0)

    @pytest.mark.asyncio
    async def test_acknowledged_alert_is_skipped(self, service, mock_alert_repo, mock_scheduler):
        mock_scheduler.due_alert_ids.return_value = [4]
        mock_alert_repo.get_by_id.return_value = build_alert(
            alert_id=4,
            status="acknowledged",
            acknowledged_at=datetime.now(timezone.utc),
        )

        count = await service.process_escalations()

        assert count == 0
        mock_alert_repo.update_fields.assert_not_called()
        mock_scheduler.cancel.assert_awaited_once_with(4)

    @pytest.mark.asyncio
    async def test_no_further_level_stops_escalation(self, service, mock_scheduler, mock_alert_repo):
        alert = build_alert(alert_id=6, severity="high", status="escalated", escalation_level=1)

        result = await service.escalate_alert(alert)

        assert result is None
        mock_alert_repo.update_fields.assert_not_called()
        mock_scheduler.cancel.assert_awaited_once_with(6)


class TestDetectors:

    @pytest.mark.asyncio
    async def test_power_factor_example(self, service, mock_threshold_repo):
        mock_threshold_repo.get_applicable.return_value = [
            AlertThreshold(id=2, parameter_name="power_factor", min_value=0.8, severity="medium"),
        ]
        service.create_alert = AsyncMock(side_effect=lambda data: build_alert(type=data.type))

        await service.monitor_energy_thresholds(5, {"power_factor": 0.72})

        threshold_call = service.create_alert.await_args_list[0].args[0]
        assert threshold_call.type == AlertType.THRESHOLD_EXCEEDED
        assert threshold_call.severity == AlertSeverity.MEDIUM
        assert threshold_call.detected_value == 0.72
        assert threshold_call.threshold_value == 0.8
        assert "below minimum threshold of 0.8" in threshold_call.message
        assert threshold_call.building_id == 5
        assert threshold_call.metadata['threshold_id'] == 2

        power_factor_call = service.create_alert.await_args_list[1].args[0]
        assert power_factor_call.type == AlertType.POWER_QUALITY
        assert power_factor_call.severity == AlertSeverity.HIGH

    @pytest.mark.asyncio
    async def test_missing_sample_raises_nothing(self, service, mock_threshold_repo):
        mock_threshold_repo.get_applicable.return_value = [
            AlertThreshold(id=2, parameter_name="consumption_kwh", max_value=500, severity="high"),
        ]
        service.create_alert = AsyncMock()

        alerts = await service.monitor_energy_thresholds(5, {"demand_kw": 10})

        assert alerts == []
        service.create_alert.assert_not_called()

    @pytest.mark.asyncio
    async def test_power_quality(self, service):
        service.create_alert = AsyncMock(side_effect=lambda data: build_alert(type=data.type))

        alerts = await service.monitor_power_quality(5, {"thd_voltage": 9.0, "voltage_unbalance": 2.0})

        assert len(alerts) == 1
        data = service.create_alert.await_args.args[0]
        assert data.title == "High Voltage THD Detected"
        assert data.metadata['pq_data']['thd_voltage'] == 9.0

    @pytest.mark.asyncio
    async def test_critical_equipment_prediction(self, service, mock_facility_repo):
        mock_facility_repo.get_equipment.return_value = {"id": 12, "name": "Chiller 2", "building_id": 5}
        mock_facility_repo.latest_maintenance_prediction.return_value = {
            "id": 1,
            "equipment_id": 12,
            "prediction_type": "compressor failure",
            "predicted_date": "2024-06-01",
            "risk_level": "critical",
        }
        service.create_alert = AsyncMock(side_effect=lambda data: build_alert(type=data.type))

        await service.monitor_equipment_health(12)

        data = service.create_alert.await_args.args[0]
        assert data.type == AlertType.EQUIPMENT_FAILURE
        assert data.severity == AlertSeverity.CRITICAL
        assert data.title == "Critical Equipment Risk: Chiller 2"
        assert "compressor failure on 2024-06-01" in data.message
        assert data.building_id == 5

    @pytest.mark.asyncio
    async def test_low_risk_prediction_is_ignored(self, service, mock_facility_repo):
        mock_facility_repo.get_equipment.return_value = {"id": 12, "name": "Pump", "building_id": 5}
        mock_facility_repo.latest_maintenance_prediction.return_value = {"risk_level": "low"}

        assert await service.monitor_equipment_health(12) == []

    @pytest.mark.asyncio
    async def test_invalid_threshold(self, service):
        with pytest.raises(ValidationException):
            await service.create_threshold(AlertThreshold(parameter_name="demand_kw"))
