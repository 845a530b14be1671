"""
Repository tests against a SQLite database.
"""
from datetime import timedelta

import pytest
from sqlalchemy import insert

from energy_audit.domain.entities import (
    AlertFilters,
    AlertStatus,
    BackgroundJob,
    JobStatus,
    JobType,
    ParameterType,
    utc_now,
)
from energy_audit.infrastructure.database.tables import (
    audits,
    buildings,
    compliance_checks,
    energy_consumption,
    equipment,
)

from factories import AlertThresholdFactory, build_alert_create


async def seed(engine, table, rows):
    async with engine.begin() as conn:
        await conn.execute(insert(table), rows)


class TestAlertRepository:

    @pytest.mark.asyncio
    async def test_create_and_get(self, alert_repo):
        now = utc_now()
        alert_id = await alert_repo.create(build_alert_create(metadata={"source": "meter"}), now)

        alert = await alert_repo.get_by_id(alert_id)

        assert alert.status == AlertStatus.ACTIVE
        assert alert.escalation_level == 0
        assert not alert.notification_sent
        assert alert.metadata == {"source": "meter"}
        assert alert.created_at == now

    @pytest.mark.asyncio
    async def test_duplicate_lookup_matches_null_equipment(self, alert_repo):
        now = utc_now()
        with_equipment = await alert_repo.create(build_alert_create(equipment_id=12), now)
        without_equipment = await alert_repo.create(build_alert_create(), now)

        found = await alert_repo.find_duplicate("threshold_exceeded", 5, None, now - timedelta(minutes=60))
        assert found.id == without_equipment

        found = await alert_repo.find_duplicate("threshold_exceeded", 5, 12, now - timedelta(minutes=60))
        assert found.id == with_equipment

    @pytest.mark.asyncio
    async def test_duplicate_lookup_respects_window_and_status(self, alert_repo):
        now = utc_now()
        old_id = await alert_repo.create(build_alert_create(), now - timedelta(minutes=90))
        acknowledged_id = await alert_repo.create(build_alert_create(), now)
        await alert_repo.update_fields(acknowledged_id, {"status": AlertStatus.ACKNOWLEDGED})

        found = await alert_repo.find_duplicate("threshold_exceeded", 5, None, now - timedelta(minutes=60))

        assert found is None
        assert (await alert_repo.get_by_id(old_id)).status == AlertStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_active_alerts_order_by_severity_then_age(self, alert_repo):
        now = utc_now()
        low = await alert_repo.create(build_alert_create(severity="low"), now)
        old_critical = await alert_repo.create(build_alert_create(severity="critical"), now - timedelta(minutes=5))
        new_critical = await alert_repo.create(build_alert_create(severity="critical"), now)
        medium = await alert_repo.create(build_alert_create(severity="medium", building_id=6), now)
        resolved = await alert_repo.create(build_alert_create(severity="high"), now)
        await alert_repo.update_fields(resolved, {"status": AlertStatus.RESOLVED})

        alerts, total = await alert_repo.get_active()
        assert [a.id for a in alerts] == [new_critical, old_critical, medium, low]
        assert total == 4

        alerts, total = await alert_repo.get_active(AlertFilters(building_id=5), limit=1, offset=1)
        assert [a.id for a in alerts] == [old_critical]
        assert total == 3

    @pytest.mark.asyncio
    async def test_due_for_escalation(self, alert_repo):
        now = utc_now()
        due = await alert_repo.create(build_alert_create(severity="critical"), now)
        later = await alert_repo.create(build_alert_create(severity="critical", building_id=6), now)
        acknowledged = await alert_repo.create(build_alert_create(severity="critical", building_id=7), now)
        await alert_repo.set_next_escalation(due, now - timedelta(seconds=1))
        await alert_repo.set_next_escalation(later, now + timedelta(minutes=5))
        await alert_repo.set_next_escalation(acknowledged, now - timedelta(seconds=1))
        await alert_repo.update_fields(acknowledged, {
            "status": AlertStatus.ACKNOWLEDGED,
            "acknowledged_at": now,
        })

        assert await alert_repo.get_due_for_escalation(now) == [due]


class TestThresholdRepository:

    @pytest.mark.asyncio
    async def test_applicable_includes_global_thresholds(self, threshold_repo):
        global_threshold = await threshold_repo.create(AlertThresholdFactory())
        building_threshold = await threshold_repo.create(AlertThresholdFactory(
            building_id=5, parameter_name="consumption_kwh", min_value=None, max_value=1000,
        ))
        await threshold_repo.create(AlertThresholdFactory(building_id=6))
        await threshold_repo.create(AlertThresholdFactory(building_id=5, enabled=False))
        await threshold_repo.create(AlertThresholdFactory(
            building_id=5, parameter_type="power_quality", parameter_name="thd_voltage",
        ))

        thresholds = await threshold_repo.get_applicable(5, ParameterType.ENERGY)

        assert [t.id for t in thresholds] == [global_threshold.id, building_threshold.id]

    @pytest.mark.asyncio
    async def test_list_by_building(self, threshold_repo):
        await threshold_repo.create(AlertThresholdFactory(building_id=5, notification_emails=["em@campus.edu"]))
        await threshold_repo.create(AlertThresholdFactory(building_id=6))

        thresholds = await threshold_repo.list_thresholds(building_id=5)

        assert len(thresholds) == 1
        assert thresholds[0].notification_emails == ["em@campus.edu"]


class TestJobRepository:

    @pytest.mark.asyncio
    async def test_claim_only_once(self, job_repo):
        job = await job_repo.create(BackgroundJob(job_type=JobType.ALERT_MONITORING, job_parameters={"building_id": 5}))
        now = utc_now()

        assert await job_repo.mark_running(job.id, now)
        assert not await job_repo.mark_running(job.id, now)

        stored = await job_repo.get_by_id(job.id)
        assert stored.status == JobStatus.RUNNING
        assert stored.job_parameters == {"building_id": 5}

    @pytest.mark.asyncio
    async def test_progress_never_moves_backwards(self, job_repo):
        job = await job_repo.create(BackgroundJob(job_type=JobType.ALERT_MONITORING))
        now = utc_now()

        assert not await job_repo.update_progress(job.id, 10.0, now)  # still pending
        await job_repo.mark_running(job.id, now)
        assert await job_repo.update_progress(job.id, 60.0, now)
        assert not await job_repo.update_progress(job.id, 40.0, now)

        assert (await job_repo.get_by_id(job.id)).progress_percentage == 60.0

    @pytest.mark.asyncio
    async def test_terminal_states_are_final(self, job_repo):
        job = await job_repo.create(BackgroundJob(job_type=JobType.ALERT_MONITORING))
        now = utc_now()
        await job_repo.mark_running(job.id, now)

        assert await job_repo.mark_completed(job.id, {"total_alerts": 2}, now)
        assert not await job_repo.mark_failed(job.id, "late failure", now)
        assert not await job_repo.cancel(job.id, now)

        stored = await job_repo.get_by_id(job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.result_data == {"total_alerts": 2}
        assert stored.error_message is None

    @pytest.mark.asyncio
    async def test_cancel_only_pending(self, job_repo):
        pending = await job_repo.create(BackgroundJob(job_type=JobType.ALERT_MONITORING))
        running = await job_repo.create(BackgroundJob(job_type=JobType.ALERT_MONITORING))
        await job_repo.mark_running(running.id, utc_now())

        assert await job_repo.cancel(pending.id, utc_now())
        assert not await job_repo.cancel(running.id, utc_now())
        assert await job_repo.count_pending() == 0

    @pytest.mark.asyncio
    async def test_pending_in_creation_order(self, job_repo):
        now = utc_now()
        newer = await job_repo.create(BackgroundJob(job_type=JobType.ALERT_MONITORING, created_at=now))
        older = await job_repo.create(BackgroundJob(
            job_type=JobType.ALERT_MONITORING,
            created_at=now - timedelta(minutes=1),
        ))

        pending = await job_repo.get_pending(5)

        assert [job.id for job in pending] == [older.id, newer.id]


class TestFacilityRepository:

    @pytest.mark.asyncio
    async def test_missing_tables(self, facility_repo):
        assert not await facility_repo.has_table("energy_consumption")
        assert await facility_repo.has_table("alerts")

    @pytest.mark.asyncio
    async def test_compliance_checks_join_building(self, facility_tables, facility_repo):
        await seed(facility_tables, buildings, [{"id": 5, "name": "Engineering Hall"}])
        await seed(facility_tables, audits, [{"id": 9, "building_id": 5, "title": "Annual audit"}])
        await seed(facility_tables, compliance_checks, [
            {"id": 1, "audit_id": 9, "standard_type": "PEC", "section_code": "2.1", "status": "compliant"},
            {"id": 2, "audit_id": 9, "standard_type": "PEC", "section_code": "2.2", "status": "non_compliant"},
            {"id": 3, "audit_id": 10, "standard_type": "PEC", "section_code": "2.1", "status": "compliant"},
        ])

        checks = await facility_repo.compliance_checks_for_audit(9)

        assert [c["id"] for c in checks] == [1, 2]
        assert checks[0]["building_name"] == "Engineering Hall"
        assert checks[0]["building_id"] == 5

    @pytest.mark.asyncio
    async def test_recent_energy_issues(self, facility_tables, facility_repo):
        now = utc_now()
        await seed(facility_tables, energy_consumption, [
            {"id": 1, "building_id": 5, "consumption_kwh": 80.0, "power_factor": 0.72, "recorded_at": now},
            {"id": 2, "building_id": 5, "consumption_kwh": 1200.0, "power_factor": 0.95, "recorded_at": now},
            {"id": 3, "building_id": 5, "consumption_kwh": 90.0, "power_factor": 0.93, "recorded_at": now},
            {"id": 4, "building_id": 5, "consumption_kwh": 95.0, "power_factor": 0.5,
             "recorded_at": now - timedelta(hours=3)},
        ])

        readings = await facility_repo.recent_energy_issues(
            5, now - timedelta(hours=1), power_factor_below=0.85, consumption_above=1000,
        )

        assert sorted(r["id"] for r in readings) == [1, 2]

    @pytest.mark.asyncio
    async def test_equipment_by_status(self, facility_tables, facility_repo):
        await seed(facility_tables, equipment, [
            {"id": 12, "building_id": 5, "name": "Chiller 1", "status": "faulty"},
            {"id": 13, "building_id": 5, "name": "Chiller 2", "status": "active"},
            {"id": 14, "building_id": 6, "name": "AHU 1", "status": "faulty"},
        ])

        assert await facility_repo.equipment_ids_by_status(5, "faulty") == [12]
        assert await facility_repo.first_equipment() == {"id": 12, "building_id": 5}

    @pytest.mark.asyncio
    async def test_energy_summary(self, facility_tables, facility_repo):
        start = utc_now() - timedelta(days=1)
        await seed(facility_tables, energy_consumption, [
            {"id": 1, "building_id": 5, "consumption_kwh": 100.0, "power_factor": 0.9, "recorded_at": utc_now()},
            {"id": 2, "building_id": 5, "consumption_kwh": 300.0, "power_factor": 0.8, "recorded_at": utc_now()},
        ])

        summary = await facility_repo.energy_summary(5, start, utc_now())

        assert summary["avg_consumption"] == 200.0
        assert summary["total_readings"] == 2
