"""
Table definitions.

alerts, alert_thresholds and background_jobs are owned by this service.
The remaining tables belong to the wider facility system; only the
columns read by jobs and detectors are declared, and they are never
created from here.
"""
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB

from .connection import external_metadata, metadata

JsonType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def _timestamp(name: str, **kwargs) -> Column:
    return Column(name, DateTime(timezone=True), **kwargs)


alerts = Table(
    "alerts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("type", String(40), nullable=False),
    Column("severity", String(16), nullable=False),
    Column("status", String(16), nullable=False, default="active"),
    Column("title", String(255), nullable=False),
    Column("message", Text, nullable=False),
    Column("building_id", Integer, nullable=True),
    Column("equipment_id", Integer, nullable=True),
    Column("audit_id", Integer, nullable=True),
    Column("energy_reading_id", Integer, nullable=True),
    Column("pq_reading_id", Integer, nullable=True),
    Column("threshold_config", JsonType, nullable=True),
    Column("detected_value", Float, nullable=True),
    Column("threshold_value", Float, nullable=True),
    Column("escalation_level", Integer, nullable=False, default=0),
    Column("notification_sent", Boolean, nullable=False, default=False),
    Column("metadata", JsonType, nullable=True),
    Column("acknowledged_by", Integer, nullable=True),
    _timestamp("acknowledged_at", nullable=True),
    Column("resolved_by", Integer, nullable=True),
    _timestamp("resolved_at", nullable=True),
    _timestamp("escalated_at", nullable=True),
    _timestamp("next_escalation_at", nullable=True),
    _timestamp("created_at", nullable=False),
    _timestamp("updated_at", nullable=False),
    Index("ix_alerts_dedup", "type", "building_id", "equipment_id", "status", "created_at"),
    Index("ix_alerts_escalation_due", "status", "next_escalation_at"),
    Index("ix_alerts_building_status", "building_id", "status"),
)

alert_thresholds = Table(
    "alert_thresholds",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("building_id", Integer, nullable=True),
    Column("equipment_id", Integer, nullable=True),
    Column("parameter_name", String(100), nullable=False),
    Column("parameter_type", String(32), nullable=False),
    Column("min_value", Float, nullable=True),
    Column("max_value", Float, nullable=True),
    Column("threshold_type", String(32), nullable=False, default="absolute"),
    Column("severity", String(16), nullable=False),
    Column("enabled", Boolean, nullable=False, default=True),
    Column("escalation_minutes", Integer, nullable=True),
    Column("notification_emails", JsonType, nullable=True),
    Column("metadata", JsonType, nullable=True),
    _timestamp("created_at", nullable=False),
    _timestamp("updated_at", nullable=False),
    Index("ix_alert_thresholds_lookup", "parameter_type", "enabled", "building_id"),
)

background_jobs = Table(
    "background_jobs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("job_type", String(40), nullable=False),
    Column("status", String(16), nullable=False, default="pending"),
    Column("building_id", Integer, nullable=True),
    Column("equipment_id", Integer, nullable=True),
    Column("job_parameters", JsonType, nullable=True),
    Column("progress_percentage", Float, nullable=False, default=0.0),
    Column("result_data", JsonType, nullable=True),
    Column("error_message", Text, nullable=True),
    _timestamp("started_at", nullable=True),
    _timestamp("completed_at", nullable=True),
    _timestamp("created_at", nullable=False),
    _timestamp("updated_at", nullable=False),
    Index("ix_background_jobs_status_created", "status", "created_at"),
    Index("ix_background_jobs_job_type", "job_type"),
    Index("ix_background_jobs_building_id", "building_id"),
)


# =========================================================================
# Facility tables (read only)
# =========================================================================

buildings = Table(
    "buildings",
    external_metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(255)),
)

equipment = Table(
    "equipment",
    external_metadata,
    Column("id", Integer, primary_key=True),
    Column("building_id", Integer),
    Column("name", String(255)),
    Column("status", String(32)),
)

audits = Table(
    "audits",
    external_metadata,
    Column("id", Integer, primary_key=True),
    Column("building_id", Integer),
    Column("title", String(255)),
)

energy_consumption = Table(
    "energy_consumption",
    external_metadata,
    Column("id", Integer, primary_key=True),
    Column("building_id", Integer),
    Column("consumption_kwh", Float),
    Column("demand_kw", Float),
    Column("power_factor", Float),
    _timestamp("recorded_at"),
)

power_quality = Table(
    "power_quality",
    external_metadata,
    Column("id", Integer, primary_key=True),
    Column("building_id", Integer),
    Column("voltage_l1", Float),
    Column("voltage_l2", Float),
    Column("voltage_l3", Float),
    Column("thd_voltage", Float),
    Column("thd_current", Float),
    Column("frequency", Float),
    Column("voltage_unbalance", Float),
    Column("current_unbalance", Float),
    _timestamp("recorded_at"),
)

compliance_checks = Table(
    "compliance_checks",
    external_metadata,
    Column("id", Integer, primary_key=True),
    Column("audit_id", Integer),
    Column("standard_type", String(64)),
    Column("section_code", String(64)),
    Column("status", String(32)),
    Column("severity", String(16)),
)

maintenance_predictions = Table(
    "maintenance_predictions",
    external_metadata,
    Column("id", Integer, primary_key=True),
    Column("equipment_id", Integer),
    Column("prediction_type", String(64)),
    Column("predicted_date", Date),
    Column("risk_level", String(16)),
    _timestamp("created_at"),
)

equipment_maintenance = Table(
    "equipment_maintenance",
    external_metadata,
    Column("id", Integer, primary_key=True),
    Column("equipment_id", Integer),
    Column("maintenance_type", String(64)),
    _timestamp("created_at"),
)
