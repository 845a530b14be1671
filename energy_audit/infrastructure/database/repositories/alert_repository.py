"""
Repository for alerts and alert thresholds.

Handles deduplication lookups, severity-ordered listing and the
escalation deadline column swept by the escalation worker.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import case, func, insert, or_, select, update

from ..tables import alert_thresholds, alerts
from ....application.interfaces import DataAccess
from ....domain.entities import (
    Alert,
    AlertCreate,
    AlertFilters,
    AlertStatus,
    AlertThreshold,
    AlertType,
    OPEN_ALERT_STATUSES,
    ParameterType,
    SEVERITY_RANK,
    to_json_safe,
)

logger = logging.getLogger(__name__)

SEVERITY_ORDER = case(
    {severity.value: rank for severity, rank in SEVERITY_RANK.items()},
    value=alerts.c.severity,
    else_=len(SEVERITY_RANK),
)


def _matches(column, value):
    """Equality that treats a missing id as SQL NULL."""
    return column.is_(None) if value is None else column == value


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class AlertRepository:
    """
    Repository for alert operations.
    """

    def __init__(self, data_access: DataAccess):
        self._db = data_access

    # =========================================================================
    # CRUD Operations
    # =========================================================================

    async def get_by_id(self, alert_id: int) -> Optional[Alert]:
        """
        Get an alert by ID.

        Args:
            alert_id: Alert id.

        Returns:
            Alert if found, None otherwise.
        """
        row = await self._db.query_one(select(alerts).where(alerts.c.id == alert_id))
        return Alert.from_row(row) if row else None

    async def create(self, data: AlertCreate, created_at: datetime) -> int:
        """
        Insert a new active alert.

        Args:
            data: Validated alert input.
            created_at: Timestamp for created_at and updated_at.

        Returns:
            New alert id.
        """
        stmt = insert(alerts).values({
            'type': _column_value(data.type),
            'severity': _column_value(data.severity),
            'status': AlertStatus.ACTIVE.value,
            'title': data.title,
            'message': data.message,
            'building_id': data.building_id,
            'equipment_id': data.equipment_id,
            'audit_id': data.audit_id,
            'energy_reading_id': data.energy_reading_id,
            'pq_reading_id': data.pq_reading_id,
            'threshold_config': to_json_safe(data.threshold_config or {}),
            'detected_value': data.detected_value,
            'threshold_value': data.threshold_value,
            'escalation_level': 0,
            'notification_sent': False,
            'metadata': to_json_safe(data.metadata or {}),
            'created_at': created_at,
            'updated_at': created_at,
        })
        alert_id = await self._db.insert(stmt)
        logger.info(f"Created alert {alert_id}: {_column_value(data.type)} ({_column_value(data.severity)})")
        return alert_id

    async def update_fields(self, alert_id: int, changes: Dict[str, Any]) -> int:
        """
        Persist changed columns.

        Returns:
            Number of rows updated.
        """
        if not changes:
            return 0
        values = {name: to_json_safe(value) if name == 'metadata' else _column_value(value)
                  for name, value in changes.items()}
        stmt = update(alerts).where(alerts.c.id == alert_id).values(values)
        return await self._db.execute(stmt)

    async def mark_notification_sent(self, alert_id: int, now: datetime) -> None:
        stmt = (
            update(alerts)
            .where(alerts.c.id == alert_id)
            .values(notification_sent=True, updated_at=now)
        )
        await self._db.execute(stmt)

    # =========================================================================
    # Queries
    # =========================================================================

    async def find_duplicate(
        self,
        alert_type: AlertType,
        building_id: Optional[int],
        equipment_id: Optional[int],
        since: datetime,
    ) -> Optional[Alert]:
        """
        Find the newest active alert with the same type and target.

        Args:
            alert_type: Alert type.
            building_id: Building id, or None to match alerts with no building.
            equipment_id: Equipment id, or None to match alerts with no equipment.
            since: Only alerts created at or after this instant match.

        Returns:
            Matching Alert or None.
        """
        query = (
            select(alerts)
            .where(
                alerts.c.type == _column_value(alert_type),
                _matches(alerts.c.building_id, building_id),
                _matches(alerts.c.equipment_id, equipment_id),
                alerts.c.status == AlertStatus.ACTIVE.value,
                alerts.c.created_at >= since,
            )
            .order_by(alerts.c.created_at.desc(), alerts.c.id.desc())
            .limit(1)
        )
        row = await self._db.query_one(query)
        return Alert.from_row(row) if row else None

    async def get_active(
        self,
        filters: Optional[AlertFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[Alert], int]:
        """
        List open alerts, most severe first and newest first within a severity.

        Args:
            filters: Optional building/equipment/type/severity filters.
            limit: Page size, or None for all.
            offset: Rows to skip.

        Returns:
            Tuple of (alerts, total matching count).
        """
        conditions = [alerts.c.status == AlertStatus.ACTIVE.value]
        if filters is not None:
            if filters.building_id is not None:
                conditions.append(alerts.c.building_id == filters.building_id)
            if filters.equipment_id is not None:
                conditions.append(alerts.c.equipment_id == filters.equipment_id)
            if filters.type is not None:
                conditions.append(alerts.c.type == _column_value(filters.type))
            if filters.severity is not None:
                conditions.append(alerts.c.severity == _column_value(filters.severity))

        count_row = await self._db.query_one(
            select(func.count().label('total')).select_from(alerts).where(*conditions)
        )
        total = int(count_row['total']) if count_row else 0

        query = (
            select(alerts)
            .where(*conditions)
            .order_by(SEVERITY_ORDER, alerts.c.created_at.desc(), alerts.c.id.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        if offset:
            query = query.offset(offset)
        rows = await self._db.query(query)
        return [Alert.from_row(row) for row in rows], total

    # =========================================================================
    # Escalation deadlines
    # =========================================================================

    async def set_next_escalation(self, alert_id: int, when: Optional[datetime]) -> None:
        stmt = update(alerts).where(alerts.c.id == alert_id).values(next_escalation_at=when)
        await self._db.execute(stmt)

    async def get_due_for_escalation(self, now: datetime, limit: int = 100) -> List[int]:
        """
        Ids of open, unacknowledged alerts whose deadline has passed.
        """
        query = (
            select(alerts.c.id)
            .where(
                alerts.c.status.in_([status.value for status in OPEN_ALERT_STATUSES]),
                alerts.c.acknowledged_at.is_(None),
                alerts.c.next_escalation_at.is_not(None),
                alerts.c.next_escalation_at <= now,
            )
            .order_by(alerts.c.next_escalation_at, alerts.c.id)
            .limit(limit)
        )
        rows = await self._db.query(query)
        return [row['id'] for row in rows]


class ThresholdRepository:
    """
    Repository for alert threshold configuration.
    """

    def __init__(self, data_access: DataAccess):
        self._db = data_access

    async def create(self, threshold: AlertThreshold) -> AlertThreshold:
        stmt = insert(alert_thresholds).values({
            'building_id': threshold.building_id,
            'equipment_id': threshold.equipment_id,
            'parameter_name': threshold.parameter_name,
            'parameter_type': threshold.parameter_type.value,
            'min_value': threshold.min_value,
            'max_value': threshold.max_value,
            'threshold_type': threshold.threshold_type.value,
            'severity': threshold.severity.value,
            'enabled': threshold.enabled,
            'escalation_minutes': threshold.escalation_minutes,
            'notification_emails': list(threshold.notification_emails),
            'metadata': to_json_safe(threshold.metadata),
            'created_at': threshold.created_at,
            'updated_at': threshold.updated_at,
        })
        threshold.id = await self._db.insert(stmt)
        logger.info(f"Created threshold {threshold.id} for {threshold.parameter_name}")
        return threshold

    async def get_by_id(self, threshold_id: int) -> Optional[AlertThreshold]:
        row = await self._db.query_one(
            select(alert_thresholds).where(alert_thresholds.c.id == threshold_id)
        )
        return AlertThreshold.from_row(row) if row else None

    async def get_applicable(
        self,
        building_id: Optional[int],
        parameter_type: ParameterType,
        equipment_id: Optional[int] = None,
    ) -> List[AlertThreshold]:
        """
        Enabled thresholds for a building, including global ones.

        Args:
            building_id: Building the reading belongs to.
            parameter_type: Reading family.
            equipment_id: When set, thresholds scoped to other equipment are excluded.

        Returns:
            Thresholds in id order.
        """
        conditions = [
            alert_thresholds.c.parameter_type == parameter_type.value,
            alert_thresholds.c.enabled.is_(True),
            or_(
                alert_thresholds.c.building_id.is_(None),
                alert_thresholds.c.building_id == building_id,
            ),
        ]
        if equipment_id is not None:
            conditions.append(or_(
                alert_thresholds.c.equipment_id.is_(None),
                alert_thresholds.c.equipment_id == equipment_id,
            ))
        query = select(alert_thresholds).where(*conditions).order_by(alert_thresholds.c.id)
        rows = await self._db.query(query)
        return [AlertThreshold.from_row(row) for row in rows]

    async def list_thresholds(
        self,
        building_id: Optional[int] = None,
        parameter_type: Optional[ParameterType] = None,
        enabled_only: bool = False,
    ) -> List[AlertThreshold]:
        query = select(alert_thresholds)
        if building_id is not None:
            query = query.where(alert_thresholds.c.building_id == building_id)
        if parameter_type is not None:
            query = query.where(alert_thresholds.c.parameter_type == ParameterType(parameter_type).value)
        if enabled_only:
            query = query.where(alert_thresholds.c.enabled.is_(True))
        rows = await self._db.query(query.order_by(alert_thresholds.c.id))
        return [AlertThreshold.from_row(row) for row in rows]
