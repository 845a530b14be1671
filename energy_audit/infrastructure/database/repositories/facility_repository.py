"""
Read-only access to facility tables owned by other services.

Readings, equipment, audits and compliance checks are written elsewhere;
jobs and detectors only query them. Callers check has_table() first
because a deployment may not carry every module.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select

from ..tables import (
    audits,
    buildings,
    compliance_checks,
    energy_consumption,
    equipment,
    equipment_maintenance,
    maintenance_predictions,
    power_quality,
)
from ....application.interfaces import DataAccess

logger = logging.getLogger(__name__)


class FacilityRepository:
    """
    Queries over energy readings, power quality, equipment and audits.
    """

    def __init__(self, data_access: DataAccess):
        self._db = data_access

    async def has_table(self, table_name: str) -> bool:
        return await self._db.table_exists(table_name)

    # =========================================================================
    # Sample ids (used to build test jobs)
    # =========================================================================

    async def first_building_id(self) -> Optional[int]:
        row = await self._db.query_one(select(buildings.c.id).order_by(buildings.c.id).limit(1))
        return row['id'] if row else None

    async def first_audit_id(self) -> Optional[int]:
        row = await self._db.query_one(select(audits.c.id).order_by(audits.c.id).limit(1))
        return row['id'] if row else None

    async def first_equipment(self) -> Optional[Dict[str, Any]]:
        return await self._db.query_one(
            select(equipment.c.id, equipment.c.building_id).order_by(equipment.c.id).limit(1)
        )

    # =========================================================================
    # Equipment
    # =========================================================================

    async def get_equipment(self, equipment_id: int) -> Optional[Dict[str, Any]]:
        return await self._db.query_one(select(equipment).where(equipment.c.id == equipment_id))

    async def equipment_ids_by_status(self, building_id: int, status: str) -> List[int]:
        rows = await self._db.query(
            select(equipment.c.id)
            .where(equipment.c.building_id == building_id, equipment.c.status == status)
            .order_by(equipment.c.id)
        )
        return [row['id'] for row in rows]

    async def latest_maintenance_prediction(self, equipment_id: int) -> Optional[Dict[str, Any]]:
        return await self._db.query_one(
            select(maintenance_predictions)
            .where(maintenance_predictions.c.equipment_id == equipment_id)
            .order_by(maintenance_predictions.c.created_at.desc(), maintenance_predictions.c.id.desc())
            .limit(1)
        )

    async def maintenance_count(self, equipment_id: int) -> int:
        row = await self._db.query_one(
            select(func.count().label('maintenance_count'))
            .select_from(equipment_maintenance)
            .where(equipment_maintenance.c.equipment_id == equipment_id)
        )
        return int(row['maintenance_count']) if row else 0

    # =========================================================================
    # Readings
    # =========================================================================

    async def recent_energy_issues(
        self,
        building_id: int,
        since: datetime,
        power_factor_below: float,
        consumption_above: float,
    ) -> List[Dict[str, Any]]:
        """
        Energy readings since a point in time that look abnormal.

        Args:
            building_id: Building to scan.
            since: Lower bound on recorded_at.
            power_factor_below: Readings under this power factor are included.
            consumption_above: Readings over this consumption are included.
        """
        return await self._db.query(
            select(energy_consumption)
            .where(
                energy_consumption.c.building_id == building_id,
                energy_consumption.c.recorded_at >= since,
                or_(
                    energy_consumption.c.power_factor < power_factor_below,
                    energy_consumption.c.consumption_kwh > consumption_above,
                ),
            )
            .order_by(energy_consumption.c.recorded_at)
        )

    async def recent_power_quality_issues(
        self,
        building_id: int,
        since: datetime,
        thd_voltage_above: float,
        voltage_unbalance_above: float,
    ) -> List[Dict[str, Any]]:
        return await self._db.query(
            select(power_quality)
            .where(
                power_quality.c.building_id == building_id,
                power_quality.c.recorded_at >= since,
                or_(
                    power_quality.c.thd_voltage > thd_voltage_above,
                    power_quality.c.voltage_unbalance > voltage_unbalance_above,
                ),
            )
            .order_by(power_quality.c.recorded_at)
        )

    async def energy_summary(
        self,
        building_id: int,
        start: datetime,
        end: datetime,
    ) -> Dict[str, Any]:
        row = await self._db.query_one(
            select(
                func.avg(energy_consumption.c.consumption_kwh).label('avg_consumption'),
                func.avg(energy_consumption.c.power_factor).label('avg_power_factor'),
                func.count().label('total_readings'),
            ).where(
                energy_consumption.c.building_id == building_id,
                energy_consumption.c.recorded_at >= start,
                energy_consumption.c.recorded_at <= end,
            )
        )
        return dict(row) if row else {'avg_consumption': None, 'avg_power_factor': None, 'total_readings': 0}

    async def consumption_average(self, building_id: int, since: datetime) -> Dict[str, Any]:
        row = await self._db.query_one(
            select(
                func.avg(energy_consumption.c.consumption_kwh).label('avg_consumption'),
                func.count().label('data_points'),
            ).where(
                energy_consumption.c.building_id == building_id,
                energy_consumption.c.recorded_at >= since,
            )
        )
        return dict(row) if row else {'avg_consumption': None, 'data_points': 0}

    # =========================================================================
    # Compliance
    # =========================================================================

    async def compliance_checks_for_audit(self, audit_id: int) -> List[Dict[str, Any]]:
        query = (
            select(
                compliance_checks,
                audits.c.building_id,
                buildings.c.name.label('building_name'),
            )
            .select_from(
                compliance_checks
                .join(audits, compliance_checks.c.audit_id == audits.c.id)
                .outerjoin(buildings, audits.c.building_id == buildings.c.id)
            )
            .where(compliance_checks.c.audit_id == audit_id)
            .order_by(compliance_checks.c.id)
        )
        return await self._db.query(query)
