"""
Processors for each background job type.

A processor receives a claimed job whose parameters are already decoded
and validated, and returns a JSON-safe result dict. Errors raised from
process() fail the job; errors inside one analysis or monitoring type are
captured in the result so the remaining types still run.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..interfaces import AnalyticsService
from ...domain.entities import BackgroundJob, JobType, to_json_safe, utc_now
from ...domain.services.job_validation import parse_date
from ...domain.services.threshold_evaluator import ENERGY_LIMITS
from ...infrastructure.database.repositories import FacilityRepository

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], Awaitable[None]]

DEFAULT_ANALYSIS_TYPES = ["energy", "anomaly", "efficiency"]
DEFAULT_MONITORING_TYPES = ["energy", "power_quality", "equipment"]
DEFAULT_CHECK_TYPES = ["comprehensive"]
DEFAULT_FORECAST_DAYS = 30
DEFAULT_FORECAST_TYPES = ["consumption"]

MONITORING_LOOKBACK = timedelta(hours=1)
FORECAST_HISTORY = timedelta(days=30)
# Equipment serviced more often than this is treated as high risk.
FALLBACK_MAINTENANCE_THRESHOLD = 5
FORECAST_MEDIUM_CONFIDENCE_POINTS = 30


def _as_list(value: Any, default: List[str]) -> List[str]:
    if value is None:
        return list(default)
    if isinstance(value, str):
        return [value]
    return list(value)


def _as_int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


def _end_of_period(value: datetime) -> datetime:
    """A bare date covers the whole day."""
    if value.hour == 0 and value.minute == 0 and value.second == 0 and value.microsecond == 0:
        return value + timedelta(days=1) - timedelta(microseconds=1)
    return value


def _progress_percent(done: int, total: int) -> float:
    return float(round(done / total * 100)) if total else 100.0


class JobProcessor(ABC):
    """Runs one type of background job."""

    job_type: JobType

    @abstractmethod
    async def process(self, job: BackgroundJob, progress: ProgressCallback) -> Dict[str, Any]:
        """
        Execute the job.

        Args:
            job: Claimed job with decoded parameters.
            progress: Coroutine reporting percent complete (0-100).

        Returns:
            JSON-safe result stored on the job.
        """
        pass


class AnalyticsProcessor(JobProcessor):
    """Energy efficiency, anomaly and aggregate efficiency analyses for a period."""

    job_type = JobType.ANALYTICS_PROCESSING

    def __init__(self, facility_repo: FacilityRepository, analytics: Optional[AnalyticsService] = None):
        self._facility = facility_repo
        self._analytics = analytics

    async def process(self, job: BackgroundJob, progress: ProgressCallback) -> Dict[str, Any]:
        params = job.job_parameters
        building_id = int(params['building_id'])
        start = parse_date(params['start_date'])
        end = _end_of_period(parse_date(params['end_date']))
        analysis_types = _as_list(params.get('analysis_types'), DEFAULT_ANALYSIS_TYPES)

        logger.info(
            f"Processing analytics for building {building_id} "
            f"from {params['start_date']} to {params['end_date']}"
        )

        results = []
        for index, analysis_type in enumerate(analysis_types, start=1):
            try:
                result = await self._run_analysis(analysis_type, building_id, start, end)
                results.append({
                    'type': analysis_type,
                    'result': result,
                    'timestamp': utc_now(),
                })
                await progress(_progress_percent(index, len(analysis_types)))
            except Exception as e:
                logger.error(f"Error processing {analysis_type} analysis: {e}")
                results.append({'type': analysis_type, 'error': str(e)})

        successful = sum(1 for r in results if 'error' not in r)
        return to_json_safe({
            'building_id': building_id,
            'analysis_period': {
                'start_date': params['start_date'],
                'end_date': params['end_date'],
            },
            'analyses': results,
            'summary': {
                'total': len(analysis_types),
                'successful': successful,
                'failed': len(results) - successful,
            },
        })

    async def _run_analysis(
        self,
        analysis_type: str,
        building_id: int,
        start: datetime,
        end: datetime,
    ) -> Any:
        if analysis_type == "energy":
            if self._analytics is None:
                raise RuntimeError("Analytics service not configured")
            return await self._analytics.analyze_energy_efficiency(building_id, start, end)

        if analysis_type == "anomaly":
            if self._analytics is None:
                raise RuntimeError("Analytics service not configured")
            return await self._analytics.detect_anomalies(building_id, start, end, ["energy"])

        if analysis_type == "efficiency":
            if not await self._facility.has_table("energy_consumption"):
                return {'message': "Energy consumption table not available"}
            return await self._facility.energy_summary(building_id, start, end)

        return {'message': f"Unknown analysis type: {analysis_type}"}


class AlertMonitoringProcessor(JobProcessor):
    """
    Scans the last hour of readings for a building and raises alerts.

    Problem readings are routed through the alert detectors, so the usual
    deduplication and escalation rules apply.
    """

    job_type = JobType.ALERT_MONITORING

    def __init__(self, facility_repo: FacilityRepository, alert_service):
        self._facility = facility_repo
        self._alerts = alert_service

    async def process(self, job: BackgroundJob, progress: ProgressCallback) -> Dict[str, Any]:
        params = job.job_parameters
        building_id = int(params['building_id'])
        monitoring_types = _as_list(params.get('monitoring_types'), DEFAULT_MONITORING_TYPES)
        since = utc_now() - MONITORING_LOOKBACK

        logger.info(f"Processing alert monitoring for building {building_id}")

        monitoring_results = []
        for index, monitoring_type in enumerate(monitoring_types, start=1):
            try:
                alerts = await self._monitor(monitoring_type, building_id, since)
                monitoring_results.append({
                    'type': monitoring_type,
                    'alerts_count': len(alerts),
                    'alerts': [
                        {
                            'id': alert.id,
                            'type': alert.type,
                            'severity': alert.severity,
                            'title': alert.title,
                        }
                        for alert in alerts
                    ],
                })
            except Exception as e:
                logger.error(f"Error monitoring {monitoring_type}: {e}")
                monitoring_results.append({'type': monitoring_type, 'error': str(e)})
            await progress(_progress_percent(index, len(monitoring_types)))

        return to_json_safe({
            'building_id': building_id,
            'monitoring_results': monitoring_results,
            'total_alerts': sum(r.get('alerts_count', 0) for r in monitoring_results),
            'timestamp': utc_now(),
        })

    async def _monitor(self, monitoring_type: str, building_id: int, since: datetime) -> list:
        alerts = []

        if monitoring_type == "energy":
            if not await self._facility.has_table("energy_consumption"):
                return alerts
            readings = await self._facility.recent_energy_issues(
                building_id,
                since,
                power_factor_below=ENERGY_LIMITS.power_factor_min,
                consumption_above=ENERGY_LIMITS.monitoring_consumption_kwh_max,
            )
            for reading in readings:
                try:
                    alerts.extend(await self._alerts.monitor_energy_thresholds(building_id, {
                        'consumption_kwh': reading.get('consumption_kwh'),
                        'demand_kw': reading.get('demand_kw'),
                        'power_factor': reading.get('power_factor'),
                        'recorded_at': reading.get('recorded_at'),
                    }))
                except Exception as e:
                    logger.error(f"Error generating energy alerts: {e}")

        elif monitoring_type == "power_quality":
            if not await self._facility.has_table("power_quality"):
                return alerts
            readings = await self._facility.recent_power_quality_issues(
                building_id,
                since,
                thd_voltage_above=ENERGY_LIMITS.thd_voltage_max,
                voltage_unbalance_above=ENERGY_LIMITS.voltage_unbalance_max,
            )
            for reading in readings:
                try:
                    alerts.extend(await self._alerts.monitor_power_quality(building_id, reading))
                except Exception as e:
                    logger.error(f"Error generating power quality alerts: {e}")

        elif monitoring_type == "equipment":
            if not await self._facility.has_table("equipment"):
                return alerts
            for equipment_id in await self._facility.equipment_ids_by_status(building_id, "faulty"):
                try:
                    alerts.extend(await self._alerts.monitor_equipment_health(equipment_id))
                except Exception as e:
                    logger.error(f"Error generating equipment alerts: {e}")

        else:
            logger.warning(f"Unknown monitoring type: {monitoring_type}")

        return alerts


class ComplianceCheckProcessor(JobProcessor):
    job_type = JobType.COMPLIANCE_CHECK

    def __init__(self, facility_repo: FacilityRepository):
        self._facility = facility_repo

    async def process(self, job: BackgroundJob, progress: ProgressCallback) -> Dict[str, Any]:
        params = job.job_parameters
        audit_id = int(params['audit_id'])
        check_types = _as_list(params.get('check_types'), DEFAULT_CHECK_TYPES)

        logger.info(f"Processing compliance check for audit {audit_id}")

        if not await self._facility.has_table("compliance_checks"):
            return {
                'audit_id': audit_id,
                'compliance_checks': [],
                'total_checks': 0,
                'message': "compliance_checks table does not exist",
            }

        checks = await self._facility.compliance_checks_for_audit(audit_id)
        total = len(checks)
        compliant = sum(1 for check in checks if check.get('status') == 'compliant')
        score = round(compliant / total * 100) if total else 0

        return to_json_safe({
            'audit_id': audit_id,
            'compliance_checks': checks,
            'total_checks': total,
            'compliant_checks': compliant,
            'compliance_score': score,
            'check_types_processed': check_types,
            'timestamp': utc_now(),
        })


class MaintenancePredictionProcessor(JobProcessor):
    """
    Maintenance predictions for one equipment item or every active
    item in a building.

    Falls back to a maintenance-history heuristic when the analytics
    engine is missing or fails.
    """

    job_type = JobType.MAINTENANCE_PREDICTION

    def __init__(self, facility_repo: FacilityRepository, analytics: Optional[AnalyticsService] = None):
        self._facility = facility_repo
        self._analytics = analytics

    async def process(self, job: BackgroundJob, progress: ProgressCallback) -> Dict[str, Any]:
        params = job.job_parameters
        equipment_id = _as_int(params.get('equipment_id'))
        building_id = _as_int(params.get('building_id'))

        logger.info(
            f"Processing maintenance prediction for equipment {equipment_id} or building {building_id}"
        )

        if not await self._facility.has_table("equipment"):
            return {
                'predictions': [],
                'total_equipment': 0,
                'message': "equipment table does not exist",
            }

        if equipment_id is not None:
            equipment_ids = [equipment_id]
        elif building_id is not None:
            equipment_ids = await self._facility.equipment_ids_by_status(building_id, "active")
        else:
            equipment_ids = []

        predictions = []
        for index, eq_id in enumerate(equipment_ids, start=1):
            try:
                predictions.append(await self._predict(eq_id))
                await progress(_progress_percent(index, len(equipment_ids)))
            except Exception as e:
                logger.error(f"Error predicting maintenance for equipment {eq_id}: {e}")
                predictions.append({'equipment_id': eq_id, 'error': str(e)})

        return to_json_safe({
            'predictions': predictions,
            'total_equipment': len(equipment_ids),
            'building_id': building_id,
            'equipment_id': equipment_id,
            'timestamp': utc_now(),
        })

    async def _predict(self, equipment_id: int) -> Dict[str, Any]:
        if self._analytics is not None:
            try:
                return await self._analytics.predict_equipment_maintenance(equipment_id)
            except Exception as e:
                logger.warning(f"Analytics prediction failed for equipment {equipment_id}: {e}")

        maintenance_count = 0
        if await self._facility.has_table("equipment_maintenance"):
            maintenance_count = await self._facility.maintenance_count(equipment_id)

        return {
            'equipment_id': equipment_id,
            'maintenance_count': maintenance_count,
            'risk_level': "high" if maintenance_count > FALLBACK_MAINTENANCE_THRESHOLD else "low",
            'message': "Basic maintenance analysis",
        }


class ForecastGenerationProcessor(JobProcessor):
    """Consumption forecast, with a 30-day average when analytics is unavailable."""

    job_type = JobType.FORECAST_GENERATION

    def __init__(self, facility_repo: FacilityRepository, analytics: Optional[AnalyticsService] = None):
        self._facility = facility_repo
        self._analytics = analytics

    async def process(self, job: BackgroundJob, progress: ProgressCallback) -> Dict[str, Any]:
        params = job.job_parameters
        building_id = int(params['building_id'])
        forecast_days = int(params.get('forecast_days') or DEFAULT_FORECAST_DAYS)
        forecast_types = _as_list(params.get('forecast_types'), DEFAULT_FORECAST_TYPES)

        logger.info(f"Processing forecast generation for building {building_id}")

        if not await self._facility.has_table("energy_consumption"):
            return {
                'building_id': building_id,
                'forecast': None,
                'forecast_period_days': forecast_days,
                'message': "energy_consumption table does not exist",
            }

        if self._analytics is not None:
            try:
                forecasts = await self._analytics.forecast_energy_consumption(
                    building_id,
                    forecast_days,
                    forecast_types[0] if forecast_types else "consumption",
                )
                return to_json_safe({
                    'building_id': building_id,
                    'forecast': forecasts,
                    'forecast_period_days': forecast_days,
                    'forecast_types': forecast_types,
                    'total_forecasts': len(forecasts),
                    'timestamp': utc_now(),
                })
            except Exception as e:
                logger.warning(f"Analytics forecast failed for building {building_id}: {e}")

        history = await self._facility.consumption_average(building_id, utc_now() - FORECAST_HISTORY)
        data_points = int(history.get('data_points') or 0)
        return to_json_safe({
            'building_id': building_id,
            'forecast': {
                'predicted_consumption': history.get('avg_consumption') or 0,
                'confidence': "medium" if data_points > FORECAST_MEDIUM_CONFIDENCE_POINTS else "low",
                'method': "simple_average",
            },
            'forecast_period_days': forecast_days,
            'forecast_types': forecast_types,
            'message': "Basic forecast using simple average",
            'timestamp': utc_now(),
        })


def build_default_processors(
    facility_repo: FacilityRepository,
    alert_service,
    analytics: Optional[AnalyticsService] = None,
) -> Dict[JobType, JobProcessor]:
    """One processor per job type, wired to shared collaborators."""
    processors: List[JobProcessor] = [
        AnalyticsProcessor(facility_repo, analytics),
        AlertMonitoringProcessor(facility_repo, alert_service),
        ComplianceCheckProcessor(facility_repo),
        MaintenancePredictionProcessor(facility_repo, analytics),
        ForecastGenerationProcessor(facility_repo, analytics),
    ]
    return {processor.job_type: processor for processor in processors}
