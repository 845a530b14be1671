"""
Alert Service.

Creates alerts with deduplication, tracks them through acknowledgement,
escalation and resolution, and runs the threshold detectors that turn
readings into alerts.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .escalation_scheduler import EscalationScheduler
from .notification_service import NotificationService
from ..interfaces import RealtimePublisher
from ...domain.entities import (
    Alert,
    AlertCreate,
    AlertFilters,
    AlertSeverity,
    AlertStatus,
    AlertThreshold,
    AlertType,
    AlertUpdate,
    EscalationLevel,
    EscalationRule,
    ParameterType,
    build_escalation_rules,
    to_json_safe,
    utc_now,
)
from ...domain.exceptions import (
    DomainException,
    EntityNotFoundException,
    TransientStoreException,
    ValidationException,
)
from ...domain.services.threshold_evaluator import (
    Violation,
    check_power_factor,
    check_power_quality,
    evaluate,
    extract_energy_sample,
)
from ...infrastructure.database.repositories import (
    AlertRepository,
    FacilityRepository,
    ThresholdRepository,
)

logger = logging.getLogger(__name__)

NEW_ALERT_EVENT = "newAlert"
STATUS_CHANGED_EVENT = "alertStatusChanged"


class AlertService:
    """
    Application service for alerts.

    Coordinates persistence, realtime broadcasts, notifications and
    escalation deadlines for every alert raised in the system.
    """

    def __init__(
        self,
        alert_repo: AlertRepository,
        threshold_repo: ThresholdRepository,
        publisher: RealtimePublisher,
        notification_service: NotificationService,
        escalation_scheduler: EscalationScheduler,
        facility_repo: Optional[FacilityRepository] = None,
        escalation_rules: Optional[Mapping[AlertSeverity, EscalationRule]] = None,
        duplicate_window_minutes: int = 60,
    ):
        self._alerts = alert_repo
        self._thresholds = threshold_repo
        self._publisher = publisher
        self._notifications = notification_service
        self._scheduler = escalation_scheduler
        self._facility = facility_repo
        self._rules = escalation_rules if escalation_rules is not None else build_escalation_rules()
        self._duplicate_window = timedelta(minutes=duplicate_window_minutes)

    # =========================================================================
    # Alert Creation
    # =========================================================================

    async def create_alert(self, data: AlertCreate) -> Alert:
        """
        Create an alert, or refresh the open duplicate if one exists.

        An alert is a duplicate when an active alert with the same type,
        building and equipment was created inside the duplicate window.

        Args:
            data: Alert input.

        Returns:
            The new alert, or the updated existing one.

        Raises:
            ValidationException: If the input is invalid.
        """
        errors = data.validate()
        if errors:
            raise ValidationException("Invalid alert data", errors)

        now = utc_now()
        duplicate = await self._alerts.find_duplicate(
            data.type,
            data.building_id,
            data.equipment_id,
            since=now - self._duplicate_window,
        )
        if duplicate is not None:
            logger.info(f"Duplicate alert detected, updating existing alert {duplicate.id}")
            return await self.update_alert(
                duplicate.id,
                AlertUpdate(status=AlertStatus.ACTIVE, metadata=data.metadata or None),
            )

        alert_id = await self._alerts.create(data, now)
        alert = await self._alerts.get_by_id(alert_id)
        if alert is None:
            raise TransientStoreException("create_alert", f"alert {alert_id} not found after insert")

        await self.process_new_alert(alert)

        logger.info(f"Alert created: {alert.id} - {alert.title}")
        return alert

    async def process_new_alert(self, alert: Alert) -> None:
        """
        Broadcast a new alert, notify level 1 and arm the escalation deadline.
        """
        await self._publish(alert.room, NEW_ALERT_EVENT, alert.to_dict())

        rule = self._rules.get(alert.severity)
        if rule is None:
            return

        first_level = rule.get_level(1)
        if first_level is not None:
            await self._notify(alert, first_level)

        delay = self._escalation_delay(alert, rule)
        if delay > 0:
            await self._scheduler.schedule(alert.id, delay)

    # =========================================================================
    # Alert Updates
    # =========================================================================

    async def update_alert(self, alert_id: int, update: AlertUpdate) -> Alert:
        """
        Apply a partial update to an alert.

        Args:
            alert_id: Alert id.
            update: Fields to change; None fields are left alone.

        Returns:
            The alert as stored after the update.

        Raises:
            EntityNotFoundException: If the alert does not exist.
            InvalidStateTransitionException: If the status move is not allowed.
            ValidationException: If escalation_level would decrease.
        """
        alert = await self._alerts.get_by_id(alert_id)
        if alert is None:
            raise EntityNotFoundException('Alert', alert_id)

        previous_status = alert.status
        changes = alert.apply_update(update)
        if changes:
            await self._alerts.update_fields(alert_id, changes)

        updated = await self._alerts.get_by_id(alert_id)
        if updated is None:
            raise EntityNotFoundException('Alert', alert_id)

        if updated.status != previous_status:
            await self._handle_status_change(updated, previous_status)

        return updated

    async def acknowledge_alert(self, alert_id: int, user_id: Optional[int] = None) -> Alert:
        return await self.update_alert(
            alert_id,
            AlertUpdate(status=AlertStatus.ACKNOWLEDGED, acknowledged_by=user_id),
        )

    async def resolve_alert(self, alert_id: int, user_id: Optional[int] = None) -> Alert:
        return await self.update_alert(
            alert_id,
            AlertUpdate(status=AlertStatus.RESOLVED, resolved_by=user_id),
        )

    async def _handle_status_change(self, alert: Alert, previous_status: AlertStatus) -> None:
        await self._publish(
            alert.room,
            STATUS_CHANGED_EVENT,
            {'alert': alert.to_dict(), 'previous_status': previous_status.value},
        )
        logger.info(
            f"Alert {alert.id} status changed from {previous_status.value} to {alert.status.value}"
        )

    # =========================================================================
    # Alert Retrieval
    # =========================================================================

    async def get_alert(self, alert_id: int) -> Optional[Alert]:
        return await self._alerts.get_by_id(alert_id)

    async def get_active_alerts(
        self,
        filters: Optional[AlertFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[Alert], int]:
        """
        Active alerts, most severe first and newest first within a severity.

        Returns:
            Tuple of (page of alerts, total matching count).
        """
        return await self._alerts.get_active(filters, limit=limit, offset=offset)

    # =========================================================================
    # Escalation
    # =========================================================================

    async def escalate_alert(self, alert: Alert) -> Optional[Alert]:
        """
        Move an alert to its next escalation level and notify that level.

        Returns:
            The escalated alert, or None when the rule has no further level.
        """
        rule = self._rules.get(alert.severity)
        next_level_number = alert.escalation_level + 1
        level = rule.get_level(next_level_number) if rule else None
        if level is None:
            logger.debug(f"Alert {alert.id} has no escalation level {next_level_number}")
            await self._scheduler.cancel(alert.id)
            return None

        escalated = await self.update_alert(
            alert.id,
            AlertUpdate(status=AlertStatus.ESCALATED, escalation_level=next_level_number),
        )
        await self._notify(escalated, level)

        if rule.has_level(next_level_number + 1):
            await self._scheduler.schedule(alert.id, self._escalation_delay(escalated, rule))
        else:
            await self._scheduler.cancel(alert.id)

        logger.warning(f"Alert {alert.id} escalated to level {next_level_number}")
        return escalated

    async def process_escalations(self, now: Optional[datetime] = None) -> int:
        """
        Escalate every alert whose deadline has passed.

        Each alert is re-read first; one acknowledged or resolved since
        the deadline was armed is skipped and its deadline cleared.

        Args:
            now: Reference time, defaults to the current time.

        Returns:
            Number of alerts escalated.
        """
        due_ids = await self._scheduler.due_alert_ids(now)
        escalated = 0
        for alert_id in due_ids:
            try:
                alert = await self._alerts.get_by_id(alert_id)
                if alert is None or not alert.is_open:
                    await self._scheduler.cancel(alert_id)
                    continue
                if await self.escalate_alert(alert) is not None:
                    escalated += 1
            except DomainException as e:
                logger.error(f"Error escalating alert {alert_id}: {e}")
        if escalated:
            logger.info(f"Escalated {escalated} alert(s)")
        return escalated

    def _escalation_delay(self, alert: Alert, rule: EscalationRule) -> float:
        override = alert.threshold_config.get('escalation_minutes')
        if isinstance(override, (int, float)) and not isinstance(override, bool) and override > 0:
            return float(override)
        return float(rule.escalation_minutes)

    # =========================================================================
    # Detection
    # =========================================================================

    async def monitor_energy_thresholds(
        self,
        building_id: int,
        reading: Mapping[str, Any],
    ) -> List[Alert]:
        """
        Check an energy reading against configured thresholds and the
        fixed power factor floor.

        Args:
            building_id: Building the reading belongs to.
            reading: Mapping with consumption_kwh, demand_kw, power_factor.

        Returns:
            Alerts created or refreshed.
        """
        alerts: List[Alert] = []
        reading_snapshot = to_json_safe(dict(reading))

        thresholds = await self._thresholds.get_applicable(building_id, ParameterType.ENERGY)
        for threshold in thresholds:
            sample = extract_energy_sample(threshold.parameter_name, reading)
            if sample is None:
                continue
            violation = evaluate(sample, threshold)
            if violation is None:
                continue
            alerts.append(await self.create_alert(AlertCreate(
                type=AlertType.THRESHOLD_EXCEEDED,
                severity=threshold.severity,
                title=f"Energy Threshold Exceeded: {threshold.parameter_name}",
                message=violation.message,
                building_id=building_id,
                threshold_config=threshold.to_config(),
                detected_value=violation.detected_value,
                threshold_value=violation.threshold_value,
                metadata={'threshold_id': threshold.id, 'energy_data': reading_snapshot},
            )))

        violation = check_power_factor(reading.get('power_factor'))
        if violation is not None:
            alerts.append(await self.create_alert(
                self._violation_alert(violation, building_id, {'energy_data': reading_snapshot})
            ))

        return alerts

    async def monitor_power_quality(
        self,
        building_id: int,
        reading: Mapping[str, Any],
    ) -> List[Alert]:
        """
        Check a power quality reading against the fixed electrical limits.
        """
        reading_snapshot = to_json_safe(dict(reading))
        alerts = []
        for violation in check_power_quality(reading):
            alerts.append(await self.create_alert(
                self._violation_alert(violation, building_id, {'pq_data': reading_snapshot})
            ))
        return alerts

    async def monitor_equipment_health(self, equipment_id: int) -> List[Alert]:
        """
        Raise alerts from the latest maintenance prediction for equipment.

        A critical risk prediction raises a critical equipment_failure
        alert; a high risk one raises a high maintenance_due alert.
        """
        if self._facility is None:
            logger.debug("No facility repository configured, skipping equipment health check")
            return []

        equipment = await self._facility.get_equipment(equipment_id)
        if equipment is None:
            return []

        prediction = await self._facility.latest_maintenance_prediction(equipment_id)
        if prediction is None:
            return []

        risk_level = prediction.get('risk_level')
        if risk_level == 'critical':
            alert_type, severity = AlertType.EQUIPMENT_FAILURE, AlertSeverity.CRITICAL
            title = f"Critical Equipment Risk: {equipment.get('name')}"
            message = "Equipment requires immediate attention"
        elif risk_level == 'high':
            alert_type, severity = AlertType.MAINTENANCE_DUE, AlertSeverity.HIGH
            title = f"Maintenance Required: {equipment.get('name')}"
            message = "Equipment maintenance should be scheduled soon"
        else:
            return []

        alert = await self.create_alert(AlertCreate(
            type=alert_type,
            severity=severity,
            title=title,
            message=(
                f"{message} - predicted {prediction.get('prediction_type')} "
                f"on {prediction.get('predicted_date')}"
            ),
            equipment_id=equipment_id,
            building_id=equipment.get('building_id'),
            metadata={'prediction_details': to_json_safe(dict(prediction))},
        ))
        return [alert]

    @staticmethod
    def _violation_alert(
        violation: Violation,
        building_id: int,
        extra_metadata: Dict[str, Any],
    ) -> AlertCreate:
        return AlertCreate(
            type=violation.alert_type,
            severity=violation.severity,
            title=violation.title,
            message=violation.message,
            building_id=building_id,
            detected_value=violation.detected_value,
            threshold_value=violation.threshold_value,
            metadata={**violation.metadata, **extra_metadata},
        )

    # =========================================================================
    # Thresholds
    # =========================================================================

    async def create_threshold(self, threshold: AlertThreshold) -> AlertThreshold:
        errors = threshold.validate()
        if errors:
            raise ValidationException("Invalid alert threshold", errors)
        return await self._thresholds.create(threshold)

    async def get_thresholds(
        self,
        building_id: Optional[int] = None,
        parameter_type: Optional[ParameterType] = None,
    ) -> List[AlertThreshold]:
        return await self._thresholds.list_thresholds(building_id=building_id, parameter_type=parameter_type)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _notify(self, alert: Alert, level: EscalationLevel) -> None:
        try:
            delivered = await self._notifications.dispatch(alert, level)
            if delivered and not alert.notification_sent:
                await self._alerts.mark_notification_sent(alert.id, utc_now())
                alert.notification_sent = True
        except Exception as e:
            logger.error(f"Error sending notifications for alert {alert.id}: {e}")

    async def _publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        try:
            await self._publisher.emit_to_building(room, event, payload)
        except Exception as e:
            logger.warning(f"Failed to publish {event} for room {room}: {e}")
