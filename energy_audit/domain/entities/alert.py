"""
Alert domain entities.
"""
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .base import (
    Entity,
    coerce_datetime,
    is_valid_integer,
    parse_json_object,
    to_json_safe,
    utc_now,
)
from ..exceptions import InvalidStateTransitionException, ValidationException


class AlertType(str, Enum):
    """Kinds of conditions an alert can describe."""
    ENERGY_ANOMALY = "energy_anomaly"
    POWER_QUALITY = "power_quality"
    EQUIPMENT_FAILURE = "equipment_failure"
    COMPLIANCE_VIOLATION = "compliance_violation"
    MAINTENANCE_DUE = "maintenance_due"
    EFFICIENCY_DEGRADATION = "efficiency_degradation"
    THRESHOLD_EXCEEDED = "threshold_exceeded"


class AlertSeverity(str, Enum):
    """Alert severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Sort rank, most severe first."""
        return SEVERITY_RANK[self]


SEVERITY_RANK = {
    AlertSeverity.CRITICAL: 0,
    AlertSeverity.HIGH: 1,
    AlertSeverity.MEDIUM: 2,
    AlertSeverity.LOW: 3,
}


class AlertStatus(str, Enum):
    """Alert lifecycle status."""
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


OPEN_ALERT_STATUSES = frozenset({AlertStatus.ACTIVE, AlertStatus.ESCALATED})

ALLOWED_TRANSITIONS = {
    AlertStatus.ACTIVE: frozenset({
        AlertStatus.ACTIVE,
        AlertStatus.ACKNOWLEDGED,
        AlertStatus.ESCALATED,
        AlertStatus.RESOLVED,
    }),
    AlertStatus.ESCALATED: frozenset({
        AlertStatus.ESCALATED,
        AlertStatus.ACKNOWLEDGED,
        AlertStatus.RESOLVED,
    }),
    AlertStatus.ACKNOWLEDGED: frozenset({
        AlertStatus.ACKNOWLEDGED,
        AlertStatus.RESOLVED,
    }),
    AlertStatus.RESOLVED: frozenset({AlertStatus.RESOLVED}),
}


class ParameterType(str, Enum):
    """Reading family a threshold applies to."""
    ENERGY = "energy"
    POWER_QUALITY = "power_quality"
    EQUIPMENT = "equipment"


class ThresholdType(str, Enum):
    """How a threshold's bounds are interpreted."""
    ABSOLUTE = "absolute"
    PERCENTAGE = "percentage"
    DEVIATION = "deviation"


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


@dataclass(kw_only=True)
class AlertThreshold(Entity):
    """
    Configured bound on a monitored parameter.

    A threshold with no building and no equipment is global and applies
    everywhere.
    """
    parameter_name: str
    parameter_type: ParameterType = ParameterType.ENERGY
    building_id: Optional[int] = None
    equipment_id: Optional[int] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    threshold_type: ThresholdType = ThresholdType.ABSOLUTE
    severity: AlertSeverity = AlertSeverity.MEDIUM
    enabled: bool = True
    escalation_minutes: Optional[int] = None
    notification_emails: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.parameter_type = ParameterType(self.parameter_type)
        self.threshold_type = ThresholdType(self.threshold_type)
        self.severity = AlertSeverity(self.severity)

    def validate(self) -> List[str]:
        errors = []
        if not self.parameter_name:
            errors.append("parameter_name is required")
        if self.min_value is None and self.max_value is None:
            errors.append("at least one of min_value or max_value is required")
        if (
            self.min_value is not None
            and self.max_value is not None
            and self.min_value > self.max_value
        ):
            errors.append("min_value must not exceed max_value")
        if self.escalation_minutes is not None and self.escalation_minutes <= 0:
            errors.append("escalation_minutes must be positive")
        return errors

    def to_config(self) -> Dict[str, Any]:
        """Snapshot stored on alerts raised by this threshold."""
        return to_json_safe({
            'id': self.id,
            'parameter_name': self.parameter_name,
            'parameter_type': self.parameter_type,
            'min_value': self.min_value,
            'max_value': self.max_value,
            'threshold_type': self.threshold_type,
            'severity': self.severity,
            'escalation_minutes': self.escalation_minutes,
            'notification_emails': list(self.notification_emails),
        })

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AlertThreshold":
        return cls(
            id=row['id'],
            parameter_name=row['parameter_name'],
            parameter_type=row['parameter_type'],
            building_id=row.get('building_id'),
            equipment_id=row.get('equipment_id'),
            min_value=_optional_float(row.get('min_value')),
            max_value=_optional_float(row.get('max_value')),
            threshold_type=row.get('threshold_type') or ThresholdType.ABSOLUTE,
            severity=row['severity'],
            enabled=bool(row.get('enabled', True)),
            escalation_minutes=_optional_int(row.get('escalation_minutes')),
            notification_emails=list(row.get('notification_emails') or []),
            metadata=parse_json_object(row.get('metadata')),
            created_at=coerce_datetime(row.get('created_at')) or utc_now(),
            updated_at=coerce_datetime(row.get('updated_at')) or utc_now(),
        )


@dataclass(kw_only=True)
class AlertCreate:
    """Input for raising a new alert."""
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    building_id: Optional[int] = None
    equipment_id: Optional[int] = None
    audit_id: Optional[int] = None
    energy_reading_id: Optional[int] = None
    pq_reading_id: Optional[int] = None
    threshold_config: Dict[str, Any] = field(default_factory=dict)
    detected_value: Optional[float] = None
    threshold_value: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> List[str]:
        """Coerce enum fields in place and return every violation found."""
        errors = []
        try:
            self.type = AlertType(self.type)
        except ValueError:
            errors.append(f"Unknown alert type: {self.type}")
        try:
            self.severity = AlertSeverity(self.severity)
        except ValueError:
            errors.append(f"Unknown alert severity: {self.severity}")
        if not self.title or not str(self.title).strip():
            errors.append("title is required")
        if not self.message or not str(self.message).strip():
            errors.append("message is required")
        for name in ('building_id', 'equipment_id', 'audit_id', 'energy_reading_id', 'pq_reading_id'):
            value = getattr(self, name)
            if value is not None and not is_valid_integer(value):
                errors.append(f"{name} must be a valid integer")
        return errors


@dataclass(kw_only=True)
class AlertUpdate:
    """Partial update; fields left as None are not touched."""
    status: Optional[AlertStatus] = None
    acknowledged_by: Optional[int] = None
    acknowledged_at: Optional[datetime] = None
    resolved_by: Optional[int] = None
    resolved_at: Optional[datetime] = None
    escalation_level: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None

    def provided_fields(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass(kw_only=True)
class Alert(Entity):
    """
    Alert instance.

    Represents a detected condition and tracks it through acknowledgement,
    escalation and resolution.
    """
    type: AlertType
    severity: AlertSeverity
    status: AlertStatus = AlertStatus.ACTIVE
    title: str
    message: str
    building_id: Optional[int] = None
    equipment_id: Optional[int] = None
    audit_id: Optional[int] = None
    energy_reading_id: Optional[int] = None
    pq_reading_id: Optional[int] = None
    threshold_config: Dict[str, Any] = field(default_factory=dict)
    detected_value: Optional[float] = None
    threshold_value: Optional[float] = None
    escalation_level: int = 0
    notification_sent: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
    acknowledged_by: Optional[int] = None
    acknowledged_at: Optional[datetime] = None
    resolved_by: Optional[int] = None
    resolved_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None
    next_escalation_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.type = AlertType(self.type)
        self.severity = AlertSeverity(self.severity)
        self.status = AlertStatus(self.status)

    @property
    def is_open(self) -> bool:
        """Open alerts can still escalate."""
        return self.status in OPEN_ALERT_STATUSES and self.acknowledged_at is None

    @property
    def room(self) -> str:
        """Realtime room the alert is broadcast to."""
        return str(self.building_id) if self.building_id is not None else "system"

    def can_transition_to(self, status: AlertStatus) -> bool:
        return AlertStatus(status) in ALLOWED_TRANSITIONS[self.status]

    def apply_update(self, update: AlertUpdate, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Apply a partial update and return the column values that changed.

        acknowledged_at and resolved_at are stamped once and never moved.
        Leaving the open states clears any pending escalation deadline.

        Raises:
            InvalidStateTransitionException: If the status move is not allowed
            ValidationException: If escalation_level would decrease
        """
        now = now or utc_now()
        changes: Dict[str, Any] = {}

        if update.status is not None:
            target = AlertStatus(update.status)
            if not self.can_transition_to(target):
                raise InvalidStateTransitionException('Alert', self.status.value, target.value)
            if target != self.status:
                changes['status'] = target
            if target == AlertStatus.ACKNOWLEDGED and self.acknowledged_at is None:
                changes['acknowledged_at'] = update.acknowledged_at or now
            if target == AlertStatus.RESOLVED and self.resolved_at is None:
                changes['resolved_at'] = update.resolved_at or now
            if target == AlertStatus.ESCALATED:
                changes['escalated_at'] = now
            if target in (AlertStatus.ACKNOWLEDGED, AlertStatus.RESOLVED) and self.next_escalation_at is not None:
                changes['next_escalation_at'] = None

        if update.escalation_level is not None:
            if update.escalation_level < self.escalation_level:
                raise ValidationException(
                    "Invalid alert update",
                    [f"escalation_level cannot decrease from {self.escalation_level} to {update.escalation_level}"],
                )
            if update.escalation_level != self.escalation_level:
                changes['escalation_level'] = update.escalation_level

        if update.acknowledged_by is not None and self.acknowledged_by is None:
            changes['acknowledged_by'] = update.acknowledged_by
        if update.resolved_by is not None and self.resolved_by is None:
            changes['resolved_by'] = update.resolved_by
        if update.metadata is not None:
            changes['metadata'] = dict(update.metadata)

        for name, value in changes.items():
            setattr(self, name, value)
        # A repeated request still refreshes updated_at
        if changes or update.provided_fields():
            self.mark_updated(now)
            changes['updated_at'] = now
        return changes

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe representation used for broadcasts."""
        return to_json_safe({f.name: getattr(self, f.name) for f in fields(self)})

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Alert":
        return cls(
            id=row['id'],
            type=row['type'],
            severity=row['severity'],
            status=row['status'],
            title=row['title'],
            message=row['message'],
            building_id=row.get('building_id'),
            equipment_id=row.get('equipment_id'),
            audit_id=row.get('audit_id'),
            energy_reading_id=row.get('energy_reading_id'),
            pq_reading_id=row.get('pq_reading_id'),
            threshold_config=parse_json_object(row.get('threshold_config')),
            detected_value=_optional_float(row.get('detected_value')),
            threshold_value=_optional_float(row.get('threshold_value')),
            escalation_level=int(row.get('escalation_level') or 0),
            notification_sent=bool(row.get('notification_sent')),
            metadata=parse_json_object(row.get('metadata')),
            acknowledged_by=row.get('acknowledged_by'),
            acknowledged_at=coerce_datetime(row.get('acknowledged_at')),
            resolved_by=row.get('resolved_by'),
            resolved_at=coerce_datetime(row.get('resolved_at')),
            escalated_at=coerce_datetime(row.get('escalated_at')),
            next_escalation_at=coerce_datetime(row.get('next_escalation_at')),
            created_at=coerce_datetime(row.get('created_at')) or utc_now(),
            updated_at=coerce_datetime(row.get('updated_at')) or utc_now(),
        )


@dataclass(frozen=True)
class AlertFilters:
    """Optional filters for listing open alerts."""
    building_id: Optional[int] = None
    equipment_id: Optional[int] = None
    type: Optional[AlertType] = None
    severity: Optional[AlertSeverity] = None
