# Domain Entities
from .base import (
    Entity,
    coerce_datetime,
    ensure_utc,
    is_valid_integer,
    parse_json_object,
    to_json_safe,
    utc_now,
)
from .alert import (
    AlertType,
    AlertSeverity,
    AlertStatus,
    ParameterType,
    ThresholdType,
    AlertThreshold,
    AlertCreate,
    AlertUpdate,
    AlertFilters,
    Alert,
    ALLOWED_TRANSITIONS,
    OPEN_ALERT_STATUSES,
    SEVERITY_RANK,
)
from .escalation import (
    NotificationChannelType,
    NotificationChannel,
    EscalationLevel,
    EscalationRule,
    DEFAULT_ESCALATION_RULES,
    build_escalation_rules,
)
from .job import (
    JobType,
    JobStatus,
    BackgroundJob,
)

__all__ = [
    # Base
    'Entity',
    'coerce_datetime',
    'ensure_utc',
    'is_valid_integer',
    'parse_json_object',
    'to_json_safe',
    'utc_now',
    # Alerts
    'AlertType',
    'AlertSeverity',
    'AlertStatus',
    'ParameterType',
    'ThresholdType',
    'AlertThreshold',
    'AlertCreate',
    'AlertUpdate',
    'AlertFilters',
    'Alert',
    'ALLOWED_TRANSITIONS',
    'OPEN_ALERT_STATUSES',
    'SEVERITY_RANK',
    # Escalation
    'NotificationChannelType',
    'NotificationChannel',
    'EscalationLevel',
    'EscalationRule',
    'DEFAULT_ESCALATION_RULES',
    'build_escalation_rules',
    # Jobs
    'JobType',
    'JobStatus',
    'BackgroundJob',
]
