# Application Services
from .alert_service import AlertService, NEW_ALERT_EVENT, STATUS_CHANGED_EVENT
from .escalation_scheduler import EscalationScheduler
from .notification_service import NotificationService
from .job_processors import (
    JobProcessor,
    AnalyticsProcessor,
    AlertMonitoringProcessor,
    ComplianceCheckProcessor,
    MaintenancePredictionProcessor,
    ForecastGenerationProcessor,
    build_default_processors,
)
from .job_queue import BackgroundJobProcessor

__all__ = [
    'AlertService',
    'NEW_ALERT_EVENT',
    'STATUS_CHANGED_EVENT',
    'EscalationScheduler',
    'NotificationService',
    'JobProcessor',
    'AnalyticsProcessor',
    'AlertMonitoringProcessor',
    'ComplianceCheckProcessor',
    'MaintenancePredictionProcessor',
    'ForecastGenerationProcessor',
    'build_default_processors',
    'BackgroundJobProcessor',
]
