"""
Service wiring.

Builds the repositories, services and workers from settings so the
worker entry point and tests share one composition.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from .application.interfaces import AnalyticsService, CacheBackend, RealtimePublisher
from .application.services import (
    AlertService,
    BackgroundJobProcessor,
    EscalationScheduler,
    NotificationService,
    build_default_processors,
)
from .config import AppSettings, get_settings
from .domain.entities import NotificationChannelType, build_escalation_rules
from .infrastructure.cache import Cache, PubSubManager
from .infrastructure.database import DatabaseManager, SQLAlchemyDataAccess
from .infrastructure.database.repositories import (
    AlertRepository,
    FacilityRepository,
    JobRepository,
    ThresholdRepository,
)
from .infrastructure.external import LoggingChannel, SMTPEmailChannel
from .infrastructure.messaging import RedisRealtimePublisher
from .workers import EscalationWorker, WorkerManager


@dataclass
class ServiceContainer:
    """Everything the workers need, built once per process."""
    settings: AppSettings
    data_access: SQLAlchemyDataAccess
    alert_repository: AlertRepository
    threshold_repository: ThresholdRepository
    job_repository: JobRepository
    facility_repository: FacilityRepository
    notification_service: NotificationService
    escalation_scheduler: EscalationScheduler
    alert_service: AlertService
    job_processor: BackgroundJobProcessor
    escalation_worker: EscalationWorker
    worker_manager: WorkerManager


def build_notification_service(settings: AppSettings) -> NotificationService:
    """Email goes over SMTP; the other channels are log-only when enabled."""
    notifications = settings.notifications
    senders = [SMTPEmailChannel(notifications)]
    if notifications.sms_enabled:
        senders.append(LoggingChannel(NotificationChannelType.SMS))
    if notifications.push_enabled:
        senders.append(LoggingChannel(NotificationChannelType.PUSH))
    if notifications.webhook_enabled:
        senders.append(LoggingChannel(NotificationChannelType.WEBHOOK))
    return NotificationService(senders)


def build_container(
    settings: Optional[AppSettings] = None,
    engine: Optional[AsyncEngine] = None,
    cache: Optional[CacheBackend] = None,
    publisher: Optional[RealtimePublisher] = None,
    analytics: Optional[AnalyticsService] = None,
) -> ServiceContainer:
    """
    Wire up the service graph.

    Args:
        settings: Application settings, defaults to get_settings().
        engine: Database engine, defaults to the shared engine.
        cache: Job status cache, defaults to a Redis cache.
        publisher: Realtime publisher, defaults to Redis pub/sub.
        analytics: Optional analytics engine for analysis jobs.
    """
    settings = settings or get_settings()
    engine = engine or DatabaseManager.get_engine(settings)
    key_prefix = settings.redis.key_prefix

    data_access = SQLAlchemyDataAccess(engine)
    alert_repository = AlertRepository(data_access)
    threshold_repository = ThresholdRepository(data_access)
    job_repository = JobRepository(data_access)
    facility_repository = FacilityRepository(data_access)

    if cache is None:
        cache = Cache(prefix=key_prefix)
    if publisher is None:
        publisher = RedisRealtimePublisher(PubSubManager(), channel_prefix=key_prefix)

    alerting = settings.alerting
    notification_service = build_notification_service(settings)
    escalation_scheduler = EscalationScheduler(alert_repository, batch_size=alerting.escalation_batch_size)
    alert_service = AlertService(
        alert_repository,
        threshold_repository,
        publisher,
        notification_service,
        escalation_scheduler,
        facility_repo=facility_repository,
        escalation_rules=build_escalation_rules(
            critical_minutes=alerting.critical_escalation_minutes,
            high_minutes=alerting.high_escalation_minutes,
            medium_minutes=alerting.medium_escalation_minutes,
        ),
        duplicate_window_minutes=alerting.duplicate_window_minutes,
    )

    jobs = settings.jobs
    job_processor = BackgroundJobProcessor(
        job_repository,
        cache=cache,
        processors=build_default_processors(facility_repository, alert_service, analytics),
        facility_repo=facility_repository,
        poll_interval=jobs.poll_interval_seconds,
        max_concurrent_jobs=jobs.max_concurrent_jobs,
        status_cache_ttl=jobs.status_cache_ttl_seconds,
        state_cache_ttl=jobs.state_cache_ttl_seconds,
        stats_window=timedelta(hours=jobs.stats_window_hours),
        shutdown_timeout=jobs.shutdown_timeout_seconds,
    )
    escalation_worker = EscalationWorker(alert_service, poll_interval=alerting.escalation_sweep_interval_seconds)

    return ServiceContainer(
        settings=settings,
        data_access=data_access,
        alert_repository=alert_repository,
        threshold_repository=threshold_repository,
        job_repository=job_repository,
        facility_repository=facility_repository,
        notification_service=notification_service,
        escalation_scheduler=escalation_scheduler,
        alert_service=alert_service,
        job_processor=job_processor,
        escalation_worker=escalation_worker,
        worker_manager=WorkerManager(job_processor, escalation_worker),
    )
