"""
Configuration management for the energy audit alerting and job core.

Uses Pydantic settings for validation and environment variable support.
"""
import logging
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_JOBS = 3


class DatabaseSettings(BaseSettings):
    """PostgreSQL database configuration."""

    model_config = SettingsConfigDict(
        env_prefix='DB_',
        env_file='.env',
        extra='ignore'
    )

    host: str = Field(default='localhost', description='Database host')
    port: int = Field(default=5432, description='Database port')
    name: str = Field(default='energy_audit', description='Database name')
    user: str = Field(default='postgres', description='Database user')
    password: str = Field(default='postgres', description='Database password')
    dsn: Optional[str] = Field(
        default=None,
        description='Full SQLAlchemy URL; overrides host/port/name when set'
    )
    pool_size: int = Field(default=5, description='Connection pool size')
    max_overflow: int = Field(default=10, description='Max overflow connections')
    echo_sql: bool = Field(default=False, description='Echo SQL queries')

    @property
    def url(self) -> str:
        """Build database URL."""
        if self.dsn:
            return self.dsn
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"


class RedisSettings(BaseSettings):
    """Redis configuration."""

    model_config = SettingsConfigDict(
        env_prefix='REDIS_',
        env_file='.env',
        extra='ignore'
    )

    host: str = Field(default='localhost', description='Redis host')
    port: int = Field(default=6379, description='Redis port')
    db: int = Field(default=0, description='Redis database number')
    password: Optional[str] = Field(default=None, description='Redis password')
    ssl: bool = Field(default=False, description='Use SSL connection')
    key_prefix: str = Field(default='energy_audit', description='Prefix for cache keys and channels')

    @property
    def url(self) -> str:
        """Build Redis URL."""
        auth = f":{self.password}@" if self.password else ""
        protocol = "rediss" if self.ssl else "redis"
        return f"{protocol}://{auth}{self.host}:{self.port}/{self.db}"


class NotificationSettings(BaseSettings):
    """Notification channel configuration."""

    model_config = SettingsConfigDict(
        env_prefix='NOTIFICATION_',
        env_file='.env',
        extra='ignore'
    )

    # Email Settings
    email_enabled: bool = Field(default=False)
    smtp_host: str = Field(default='smtp.gmail.com')
    smtp_port: int = Field(default=587)
    smtp_user: Optional[str] = Field(default=None)
    smtp_password: Optional[str] = Field(default=None)
    smtp_from_email: str = Field(default='alerts@energy-audit.local')
    smtp_from_name: str = Field(default='Energy Audit Alerts')

    # Role name -> addresses, e.g. NOTIFICATION_ROLE_RECIPIENTS='{"energy_manager": ["em@site.edu"]}'
    role_recipients: Dict[str, List[str]] = Field(default_factory=dict)

    # Channels without a delivery backend are logged only
    sms_enabled: bool = Field(default=True)
    push_enabled: bool = Field(default=True)
    webhook_enabled: bool = Field(default=True)


class AlertingSettings(BaseSettings):
    """Alert deduplication and escalation configuration."""

    model_config = SettingsConfigDict(
        env_prefix='ALERT_',
        env_file='.env',
        extra='ignore'
    )

    duplicate_window_minutes: int = Field(
        default=60,
        description='Window in which a repeat alert updates the open one instead of inserting'
    )
    critical_escalation_minutes: int = Field(default=5)
    high_escalation_minutes: int = Field(default=15)
    medium_escalation_minutes: int = Field(default=60)
    escalation_sweep_interval_seconds: float = Field(
        default=30.0,
        description='How often due escalations are swept'
    )
    escalation_batch_size: int = Field(default=100)

    @field_validator(
        'duplicate_window_minutes',
        'critical_escalation_minutes',
        'high_escalation_minutes',
        'medium_escalation_minutes',
    )
    @classmethod
    def _positive_minutes(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('must be a positive number of minutes')
        return value


class JobSettings(BaseSettings):
    """Background job queue configuration."""

    model_config = SettingsConfigDict(
        env_prefix='JOB_',
        env_file='.env',
        extra='ignore'
    )

    poll_interval_seconds: float = Field(default=10.0, description='Delay between queue ticks')
    max_concurrent_jobs: int = Field(default=DEFAULT_MAX_CONCURRENT_JOBS)
    status_cache_ttl_seconds: int = Field(default=300)
    state_cache_ttl_seconds: int = Field(default=3600)
    stats_window_hours: int = Field(default=24)
    shutdown_timeout_seconds: float = Field(
        default=30.0,
        description='How long stop() waits for in-flight jobs'
    )

    @field_validator('max_concurrent_jobs', mode='before')
    @classmethod
    def _coerce_max_concurrent_jobs(cls, value):
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            parsed = 0
        if parsed <= 0:
            logger.warning(
                f"Invalid max_concurrent_jobs {value!r}, using default {DEFAULT_MAX_CONCURRENT_JOBS}"
            )
            return DEFAULT_MAX_CONCURRENT_JOBS
        return parsed


class AppSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'
    )

    # Application
    app_name: str = Field(default='Energy Audit Core')
    app_version: str = Field(default='1.0.0')
    debug: bool = Field(default=False)
    environment: str = Field(default='development')  # development, staging, production

    # Logging
    log_level: str = Field(default='INFO')
    log_format: str = Field(default='text')  # json or text

    default_timezone: str = Field(default='Asia/Manila')

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    alerting: AlertingSettings = Field(default_factory=AlertingSettings)
    jobs: JobSettings = Field(default_factory=JobSettings)


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get cached application settings.

    Uses LRU cache to avoid re-reading environment variables on every access.
    """
    return AppSettings()
