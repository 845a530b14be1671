"""
Shared pytest fixtures for energy audit tests.

Provides fixtures for:
- SQLite database (async SQLAlchemy + aiosqlite)
- Repositories and services wired to the test database
- In-memory cache and recording notification doubles
"""
import json
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from energy_audit.application.interfaces import CacheBackend, NotificationChannelSender
from energy_audit.application.services import (
    AlertService,
    EscalationScheduler,
    NotificationService,
)
from energy_audit.domain.entities import NotificationChannelType
from energy_audit.infrastructure.database import (
    SQLAlchemyDataAccess,
    external_metadata,
    metadata,
)
from energy_audit.infrastructure.database.repositories import (
    AlertRepository,
    FacilityRepository,
    JobRepository,
    ThresholdRepository,
)


# ============================================================================
# Test Doubles
# ============================================================================

class InMemoryCache(CacheBackend):
    """Cache double that round-trips values through JSON like Redis does."""

    def __init__(self):
        self.store: Dict[str, Any] = {}
        self.ttls: Dict[str, Optional[int]] = {}

    async def get(self, key: str) -> Optional[Any]:
        value = self.store.get(key)
        return json.loads(value) if value is not None else None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        self.store[key] = json.dumps(value, default=str)
        self.ttls[key] = ttl
        return True

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None


class RecordingSender(NotificationChannelSender):
    """Notification channel that records what it was asked to send."""

    def __init__(self, channel_type: NotificationChannelType = NotificationChannelType.EMAIL):
        self.channel_type = channel_type
        self.sent: List[Tuple[int, int]] = []

    async def send(self, alert, level) -> bool:
        self.sent.append((alert.id, level.level))
        return True


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def engine(tmp_path):
    """
    SQLite database with the alert and job tables created.

    Each test gets its own database file.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'energy_audit.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def facility_tables(engine):
    """Create the read-only facility tables on the test database."""
    async with engine.begin() as conn:
        await conn.run_sync(external_metadata.create_all)
    return engine


@pytest.fixture
def data_access(engine) -> SQLAlchemyDataAccess:
    return SQLAlchemyDataAccess(engine)


@pytest.fixture
def alert_repo(data_access) -> AlertRepository:
    return AlertRepository(data_access)


@pytest.fixture
def threshold_repo(data_access) -> ThresholdRepository:
    return ThresholdRepository(data_access)


@pytest.fixture
def job_repo(data_access) -> JobRepository:
    return JobRepository(data_access)


@pytest.fixture
def facility_repo(data_access) -> FacilityRepository:
    return FacilityRepository(data_access)


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
def publisher():
    """Realtime publisher mock; inspect emit_to_building calls."""
    publisher = AsyncMock()
    publisher.emit_to_building = AsyncMock()
    return publisher


@pytest.fixture
def email_sender() -> RecordingSender:
    return RecordingSender(NotificationChannelType.EMAIL)


@pytest.fixture
def notification_service(email_sender) -> NotificationService:
    return NotificationService([email_sender])


@pytest.fixture
def alert_service(
    alert_repo,
    threshold_repo,
    facility_repo,
    publisher,
    notification_service,
) -> AlertService:
    """AlertService backed by the SQLite test database."""
    return AlertService(
        alert_repo,
        threshold_repo,
        publisher,
        notification_service,
        EscalationScheduler(alert_repo),
        facility_repo=facility_repo,
    )
