"""
Database connection management.

Provides the async SQLAlchemy engine and the metadata that the alerting
and job tables are registered on.
"""
import logging
from typing import Optional

from sqlalchemy import MetaData, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ...config import AppSettings, get_settings

logger = logging.getLogger(__name__)


# Naming convention for database constraints
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Tables owned by this service
metadata = MetaData(naming_convention=NAMING_CONVENTION)

# Tables owned by other services that jobs read from
external_metadata = MetaData()


def create_engine_from_settings(settings: AppSettings) -> AsyncEngine:
    """
    Build an async engine for the configured database.

    Pool sizing only applies to server databases; SQLite URLs (used for
    local runs and tests) get the driver defaults.
    """
    url = settings.database.url
    options = {'echo': settings.database.echo_sql}
    if not url.startswith('sqlite'):
        options.update(
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
            pool_pre_ping=True,  # Verify connections before use
            pool_recycle=3600,   # Recycle connections every hour
        )
    engine = create_async_engine(url, **options)

    if engine.dialect.name == 'postgresql':
        timezone_name = settings.default_timezone

        @event.listens_for(engine.sync_engine, "connect")
        def set_timezone(dbapi_conn, connection_record):
            """Set timezone on new connections."""
            cursor = dbapi_conn.cursor()
            cursor.execute(f"SET timezone = '{timezone_name}'")
            cursor.close()

    return engine


class DatabaseManager:
    """
    Manages the process-wide database engine.
    """

    _engine: Optional[AsyncEngine] = None

    @classmethod
    def get_engine(cls, settings: Optional[AppSettings] = None) -> AsyncEngine:
        """Get or create the async database engine."""
        if cls._engine is None:
            cls._engine = create_engine_from_settings(settings or get_settings())
        return cls._engine

    @classmethod
    async def close(cls) -> None:
        """Close the database engine and all connections."""
        if cls._engine is not None:
            await cls._engine.dispose()
            cls._engine = None


async def init_db(engine: AsyncEngine) -> None:
    """
    Create the alerting and job tables if they are missing.

    Should be called on worker startup.
    """
    from . import tables  # noqa: F401  registers tables on metadata

    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    logger.info("Database tables initialized")


async def health_check(engine: AsyncEngine) -> bool:
    """
    Check database connectivity.

    Returns True if database is accessible.
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Database health check failed: {e}")
        return False
