"""
Worker process entry point.

Run with ``python -m energy_audit.workers``. Starts the background job
queue and the escalation sweep and runs until SIGINT or SIGTERM.
"""
import asyncio
import logging
import signal

from ..config import get_settings
from ..dependencies import build_container
from ..infrastructure.cache import RedisManager
from ..infrastructure.database import DatabaseManager, init_db
from ..logging_config import configure_logging

logger = logging.getLogger(__name__)


def setup_signal_handlers(shutdown_event: asyncio.Event, loop: asyncio.AbstractEventLoop) -> None:
    """Setup signal handlers for graceful shutdown."""
    def signal_handler():
        logger.info("Received shutdown signal")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(signal_handler))


async def main() -> None:
    """Main entry point."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    logger.info(f"Starting {settings.app_name} workers v{settings.app_version} ({settings.environment})")

    RedisManager.configure(settings.redis.url)
    engine = DatabaseManager.get_engine(settings)
    container = build_container(settings, engine=engine)

    shutdown_event = asyncio.Event()
    setup_signal_handlers(shutdown_event, asyncio.get_running_loop())

    try:
        await init_db(engine)
        await container.worker_manager.start_all()
        await shutdown_event.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        await container.worker_manager.stop_all()
        await RedisManager.close()
        await DatabaseManager.close()
        logger.info("Workers shut down")


def run() -> None:
    """Console script entry."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
