"""
Background job queue.

Jobs are persisted as pending rows and picked up by a polling loop that
runs at most max_concurrent_jobs at a time. Job status is mirrored into
the cache so status polling does not hit the database.
"""
import asyncio
import logging
from datetime import date, timedelta
from functools import partial
from typing import Any, Dict, List, Mapping, Optional, Set, Union

from .job_processors import JobProcessor
from ..interfaces import CacheBackend
from ...domain.entities import (
    BackgroundJob,
    JobStatus,
    JobType,
    is_valid_integer,
    parse_json_object,
    utc_now,
)
from ...domain.exceptions import (
    ProcessorMissingException,
    TransientStoreException,
    ValidationException,
)
from ...domain.services.job_validation import coerce_job_type, validate_job_parameters
from ...infrastructure.database.repositories import FacilityRepository, JobRepository

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_JOBS = 3
RECENT_JOBS_LIMIT = 10
INTERRUPTED_BY_SHUTDOWN = "Interrupted by shutdown"
INTERRUPTED_AT_STARTUP = "Interrupted before completion; found running at startup"


def _job_cache_key(job_id: int) -> str:
    return f"job:{job_id}"


class BackgroundJobProcessor:
    """
    Persistent job queue with bounded concurrency.

    Provides:
    - Job creation with parameter validation
    - Polling loop admitting pending jobs oldest first
    - Progress reporting and cached status lookups
    - Processing statistics
    """

    def __init__(
        self,
        job_repo: JobRepository,
        cache: Optional[CacheBackend] = None,
        processors: Optional[Mapping[JobType, JobProcessor]] = None,
        facility_repo: Optional[FacilityRepository] = None,
        poll_interval: float = 10.0,
        max_concurrent_jobs: int = DEFAULT_MAX_CONCURRENT_JOBS,
        status_cache_ttl: int = 300,
        state_cache_ttl: int = 3600,
        stats_window: timedelta = timedelta(hours=24),
        shutdown_timeout: float = 30.0,
    ):
        """
        Initialize the job processor.

        Args:
            job_repo: Job persistence.
            cache: Status cache; caching is skipped when None.
            processors: Processor per job type.
            facility_repo: Used to build sample test jobs.
            poll_interval: Seconds between queue checks.
            max_concurrent_jobs: Upper bound on jobs running at once.
            status_cache_ttl: Seconds a status lookup stays cached.
            state_cache_ttl: Seconds a state written by the queue stays cached.
            stats_window: Period covered by get_processing_stats().
            shutdown_timeout: Seconds stop() waits for in-flight jobs.

        Raises:
            ValueError: If max_concurrent_jobs is not a positive integer.
        """
        if (
            isinstance(max_concurrent_jobs, bool)
            or not isinstance(max_concurrent_jobs, int)
            or max_concurrent_jobs <= 0
        ):
            raise ValueError(f"max_concurrent_jobs must be a positive integer, got {max_concurrent_jobs!r}")

        self._jobs = job_repo
        self._cache = cache
        self._processors: Dict[JobType, JobProcessor] = dict(processors or {})
        self._facility = facility_repo

        self.poll_interval = poll_interval
        self.max_concurrent_jobs = max_concurrent_jobs
        self._status_cache_ttl = status_cache_ttl
        self._state_cache_ttl = state_cache_ttl
        self._stats_window = stats_window
        self._shutdown_timeout = shutdown_timeout

        # State
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()
        self._in_flight: Set[int] = set()
        self._in_flight_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

        # Stats
        self._jobs_completed = 0
        self._jobs_failed = 0
        self._last_check_time = None

    def register_processor(self, processor: JobProcessor) -> None:
        self._processors[processor.job_type] = processor

    def get_processor(self, job_type: JobType) -> JobProcessor:
        processor = self._processors.get(job_type)
        if processor is None:
            raise ProcessorMissingException(job_type.value)
        return processor

    @property
    def in_flight(self) -> Set[int]:
        return set(self._in_flight)

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Job Creation & Lookup
    # =========================================================================

    async def create_job(
        self,
        job_type: Union[JobType, str],
        building_id: Optional[int] = None,
        equipment_id: Optional[int] = None,
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> int:
        """
        Validate and enqueue a job.

        Args:
            job_type: Job type or its string value.
            building_id: Building the job targets; merged into parameters.
            equipment_id: Equipment the job targets; merged into parameters.
            parameters: Type-specific parameters.

        Returns:
            Id of the pending job.

        Raises:
            ValidationException: With every problem found in the input.
        """
        if parameters is not None and not isinstance(parameters, Mapping):
            raise ValidationException("Job validation failed", ["Job parameters must be an object"])

        job_parameters = dict(parameters or {})
        if building_id is not None:
            job_parameters['building_id'] = building_id
        if equipment_id is not None:
            job_parameters['equipment_id'] = equipment_id

        validate_job_parameters(job_type, job_parameters).raise_if_invalid()
        resolved_type = coerce_job_type(job_type)

        await self._jobs.ensure_table()

        job = BackgroundJob(
            job_type=resolved_type,
            building_id=self._optional_int(job_parameters.get('building_id')),
            equipment_id=self._optional_int(job_parameters.get('equipment_id')),
            job_parameters=job_parameters,
        )
        job = await self._jobs.create(job)

        await self._cache_set(job.id, job.to_dict(), self._state_cache_ttl)

        logger.info(f"Job {job.id} ({resolved_type.value}) queued")
        return job.id

    async def create_test_job(self, job_type: Union[JobType, str]) -> int:
        """
        Enqueue a job of the given type with sample parameters drawn from
        existing buildings, audits and equipment.
        """
        resolved_type = coerce_job_type(job_type)
        if resolved_type is None:
            raise ValidationException("Job validation failed", [f"Unknown job type: {job_type}"])

        building_id = await self._sample_id("buildings", "first_building_id")

        if resolved_type == JobType.ANALYTICS_PROCESSING:
            today = date.today()
            parameters = {
                'building_id': building_id,
                'start_date': (today - timedelta(days=7)).isoformat(),
                'end_date': today.isoformat(),
                'analysis_types': ['efficiency'],
            }
        elif resolved_type == JobType.ALERT_MONITORING:
            parameters = {'building_id': building_id}
        elif resolved_type == JobType.COMPLIANCE_CHECK:
            parameters = {'audit_id': await self._sample_id("audits", "first_audit_id")}
        elif resolved_type == JobType.MAINTENANCE_PREDICTION:
            equipment = None
            if self._facility is not None and await self._facility.has_table("equipment"):
                equipment = await self._facility.first_equipment()
            if equipment:
                parameters = {'equipment_id': equipment['id'], 'building_id': equipment['building_id']}
            else:
                parameters = {'building_id': building_id}
        else:
            parameters = {'building_id': building_id, 'forecast_days': 7}

        return await self.create_job(resolved_type, parameters=parameters)

    async def _sample_id(self, table_name: str, finder: str) -> int:
        if self._facility is None or not await self._facility.has_table(table_name):
            return 1
        found = await getattr(self._facility, finder)()
        return found if found is not None else 1

    async def get_job_status(self, job_id: int) -> Optional[BackgroundJob]:
        """
        Current state of a job, from the cache when possible.

        Returns:
            The job, or None if it does not exist.
        """
        cached = await self._cache_get(job_id)
        if cached:
            return BackgroundJob.from_row(cached)

        job = await self._jobs.get_by_id(job_id)
        if job is None:
            return None

        await self._cache_set(job_id, job.to_dict(), self._status_cache_ttl)
        return job

    async def cancel_job(self, job_id: int) -> bool:
        """Cancel a job that has not started yet."""
        cancelled = await self._jobs.cancel(job_id, utc_now())
        if cancelled:
            await self._refresh_cache(job_id)
        return cancelled

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the polling loop."""
        if self._running:
            logger.warning("Background job processor already running")
            return

        logger.info(
            f"Starting background job processor "
            f"(interval {self.poll_interval}s, max {self.max_concurrent_jobs} concurrent jobs)"
        )
        await self._jobs.ensure_table()
        interrupted = await self._jobs.fail_running(INTERRUPTED_AT_STARTUP, utc_now())
        if interrupted:
            logger.warning(f"Marked {interrupted} job(s) left running by a previous run as failed")

        self._running = True
        self._shutdown_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="background_job_processor")

    async def stop(self) -> None:
        """Stop polling and wait for in-flight jobs up to the shutdown timeout."""
        if not self._running:
            return

        logger.info("Stopping background job processor")
        self._running = False
        self._shutdown_event.set()

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._tasks:
            done, pending = await asyncio.wait(set(self._tasks), timeout=self._shutdown_timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Cancelled {len(pending)} job(s) still running at shutdown")
                await asyncio.wait(pending)

        logger.info(
            f"Background job processor stopped. "
            f"Completed: {self._jobs_completed}, Failed: {self._jobs_failed}"
        )

    async def _run_loop(self) -> None:
        """Main polling loop."""
        logger.debug("Background job loop started")

        while self._running:
            try:
                self._last_check_time = utc_now()
                await self.process_pending_jobs()

                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self.poll_interval,
                    )
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in background job loop: {e}")
                await asyncio.sleep(min(self.poll_interval, 5))

        logger.debug("Background job loop ended")

    # =========================================================================
    # Processing
    # =========================================================================

    async def process_pending_jobs(self) -> List[int]:
        """
        Admit pending jobs up to the free capacity, oldest first.

        Returns:
            Ids of the jobs dispatched on this tick.
        """
        async with self._in_flight_lock:
            in_flight = len(self._in_flight)
        capacity = self.max_concurrent_jobs - in_flight
        if capacity <= 0:
            return []

        await self._jobs.ensure_table()
        # Jobs still in flight may not be claimed yet and would be listed again
        candidates = await self._jobs.get_pending(capacity + in_flight)

        admitted: List[BackgroundJob] = []
        async with self._in_flight_lock:
            for job in candidates:
                if len(self._in_flight) >= self.max_concurrent_jobs:
                    break
                if job.id in self._in_flight:
                    continue
                self._in_flight.add(job.id)
                admitted.append(job)

        for job in admitted:
            task = asyncio.create_task(self._run_job(job), name=f"background_job_{job.id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        if admitted:
            logger.debug(f"Dispatched {len(admitted)} job(s): {[job.id for job in admitted]}")
        return [job.id for job in admitted]

    async def _run_job(self, job: BackgroundJob) -> None:
        try:
            await self.process_job(job)
        except Exception as e:
            logger.error(f"Unhandled error processing job {job.id}: {e}")
        finally:
            async with self._in_flight_lock:
                self._in_flight.discard(job.id)

    async def process_job(self, job: BackgroundJob) -> None:
        """
        Run one job through its processor and record the outcome.

        Failures of any kind end with the job marked failed; nothing is
        raised to the caller for a processor error.
        """
        try:
            processor = self.get_processor(job.job_type)
        except ProcessorMissingException as e:
            logger.error(str(e))
            await self._fail_job(job.id, f"No processor available for job type {job.job_type.value}")
            return

        try:
            parameters = parse_json_object(job.job_parameters)
        except ValueError as e:
            await self._fail_job(job.id, f"Invalid job parameters: {e}")
            return

        validation = validate_job_parameters(job.job_type, parameters)
        if not validation.valid:
            await self._fail_job(job.id, str(ValidationException("Job validation failed", validation.errors)))
            return

        now = utc_now()
        if not await self._jobs.mark_running(job.id, now):
            logger.debug(f"Job {job.id} was claimed elsewhere, skipping")
            return
        job.job_parameters = parameters
        job.mark_running(now)
        await self._cache_set(job.id, job.to_dict(), self._state_cache_ttl)

        logger.info(f"Processing job {job.id} ({job.job_type.value})")

        try:
            result = await processor.process(job, partial(self.update_progress, job.id))
        except asyncio.CancelledError:
            await self._fail_job(job.id, INTERRUPTED_BY_SHUTDOWN)
            raise
        except Exception as e:
            logger.error(f"Job {job.id} failed: {e}")
            await self._fail_job(job.id, str(e) or e.__class__.__name__)
            return

        if await self._jobs.mark_completed(job.id, result, utc_now()):
            self._jobs_completed += 1
        await self._refresh_cache(job.id)

    async def update_progress(self, job_id: int, percentage: float) -> None:
        """
        Record progress for a running job; values lower than the stored
        progress are ignored.
        """
        percentage = max(0.0, min(float(percentage), 100.0))
        try:
            if await self._jobs.update_progress(job_id, percentage, utc_now()):
                await self._refresh_cache(job_id)
        except TransientStoreException as e:
            logger.error(f"Error updating progress for job {job_id}: {e}")

    async def _fail_job(self, job_id: int, error_message: str) -> None:
        if await self._jobs.mark_failed(job_id, error_message, utc_now()):
            self._jobs_failed += 1
        await self._refresh_cache(job_id)

    async def wait_until_idle(self, timeout: Optional[float] = None) -> None:
        """Wait for every dispatched job task to finish."""
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)

    # =========================================================================
    # Status & Statistics
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        return {
            'running': self._running,
            'in_flight_jobs': sorted(self._in_flight),
            'max_concurrent_jobs': self.max_concurrent_jobs,
            'poll_interval': self.poll_interval,
            'job_types': [job_type.value for job_type in self._processors],
            'jobs_completed': self._jobs_completed,
            'jobs_failed': self._jobs_failed,
            'last_check_time': self._last_check_time.isoformat() if self._last_check_time else None,
        }

    async def get_processing_stats(self) -> Dict[str, Any]:
        """
        Job statistics over the stats window.

        Returns:
            Counts by status, average processing time, recent jobs and
            the processor status.
        """
        since = utc_now() - self._stats_window

        counts = await self._jobs.count_by_status(since)
        durations = await self._jobs.processing_durations(since)
        recent = await self._jobs.get_recent(RECENT_JOBS_LIMIT)

        return {
            'period_hours': self._stats_window.total_seconds() / 3600,
            'status_counts': {status.value: counts.get(status.value, 0) for status in JobStatus},
            'total_jobs': sum(counts.values()),
            'average_processing_seconds': (
                round(sum(durations) / len(durations), 2) if durations else None
            ),
            'recent_jobs': [job.to_dict() for job in recent],
            'processor': self.get_status(),
        }

    async def test_database_connection(self) -> Dict[str, Any]:
        """Check the job store, creating the jobs table if it is missing."""
        try:
            created = await self._jobs.ensure_table()
            pending = await self._jobs.count_pending()
        except TransientStoreException as e:
            logger.error(f"Job store health check failed: {e}")
            return {'connected': False, 'error': str(e)}

        return {
            'connected': True,
            'table_created': created,
            'pending_jobs': pending,
        }

    # =========================================================================
    # Cache helpers
    # =========================================================================

    async def _refresh_cache(self, job_id: int) -> None:
        if self._cache is None:
            return
        try:
            job = await self._jobs.get_by_id(job_id)
        except TransientStoreException as e:
            logger.warning(f"Could not reload job {job_id} for caching: {e}")
            return
        if job is not None:
            await self._cache_set(job_id, job.to_dict(), self._state_cache_ttl)

    async def _cache_set(self, job_id: int, value: Dict[str, Any], ttl: int) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.set(_job_cache_key(job_id), value, ttl)
        except Exception as e:
            logger.warning(f"Failed to cache job {job_id}: {e}")

    async def _cache_get(self, job_id: int) -> Optional[Dict[str, Any]]:
        if self._cache is None:
            return None
        try:
            cached = await self._cache.get(_job_cache_key(job_id))
        except Exception as e:
            logger.warning(f"Failed to read cached job {job_id}: {e}")
            return None
        return cached if isinstance(cached, dict) and 'job_type' in cached else None

    @staticmethod
    def _optional_int(value: Any) -> Optional[int]:
        return int(value) if value is not None and is_valid_integer(value) else None
