"""
Repository for background jobs.

Status moves are conditional updates, so a job can only be claimed once
and terminal states cannot be overwritten.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, insert, select, update

from ..tables import background_jobs
from ....application.interfaces import DataAccess
from ....domain.entities import BackgroundJob, JobStatus, coerce_datetime, to_json_safe

logger = logging.getLogger(__name__)


class JobRepository:
    """
    Repository for background job operations.

    Manages jobs from creation to completion.
    """

    def __init__(self, data_access: DataAccess):
        self._db = data_access

    async def table_exists(self) -> bool:
        return await self._db.table_exists(background_jobs.name)

    async def ensure_table(self) -> bool:
        """
        Create the jobs table if it is missing.

        Returns:
            True if the table had to be created.
        """
        if await self._db.table_exists(background_jobs.name):
            return False
        logger.warning("background_jobs table missing, creating it")
        await self._db.ensure_table(background_jobs)
        return True

    # =========================================================================
    # CRUD Operations
    # =========================================================================

    async def create(self, job: BackgroundJob) -> BackgroundJob:
        """
        Insert a pending job.

        Args:
            job: Job entity without an id.

        Returns:
            The same entity with its id assigned.
        """
        stmt = insert(background_jobs).values({
            'job_type': job.job_type.value,
            'status': job.status.value,
            'building_id': job.building_id,
            'equipment_id': job.equipment_id,
            'job_parameters': to_json_safe(job.job_parameters),
            'progress_percentage': job.progress_percentage,
            'created_at': job.created_at,
            'updated_at': job.updated_at,
        })
        job.id = await self._db.insert(stmt)
        logger.info(f"Created background job {job.id} of type {job.job_type.value}")
        return job

    async def get_by_id(self, job_id: int) -> Optional[BackgroundJob]:
        """
        Get a job by ID.

        Args:
            job_id: Job id.

        Returns:
            BackgroundJob if found, None otherwise.
        """
        row = await self._db.query_one(select(background_jobs).where(background_jobs.c.id == job_id))
        return BackgroundJob.from_row(row) if row else None

    async def get_pending(self, limit: int) -> List[BackgroundJob]:
        """
        Oldest pending jobs first.

        Args:
            limit: Maximum number of jobs to return.
        """
        query = (
            select(background_jobs)
            .where(background_jobs.c.status == JobStatus.PENDING.value)
            .order_by(background_jobs.c.created_at, background_jobs.c.id)
            .limit(limit)
        )
        rows = await self._db.query(query)
        return [BackgroundJob.from_row(row) for row in rows]

    # =========================================================================
    # Status Updates
    # =========================================================================

    async def mark_running(self, job_id: int, now: datetime) -> bool:
        """
        Claim a pending job.

        Returns:
            False if the job was no longer pending.
        """
        stmt = (
            update(background_jobs)
            .where(
                background_jobs.c.id == job_id,
                background_jobs.c.status == JobStatus.PENDING.value,
            )
            .values(
                status=JobStatus.RUNNING.value,
                started_at=now,
                progress_percentage=0.0,
                updated_at=now,
            )
        )
        return await self._db.execute(stmt) == 1

    async def mark_completed(self, job_id: int, result: Optional[Dict[str, Any]], now: datetime) -> bool:
        stmt = (
            update(background_jobs)
            .where(
                background_jobs.c.id == job_id,
                background_jobs.c.status == JobStatus.RUNNING.value,
            )
            .values(
                status=JobStatus.COMPLETED.value,
                progress_percentage=100.0,
                result_data=to_json_safe(result),
                completed_at=now,
                updated_at=now,
            )
        )
        updated = await self._db.execute(stmt) == 1
        if updated:
            logger.info(f"Job {job_id} completed")
        return updated

    async def mark_failed(self, job_id: int, error_message: str, now: datetime) -> bool:
        stmt = (
            update(background_jobs)
            .where(
                background_jobs.c.id == job_id,
                background_jobs.c.status.in_([JobStatus.PENDING.value, JobStatus.RUNNING.value]),
            )
            .values(
                status=JobStatus.FAILED.value,
                error_message=error_message,
                completed_at=now,
                updated_at=now,
            )
        )
        updated = await self._db.execute(stmt) == 1
        if updated:
            logger.warning(f"Job {job_id} failed: {error_message}")
        return updated

    async def fail_running(self, error_message: str, now: datetime) -> int:
        """
        Fail every job still marked running.

        Returns:
            Number of jobs failed.
        """
        stmt = (
            update(background_jobs)
            .where(background_jobs.c.status == JobStatus.RUNNING.value)
            .values(
                status=JobStatus.FAILED.value,
                error_message=error_message,
                completed_at=now,
                updated_at=now,
            )
        )
        return await self._db.execute(stmt)

    async def update_progress(self, job_id: int, percentage: float, now: datetime) -> bool:
        """
        Raise progress of a running job; lower values are ignored.
        """
        stmt = (
            update(background_jobs)
            .where(
                background_jobs.c.id == job_id,
                background_jobs.c.status == JobStatus.RUNNING.value,
                background_jobs.c.progress_percentage <= percentage,
            )
            .values(progress_percentage=percentage, updated_at=now)
        )
        return await self._db.execute(stmt) == 1

    async def cancel(self, job_id: int, now: datetime) -> bool:
        stmt = (
            update(background_jobs)
            .where(
                background_jobs.c.id == job_id,
                background_jobs.c.status == JobStatus.PENDING.value,
            )
            .values(status=JobStatus.CANCELLED.value, updated_at=now)
        )
        cancelled = await self._db.execute(stmt) == 1
        if cancelled:
            logger.info(f"Job {job_id} cancelled")
        return cancelled

    # =========================================================================
    # Statistics
    # =========================================================================

    async def count_by_status(self, since: datetime) -> Dict[str, int]:
        query = (
            select(background_jobs.c.status, func.count().label('job_count'))
            .where(background_jobs.c.created_at >= since)
            .group_by(background_jobs.c.status)
        )
        rows = await self._db.query(query)
        return {row['status']: int(row['job_count']) for row in rows}

    async def count_pending(self) -> int:
        row = await self._db.query_one(
            select(func.count().label('job_count'))
            .select_from(background_jobs)
            .where(background_jobs.c.status == JobStatus.PENDING.value)
        )
        return int(row['job_count']) if row else 0

    async def processing_durations(self, since: datetime) -> List[float]:
        """Seconds between start and completion for jobs created since a time."""
        query = (
            select(background_jobs.c.started_at, background_jobs.c.completed_at)
            .where(
                background_jobs.c.created_at >= since,
                background_jobs.c.started_at.is_not(None),
                background_jobs.c.completed_at.is_not(None),
            )
        )
        rows = await self._db.query(query)
        return [
            (coerce_datetime(row['completed_at']) - coerce_datetime(row['started_at'])).total_seconds()
            for row in rows
        ]

    async def get_recent(self, limit: int = 10) -> List[BackgroundJob]:
        query = (
            select(background_jobs)
            .order_by(background_jobs.c.created_at.desc(), background_jobs.c.id.desc())
            .limit(limit)
        )
        rows = await self._db.query(query)
        return [BackgroundJob.from_row(row) for row in rows]
