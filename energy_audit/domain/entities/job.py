"""
Background job domain entities.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from .base import Entity, coerce_datetime, to_json_safe, utc_now
from ..exceptions import InvalidStateTransitionException


class JobType(str, Enum):
    """Kinds of background work the queue can run."""
    ANALYTICS_PROCESSING = "analytics_processing"
    ALERT_MONITORING = "alert_monitoring"
    COMPLIANCE_CHECK = "compliance_check"
    MAINTENANCE_PREDICTION = "maintenance_prediction"
    FORECAST_GENERATION = "forecast_generation"


class JobStatus(str, Enum):
    """Background job lifecycle status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(kw_only=True)
class BackgroundJob(Entity):
    """
    Persisted unit of asynchronous work.

    Lifecycle: pending -> running -> completed | failed. A pending job can
    also fail outright (no processor, bad parameters) or be cancelled.
    """
    job_type: JobType
    status: JobStatus = JobStatus.PENDING
    building_id: Optional[int] = None
    equipment_id: Optional[int] = None
    # Left as the raw string when a stored blob cannot be decoded.
    job_parameters: Union[Dict[str, Any], str] = field(default_factory=dict)
    progress_percentage: float = 0.0
    result_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.job_type = JobType(self.job_type)
        self.status = JobStatus(self.status)

    def mark_running(self, now: Optional[datetime] = None) -> None:
        if self.status != JobStatus.PENDING:
            raise InvalidStateTransitionException('BackgroundJob', self.status.value, JobStatus.RUNNING.value)
        now = now or utc_now()
        self.status = JobStatus.RUNNING
        self.started_at = now
        self.progress_percentage = 0.0
        self.mark_updated(now)

    def to_dict(self) -> Dict[str, Any]:
        return to_json_safe({
            'id': self.id,
            'job_type': self.job_type,
            'status': self.status,
            'building_id': self.building_id,
            'equipment_id': self.equipment_id,
            'job_parameters': self.job_parameters,
            'progress_percentage': self.progress_percentage,
            'result_data': self.result_data,
            'error_message': self.error_message,
            'started_at': self.started_at,
            'completed_at': self.completed_at,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        })

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "BackgroundJob":
        """Build a job from a store row or a cached snapshot."""
        return cls(
            id=row['id'],
            job_type=row['job_type'],
            status=row['status'],
            building_id=row.get('building_id'),
            equipment_id=row.get('equipment_id'),
            job_parameters=_decode_parameters(row.get('job_parameters')),
            progress_percentage=float(row.get('progress_percentage') or 0.0),
            result_data=row.get('result_data'),
            error_message=row.get('error_message'),
            started_at=coerce_datetime(row.get('started_at')),
            completed_at=coerce_datetime(row.get('completed_at')),
            created_at=coerce_datetime(row.get('created_at')) or utc_now(),
            updated_at=coerce_datetime(row.get('updated_at')) or utc_now(),
        )


def _decode_parameters(value: Any) -> Union[Dict[str, Any], str]:
    if value is None:
        return {}
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            return value
        return decoded if isinstance(decoded, dict) else value
    return dict(value)
