# Repository Implementations

from .alert_repository import AlertRepository, ThresholdRepository
from .job_repository import JobRepository
from .facility_repository import FacilityRepository

__all__ = [
    "AlertRepository",
    "ThresholdRepository",
    "JobRepository",
    "FacilityRepository",
]
