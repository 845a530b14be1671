"""
Test data factories for the energy audit core.

Provides factory classes for generating test data.
"""
from .alert_factory import AlertDataFactory, AlertThresholdFactory, build_alert, build_alert_create
from .job_factory import JobDataFactory, build_job

__all__ = [
    "AlertDataFactory",
    "AlertThresholdFactory",
    "build_alert",
    "build_alert_create",
    "JobDataFactory",
    "build_job",
]
