"""
Parameter schemas and validation for background job types.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..entities.base import is_valid_integer
from ..entities.job import JobType
from ..exceptions import ValidationException


@dataclass(frozen=True)
class JobSchema:
    required: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()


JOB_SCHEMAS: Dict[JobType, JobSchema] = {
    JobType.ANALYTICS_PROCESSING: JobSchema(
        required=('building_id', 'start_date', 'end_date'),
        optional=('analysis_types', 'equipment_id'),
    ),
    JobType.ALERT_MONITORING: JobSchema(
        required=('building_id',),
        optional=('monitoring_types', 'thresholds'),
    ),
    JobType.COMPLIANCE_CHECK: JobSchema(
        required=('audit_id',),
        optional=('check_types', 'standards'),
    ),
    JobType.MAINTENANCE_PREDICTION: JobSchema(
        required=(),
        optional=('building_id', 'equipment_id'),
    ),
    JobType.FORECAST_GENERATION: JobSchema(
        required=('building_id',),
        optional=('forecast_days', 'forecast_types'),
    ),
}

INTEGER_FIELDS = ('building_id', 'equipment_id', 'audit_id')
DATE_FIELDS = ('start_date', 'end_date')


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)

    def raise_if_invalid(self, message: str = "Job validation failed") -> None:
        if not self.valid:
            raise ValidationException(message, self.errors)


def parse_date(value: Any) -> Optional[datetime]:
    """Parse an ISO date or datetime; returns None if it cannot be read."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def coerce_job_type(job_type: Union[JobType, str]) -> Optional[JobType]:
    try:
        return JobType(job_type)
    except ValueError:
        return None


def validate_job_parameters(
    job_type: Union[JobType, str],
    parameters: Optional[Mapping[str, Any]],
) -> ValidationResult:
    """
    Validate job parameters against the schema for the job type.

    Every violation is collected; nothing stops at the first error.

    Args:
        job_type: Job type or its string value
        parameters: Decoded job parameters

    Returns:
        ValidationResult with all errors found
    """
    errors: List[str] = []
    resolved = coerce_job_type(job_type)
    if resolved is None:
        return ValidationResult(valid=False, errors=[f"Unknown job type: {job_type}"])

    if parameters is None:
        parameters = {}
    if not isinstance(parameters, Mapping):
        return ValidationResult(valid=False, errors=["Job parameters must be an object"])

    schema = JOB_SCHEMAS[resolved]
    for name in schema.required:
        if parameters.get(name) is None:
            errors.append(f"Missing required parameter: {name}")

    for name in INTEGER_FIELDS:
        value = parameters.get(name)
        if value is not None and not is_valid_integer(value):
            errors.append(f"{name} must be a valid integer")

    parsed_dates = {}
    for name in DATE_FIELDS:
        value = parameters.get(name)
        if value is None:
            continue
        parsed = parse_date(value)
        if parsed is None:
            errors.append(f"{name} must be a valid date")
        else:
            parsed_dates[name] = parsed

    start, end = parsed_dates.get('start_date'), parsed_dates.get('end_date')
    if start is not None and end is not None and end < start:
        errors.append("end_date must not be before start_date")

    return ValidationResult(valid=not errors, errors=errors)
