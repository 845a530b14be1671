# Domain Services
from .threshold_evaluator import (
    ENERGY_LIMITS,
    EnergyLimits,
    Violation,
    check_power_factor,
    check_power_quality,
    check_voltage,
    evaluate,
    extract_energy_sample,
    format_number,
)
from .job_validation import (
    JOB_SCHEMAS,
    JobSchema,
    ValidationResult,
    coerce_job_type,
    parse_date,
    validate_job_parameters,
)

__all__ = [
    'ENERGY_LIMITS',
    'EnergyLimits',
    'Violation',
    'check_power_factor',
    'check_power_quality',
    'check_voltage',
    'evaluate',
    'extract_energy_sample',
    'format_number',
    'JOB_SCHEMAS',
    'JobSchema',
    'ValidationResult',
    'coerce_job_type',
    'parse_date',
    'validate_job_parameters',
]
