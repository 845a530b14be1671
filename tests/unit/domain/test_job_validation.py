"""
Unit tests for job parameter validation.
"""
from datetime import date

import pytest

from energy_audit.domain.entities import JobType
from energy_audit.domain.exceptions import ValidationException
from energy_audit.domain.services import validate_job_parameters


class TestValidateJobParameters:

    def test_valid_analytics_parameters(self):
        result = validate_job_parameters(JobType.ANALYTICS_PROCESSING, {
            "building_id": 5,
            "start_date": "2024-01-01",
            "end_date": "2024-01-31",
        })

        assert result.valid
        assert result.errors == []

    def test_reports_every_missing_parameter(self):
        result = validate_job_parameters("analytics_processing", {"building_id": 5})

        assert not result.valid
        assert "Missing required parameter: start_date" in result.errors
        assert "Missing required parameter: end_date" in result.errors

    def test_null_required_value_counts_as_missing(self):
        result = validate_job_parameters(JobType.COMPLIANCE_CHECK, {"audit_id": None})

        assert result.errors == ["Missing required parameter: audit_id"]

    def test_integer_fields(self):
        result = validate_job_parameters(JobType.ALERT_MONITORING, {"building_id": "abc"})

        assert result.errors == ["building_id must be a valid integer"]

    def test_integral_string_is_accepted(self):
        assert validate_job_parameters(JobType.FORECAST_GENERATION, {"building_id": "12"}).valid

    def test_bad_date(self):
        result = validate_job_parameters(JobType.ANALYTICS_PROCESSING, {
            "building_id": 5,
            "start_date": "not a date",
            "end_date": date(2024, 1, 31),
        })

        assert result.errors == ["start_date must be a valid date"]

    def test_end_before_start(self):
        result = validate_job_parameters(JobType.ANALYTICS_PROCESSING, {
            "building_id": 5,
            "start_date": "2024-02-01",
            "end_date": "2024-01-01T00:00:00Z",
        })

        assert result.errors == ["end_date must not be before start_date"]

    def test_maintenance_prediction_has_no_required_parameters(self):
        assert validate_job_parameters(JobType.MAINTENANCE_PREDICTION, {}).valid

    def test_unknown_job_type(self):
        result = validate_job_parameters("report_generation", {})

        assert result.errors == ["Unknown job type: report_generation"]

    def test_parameters_must_be_a_mapping(self):
        result = validate_job_parameters(JobType.ALERT_MONITORING, ["building_id"])

        assert result.errors == ["Job parameters must be an object"]

    def test_raise_if_invalid(self):
        result = validate_job_parameters(JobType.COMPLIANCE_CHECK, {})

        with pytest.raises(ValidationException) as exc_info:
            result.raise_if_invalid()

        assert exc_info.value.errors == ["Missing required parameter: audit_id"]
        assert "audit_id" in str(exc_info.value)
