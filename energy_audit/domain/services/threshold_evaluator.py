"""
Threshold evaluation for energy and power quality readings.

Pure functions: they take a reading and return the violations found, and
the alert service decides what to raise.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..entities.alert import AlertSeverity, AlertThreshold, AlertType


@dataclass(frozen=True)
class EnergyLimits:
    """Fixed electrical limits for a 230 V / 50 Hz supply."""
    power_factor_min: float = 0.85
    power_factor_severe: float = 0.75
    voltage_nominal: float = 230.0
    voltage_min: float = 207.0
    voltage_max: float = 253.0
    voltage_severe_deviation: float = 0.15
    thd_voltage_max: float = 8.0
    thd_voltage_severe: float = 12.0
    thd_current_max: float = 15.0
    thd_current_severe: float = 20.0
    frequency_nominal: float = 50.0
    frequency_min: float = 49.5
    frequency_max: float = 50.5
    voltage_unbalance_max: float = 3.0
    voltage_unbalance_severe: float = 5.0
    current_unbalance_max: float = 10.0
    current_unbalance_severe: float = 15.0
    # Readings past these bounds are picked up by the monitoring job.
    monitoring_consumption_kwh_max: float = 1000.0


ENERGY_LIMITS = EnergyLimits()

ENERGY_PARAMETERS = ('consumption_kwh', 'demand_kw', 'power_factor')

VOLTAGE_PHASES = ('voltage_l1', 'voltage_l2', 'voltage_l3')


@dataclass(frozen=True)
class Violation:
    """A sample that fell outside its allowed range."""
    parameter: str
    detected_value: float
    threshold_value: float
    message: str
    severity: AlertSeverity
    title: str = ""
    alert_type: AlertType = AlertType.THRESHOLD_EXCEEDED
    metadata: Dict[str, Any] = field(default_factory=dict)


def format_number(value: float) -> str:
    """Render 230.0 as '230' and 0.72 as '0.72'."""
    number = float(value)
    return str(int(number)) if number.is_integer() else str(number)


def evaluate(value: float, threshold: AlertThreshold) -> Optional[Violation]:
    """
    Check a sample against a threshold's bounds.

    The minimum is checked first, so a sample below min is reported as a
    min violation even when a max is also configured.

    Args:
        value: Observed sample
        threshold: Threshold with min and/or max configured

    Returns:
        Violation or None when the sample is within bounds
    """
    if not threshold.enabled:
        return None
    name = threshold.parameter_name
    if threshold.min_value is not None and value < threshold.min_value:
        return Violation(
            parameter=name,
            detected_value=value,
            threshold_value=threshold.min_value,
            severity=threshold.severity,
            message=(
                f"{name} {format_number(value)} is below minimum threshold "
                f"of {format_number(threshold.min_value)}"
            ),
        )
    if threshold.max_value is not None and value > threshold.max_value:
        return Violation(
            parameter=name,
            detected_value=value,
            threshold_value=threshold.max_value,
            severity=threshold.severity,
            message=(
                f"{name} {format_number(value)} exceeds maximum threshold "
                f"of {format_number(threshold.max_value)}"
            ),
        )
    return None


def extract_energy_sample(parameter_name: str, reading: Mapping[str, Any]) -> Optional[float]:
    """
    Pull the sample a threshold refers to out of an energy reading.

    Unknown parameters and missing samples yield None so that an absent
    reading is never mistaken for a zero.
    """
    if parameter_name not in ENERGY_PARAMETERS:
        return None
    value = reading.get(parameter_name)
    if value is None:
        return None
    return float(value)


def check_power_factor(value: Optional[float], limits: EnergyLimits = ENERGY_LIMITS) -> Optional[Violation]:
    if value is None or value >= limits.power_factor_min:
        return None
    severity = AlertSeverity.HIGH if value < limits.power_factor_severe else AlertSeverity.MEDIUM
    return Violation(
        parameter='power_factor',
        detected_value=float(value),
        threshold_value=limits.power_factor_min,
        severity=severity,
        alert_type=AlertType.POWER_QUALITY,
        title="Low Power Factor Detected",
        message=(
            f"Power factor {format_number(value)} is below minimum threshold "
            f"of {format_number(limits.power_factor_min)}"
        ),
    )


def check_voltage(value: float, phase: str, limits: EnergyLimits = ENERGY_LIMITS) -> Optional[Violation]:
    if limits.voltage_min <= value <= limits.voltage_max:
        return None
    deviation = abs(value - limits.voltage_nominal) / limits.voltage_nominal
    return Violation(
        parameter=f"voltage_{phase.lower()}",
        detected_value=float(value),
        threshold_value=limits.voltage_min if value < limits.voltage_nominal else limits.voltage_max,
        severity=AlertSeverity.HIGH if deviation > limits.voltage_severe_deviation else AlertSeverity.MEDIUM,
        alert_type=AlertType.POWER_QUALITY,
        title=f"Voltage Out of Range: Phase {phase}",
        message=(
            f"Voltage {format_number(value)}V is outside acceptable range "
            f"({format_number(limits.voltage_min)}-{format_number(limits.voltage_max)}V)"
        ),
        metadata={'phase': phase},
    )


def _check_upper_limit(
    parameter: str,
    value: Optional[float],
    limit: float,
    severe: float,
    title: str,
    label: str,
) -> Optional[Violation]:
    if value is None or value <= limit:
        return None
    return Violation(
        parameter=parameter,
        detected_value=float(value),
        threshold_value=limit,
        severity=AlertSeverity.HIGH if value > severe else AlertSeverity.MEDIUM,
        alert_type=AlertType.POWER_QUALITY,
        title=title,
        message=f"{label} {format_number(value)}% exceeds limit of {format_number(limit)}%",
    )


def check_power_quality(reading: Mapping[str, Any], limits: EnergyLimits = ENERGY_LIMITS) -> List[Violation]:
    """
    Run every fixed power quality check against one reading.

    Args:
        reading: Mapping with any of voltage_l1..l3, thd_voltage,
            thd_current, frequency, voltage_unbalance, current_unbalance

    Returns:
        Violations in check order; empty when the reading is clean
    """
    violations: List[Violation] = []

    for index, key in enumerate(VOLTAGE_PHASES, start=1):
        value = reading.get(key)
        if value is None:
            continue
        violation = check_voltage(float(value), f"L{index}", limits)
        if violation:
            violations.append(violation)

    for violation in (
        _check_upper_limit(
            'thd_voltage', reading.get('thd_voltage'),
            limits.thd_voltage_max, limits.thd_voltage_severe,
            "High Voltage THD Detected", "Voltage THD",
        ),
        _check_upper_limit(
            'thd_current', reading.get('thd_current'),
            limits.thd_current_max, limits.thd_current_severe,
            "High Current THD Detected", "Current THD",
        ),
    ):
        if violation:
            violations.append(violation)

    frequency = reading.get('frequency')
    if frequency is not None and not limits.frequency_min <= frequency <= limits.frequency_max:
        violations.append(Violation(
            parameter='frequency',
            detected_value=float(frequency),
            threshold_value=(
                limits.frequency_min if frequency < limits.frequency_nominal else limits.frequency_max
            ),
            severity=AlertSeverity.HIGH,
            alert_type=AlertType.POWER_QUALITY,
            title="Frequency Deviation Detected",
            message=(
                f"Frequency {format_number(frequency)}Hz is outside acceptable range "
                f"({format_number(limits.frequency_min)}-{format_number(limits.frequency_max)}Hz)"
            ),
        ))

    for violation in (
        _check_upper_limit(
            'voltage_unbalance', reading.get('voltage_unbalance'),
            limits.voltage_unbalance_max, limits.voltage_unbalance_severe,
            "High Voltage Unbalance Detected", "Voltage unbalance",
        ),
        _check_upper_limit(
            'current_unbalance', reading.get('current_unbalance'),
            limits.current_unbalance_max, limits.current_unbalance_severe,
            "High Current Unbalance Detected", "Current unbalance",
        ),
    ):
        if violation:
            violations.append(violation)

    return violations
