"""
Escalation policy value objects.

A rule maps an alert severity to an escalation delay and an ordered list
of levels. Level 1 is notified when the alert is raised. Each time a
deadline passes without acknowledgement the alert moves to
escalation_level + 1 and that level is notified.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from .alert import AlertSeverity


class NotificationChannelType(str, Enum):
    """Notification delivery channels."""
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class NotificationChannel:
    type: NotificationChannelType
    enabled: bool = True


@dataclass(frozen=True)
class EscalationLevel:
    level: int
    channels: Tuple[NotificationChannel, ...] = field(default_factory=tuple)
    recipients: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def enabled_channels(self) -> Tuple[NotificationChannel, ...]:
        return tuple(channel for channel in self.channels if channel.enabled)


@dataclass(frozen=True)
class EscalationRule:
    severity: AlertSeverity
    escalation_minutes: int
    levels: Tuple[EscalationLevel, ...]

    def get_level(self, level: int) -> Optional[EscalationLevel]:
        """Return the 1-based escalation level, or None past the last one."""
        for candidate in self.levels:
            if candidate.level == level:
                return candidate
        return None

    def has_level(self, level: int) -> bool:
        return self.get_level(level) is not None


def _channels(*types: NotificationChannelType) -> Tuple[NotificationChannel, ...]:
    return tuple(NotificationChannel(type=channel_type) for channel_type in types)


EMAIL = NotificationChannelType.EMAIL
SMS = NotificationChannelType.SMS
PUSH = NotificationChannelType.PUSH

# Low severity alerts have no rule and never escalate.
DEFAULT_ESCALATION_RULES: Tuple[EscalationRule, ...] = (
    EscalationRule(
        severity=AlertSeverity.CRITICAL,
        escalation_minutes=5,
        levels=(
            EscalationLevel(
                level=1,
                channels=_channels(EMAIL, SMS, PUSH),
                recipients=('facility_manager', 'energy_manager'),
            ),
            EscalationLevel(
                level=2,
                channels=_channels(EMAIL, SMS),
                recipients=('department_head', 'admin'),
            ),
        ),
    ),
    EscalationRule(
        severity=AlertSeverity.HIGH,
        escalation_minutes=15,
        levels=(
            EscalationLevel(
                level=1,
                channels=_channels(EMAIL, PUSH),
                recipients=('facility_manager', 'energy_manager'),
            ),
        ),
    ),
    EscalationRule(
        severity=AlertSeverity.MEDIUM,
        escalation_minutes=60,
        levels=(
            EscalationLevel(
                level=1,
                channels=_channels(EMAIL),
                recipients=('energy_manager',),
            ),
        ),
    ),
)


def build_escalation_rules(
    critical_minutes: Optional[int] = None,
    high_minutes: Optional[int] = None,
    medium_minutes: Optional[int] = None,
) -> Mapping[AlertSeverity, EscalationRule]:
    """
    Build the read-only severity to rule table.

    Args:
        critical_minutes: Override for the critical escalation delay
        high_minutes: Override for the high escalation delay
        medium_minutes: Override for the medium escalation delay

    Returns:
        Immutable mapping keyed by severity
    """
    overrides = {
        AlertSeverity.CRITICAL: critical_minutes,
        AlertSeverity.HIGH: high_minutes,
        AlertSeverity.MEDIUM: medium_minutes,
    }
    rules = {}
    for rule in DEFAULT_ESCALATION_RULES:
        minutes = overrides.get(rule.severity)
        rules[rule.severity] = replace(rule, escalation_minutes=minutes) if minutes else rule
    return MappingProxyType(rules)
