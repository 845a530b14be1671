"""
Base classes and value helpers for domain entities.
These are pure Python classes with no external dependencies.
"""
import json
from abc import ABC
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


def utc_now() -> datetime:
    """Return current UTC timestamp."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes; stores such as SQLite drop the offset."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def coerce_datetime(value: Any) -> Optional[datetime]:
    """Convert a stored or cached timestamp into an aware datetime."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        return ensure_utc(datetime.fromisoformat(text))
    raise ValueError(f"Cannot interpret {value!r} as a timestamp")


def is_valid_integer(value: Any) -> bool:
    """True for ints and integral strings or floats (booleans excluded)."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return value.is_integer()
    if isinstance(value, str):
        try:
            int(value.strip())
        except ValueError:
            return False
        return True
    return False


def parse_json_object(value: Any) -> Dict[str, Any]:
    """
    Return a dict from a JSON blob or an already-decoded mapping.

    Raises:
        ValueError: If the value is not valid JSON or not an object
    """
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    if isinstance(value, (str, bytes)):
        decoded = json.loads(value)
        if not isinstance(decoded, dict):
            raise ValueError("expected a JSON object")
        return decoded
    raise ValueError(f"unsupported parameter payload type {type(value).__name__}")


def to_json_safe(value: Any) -> Any:
    """Recursively convert enums, datetimes, decimals and tuples into JSON-friendly values."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_safe(v) for v in value]
    return value


@dataclass(kw_only=True)
class Entity(ABC):
    """
    Base class for persisted entities.

    Identifiers are assigned by the store, so a freshly built entity has
    no id until it has been inserted.
    """
    id: Optional[int] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def mark_updated(self, now: Optional[datetime] = None) -> None:
        """Mark entity as updated with current timestamp."""
        self.updated_at = now or utc_now()
