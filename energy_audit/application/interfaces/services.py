"""
External service interfaces (ports).

These interfaces define contracts for the collaborators the alerting and
job services depend on. Implementations live in the infrastructure layer
and are passed in through constructors.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import Table
from sqlalchemy.sql import Executable

from ...domain.entities import Alert, EscalationLevel, NotificationChannelType


class DataAccess(ABC):
    """
    Parameterized access to the relational store.

    Statements are SQLAlchemy Core constructs or text() clauses with bound
    parameters; values are never interpolated into SQL.
    """

    @abstractmethod
    async def query(
        self,
        statement: Executable,
        params: Optional[Mapping[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Return all rows as dictionaries."""
        pass

    @abstractmethod
    async def query_one(
        self,
        statement: Executable,
        params: Optional[Mapping[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Return the first row or None."""
        pass

    @abstractmethod
    async def insert(
        self,
        statement: Executable,
        params: Optional[Mapping[str, Any]] = None
    ) -> int:
        """Run an insert and return the new primary key."""
        pass

    @abstractmethod
    async def execute(
        self,
        statement: Executable,
        params: Optional[Mapping[str, Any]] = None
    ) -> int:
        """Run a statement and return the affected row count."""
        pass

    @abstractmethod
    async def table_exists(self, table_name: str) -> bool:
        pass

    @abstractmethod
    async def ensure_table(self, table: Table) -> None:
        """Create the table if it does not exist."""
        pass


class CacheBackend(ABC):
    """Interface for a JSON key-value cache with expiry."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        pass


class RealtimePublisher(ABC):
    """Interface for pushing events to realtime subscribers."""

    @abstractmethod
    async def emit_to_building(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        """
        Publish an event to a building room.

        The room is the building id as a string, or "system" for alerts
        with no building.
        """
        pass


class NotificationChannelSender(ABC):
    """Delivers one alert over one channel type."""

    channel_type: NotificationChannelType

    @abstractmethod
    async def send(self, alert: Alert, level: EscalationLevel) -> bool:
        """
        Deliver the alert to the level's recipients.

        Returns:
            False if the channel skipped the alert without sending anything

        Raises:
            NotificationException: If delivery fails
        """
        pass


class AnalyticsService(ABC):
    """Interface for the analytics engine used by analysis jobs."""

    @abstractmethod
    async def analyze_energy_efficiency(
        self,
        building_id: int,
        start_date: datetime,
        end_date: datetime
    ) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def detect_anomalies(
        self,
        building_id: int,
        start_date: datetime,
        end_date: datetime,
        analysis_types: List[str]
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def predict_equipment_maintenance(self, equipment_id: int) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def forecast_energy_consumption(
        self,
        building_id: int,
        forecast_days: int,
        forecast_type: str
    ) -> List[Dict[str, Any]]:
        pass
