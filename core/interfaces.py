"""
Core interfaces for the pipeline sinks.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from .models import Alert, DataType, NormalizedRecord


class PersistenceSink(ABC):
    """Upsert-capable store shared by every collector.

    Implementations must tolerate concurrent calls from several collector
    cycles. Errors propagate to the caller.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this sink."""
        pass

    @abstractmethod
    async def upsert(self, record: NormalizedRecord) -> None:
        """Replace the stored value for ``record.key``, creating it if absent."""
        pass

    @abstractmethod
    async def append_only(self, record: NormalizedRecord) -> None:
        """Insert a new row; used for time-series records only."""
        pass

    @abstractmethod
    async def count_recent(self, window_seconds: float) -> int:
        """Number of rows written within the last ``window_seconds``."""
        pass

    @abstractmethod
    async def latest(self, data_type: DataType, limit: int = 20) -> List[NormalizedRecord]:
        """Most recently written records of ``data_type``, newest first."""
        pass

    @abstractmethod
    async def metrics(self, window_seconds: float) -> List[Dict[str, Any]]:
        """Row counts grouped by data type and source over the window."""
        pass

    async def persist(self, record: NormalizedRecord) -> None:
        """Route a record to upsert or append by its data type."""
        if record.data_type.is_append_only:
            await self.append_only(record)
        else:
            await self.upsert(record)

    async def close(self) -> None:
        pass


class AlertSink(ABC):
    """Side channel for anomaly notices."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this sink."""
        pass

    @abstractmethod
    async def handle(self, alert: Alert) -> None:
        """Deliver one alert."""
        pass

    async def close(self) -> None:
        pass
