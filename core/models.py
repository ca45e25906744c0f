"""
Core data models for the sports data pipeline.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field


MAX_RECENT_ERRORS = 10


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class DataType(str, Enum):
    """Coarse category tag carried by every normalized record."""
    PLAYER_STATS = "PLAYER_STATS"
    GAME_DATA = "GAME_DATA"
    INJURY_REPORT = "INJURY_REPORT"
    WEATHER_DATA = "WEATHER_DATA"
    TEAM_HEALTH = "TEAM_HEALTH"
    DFS_PRICING = "DFS_PRICING"
    BETTING_LINE = "BETTING_LINE"
    PLAYER_PROP = "PLAYER_PROP"
    MARKET_TREND = "MARKET_TREND"

    @property
    def is_append_only(self) -> bool:
        # Trends are time-series deltas, every observation is its own row.
        return self is DataType.MARKET_TREND


class CollectorState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    ERRORED = "errored"


class OrchestratorState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RawItem(BaseModel):
    """Raw data fetched from a source, before normalization."""
    source: str
    kind: str
    payload: Any
    fetched_at: datetime = Field(default_factory=utcnow)


class NormalizedRecord(BaseModel):
    """Common record shape every collector persists.

    ``(source_id, data_type)`` is the upsert key.
    """
    source_id: str
    data_type: DataType
    source: str
    payload: Dict[str, Any]
    observed_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, DataType]:
        return (self.source_id, self.data_type)


class ErrorEntry(BaseModel):
    timestamp: datetime
    message: str


class CollectorStatus(BaseModel):
    """Liveness metadata for one registered collector."""
    name: str
    display_name: str = ""
    state: CollectorState = CollectorState.STOPPED
    last_update: Optional[datetime] = None
    update_interval_seconds: float
    records_processed: int = 0
    recent_errors: List[ErrorEntry] = Field(default_factory=list)

    def record_error(self, message: str, at: Optional[datetime] = None) -> None:
        """Append an error, evicting the oldest beyond the cap."""
        self.recent_errors.append(ErrorEntry(timestamp=at or utcnow(), message=message))
        if len(self.recent_errors) > MAX_RECENT_ERRORS:
            del self.recent_errors[:-MAX_RECENT_ERRORS]

    def seconds_since_update(self, now: datetime) -> Optional[float]:
        if self.last_update is None:
            return None
        return (now - self.last_update).total_seconds()


class Alert(BaseModel):
    """Anomaly notice handed to the alert sinks."""
    type: str
    severity: Severity
    title: str
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)
    raised_at: datetime = Field(default_factory=utcnow)


class PipelineStatus(BaseModel):
    """Point-in-time copy of the orchestrator and its collectors."""
    state: OrchestratorState
    collectors: List[CollectorStatus]
    timestamp: datetime = Field(default_factory=utcnow)

    @computed_field
    @property
    def is_running(self) -> bool:
        return self.state is OrchestratorState.RUNNING

    def collector(self, name: str) -> Optional[CollectorStatus]:
        for status in self.collectors:
            if status.name == name:
                return status
        return None
