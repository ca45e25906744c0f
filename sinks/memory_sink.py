"""
In-memory persistence sink for tests and dry runs.
"""

import logging
import time
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

from core.interfaces import PersistenceSink
from core.models import DataType, NormalizedRecord


logger = logging.getLogger(__name__)


class MemorySink(PersistenceSink):
    """Dict-backed store with the same upsert / append semantics as the database."""

    name = "MemorySink"

    def __init__(self, clock=time.time):
        self._clock = clock
        self.records: Dict[Tuple[str, DataType], NormalizedRecord] = {}
        self.history: List[NormalizedRecord] = []
        # (written_at, data_type, source) for every write, used for windows
        self._writes: List[Tuple[float, DataType, str]] = []
        self._written_at: Dict[Tuple[str, DataType], float] = {}

    async def upsert(self, record: NormalizedRecord) -> None:
        now = self._clock()
        self.records[record.key] = record.model_copy(deep=True)
        self._written_at[record.key] = now
        self._writes.append((now, record.data_type, record.source))

    async def append_only(self, record: NormalizedRecord) -> None:
        now = self._clock()
        self.history.append(record.model_copy(deep=True))
        self._writes.append((now, record.data_type, record.source))

    def get(self, source_id: str, data_type: DataType) -> Optional[NormalizedRecord]:
        return self.records.get((source_id, data_type))

    def rows(self, data_type: DataType) -> List[NormalizedRecord]:
        if data_type.is_append_only:
            return [r for r in self.history if r.data_type is data_type]
        return [r for r in self.records.values() if r.data_type is data_type]

    async def count_recent(self, window_seconds: float) -> int:
        since = self._clock() - window_seconds
        return sum(1 for written_at, _, _ in self._writes if written_at >= since)

    async def latest(self, data_type: DataType, limit: int = 20) -> List[NormalizedRecord]:
        if data_type.is_append_only:
            return [r for r in reversed(self.history) if r.data_type is data_type][:limit]
        keyed = [
            (self._written_at[key], record)
            for key, record in self.records.items()
            if record.data_type is data_type
        ]
        keyed.sort(key=lambda pair: pair[0], reverse=True)
        return [record for _, record in keyed[:limit]]

    async def metrics(self, window_seconds: float) -> List[Dict[str, Any]]:
        since = self._clock() - window_seconds
        counts = Counter(
            (data_type.value, source)
            for written_at, data_type, source in self._writes
            if written_at >= since
        )
        return [
            {"data_type": data_type, "source": source, "count": count}
            for (data_type, source), count in sorted(counts.items())
        ]
