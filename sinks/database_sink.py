"""
Database sinks for persisting records and alerts to SQLite.
"""

import asyncio
import json
import logging
import time
from datetime import datetime
from typing import Any, Dict, List

from core.infra.db import Database
from core.interfaces import AlertSink, PersistenceSink
from core.models import Alert, DataType, NormalizedRecord


logger = logging.getLogger(__name__)


def _row_to_record(row) -> NormalizedRecord:
    return NormalizedRecord(
        source_id=row["source_id"],
        data_type=DataType(row["data_type"]),
        source=row["source"],
        payload=json.loads(row["data"]),
        observed_at=datetime.fromisoformat(row["observed_at"]),
    )


class DatabaseSink(PersistenceSink):
    """Persistence sink over the pipeline's SQLite database.

    Snapshot records live in ``data_source_records`` keyed by
    ``(source_id, data_type)``; append-only records go to
    ``data_source_history``. Writes share one connection and are serialized.
    """

    name = "DatabaseSink"

    def __init__(self, db_path: str = "pipeline.db", db: Database = None):
        self.db = db or Database(db_path)
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        await self.db.connect()

    async def upsert(self, record: NormalizedRecord) -> None:
        now = time.time()
        data = {
            "source_id": record.source_id,
            "data_type": record.data_type.value,
            "source": record.source,
            "data": json.dumps(record.payload, default=str),
            "observed_at": record.observed_at.isoformat(),
            "created_at": now,
            "updated_at": now,
        }
        async with self._write_lock:
            await self.db.upsert(
                "data_source_records",
                data,
                pk_columns=["source_id", "data_type"],
                keep_columns=["created_at"],
            )
        logger.debug(f"Upserted {record.data_type.value} {record.source_id}")

    async def append_only(self, record: NormalizedRecord) -> None:
        data = {
            "source_id": record.source_id,
            "data_type": record.data_type.value,
            "source": record.source,
            "data": json.dumps(record.payload, default=str),
            "observed_at": record.observed_at.isoformat(),
            "created_at": time.time(),
        }
        async with self._write_lock:
            await self.db.insert("data_source_history", data)
        logger.debug(f"Appended {record.data_type.value} {record.source_id}")

    async def count_recent(self, window_seconds: float) -> int:
        since = time.time() - window_seconds
        row = await self.db.fetch_one(
            """
            SELECT
                (SELECT COUNT(*) FROM data_source_records WHERE updated_at >= ?) +
                (SELECT COUNT(*) FROM data_source_history WHERE created_at >= ?)
            """,
            (since, since),
        )
        return int(row[0]) if row else 0

    async def latest(self, data_type: DataType, limit: int = 20) -> List[NormalizedRecord]:
        table, order = (
            ("data_source_history", "created_at DESC, id DESC")
            if data_type.is_append_only
            else ("data_source_records", "updated_at DESC")
        )
        rows = await self.db.fetch_all(
            f"SELECT source_id, data_type, source, data, observed_at FROM {table} "
            f"WHERE data_type = ? ORDER BY {order} LIMIT ?",
            (data_type.value, limit),
        )
        return [_row_to_record(row) for row in rows]

    async def history(self, source_id: str, data_type: DataType) -> List[NormalizedRecord]:
        """Every append-only row for one entity, oldest first."""
        rows = await self.db.fetch_all(
            "SELECT source_id, data_type, source, data, observed_at FROM data_source_history "
            "WHERE source_id = ? AND data_type = ? ORDER BY id",
            (source_id, data_type.value),
        )
        return [_row_to_record(row) for row in rows]

    async def get(self, source_id: str, data_type: DataType):
        row = await self.db.fetch_one(
            "SELECT source_id, data_type, source, data, observed_at FROM data_source_records "
            "WHERE source_id = ? AND data_type = ?",
            (source_id, data_type.value),
        )
        return _row_to_record(row) if row else None

    async def metrics(self, window_seconds: float) -> List[Dict[str, Any]]:
        since = time.time() - window_seconds
        rows = await self.db.fetch_all(
            """
            SELECT data_type, source, COUNT(*) AS count FROM (
                SELECT data_type, source FROM data_source_records WHERE updated_at >= ?
                UNION ALL
                SELECT data_type, source FROM data_source_history WHERE created_at >= ?
            )
            GROUP BY data_type, source
            ORDER BY data_type, source
            """,
            (since, since),
        )
        return [
            {"data_type": row["data_type"], "source": row["source"], "count": row["count"]}
            for row in rows
        ]

    async def close(self) -> None:
        """Close the database connection."""
        await self.db.close()


class DatabaseAlertSink(AlertSink):
    """Alert sink writing to the ``alerts`` table."""

    name = "DatabaseAlertSink"

    def __init__(self, db: Database):
        self.db = db

    async def handle(self, alert: Alert) -> None:
        await self.db.insert(
            "alerts",
            {
                "type": alert.type,
                "severity": alert.severity.value,
                "title": alert.title,
                "message": alert.message,
                "data": json.dumps(alert.context, default=str),
                "created_at": alert.raised_at.isoformat(),
            },
        )

    async def recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        rows = await self.db.fetch_all(
            "SELECT type, severity, title, message, data, created_at FROM alerts "
            "ORDER BY id DESC LIMIT ?",
            (limit,),
        )
        return [dict(row) | {"data": json.loads(row["data"])} for row in rows]
