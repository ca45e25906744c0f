"""
Database infrastructure with SQLite and async support.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiosqlite


logger = logging.getLogger(__name__)


_MIGRATIONS: Sequence[Tuple[int, str]] = (
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS data_source_records (
            source_id TEXT NOT NULL,
            data_type TEXT NOT NULL,
            source TEXT NOT NULL,
            data TEXT NOT NULL,
            observed_at TEXT NOT NULL,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL,
            PRIMARY KEY (source_id, data_type)
        )
        """,
    ),
    (
        2,
        """
        CREATE TABLE IF NOT EXISTS data_source_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source_id TEXT NOT NULL,
            data_type TEXT NOT NULL,
            source TEXT NOT NULL,
            data TEXT NOT NULL,
            observed_at TEXT NOT NULL,
            created_at REAL NOT NULL
        )
        """,
    ),
    (
        3,
        "CREATE INDEX IF NOT EXISTS idx_records_updated ON data_source_records (updated_at)",
    ),
    (
        4,
        "CREATE INDEX IF NOT EXISTS idx_history_created ON data_source_history (created_at)",
    ),
    (
        5,
        """
        CREATE TABLE IF NOT EXISTS alerts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            type TEXT NOT NULL,
            severity TEXT NOT NULL,
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            data TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """,
    ),
)


class Database:
    """Async SQLite database wrapper."""

    def __init__(self, db_path: str = "pipeline.db"):
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Connect to the database and run migrations."""
        if self._connection:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self.db_path, timeout=30)
        self._connection.row_factory = aiosqlite.Row
        if self.db_path != ":memory:":
            await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA busy_timeout=30000;")
        await self._run_migrations()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def execute(self, sql: str, params: Tuple[Any, ...] = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement."""
        if not self._connection:
            await self.connect()
        return await self._connection.execute(sql, params)

    async def commit(self) -> None:
        if self._connection:
            await self._connection.commit()

    async def fetch_one(self, sql: str, params: Tuple[Any, ...] = ()) -> Optional[aiosqlite.Row]:
        """Fetch one row."""
        cursor = await self.execute(sql, params)
        return await cursor.fetchone()

    async def fetch_all(self, sql: str, params: Tuple[Any, ...] = ()) -> List[aiosqlite.Row]:
        """Fetch all rows."""
        cursor = await self.execute(sql, params)
        return await cursor.fetchall()

    async def insert(self, table: str, data: Dict[str, Any]) -> None:
        """Insert one row and commit."""
        columns = list(data.keys())
        placeholders = ", ".join("?" * len(columns))
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        await self.execute(sql, tuple(data.values()))
        await self.commit()

    async def upsert(
        self,
        table: str,
        data: Dict[str, Any],
        pk_columns: List[str],
        keep_columns: Sequence[str] = (),
    ) -> None:
        """Upsert one row; ``keep_columns`` retain their first-insert value."""
        columns = list(data.keys())
        placeholders = ", ".join("?" * len(columns))

        update_columns = [
            col for col in columns if col not in pk_columns and col not in keep_columns
        ]
        if update_columns:
            update_clause = ", ".join(f"{col} = excluded.{col}" for col in update_columns)
            conflict_clause = f"ON CONFLICT({', '.join(pk_columns)}) DO UPDATE SET {update_clause}"
        else:
            conflict_clause = f"ON CONFLICT({', '.join(pk_columns)}) DO NOTHING"

        sql = f"""
            INSERT INTO {table} ({', '.join(columns)})
            VALUES ({placeholders})
            {conflict_clause}
        """

        await self.execute(sql, tuple(data.values()))
        await self.commit()

    async def _run_migrations(self) -> None:
        """Apply pending schema migrations in order."""
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        cursor = await self._connection.execute("SELECT version FROM migrations")
        applied = {row[0] for row in await cursor.fetchall()}

        for version, sql in _MIGRATIONS:
            if version in applied:
                continue
            await self._connection.execute(sql)
            await self._connection.execute("INSERT INTO migrations (version) VALUES (?)", (version,))
            logger.debug(f"Applied migration {version}")

        await self._connection.commit()
