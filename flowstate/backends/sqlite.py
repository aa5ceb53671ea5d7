"""SQLite persistence backend.

This backend uses aiosqlite for async interrupt persistence, providing
durability across process restarts.
"""

import json
import logging
import re
from pathlib import Path
from typing import List, Optional

import aiosqlite

from flowstate.interrupts import WorkflowInterrupt
from flowstate.utils.config import get_sqlite_path
from flowstate.utils.errors import InterruptNotFoundError, PersistenceError, SerializationError

logger = logging.getLogger(__name__)

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SQLitePersistence:
    """SQLite-based interrupt persistence.

    The database schema:
    - workflow_id: TEXT PRIMARY KEY
    - data: TEXT (JSON-encoded interrupt)
    - created_at: TIMESTAMP
    - updated_at: TIMESTAMP
    """

    def __init__(self, db_path: Optional[str] = None, table: str = "workflow_interrupts"):
        """Initialize SQLite backend.

        Args:
            db_path: Path to SQLite database file (FLOWSTATE_SQLITE_PATH if omitted)
            table: Table holding one row per suspended workflow
        """
        if not _TABLE_NAME.match(table):
            raise PersistenceError(f"Invalid table name: {table!r}")
        self.db_path = db_path or get_sqlite_path()
        self.table = table
        self._initialized = False

    async def _ensure_initialized(self):
        """Ensure database and table exist."""
        if self._initialized:
            return

        if self.db_path != ":memory:":
            db_dir = Path(self.db_path).parent
            if not db_dir.exists():
                db_dir.mkdir(parents=True, exist_ok=True)

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self.table} (
                        workflow_id TEXT PRIMARY KEY,
                        data TEXT NOT NULL,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                    """
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to initialize {self.db_path}: {e}") from e

        self._initialized = True

    async def save(self, workflow_id: str, interrupt: WorkflowInterrupt) -> None:
        await self._ensure_initialized()

        data = json.dumps(interrupt.to_dict())

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    f"""
                    INSERT INTO {self.table} (workflow_id, data, created_at, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                    ON CONFLICT(workflow_id)
                    DO UPDATE SET
                        data = excluded.data,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (workflow_id, data),
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to save workflow {workflow_id}: {e}") from e
        logger.debug("Saved interrupt for %s to %s", workflow_id, self.db_path)

    async def load(self, workflow_id: str) -> WorkflowInterrupt:
        await self._ensure_initialized()

        try:
            async with aiosqlite.connect(self.db_path) as db:
                async with db.execute(
                    f"SELECT data FROM {self.table} WHERE workflow_id = ?",
                    (workflow_id,),
                ) as cursor:
                    row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to load workflow {workflow_id}: {e}") from e

        if row is None:
            raise InterruptNotFoundError(workflow_id)
        try:
            data = json.loads(row[0])
        except json.JSONDecodeError as e:
            raise SerializationError(f"Corrupt snapshot for workflow {workflow_id}: {e}") from e
        return WorkflowInterrupt.from_dict(data)

    async def delete(self, workflow_id: str) -> None:
        await self._ensure_initialized()

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    f"DELETE FROM {self.table} WHERE workflow_id = ?",
                    (workflow_id,),
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to delete workflow {workflow_id}: {e}") from e

    async def exists(self, workflow_id: str) -> bool:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                f"SELECT 1 FROM {self.table} WHERE workflow_id = ? LIMIT 1",
                (workflow_id,),
            ) as cursor:
                row = await cursor.fetchone()
                return row is not None

    async def list_workflows(self) -> List[str]:
        """List all workflow ids, most recently updated first."""
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                f"SELECT workflow_id FROM {self.table} ORDER BY updated_at DESC, workflow_id"
            ) as cursor:
                rows = await cursor.fetchall()
                return [row[0] for row in rows]

    async def count(self) -> int:
        """Number of stored rows."""
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(f"SELECT COUNT(*) FROM {self.table}") as cursor:
                row = await cursor.fetchone()
                return row[0]

    async def cleanup_old_workflows(self, max_age_days: int = 30) -> int:
        """Delete interrupts not updated within ``max_age_days``.

        Returns:
            Number of rows deleted
        """
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                f"""
                DELETE FROM {self.table}
                WHERE updated_at < datetime('now', '-' || ? || ' days')
                """,
                (max_age_days,),
            )
            deleted = cursor.rowcount
            await db.commit()
            return deleted

    def __repr__(self) -> str:
        return f"SQLitePersistence(db_path='{self.db_path}', table='{self.table}')"
