"""SQLite storage backend implementation.

This implementation uses aiosqlite for async SQLite operations.
It's suitable for development and small-scale deployments.

Snapshots are stored as JSON, so execution data must be JSON-serializable
when this backend is used.
"""

from datetime import timedelta
from pathlib import Path
from typing import List, Optional

import aiosqlite

import logging
logger = logging.getLogger(__name__)

from ..core.models import ExecutionSnapshot, ExecutionStatus, utcnow
from .base import StorageBackend


class SQLiteStorage(StorageBackend):
    """SQLite storage backend implementation."""

    name = "sqlite"

    def __init__(self, db_path: str = "data/stepflow.db"):
        """Initialize SQLite storage.

        Args:
            db_path: Path to the SQLite database file, or ``:memory:``
        """
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._connection: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Initialize database and create tables."""
        if self._connection is not None:
            return
        self._connection = await aiosqlite.connect(str(self.db_path))
        await self._create_tables()

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def _create_tables(self) -> None:
        """Create database tables."""
        await self._connection.executescript("""
            CREATE TABLE IF NOT EXISTS workflow_executions (
                execution_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                user_id TEXT,
                started_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                snapshot TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_workflow_status ON workflow_executions(workflow_id, status);
            CREATE INDEX IF NOT EXISTS idx_updated_at ON workflow_executions(updated_at);
        """)
        await self._connection.commit()

    async def save_execution(self, snapshot: ExecutionSnapshot) -> ExecutionSnapshot:
        """Insert or replace the snapshot of an execution."""
        snapshot = snapshot.model_copy(update={"updated_at": utcnow()})
        state = snapshot.state
        async with self._connection.execute(
            """
            INSERT OR REPLACE INTO workflow_executions (
                execution_id, workflow_id, status, user_id,
                started_at, updated_at, snapshot
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                state.execution_id,
                state.workflow_id,
                state.status.value,
                state.user_id,
                state.started_at.isoformat(),
                snapshot.updated_at.isoformat(),
                snapshot.model_dump_json(),
            )
        ):
            pass
        await self._connection.commit()
        return snapshot

    async def get_execution(self, execution_id: str) -> Optional[ExecutionSnapshot]:
        """Get the latest snapshot of an execution."""
        async with self._connection.execute(
            "SELECT snapshot FROM workflow_executions WHERE execution_id = ?",
            (execution_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return ExecutionSnapshot.model_validate_json(row[0])
        return None

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ExecutionSnapshot]:
        """List snapshots with optional filters."""
        query = "SELECT snapshot FROM workflow_executions WHERE 1=1"
        params = []

        if workflow_id:
            query += " AND workflow_id = ?"
            params.append(workflow_id)

        if status:
            query += " AND status = ?"
            params.append(ExecutionStatus(status).value)

        query += " ORDER BY updated_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        snapshots = []
        async with self._connection.execute(query, params) as cursor:
            async for row in cursor:
                snapshots.append(ExecutionSnapshot.model_validate_json(row[0]))

        return snapshots

    async def delete_execution(self, execution_id: str) -> bool:
        """Delete an execution by ID."""
        async with self._connection.execute(
            "DELETE FROM workflow_executions WHERE execution_id = ?",
            (execution_id,)
        ) as cursor:
            deleted = cursor.rowcount > 0
        await self._connection.commit()
        return deleted

    async def cleanup_old_executions(self, days: int = 30) -> int:
        """Clean up finished executions older than specified days."""
        cutoff_date = utcnow() - timedelta(days=days)

        async with self._connection.execute(
            "DELETE FROM workflow_executions WHERE updated_at < ? AND status IN ('completed', 'error')",
            (cutoff_date.isoformat(),)
        ) as cursor:
            deleted_count = cursor.rowcount

        await self._connection.commit()
        logger.info(f"Cleaned up {deleted_count} executions older than {days} days")
        return deleted_count
