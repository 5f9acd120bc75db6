"""In-memory storage backend.

Snapshots live in a process-local dict. Suitable for tests and for
deployments where executions never outlive the process.
"""

from datetime import timedelta
from typing import Dict, List, Optional

from ..core.models import ExecutionSnapshot, ExecutionStatus, utcnow
from .base import StorageBackend


class InMemoryStorage(StorageBackend):
    """Dict-backed storage."""

    name = "memory"

    def __init__(self):
        self._executions: Dict[str, ExecutionSnapshot] = {}

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def save_execution(self, snapshot: ExecutionSnapshot) -> ExecutionSnapshot:
        stored = snapshot.model_copy(deep=True, update={"updated_at": utcnow()})
        self._executions[snapshot.execution_id] = stored
        return stored

    async def get_execution(self, execution_id: str) -> Optional[ExecutionSnapshot]:
        snapshot = self._executions.get(execution_id)
        return snapshot.model_copy(deep=True) if snapshot else None

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ExecutionSnapshot]:
        snapshots = [
            snapshot for snapshot in self._executions.values()
            if (workflow_id is None or snapshot.workflow_id == workflow_id)
            and (status is None or snapshot.state.status == status)
        ]
        snapshots.sort(key=lambda s: s.updated_at, reverse=True)
        return [s.model_copy(deep=True) for s in snapshots[offset:offset + limit]]

    async def delete_execution(self, execution_id: str) -> bool:
        return self._executions.pop(execution_id, None) is not None

    async def cleanup_old_executions(self, days: int = 30) -> int:
        cutoff = utcnow() - timedelta(days=days)
        expired = [
            execution_id for execution_id, snapshot in self._executions.items()
            if snapshot.state.status.is_terminal and snapshot.updated_at < cutoff
        ]
        for execution_id in expired:
            del self._executions[execution_id]
        return len(expired)
