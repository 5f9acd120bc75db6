"""Base storage interface for execution snapshots.

This abstract base class defines the contract that all storage implementations
must follow. This allows us to swap storage backends without changing the
engine. A snapshot holds the execution state (including its suspension
record) and the step records collected so far, which is everything needed to
resume an execution in another process.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..core.models import ExecutionSnapshot, ExecutionStatus


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    name = "base"

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the storage backend (create tables, connections, etc.)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close storage connections and cleanup resources."""
        pass

    # Snapshot Methods

    @abstractmethod
    async def save_execution(self, snapshot: ExecutionSnapshot) -> ExecutionSnapshot:
        """Insert or replace the snapshot of an execution."""
        pass

    @abstractmethod
    async def get_execution(self, execution_id: str) -> Optional[ExecutionSnapshot]:
        """Get the latest snapshot of an execution."""
        pass

    @abstractmethod
    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ExecutionSnapshot]:
        """List snapshots with optional filters, most recently updated first."""
        pass

    @abstractmethod
    async def delete_execution(self, execution_id: str) -> bool:
        """Delete an execution by ID."""
        pass

    # Utility Methods

    async def list_suspended(self, workflow_id: Optional[str] = None) -> List[ExecutionSnapshot]:
        """Get all executions waiting to be resumed."""
        return await self.list_executions(workflow_id=workflow_id, status=ExecutionStatus.SUSPENDED)

    @abstractmethod
    async def cleanup_old_executions(self, days: int = 30) -> int:
        """Delete finished executions older than ``days``. Returns the number deleted.

        Suspended executions are never cleaned up.
        """
        pass
