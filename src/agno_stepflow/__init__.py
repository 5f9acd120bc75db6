"""Agno Stepflow - Step-based workflow engine with suspend and resume.

A workflow engine built on Agno that enables:
- Composing steps sequentially, conditionally and in parallel
- Suspending executions indefinitely and resuming them with external data
- Ordered per-execution event streams
- Token usage accounting across agent calls
"""

# Load environment variables from .env file if it exists
from dotenv import load_dotenv
load_dotenv()

import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

from .config import EngineConfig
from .core import (
    AgentFactory,
    AgentResult,
    ExecutionSnapshot,
    ExecutionStatus,
    StepContext,
    StructuredAgent,
    Workflow,
    WorkflowChain,
    WorkflowError,
    WorkflowExecutionResult,
    WorkflowHooks,
    WorkflowRunOptions,
    WorkflowStream,
    and_agent,
    and_all,
    and_race,
    and_tap,
    and_then,
    and_when,
    create_workflow_chain,
)
from .monitoring import StreamEvent, WorkflowMonitor
from .resumption import ExecutionAnalyzer, ResumptionManager, SuspendController
from .storage import (
    InMemoryStorage,
    PostgresStorage,
    SQLiteStorage,
    StorageBackend,
    create_storage_backend,
)
from .workflows import create_approval_workflow, create_retrieval_workflow

__version__ = "0.3.0"

__all__ = [
    # Core
    "Workflow",
    "WorkflowChain",
    "WorkflowStream",
    "WorkflowHooks",
    "WorkflowRunOptions",
    "WorkflowExecutionResult",
    "ExecutionSnapshot",
    "ExecutionStatus",
    "StepContext",
    "WorkflowError",
    "create_workflow_chain",
    "and_then",
    "and_agent",
    "and_when",
    "and_all",
    "and_race",
    "and_tap",
    # Agents
    "StructuredAgent",
    "AgentResult",
    "AgentFactory",
    # Storage
    "StorageBackend",
    "InMemoryStorage",
    "SQLiteStorage",
    "PostgresStorage",
    "create_storage_backend",
    # Resumption
    "SuspendController",
    "ExecutionAnalyzer",
    "ResumptionManager",
    # Monitoring
    "StreamEvent",
    "WorkflowMonitor",
    # Workflows
    "create_approval_workflow",
    "create_retrieval_workflow",
    # High-level interface
    "WorkflowManager",
]


# Convenience class for easy usage
class WorkflowManager:
    """High-level interface for running, suspending and resuming workflows."""

    def __init__(
        self,
        storage: Optional[StorageBackend] = None,
        monitor: Optional[WorkflowMonitor] = None,
        storage_backend_type: Optional[str] = None,
        register_defaults: bool = True,
    ):
        """Initialize workflow manager.

        Args:
            storage: Storage backend (if not provided, creates one based on configuration)
            monitor: Workflow monitor (creates one if not provided and monitoring is enabled)
            storage_backend_type: Type of storage backend ("memory", "sqlite", "postgres")
            register_defaults: Register the bundled expense approval workflow
        """
        # Create storage backend using factory if not provided
        if storage is None:
            try:
                self.storage = create_storage_backend(storage_backend_type)
            except ValueError as e:
                logger.warning(f"Failed to create configured storage backend: {e}")
                logger.warning("Falling back to SQLite storage")
                self.storage = SQLiteStorage()
        else:
            self.storage = storage

        if monitor is None and EngineConfig.monitor_enabled():
            monitor = WorkflowMonitor()
        self.monitor = monitor
        self.resumption_manager = ResumptionManager(self.storage, self.monitor)

        # Register default workflows
        if register_defaults:
            self.register_workflow(create_approval_workflow())

        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the workflow manager."""
        if self._initialized:
            return

        await self.storage.initialize()
        if self.monitor:
            await self.monitor.start()
        self._initialized = True

    async def close(self) -> None:
        """Close the workflow manager."""
        if self.monitor:
            await self.monitor.stop()
        await self.storage.close()
        self._initialized = False

    # Workflows

    def register_workflow(self, workflow: Workflow) -> Workflow:
        """Register a workflow definition and return it."""
        self.resumption_manager.register_workflow(workflow)
        return workflow

    def get_workflow(self, workflow_id: str) -> Workflow:
        return self.resumption_manager.get_workflow(workflow_id)

    def list_workflows(self) -> List[Workflow]:
        return self.resumption_manager.list_workflows()

    # Executions

    async def execute_workflow(
        self,
        workflow_id: str,
        input: Any = None,
        options: Optional[WorkflowRunOptions] = None,
    ) -> WorkflowExecutionResult:
        """Run a workflow until it completes or suspends.

        Args:
            workflow_id: Registered workflow ID
            input: Workflow input
            options: User, conversation and context options

        Returns:
            Execution result
        """
        if not self._initialized:
            await self.initialize()

        return await self.resumption_manager.run_workflow(workflow_id, input, options)

    async def stream_workflow(
        self,
        workflow_id: str,
        input: Any = None,
        options: Optional[WorkflowRunOptions] = None,
    ) -> WorkflowStream:
        """Start a workflow in the background and return its event stream."""
        if not self._initialized:
            await self.initialize()

        return self.resumption_manager.stream_workflow(workflow_id, input, options)

    async def suspend_execution(
        self,
        workflow_id: str,
        execution_id: str,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Request suspension of a running execution."""
        if not self._initialized:
            await self.initialize()

        return await self.resumption_manager.suspend_execution(workflow_id, execution_id, reason)

    async def resume_execution(
        self,
        workflow_id: str,
        execution_id: str,
        resume_data: Any = None,
        step_id: Optional[str] = None,
    ) -> WorkflowExecutionResult:
        """Resume a suspended execution.

        Args:
            workflow_id: Registered workflow ID
            execution_id: Execution to resume
            resume_data: Payload for the resumed step
            step_id: Optional step to resume from

        Returns:
            Result of the resumed execution
        """
        if not self._initialized:
            await self.initialize()

        return await self.resumption_manager.resume_execution(
            workflow_id, execution_id, resume_data, step_id=step_id
        )

    async def get_execution(
        self,
        execution_id: str,
        workflow_id: Optional[str] = None,
    ) -> ExecutionSnapshot:
        """Get the current snapshot of an execution."""
        if not self._initialized:
            await self.initialize()

        return await self.resumption_manager.get_execution(execution_id, workflow_id)

    async def list_suspended(self, workflow_id: Optional[str] = None) -> List[ExecutionSnapshot]:
        """List suspended executions, optionally for one workflow."""
        if not self._initialized:
            await self.initialize()

        return await self.resumption_manager.list_suspended_executions(workflow_id)

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ExecutionSnapshot]:
        """List stored executions with optional filters."""
        if not self._initialized:
            await self.initialize()

        return await self.storage.list_executions(workflow_id, status, limit=limit, offset=offset)

    async def analyze_execution(
        self,
        execution_id: str,
        workflow_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Analyze an execution for resumption.

        Args:
            execution_id: Execution ID
            workflow_id: Optional workflow ID

        Returns:
            Detailed analysis
        """
        if not self._initialized:
            await self.initialize()

        return await self.resumption_manager.get_resumption_details(execution_id, workflow_id)

    async def cleanup(self, days: int = 30) -> int:
        """Delete finished executions older than ``days``."""
        if not self._initialized:
            await self.initialize()

        return await self.storage.cleanup_old_executions(days)

    # Status

    async def health_check(self) -> Dict[str, Any]:
        """Check health of the storage backend and the monitor.

        Returns:
            Health status of each component
        """
        if not self._initialized:
            await self.initialize()

        health: Dict[str, Any] = {}
        try:
            await self.storage.list_executions(limit=1)
            health["storage"] = {"status": "healthy", "backend": self.storage.name}
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            health["storage"] = {"status": "unhealthy", "backend": self.storage.name, "error": str(e)}

        health["monitor"] = {
            "status": "running" if self.monitor and self.monitor.running else "disabled",
            "active_executions": len(self.monitor.get_active_executions()) if self.monitor else 0,
        }
        return health

    def get_storage_info(self) -> Dict[str, Any]:
        """Get information about the configured storage backend.

        Returns:
            Storage backend information and capabilities
        """
        storage_type = type(self.storage).__name__
        return {
            "storage_type": storage_type,
            "backend": self.storage.name,
            "capabilities": {
                "stateless_resume": not isinstance(self.storage, InMemoryStorage),
                "high_availability": isinstance(self.storage, PostgresStorage),
            },
        }
