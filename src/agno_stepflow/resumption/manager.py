"""Suspend/resume coordination across workflows.

This module handles:
- The registry of workflow definitions
- External suspension handles of running executions
- Stateless resumption from stored snapshots
"""

from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import uuid4

import logging
logger = logging.getLogger(__name__)

from ..core.errors import (
    ExecutionNotFoundError,
    InvalidStateError,
    WorkflowNotFoundError,
)
from ..core.models import (
    ExecutionSnapshot,
    ExecutionStatus,
    WorkflowExecutionResult,
    WorkflowRunOptions,
)
from .analyzer import ExecutionAnalyzer
from .controller import SuspendController

if TYPE_CHECKING:
    from ..core.workflow import Workflow, WorkflowStream
    from ..monitoring.monitor import WorkflowMonitor
    from ..storage.base import StorageBackend


class ResumptionManager:
    """Manages workflow registration, suspension and resumption."""

    def __init__(
        self,
        storage: Optional["StorageBackend"] = None,
        monitor: Optional["WorkflowMonitor"] = None,
    ):
        """Initialize the resumption manager.

        Args:
            storage: Storage backend attached to registered workflows
            monitor: Monitor attached to registered workflows
        """
        self.storage = storage
        self.monitor = monitor
        self.analyzer = ExecutionAnalyzer()
        self._workflow_registry: Dict[str, "Workflow"] = {}
        self._suspend_controllers: Dict[str, SuspendController] = {}

    # Workflow registry

    def register_workflow(self, workflow: "Workflow") -> None:
        """Register a workflow so its executions can be driven by id.

        Args:
            workflow: Workflow definition; it inherits the manager's storage
                and monitor unless it has its own
        """
        if workflow.storage is None:
            workflow.storage = self.storage
        if workflow.monitor is None:
            workflow.monitor = self.monitor
        self._workflow_registry[workflow.id] = workflow
        logger.info(f"Registered workflow: {workflow.id}")

    def get_workflow(self, workflow_id: str) -> "Workflow":
        workflow = self._workflow_registry.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    def list_workflows(self) -> List["Workflow"]:
        return list(self._workflow_registry.values())

    # Suspend handles

    def create_suspend_controller(self, execution_id: str) -> SuspendController:
        """Create and track the suspension handle of a starting execution."""
        controller = SuspendController()
        self._suspend_controllers[execution_id] = controller
        return controller

    def release(self, execution_id: str) -> None:
        """Stop tracking an execution's suspension handle."""
        self._suspend_controllers.pop(execution_id, None)

    def get_active_executions(self) -> List[str]:
        return list(self._suspend_controllers)

    # Execution

    async def run_workflow(
        self,
        workflow_id: str,
        input: Any = None,
        options: Optional[WorkflowRunOptions] = None,
    ) -> WorkflowExecutionResult:
        """Run a registered workflow with a tracked suspension handle."""
        workflow = self.get_workflow(workflow_id)
        options = self._with_execution_id(options)
        suspend_controller = self.create_suspend_controller(options.execution_id)
        try:
            return await workflow.run(input, options, suspend_controller=suspend_controller)
        finally:
            self.release(options.execution_id)

    def stream_workflow(
        self,
        workflow_id: str,
        input: Any = None,
        options: Optional[WorkflowRunOptions] = None,
    ) -> "WorkflowStream":
        """Stream a registered workflow with a tracked suspension handle."""
        workflow = self.get_workflow(workflow_id)
        options = self._with_execution_id(options)
        execution_id = options.execution_id
        suspend_controller = self.create_suspend_controller(execution_id)

        stream = workflow.stream(input, options, suspend_controller=suspend_controller)
        stream._task.add_done_callback(lambda _: self.release(execution_id))
        return stream

    async def suspend_execution(
        self,
        workflow_id: str,
        execution_id: str,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Request suspension of a running execution.

        The execution suspends at the step it is running.

        Raises:
            ExecutionNotFoundError: If the execution is unknown
            InvalidStateError: If the execution is not running
        """
        workflow = self.get_workflow(workflow_id)
        controller = workflow.get_controller(execution_id)

        if controller is None:
            snapshot = await self._load_snapshot(execution_id, workflow_id)
            raise InvalidStateError(
                f"Execution {execution_id} is {snapshot.state.status.value}, not running",
                execution_id=execution_id,
            )

        controller.request_suspend(reason)
        logger.info(f"Suspension requested for execution {execution_id}: {reason}")
        return {
            "execution_id": execution_id,
            "workflow_id": workflow_id,
            "reason": controller.suspend_controller.reason,
            "message": "Suspension requested",
        }

    async def resume_execution(
        self,
        workflow_id: str,
        execution_id: str,
        resume_data: Any = None,
        step_id: Optional[str] = None,
    ) -> WorkflowExecutionResult:
        """Resume a suspended execution, from storage if it is not in memory.

        Raises:
            ExecutionNotFoundError: If the execution is unknown
            InvalidStateError: If the execution is not suspended
            SchemaValidationError: If the payload fails the resume schema
        """
        workflow = self.get_workflow(workflow_id)
        suspend_controller = self.create_suspend_controller(execution_id)
        try:
            controller = await workflow.load_controller(execution_id, suspend_controller)
            if controller.status != ExecutionStatus.SUSPENDED:
                raise InvalidStateError(
                    f"Execution {execution_id} is {controller.status.value}, not suspended",
                    execution_id=execution_id,
                )
            controller.suspend_controller = suspend_controller
            logger.info(f"Resuming execution {execution_id} of workflow {workflow_id}")
            return await workflow.resume(execution_id, resume_data, step_id=step_id)
        finally:
            self.release(execution_id)

    async def get_execution(self, execution_id: str, workflow_id: Optional[str] = None) -> ExecutionSnapshot:
        """Get the current snapshot of an execution.

        Raises:
            ExecutionNotFoundError: If the execution is unknown
        """
        workflows = [self.get_workflow(workflow_id)] if workflow_id else self.list_workflows()
        for workflow in workflows:
            controller = workflow.get_controller(execution_id)
            if controller is not None:
                return controller.snapshot()
        return await self._load_snapshot(execution_id, workflow_id)

    async def list_suspended_executions(self, workflow_id: Optional[str] = None) -> List[ExecutionSnapshot]:
        """List suspended executions, optionally for one workflow."""
        if self.storage is None:
            return [
                controller.snapshot()
                for workflow in self.list_workflows()
                if workflow_id is None or workflow.id == workflow_id
                for controller in (workflow.get_controller(eid) for eid in workflow.active_executions())
                if controller is not None and controller.status == ExecutionStatus.SUSPENDED
            ]
        return await self.storage.list_suspended(workflow_id)

    async def get_resumption_details(self, execution_id: str, workflow_id: Optional[str] = None) -> Dict[str, Any]:
        """Get detailed resumption information for an execution.

        Args:
            execution_id: Execution ID
            workflow_id: Optional workflow ID to narrow the lookup

        Returns:
            Detailed resumption analysis
        """
        snapshot = await self.get_execution(execution_id, workflow_id)
        workflow = self._workflow_registry.get(snapshot.workflow_id)
        return self.analyzer.analyze(snapshot, workflow)

    async def list_suspended_summary(self, workflow_id: Optional[str] = None) -> Dict[str, Any]:
        return self.analyzer.summarize_suspended(await self.list_suspended_executions(workflow_id))

    async def _load_snapshot(self, execution_id: str, workflow_id: Optional[str]) -> ExecutionSnapshot:
        snapshot = await self.storage.get_execution(execution_id) if self.storage else None
        if snapshot is None or (workflow_id and snapshot.workflow_id != workflow_id):
            raise ExecutionNotFoundError(
                f"Execution {execution_id} not found",
                execution_id=execution_id,
            )
        return snapshot

    @staticmethod
    def _with_execution_id(options: Optional[WorkflowRunOptions]) -> WorkflowRunOptions:
        if isinstance(options, dict):
            options = WorkflowRunOptions.model_validate(options)
        options = options.model_copy() if options else WorkflowRunOptions()
        if not options.execution_id:
            options.execution_id = str(uuid4())
        return options
