"""Workflow definitions and their run/stream/resume API.

A ``Workflow`` is an immutable, ordered list of steps plus the schemas of its
boundaries. It is shared read-only by all of its executions; each execution
gets its own ``ExecutionController``.

Suspended executions stay retrievable by id: in process through the
controllers the workflow keeps for unfinished executions, and across process
boundaries through the configured storage backend (stateless resume).
"""

import asyncio
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Union

import logging
logger = logging.getLogger(__name__)

from ..monitoring.events import StreamEvent
from ..monitoring.stream import StreamController
from ..resumption.controller import SuspendController
from .controller import ExecutionController, WorkflowHooks
from .errors import ExecutionNotFoundError, InvalidStateError
from .models import (
    ExecutionState,
    ExecutionStatus,
    WorkflowExecutionResult,
    WorkflowRunOptions,
)
from .schema import json_schema
from .steps import (
    Step,
    and_agent,
    and_all,
    and_race,
    and_tap,
    and_then,
    and_when,
    assign_step_ids,
)

if TYPE_CHECKING:
    from ..monitoring.monitor import WorkflowMonitor
    from ..storage.base import StorageBackend


RunOptions = Union[WorkflowRunOptions, Dict[str, Any], None]


class Workflow:
    """Immutable workflow definition."""

    def __init__(
        self,
        id: str,
        steps: Sequence[Step],
        name: Optional[str] = None,
        purpose: Optional[str] = None,
        input_schema: Any = None,
        result_schema: Any = None,
        suspend_schema: Any = None,
        resume_schema: Any = None,
        hooks: Optional[WorkflowHooks] = None,
        storage: Optional["StorageBackend"] = None,
        monitor: Optional["WorkflowMonitor"] = None,
    ):
        """Initialize the workflow.

        Args:
            id: Unique workflow identifier
            steps: Ordered steps; ids must be unique including nested steps
            name: Display name
            purpose: Free-form description
            input_schema: Schema of the run input
            result_schema: Schema of the final data
            suspend_schema: Default schema of suspend payloads
            resume_schema: Default schema of resume payloads
            hooks: Lifecycle callbacks
            storage: Backend persisting execution snapshots
            monitor: Monitor receiving every execution's events

        Raises:
            WorkflowDefinitionError: On duplicate step ids
        """
        assign_step_ids(steps)
        self.id = id
        self.name = name or id
        self.purpose = purpose
        self.steps = tuple(steps)
        self.input_schema = input_schema
        self.result_schema = result_schema
        self.suspend_schema = suspend_schema
        self.resume_schema = resume_schema
        self.hooks = hooks
        self.storage = storage
        self.monitor = monitor

        # Unfinished executions driven in this process
        self._controllers: Dict[str, ExecutionController] = {}

    def get_step(self, step_id: str) -> Optional[Step]:
        for step in self.steps:
            for nested in step.iter_steps():
                if nested.id == step_id:
                    return nested
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Describe the workflow, including JSON schemas of every boundary."""
        return {
            "id": self.id,
            "name": self.name,
            "purpose": self.purpose,
            "stepCount": len(self.steps),
            "steps": [step.to_dict() for step in self.steps],
            "inputSchema": json_schema(self.input_schema),
            "resultSchema": json_schema(self.result_schema),
            "suspendSchema": json_schema(self.suspend_schema),
            "resumeSchema": json_schema(self.resume_schema),
        }

    # Execution

    def create_controller(
        self,
        options: RunOptions = None,
        suspend_controller: Optional[SuspendController] = None,
        streaming: bool = False,
    ) -> ExecutionController:
        """Create the controller for a new execution."""
        if isinstance(options, dict):
            options = WorkflowRunOptions.model_validate(options)
        options = options or WorkflowRunOptions()

        state_kwargs = {}
        if options.execution_id:
            state_kwargs["execution_id"] = options.execution_id
            if options.execution_id in self._controllers:
                raise InvalidStateError(
                    f"Execution {options.execution_id} already exists",
                    execution_id=options.execution_id,
                )

        state = ExecutionState(
            workflow_id=self.id,
            user_id=options.user_id,
            conversation_id=options.conversation_id,
            user_context=dict(options.user_context),
            **state_kwargs,
        )
        controller = ExecutionController(
            self,
            state,
            stream=self._new_stream(state.execution_id),
            suspend_controller=suspend_controller,
            storage=self.storage,
            streaming=streaming,
        )
        self._controllers[state.execution_id] = controller
        return controller

    async def run(
        self,
        input: Any = None,
        options: RunOptions = None,
        suspend_controller: Optional[SuspendController] = None,
    ) -> WorkflowExecutionResult:
        """Run the workflow to completion or suspension.

        Args:
            input: Workflow input, validated against ``input_schema``
            options: ``execution_id``, ``user_id``, ``conversation_id``, ``user_context``
            suspend_controller: Handle for suspending the execution externally

        Returns:
            Result with status ``completed`` or ``suspended``

        Raises:
            WorkflowError: If validation or a step fails (the execution is
                marked errored first)
        """
        controller = self.create_controller(options, suspend_controller)
        return await self._drive(controller, controller.run(input))

    def stream(
        self,
        input: Any = None,
        options: RunOptions = None,
        suspend_controller: Optional[SuspendController] = None,
    ) -> "WorkflowStream":
        """Start the workflow in the background and return its event stream.

        Must be called from a running event loop.
        """
        controller = self.create_controller(options, suspend_controller, streaming=True)
        handle = WorkflowStream(self, controller)
        handle._start(controller.run(input))
        return handle

    async def resume(
        self,
        execution_id: str,
        resume_data: Any = None,
        step_id: Optional[str] = None,
    ) -> WorkflowExecutionResult:
        """Resume a suspended execution by id.

        Uses the in-process controller when there is one, otherwise rebuilds
        one from the stored snapshot.

        Raises:
            ExecutionNotFoundError: If the execution is unknown
            InvalidStateError: If the execution is not suspended
        """
        controller = await self.load_controller(execution_id)
        return await self._drive(controller, controller.resume(resume_data, step_id=step_id))

    async def load_controller(
        self,
        execution_id: str,
        suspend_controller: Optional[SuspendController] = None,
    ) -> ExecutionController:
        """Find or rebuild the controller of an unfinished execution."""
        controller = self._controllers.get(execution_id)
        if controller is not None:
            return controller

        snapshot = await self.storage.get_execution(execution_id) if self.storage else None
        if snapshot is None or snapshot.workflow_id != self.id:
            raise ExecutionNotFoundError(
                f"Execution {execution_id} not found for workflow {self.id}",
                execution_id=execution_id,
            )
        if snapshot.state.status != ExecutionStatus.SUSPENDED:
            raise InvalidStateError(
                f"Execution {execution_id} is {snapshot.state.status.value}, not suspended",
                execution_id=execution_id,
            )

        logger.info(f"Restoring execution {execution_id} from storage")
        controller = ExecutionController.from_snapshot(
            self,
            snapshot,
            stream=self._new_stream(execution_id),
            suspend_controller=suspend_controller,
            storage=self.storage,
        )
        self._controllers[execution_id] = controller
        return controller

    def get_controller(self, execution_id: str) -> Optional[ExecutionController]:
        return self._controllers.get(execution_id)

    def active_executions(self) -> List[str]:
        return list(self._controllers)

    def _new_stream(self, execution_id: str) -> StreamController:
        stream = StreamController(execution_id)
        if self.monitor is not None:
            stream.add_listener(self.monitor.observe)
        return stream

    async def _drive(self, controller: ExecutionController, operation) -> WorkflowExecutionResult:
        try:
            return await operation
        finally:
            if controller.status.is_terminal:
                self._controllers.pop(controller.execution_id, None)


class WorkflowStream:
    """Handle on a streamed execution.

    Iterating yields every event of the execution in order. The iterator does
    not stop on suspension: after ``resume()`` on this handle the same
    iterator keeps delivering events until the execution completes, fails or
    is aborted.
    """

    def __init__(self, workflow: Workflow, controller: ExecutionController):
        self.workflow = workflow
        self.controller = controller
        self._task: Optional[asyncio.Task] = None

    @property
    def execution_id(self) -> str:
        return self.controller.execution_id

    @property
    def status(self) -> ExecutionStatus:
        return self.controller.status

    @property
    def events(self) -> List[StreamEvent]:
        return self.controller.stream.events

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self.controller.stream.__aiter__()

    def _start(self, operation) -> None:
        self._task = asyncio.create_task(self.workflow._drive(self.controller, operation))
        self._task.add_done_callback(_retrieve_exception)

    async def result(self) -> WorkflowExecutionResult:
        """Wait for the current run or resume to settle."""
        return await self._task

    async def resume(self, resume_data: Any = None, step_id: Optional[str] = None) -> WorkflowExecutionResult:
        """Resume the suspended execution; events keep flowing to this stream."""
        await self.result()
        self._start(self.controller.resume(resume_data, step_id=step_id))
        return await self.result()

    def suspend(self, reason: Optional[str] = None) -> None:
        self.controller.request_suspend(reason)

    def abort(self) -> None:
        """Abort the execution. Idempotent."""
        self.controller.stream.abort()


def _retrieve_exception(task: asyncio.Task) -> None:
    # Failures are re-raised by result(); mark them retrieved for unread streams
    if not task.cancelled():
        task.exception()


class WorkflowChain:
    """Fluent builder producing a ``Workflow``."""

    def __init__(self, id: str, **config: Any):
        self.id = id
        self.config = config
        self.steps: List[Step] = []

    def _add(self, step: Step) -> "WorkflowChain":
        self.steps.append(step)
        return self

    def and_then(self, fn: Callable, **kwargs: Any) -> "WorkflowChain":
        return self._add(and_then(fn, **kwargs))

    def and_agent(self, task: Any, agent: Any, schema: Any = None, **kwargs: Any) -> "WorkflowChain":
        return self._add(and_agent(task, agent, schema, **kwargs))

    def and_when(self, condition: Callable, step: Step, **kwargs: Any) -> "WorkflowChain":
        return self._add(and_when(condition, step, **kwargs))

    def and_all(self, steps: Sequence[Step], **kwargs: Any) -> "WorkflowChain":
        return self._add(and_all(steps, **kwargs))

    def and_race(self, steps: Sequence[Step], **kwargs: Any) -> "WorkflowChain":
        return self._add(and_race(steps, **kwargs))

    def and_tap(self, fn: Callable, **kwargs: Any) -> "WorkflowChain":
        return self._add(and_tap(fn, **kwargs))

    def build(self) -> Workflow:
        return Workflow(self.id, list(self.steps), **self.config)


def create_workflow_chain(id: str, **config: Any) -> WorkflowChain:
    """Start a fluent workflow definition."""
    return WorkflowChain(id, **config)
