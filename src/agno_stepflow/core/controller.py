"""Execution controller: drives one execution through its steps.

State machine::

    idle -> running -> {suspended, completed, error}
    suspended -> running -> {suspended, completed, error}

One controller owns one execution and is not re-entrant: a second ``run`` or
``resume`` while the first is in flight raises ``InvalidStateError``.
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

import logging
logger = logging.getLogger(__name__)

from ..monitoring.events import EventFactory, StreamEvent
from ..monitoring.stream import NoOpStreamWriter, StreamController, StreamWriter
from ..resumption.controller import SuspendController
from .errors import (
    ExecutionAbortedError,
    InvalidStateError,
    SchemaValidationError,
    WorkflowError,
)
from .models import (
    ExecutionSnapshot,
    ExecutionState,
    ExecutionStatus,
    SuspensionRecord,
    WorkflowExecutionResult,
    utcnow,
)
from .schema import Boundary, validate
from .state import StepDataRegistry, StepState, UsageAccumulator
from .steps import Fail, Step, StepContext, StepOutcome, Suspend, run_step

if TYPE_CHECKING:
    from ..storage.base import StorageBackend
    from .workflow import Workflow


Hook = Callable[..., Any]


@dataclass
class WorkflowHooks:
    """Optional lifecycle callbacks (sync or async).

    ``on_start`` and ``on_end`` receive a copy of the ``ExecutionState``;
    the step hooks also receive the step. An exception raised by a hook
    fails the execution.
    """

    on_start: Optional[Hook] = None
    on_step_start: Optional[Hook] = None
    on_step_end: Optional[Hook] = None
    on_end: Optional[Hook] = None


class HookError(WorkflowError):
    """A lifecycle hook raised."""

    def __init__(self, hook: str, cause: BaseException, execution_id: Optional[str] = None):
        super().__init__(f"Hook '{hook}' failed: {cause}", execution_id=execution_id)
        self.hook = hook
        self.__cause__ = cause


class ExecutionController:
    """Owns the state of a single execution."""

    def __init__(
        self,
        workflow: "Workflow",
        state: ExecutionState,
        registry: Optional[StepDataRegistry] = None,
        stream: Optional[StreamController] = None,
        suspend_controller: Optional[SuspendController] = None,
        storage: Optional["StorageBackend"] = None,
        streaming: bool = False,
    ):
        """Initialize the controller.

        Args:
            workflow: Definition to execute
            state: Execution state (fresh or restored from a snapshot)
            registry: Step records restored from a snapshot
            stream: Event channel; a private one is created if omitted
            suspend_controller: External suspension handle
            storage: Backend receiving a snapshot on every transition
            streaming: Whether steps get a real writer (otherwise custom
                events are discarded)
        """
        self.workflow = workflow
        self.state = state
        self.registry = registry or StepDataRegistry()
        self.stream = stream or StreamController(state.execution_id)
        self.suspend_controller = suspend_controller or SuspendController()
        self.storage = storage
        self.streaming = streaming
        self._usage = UsageAccumulator(state.usage)
        self._busy = False

    @classmethod
    def from_snapshot(
        cls,
        workflow: "Workflow",
        snapshot: ExecutionSnapshot,
        **kwargs: Any,
    ) -> "ExecutionController":
        """Rebuild a controller from a persisted snapshot."""
        return cls(
            workflow,
            snapshot.state.model_copy(deep=True),
            registry=StepDataRegistry(snapshot.step_records),
            **kwargs,
        )

    @property
    def execution_id(self) -> str:
        return self.state.execution_id

    @property
    def status(self) -> ExecutionStatus:
        return self.state.status

    def snapshot(self) -> ExecutionSnapshot:
        return ExecutionSnapshot(
            state=self.state.model_copy(deep=True),
            step_records=self.registry.records(),
        )

    def result(self) -> WorkflowExecutionResult:
        return WorkflowExecutionResult.from_state(self.state, self.workflow)

    # Public operations

    async def run(self, input: Any) -> WorkflowExecutionResult:
        """Validate ``input`` and run every step from the first.

        Returns:
            Result with status ``completed`` or ``suspended``

        Raises:
            WorkflowError: After marking the execution errored
        """
        self._acquire(ExecutionStatus.IDLE, "run")
        try:
            return await self._guarded(self._start(input))
        finally:
            self._busy = False

    async def resume(
        self,
        resume_data: Any = None,
        step_id: Optional[str] = None,
    ) -> WorkflowExecutionResult:
        """Re-enter a suspended execution.

        The step at the suspended position (or ``step_id``) runs again from
        its beginning with ``resume_data``. An invalid payload leaves the
        execution suspended.

        Resuming at the suspended step feeds it the data held at suspension.
        Jumping to any other step with ``step_id`` feeds that step the input
        recorded when it last ran, so later steps see data derived from the
        re-run rather than from the suspended point. A step that never ran
        receives the data held at suspension.

        Args:
            resume_data: Payload for the resumed step
            step_id: Step to resume from instead of the suspended one; a
                nested step id resumes its top-level group

        Raises:
            InvalidStateError: If the execution is not suspended or the step is unknown
            SchemaValidationError: If the payload fails the resume schema
        """
        self._acquire(ExecutionStatus.SUSPENDED, "resume")
        try:
            index = self._resolve_index(step_id)
            target = self.workflow.steps[index]
            schema = self._resume_schema_for(target, step_id)
            try:
                payload = validate(schema, resume_data, Boundary.RESUME, target.id)
            except SchemaValidationError as e:
                e.execution_id = self.execution_id
                raise

            return await self._guarded(self._reenter(index, target, payload))
        finally:
            self._busy = False

    def request_suspend(self, reason: Optional[str] = None) -> None:
        """Ask the running execution to suspend at the current step."""
        if self.state.status != ExecutionStatus.RUNNING:
            raise InvalidStateError(
                f"Cannot suspend execution in {self.state.status.value} state",
                execution_id=self.execution_id,
            )
        self.suspend_controller.suspend(reason)

    # Entry points

    async def _start(self, input: Any) -> WorkflowExecutionResult:
        self.state.input = input
        self.state.status = ExecutionStatus.RUNNING
        self.state.started_at = utcnow()

        try:
            self.state.data = validate(self.workflow.input_schema, input, Boundary.INPUT)
        except SchemaValidationError as e:
            await self._fail(e)

        logger.info(f"Starting execution {self.execution_id} of workflow {self.workflow.id}")
        self._emit(EventFactory.workflow_start(self.execution_id, self.workflow.id, input))
        await self._call_hook("on_start", self._state_copy())
        await self._save()

        return await self._execute_steps(resume_data=None, resumed=False)

    async def _reenter(self, index: int, target: Step, payload: Any) -> WorkflowExecutionResult:
        if index != self.state.current_step_index:
            record = self.registry.get(target.id)
            if record is not None:
                self.state.data = record.input
            logger.info(f"Execution {self.execution_id} jumping to step {target.id}")

        self.state.current_step_index = index
        self.state.suspension = None
        self.state.ended_at = None
        self.state.status = ExecutionStatus.RUNNING
        self.suspend_controller.reset()

        logger.info(f"Resuming execution {self.execution_id} at step {target.id}")
        self._emit(EventFactory.workflow_resumed(
            self.execution_id, self.workflow.id, target.id, index, payload
        ))
        await self._save()

        return await self._execute_steps(resume_data=payload, resumed=True)

    async def _guarded(self, operation) -> WorkflowExecutionResult:
        """Await ``operation`` so that no exit leaves the execution running.

        Errors already routed through ``_fail`` propagate unchanged. Any other
        exception (a storage write, a bug in a step runner) fails the
        execution first. Cancellation errors the execution with
        ``ExecutionAbortedError`` and is then re-raised.
        """
        try:
            return await operation
        except asyncio.CancelledError:
            await self._abandon()
            raise
        except Exception as e:
            if self.state.status == ExecutionStatus.ERROR:
                raise
            error = e if isinstance(e, WorkflowError) else WorkflowError(f"Execution failed: {e}")
            if error is not e:
                error.__cause__ = e
            await self._fail(error)

    async def _abandon(self) -> None:
        if self.state.status != ExecutionStatus.ERROR:
            error = ExecutionAbortedError(
                f"Execution {self.execution_id} was cancelled",
                execution_id=self.execution_id,
            )
            self.state.status = ExecutionStatus.ERROR
            self.state.error = error.to_dict()
            self.state.ended_at = utcnow()
            self._emit(EventFactory.workflow_error(self.execution_id, self.workflow.id, error.to_dict()))
            logger.warning(f"Execution {self.execution_id} cancelled")
        self.stream.close()

        try:
            await self._save()
        except Exception as e:
            logger.error(f"Failed to persist cancelled execution {self.execution_id}: {e}", exc_info=True)

    # Main loop

    async def _execute_steps(self, resume_data: Any, resumed: bool) -> WorkflowExecutionResult:
        steps = self.workflow.steps
        pending_resume = resumed
        index = self.state.current_step_index

        while index < len(steps):
            step = steps[index]
            self.state.current_step_index = index

            if self.stream.aborted:
                await self._fail(ExecutionAbortedError(
                    f"Execution aborted before step '{step.id}'",
                ))

            if self.suspend_controller.is_suspended:
                return await self._suspend(step, index, Suspend(reason=self.suspend_controller.reason))

            step_input = self.state.data
            self._emit(EventFactory.step_start(
                self.execution_id,
                step.id,
                index,
                step.kind.value,
                step_input,
                user_context=dict(self.state.user_context) or None,
            ))
            await self._call_hook("on_step_start", self._state_copy(), step, step=step, index=index)

            ctx = self._make_context(step, index, resume_data if pending_resume else None)
            pending_resume = False

            outcome = await self._run_with_signals(step, ctx)
            self.state.usage = self._usage.total

            if isinstance(outcome, Fail):
                await self._fail(outcome.error, step=step, index=index, step_input=step_input)
            if isinstance(outcome, Suspend):
                return await self._suspend(step, index, outcome)

            for record in ctx.child_records:
                self.registry.set(record.step_id, record.input, record.output)
            self.registry.set(step.id, step_input, outcome.data)
            self.state.data = outcome.data

            self._emit(EventFactory.step_complete(
                self.execution_id, step.id, index, step.kind.value, step_input, outcome.data
            ))
            await self._call_hook("on_step_end", self._state_copy(), step, step=step, index=index)

            index += 1
            self.state.current_step_index = index
            await self._save()

        return await self._complete()

    def _make_context(self, step: Step, index: int, resume_data: Any) -> StepContext:
        if self.streaming:
            writer = StreamWriter(self.stream, self.execution_id, step.id, index)
        else:
            writer = NoOpStreamWriter(self.execution_id, step.id, index)

        return StepContext(
            data=self.state.data,
            state=StepState.from_execution(self.state, index),
            writer=writer,
            step=step,
            resume_data=resume_data,
            registry=self.registry,
            usage_sink=self._usage.add,
            default_suspend_schema=self.workflow.suspend_schema,
        )

    async def _run_with_signals(self, step: Step, ctx: StepContext) -> StepOutcome:
        """Run the step, racing it against external suspension and abort."""
        step_task = asyncio.create_task(run_step(step, ctx), name=f"step:{step.id}")
        suspend_task = asyncio.create_task(self.suspend_controller.wait())
        abort_task = asyncio.create_task(self.stream.wait_aborted())

        try:
            done, _ = await asyncio.wait(
                {step_task, suspend_task, abort_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            step_task.cancel()
            raise
        finally:
            suspend_task.cancel()
            abort_task.cancel()

        if step_task in done:
            return step_task.result()

        step_task.cancel()
        await asyncio.gather(step_task, return_exceptions=True)

        if abort_task in done:
            logger.info(f"Execution {self.execution_id} aborted during step {step.id}")
            return Fail(ExecutionAbortedError(f"Execution aborted during step '{step.id}'"))

        logger.info(f"Execution {self.execution_id} suspended externally during step {step.id}")
        return Suspend(reason=self.suspend_controller.reason, step_id=step.id)

    # Transitions

    async def _suspend(self, step: Step, index: int, outcome: Suspend) -> WorkflowExecutionResult:
        self.state.current_step_index = index
        self.state.suspension = SuspensionRecord(
            step_id=step.id,
            step_index=index,
            reason=outcome.reason,
            payload=outcome.payload,
        )
        self._emit(EventFactory.workflow_suspended(
            self.execution_id, step.id, index, outcome.reason, outcome.payload
        ))
        self.state.status = ExecutionStatus.SUSPENDED
        self.suspend_controller.reset()

        logger.info(
            f"Execution {self.execution_id} suspended at step {step.id}"
            f"{f': {outcome.reason}' if outcome.reason else ''}"
        )
        await self._save()
        return self.result()

    async def _complete(self) -> WorkflowExecutionResult:
        try:
            result = validate(self.workflow.result_schema, self.state.data, Boundary.RESULT)
        except SchemaValidationError as e:
            await self._fail(e)

        self.state.data = result
        self.state.status = ExecutionStatus.COMPLETED
        self.state.ended_at = utcnow()
        self._emit(EventFactory.workflow_complete(self.execution_id, self.workflow.id, result))
        await self._call_hook("on_end", self._state_copy())
        await self._save()
        self.stream.close()

        logger.info(f"Execution {self.execution_id} completed")
        return self.result()

    async def _fail(
        self,
        error: WorkflowError,
        step: Optional[Step] = None,
        index: Optional[int] = None,
        step_input: Any = None,
    ) -> None:
        """Mark the execution errored, emit error events and raise ``error``."""
        error.execution_id = self.execution_id
        self.state.status = ExecutionStatus.ERROR
        self.state.error = error.to_dict()
        self.state.ended_at = utcnow()

        if step is not None:
            self._emit(EventFactory.step_error(
                self.execution_id, step.id, index, step.kind.value, step_input, error.to_dict()
            ))
        self._emit(EventFactory.workflow_error(self.execution_id, self.workflow.id, error.to_dict()))

        logger.error(f"Execution {self.execution_id} failed: {error}", exc_info=error.__cause__)

        if self.workflow.hooks and self.workflow.hooks.on_end:
            try:
                await _maybe_await(self.workflow.hooks.on_end(self._state_copy()))
            except Exception as e:
                logger.error(f"on_end hook failed for errored execution {self.execution_id}: {e}", exc_info=True)

        try:
            await self._save()
        except Exception as e:
            logger.error(f"Failed to persist errored execution {self.execution_id}: {e}", exc_info=True)

        self.stream.close()
        raise error

    # Helpers

    def _acquire(self, expected: ExecutionStatus, operation: str) -> None:
        if self._busy:
            raise InvalidStateError(
                f"Execution {self.execution_id} is already in progress",
                execution_id=self.execution_id,
            )
        if self.state.status != expected:
            raise InvalidStateError(
                f"Cannot {operation} execution in {self.state.status.value} state",
                execution_id=self.execution_id,
            )
        self._busy = True

    def _resolve_index(self, step_id: Optional[str]) -> int:
        if step_id is None:
            return self.state.current_step_index
        for index, step in enumerate(self.workflow.steps):
            if any(nested.id == step_id for nested in step.iter_steps()):
                return index
        raise InvalidStateError(
            f"Unknown step '{step_id}' in workflow {self.workflow.id}",
            execution_id=self.execution_id,
        )

    def _resume_schema_for(self, target: Step, step_id: Optional[str]) -> Any:
        if step_id is not None:
            for nested in target.iter_steps():
                if nested.id == step_id and nested.resume_schema is not None:
                    return nested.resume_schema
        if target.resume_schema is not None:
            return target.resume_schema
        return self.workflow.resume_schema

    async def _call_hook(self, name: str, *args: Any, step: Optional[Step] = None, index: Optional[int] = None) -> None:
        hooks = self.workflow.hooks
        hook = getattr(hooks, name, None) if hooks else None
        if hook is None:
            return
        try:
            await _maybe_await(hook(*args))
        except Exception as e:
            await self._fail(
                HookError(name, e),
                step=step,
                index=index,
                step_input=self.state.data if step is not None else None,
            )

    def _state_copy(self) -> ExecutionState:
        return self.state.model_copy(deep=True)

    def _emit(self, event: StreamEvent) -> None:
        self.stream.emit(event)

    async def _save(self) -> None:
        if self.storage is None:
            return
        await self.storage.save_execution(self.snapshot())


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value
