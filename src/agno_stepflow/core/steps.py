"""Step variants and their execution.

A step is one of six kinds (function, agent call, conditional, parallel-all,
parallel-race, tap). Step bodies receive a single ``StepContext`` carrying the
current data, a read-only ``StepState``, a stream writer and, on the first
step run after a resume, the resume payload.

Running a step produces a tri-state ``StepOutcome``:

- ``Continue(data)``: the step returned normally
- ``Suspend(reason, payload)``: the step returned ``ctx.suspend(...)``
- ``Fail(error)``: the step raised, or a boundary validation failed

Suspension is requested by *returning* the marker built by
``ctx.suspend()``; nothing in the step runs after that return.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Union

import logging
logger = logging.getLogger(__name__)

from ..monitoring.stream import NoOpStreamWriter, StreamWriter
from .agents import AgentResult, StructuredAgent
from .errors import StepExecutionError, WorkflowDefinitionError, WorkflowError
from .models import StepRecord, UsageInfo
from .schema import Boundary, json_schema, validate
from .state import StepDataRegistry, StepState


class StepKind(str, Enum):
    """Step variant tags."""

    FUNC = "func"
    AGENT = "agent"
    CONDITIONAL = "conditional-when"
    PARALLEL_ALL = "parallel-all"
    PARALLEL_RACE = "parallel-race"
    TAP = "tap"


@dataclass(frozen=True)
class Continue:
    data: Any


@dataclass(frozen=True)
class Suspend:
    """Suspension request; also the marker returned by ``ctx.suspend()``."""

    reason: Optional[str] = None
    payload: Any = None
    step_id: Optional[str] = None


@dataclass(frozen=True)
class Fail:
    error: WorkflowError


StepOutcome = Union[Continue, Suspend, Fail]


@dataclass
class StepContext:
    """Everything a step body can see.

    Attributes:
        data: Current accumulated value (the step's input)
        state: Read-only execution state
        writer: Handle for custom stream events
        resume_data: Resume payload, only on the first step run after a resume
        step: The step being executed
    """

    data: Any
    state: StepState
    writer: StreamWriter
    step: "Step"
    resume_data: Any = None
    registry: StepDataRegistry = field(default_factory=StepDataRegistry)
    usage_sink: Optional[Callable[[UsageInfo], Any]] = None
    child_records: List[StepRecord] = field(default_factory=list)
    default_suspend_schema: Any = None

    @property
    def execution_id(self) -> str:
        return self.state.execution_id

    @property
    def user_context(self) -> Dict[str, Any]:
        return self.state.user_context

    def suspend(self, reason: Optional[str] = None, payload: Any = None) -> Suspend:
        """Build a suspension request. The step must return it."""
        return Suspend(reason=reason, payload=payload, step_id=self.step.id)

    def get_step_data(self, step_id: str) -> Optional[StepRecord]:
        """Input/output of a previously executed step."""
        return self.registry.get(step_id)

    def report_usage(self, usage: Optional[UsageInfo]) -> None:
        if usage is not None and self.usage_sink is not None:
            self.usage_sink(usage)

    def child(self, step: "Step") -> "StepContext":
        """Context for a nested step sharing this step's input and sinks."""
        return StepContext(
            data=self.data,
            state=self.state,
            writer=self.writer.for_step(step.id),
            step=step,
            resume_data=self.resume_data,
            registry=self.registry,
            usage_sink=self.usage_sink,
            child_records=self.child_records,
            default_suspend_schema=self.default_suspend_schema,
        )

    def record_child(self, step_id: str, input: Any, output: Any) -> None:
        # Written to the registry by the controller once the group step settles
        self.child_records.append(StepRecord(step_id=step_id, input=input, output=output))


StepFunc = Callable[[StepContext], Union[Any, Awaitable[Any]]]
Predicate = Callable[[StepContext], Union[bool, Awaitable[bool]]]


def _callable_name(fn: Callable) -> Optional[str]:
    name = getattr(fn, "__name__", None)
    return None if name == "<lambda>" else name


async def _call(fn: Callable, ctx: StepContext) -> Any:
    result = fn(ctx)
    if inspect.isawaitable(result):
        result = await result
    return result


class Step:
    """Base class for all step variants."""

    kind: StepKind

    def __init__(
        self,
        id: Optional[str] = None,
        name: Optional[str] = None,
        purpose: Optional[str] = None,
        input_schema: Any = None,
        output_schema: Any = None,
        suspend_schema: Any = None,
        resume_schema: Any = None,
    ):
        self.id = id
        self._name = name
        self.purpose = purpose
        self.input_schema = input_schema
        self.output_schema = output_schema
        self.suspend_schema = suspend_schema
        self.resume_schema = resume_schema

    @property
    def name(self) -> str:
        return self._name or self.id or self.kind.value

    @property
    def children(self) -> Sequence["Step"]:
        return ()

    def iter_steps(self) -> Iterator["Step"]:
        """Yield this step and every nested step, depth first."""
        yield self
        for child in self.children:
            yield from child.iter_steps()

    async def execute(self, ctx: StepContext) -> Any:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "type": self.kind.value,
            "purpose": self.purpose,
            "inputSchema": json_schema(self.input_schema),
            "outputSchema": json_schema(self.output_schema),
            "suspendSchema": json_schema(self.suspend_schema),
            "resumeSchema": json_schema(self.resume_schema),
        }
        if self.children:
            data["subSteps"] = [child.to_dict() for child in self.children]
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"


class FunctionStep(Step):
    """Runs a plain (sync or async) function of the context."""

    kind = StepKind.FUNC

    def __init__(self, fn: StepFunc, **kwargs: Any):
        kwargs.setdefault("name", _callable_name(fn))
        super().__init__(**kwargs)
        self.fn = fn

    async def execute(self, ctx: StepContext) -> Any:
        return await _call(self.fn, ctx)


class AgentStep(Step):
    """Asks an agent for a structured object matching ``schema``.

    ``task`` is either a prompt string or a function of the context returning
    one. The agent's usage is reported to the execution's accumulator.
    """

    kind = StepKind.AGENT

    def __init__(
        self,
        task: Union[str, Callable[[StepContext], Any]],
        agent: StructuredAgent,
        schema: Any = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("output_schema", schema)
        super().__init__(**kwargs)
        self.task = task
        self.agent = agent
        self.schema = schema

    async def execute(self, ctx: StepContext) -> Any:
        prompt = self.task if isinstance(self.task, str) else await _call(self.task, ctx)

        result = await self.agent.generate_object(
            prompt,
            self.schema,
            user_id=ctx.state.user_id,
            conversation_id=ctx.state.conversation_id,
            user_context=ctx.state.user_context,
        )
        if not isinstance(result, AgentResult):
            result = AgentResult.model_validate(result)

        ctx.report_usage(result.usage)
        return result.object


class ConditionalStep(Step):
    """Runs ``step`` only when ``condition`` holds; otherwise passes input through.

    An exception raised by the condition fails the step.
    """

    kind = StepKind.CONDITIONAL

    def __init__(self, condition: Predicate, step: Step, **kwargs: Any):
        super().__init__(**kwargs)
        self.condition = condition
        self.step = step

    @property
    def children(self) -> Sequence[Step]:
        return (self.step,)

    async def execute(self, ctx: StepContext) -> Any:
        if not await _call(self.condition, ctx):
            return ctx.data

        outcome = await run_step(self.step, ctx.child(self.step))
        if isinstance(outcome, Fail):
            raise outcome.error
        if isinstance(outcome, Suspend):
            return outcome
        ctx.record_child(self.step.id, ctx.data, outcome.data)
        return outcome.data


class ParallelAllStep(Step):
    """Runs every member concurrently on the same input and merges the outputs.

    Members must return mappings; they are merged in declaration order, so on
    key collisions the later member wins. Once all members settle, the first
    failure in declaration order fails the group; otherwise the first
    suspension suspends it.

    On resume after a suspension the whole group runs again from scratch,
    including members that had already completed.
    """

    kind = StepKind.PARALLEL_ALL

    def __init__(self, steps: Sequence[Step], **kwargs: Any):
        super().__init__(**kwargs)
        self.steps = tuple(steps)

    @property
    def children(self) -> Sequence[Step]:
        return self.steps

    async def execute(self, ctx: StepContext) -> Any:
        outcomes = await asyncio.gather(
            *(run_step(step, ctx.child(step)) for step in self.steps)
        )

        for outcome in outcomes:
            if isinstance(outcome, Fail):
                raise outcome.error
        for outcome in outcomes:
            if isinstance(outcome, Suspend):
                return outcome

        merged: Dict[str, Any] = {}
        for step, outcome in zip(self.steps, outcomes):
            if not isinstance(outcome.data, Mapping):
                raise StepExecutionError(
                    step.id,
                    TypeError(
                        f"parallel member must return a mapping, got {type(outcome.data).__name__}"
                    ),
                )
            merged.update(outcome.data)

        for step, outcome in zip(self.steps, outcomes):
            ctx.record_child(step.id, ctx.data, outcome.data)
        return merged


class ParallelRaceStep(Step):
    """Runs every member concurrently and adopts the first success.

    Failures are skipped while other members are still running; the group
    fails with the last error only when every member failed. A member that
    suspends settles the race as suspended. Members that finish in the same
    scheduler tick are considered in declaration order. Remaining members are
    cancelled once the race settles.

    On resume after a suspension the whole group runs again from scratch.
    """

    kind = StepKind.PARALLEL_RACE

    def __init__(self, steps: Sequence[Step], **kwargs: Any):
        super().__init__(**kwargs)
        if not steps:
            raise WorkflowDefinitionError("A race needs at least one step")
        self.steps = tuple(steps)

    @property
    def children(self) -> Sequence[Step]:
        return self.steps

    async def execute(self, ctx: StepContext) -> Any:
        tasks = [
            asyncio.create_task(run_step(step, ctx.child(step)), name=f"race:{step.id}")
            for step in self.steps
        ]
        order = {task: index for index, task in enumerate(tasks)}
        pending = set(tasks)
        last_error: Optional[WorkflowError] = None

        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in sorted(done, key=order.__getitem__):
                    outcome = task.result()
                    if isinstance(outcome, Continue):
                        step = self.steps[order[task]]
                        ctx.record_child(step.id, ctx.data, outcome.data)
                        logger.debug(f"Race {self.id} won by {step.id}")
                        return outcome.data
                    if isinstance(outcome, Suspend):
                        return outcome
                    last_error = outcome.error
        finally:
            for task in pending:
                task.cancel()

        raise last_error


class TapStep(Step):
    """Runs a function for its side effects; input always passes through.

    Exceptions raised by the function are logged and swallowed.
    """

    kind = StepKind.TAP

    def __init__(self, fn: StepFunc, **kwargs: Any):
        kwargs.setdefault("name", _callable_name(fn))
        super().__init__(**kwargs)
        self.fn = fn

    async def execute(self, ctx: StepContext) -> Any:
        try:
            await _call(self.fn, ctx)
        except Exception as e:
            logger.warning(
                f"Tap step {self.id} failed, continuing: {e}",
                extra={"step_id": self.id, "error": repr(e)},
                exc_info=True,
            )
        return ctx.data


async def run_step(step: Step, ctx: StepContext) -> StepOutcome:
    """Execute one step and classify the result.

    Validates the step's declared input, output and suspend payload schemas.
    Only cancellation propagates as an exception.
    """
    try:
        data = validate(step.input_schema, ctx.data, Boundary.STEP_INPUT, step.id)
        if data is not ctx.data:
            ctx.data = data

        result = await step.execute(ctx)

        if isinstance(result, Suspend):
            if result.step_id in (None, step.id):
                schema = step.suspend_schema if step.suspend_schema is not None else ctx.default_suspend_schema
                payload = validate(schema, result.payload, Boundary.SUSPEND, step.id)
                result = Suspend(reason=result.reason, payload=payload, step_id=step.id)
            return result

        output = validate(step.output_schema, result, Boundary.STEP_OUTPUT, step.id)
        return Continue(output)

    except WorkflowError as e:
        return Fail(e)
    except Exception as e:
        logger.debug(f"Step {step.id} raised {type(e).__name__}: {e}")
        return Fail(StepExecutionError(step.id, e))


# Builders

def and_then(fn: StepFunc, id: Optional[str] = None, **kwargs: Any) -> FunctionStep:
    """Sequential function step."""
    return FunctionStep(fn, id=id, **kwargs)


def and_agent(
    task: Union[str, Callable[[StepContext], Any]],
    agent: StructuredAgent,
    schema: Any = None,
    id: Optional[str] = None,
    **kwargs: Any,
) -> AgentStep:
    """Agent call step returning an object matching ``schema``."""
    return AgentStep(task, agent, schema=schema, id=id, **kwargs)


def and_when(condition: Predicate, step: Step, id: Optional[str] = None, **kwargs: Any) -> ConditionalStep:
    """Conditional step wrapping ``step``."""
    return ConditionalStep(condition, step, id=id, **kwargs)


def and_all(steps: Sequence[Step], id: Optional[str] = None, **kwargs: Any) -> ParallelAllStep:
    """All-parallel group. A suspended group re-runs all members on resume."""
    return ParallelAllStep(steps, id=id, **kwargs)


def and_race(steps: Sequence[Step], id: Optional[str] = None, **kwargs: Any) -> ParallelRaceStep:
    """Race-parallel group. A suspended group re-runs all members on resume."""
    return ParallelRaceStep(steps, id=id, **kwargs)


def and_tap(fn: StepFunc, id: Optional[str] = None, **kwargs: Any) -> TapStep:
    """Side-effect step whose failures never surface."""
    return TapStep(fn, id=id, **kwargs)


def assign_step_ids(steps: Sequence[Step]) -> None:
    """Give unnamed steps positional ids and check uniqueness.

    Positional ids look like ``func-0`` or ``parallel-all-2.1`` so the same
    definition built in another process yields the same ids.

    Raises:
        WorkflowDefinitionError: If two steps share an id
    """
    def assign(step: Step, path: str) -> None:
        if not step.id:
            step.id = f"{step.kind.value}-{path}"
        for index, child in enumerate(step.children):
            assign(child, f"{path}.{index}")

    for index, step in enumerate(steps):
        assign(step, str(index))

    seen = set()
    for step in steps:
        for nested in step.iter_steps():
            if nested.id in seen:
                raise WorkflowDefinitionError(f"Duplicate step id '{nested.id}'")
            seen.add(nested.id)


def noop_context(step: Step, data: Any, state: StepState) -> StepContext:
    """Context with a discarding writer, for running a step in isolation."""
    return StepContext(
        data=data,
        state=state,
        writer=NoOpStreamWriter(state.execution_id, step.id or "", state.step_index),
        step=step,
    )
