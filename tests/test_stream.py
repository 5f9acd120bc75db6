"""Tests for the ordered execution stream."""

import asyncio

import pytest

from agno_stepflow import Workflow
from agno_stepflow.core import ExecutionStatus, StepExecutionError, and_all, and_then
from agno_stepflow.monitoring import EventFactory, NoOpStreamWriter, StreamController, StreamWriter


def event(execution_id, type, **fields):
    return EventFactory.custom(execution_id, type, "test", **fields)


async def collect(iterable):
    return [item async for item in iterable]


async def test_events_are_replayed_in_order_to_late_subscribers():
    stream = StreamController("e1")
    for i in range(3):
        stream.emit(event("e1", f"tick-{i}"))
    stream.close()

    first = await collect(stream)
    second = await collect(stream)

    assert [e.type for e in first] == ["tick-0", "tick-1", "tick-2"]
    assert first == second


async def test_iterator_waits_for_new_events_until_closed():
    stream = StreamController("e1")
    consumer = asyncio.create_task(collect(stream))

    await asyncio.sleep(0)
    stream.emit(event("e1", "a"))
    await asyncio.sleep(0)
    stream.emit(event("e1", "b"))
    stream.close()

    events = await asyncio.wait_for(consumer, timeout=1)
    assert [e.type for e in events] == ["a", "b"]


async def test_emit_after_close_is_dropped():
    stream = StreamController("e1")
    stream.close()
    stream.emit(event("e1", "late"))
    assert stream.events == []


async def test_abort_is_idempotent_and_closes():
    stream = StreamController("e1")
    stream.abort()
    stream.abort()

    assert stream.aborted
    assert stream.closed
    await asyncio.wait_for(stream.wait_aborted(), timeout=1)


async def test_listener_errors_do_not_break_emission():
    stream = StreamController("e1")
    seen = []

    def bad_listener(e):
        raise RuntimeError("listener down")

    stream.add_listener(bad_listener)
    stream.add_listener(seen.append)
    stream.emit(event("e1", "x"))

    assert [e.type for e in seen] == ["x"]
    assert len(stream.events) == 1


def test_event_wire_format():
    e = EventFactory.custom("e1", "progress", "step-a", step_index=2, output={"pct": 50}, phase="fetch")
    wire = e.to_dict()

    assert wire["type"] == "progress"
    assert wire["executionId"] == "e1"
    assert wire["from"] == "step-a"
    assert wire["stepIndex"] == 2
    assert wire["output"] == {"pct": 50}
    assert wire["metadata"] == {"phase": "fetch"}
    assert "input" not in wire
    assert "error" not in wire


async def test_custom_events_sit_between_step_lifecycle_events():
    def chatty(ctx):
        ctx.writer.write("progress", output=50)
        ctx.writer.write("progress", output=100)
        return ctx.data

    workflow = Workflow("wf", [and_then(lambda ctx: 1, id="one"), and_then(chatty, id="chatty")])
    handle = workflow.stream(None)
    events = await collect(handle)
    await handle.result()

    types = [(e.type, e.from_) for e in events]
    assert types == [
        ("workflow-start", "wf"),
        ("step-start", "one"),
        ("step-complete", "one"),
        ("step-start", "chatty"),
        ("progress", "chatty"),
        ("progress", "chatty"),
        ("step-complete", "chatty"),
        ("workflow-complete", "wf"),
    ]
    assert events[4].step_index == 1


async def test_parallel_members_write_under_their_own_ids():
    def member(name):
        def write(ctx):
            ctx.writer.write("hello")
            return {name: True}
        return write

    workflow = Workflow("wf", [and_all([and_then(member("a"), id="a"), and_then(member("b"), id="b")])])
    handle = workflow.stream({})
    events = await collect(handle)

    sources = sorted(e.from_ for e in events if e.type == "hello")
    assert sources == ["a", "b"]


async def test_pipe_from_relays_agent_parts():
    async def agent_stream():
        yield {"type": "text-delta", "textDelta": "Hel"}
        yield {"type": "text-delta", "textDelta": "lo"}
        yield {"type": "tool-call", "toolName": "search", "toolCallId": "t1", "args": {"q": "x"}}
        yield {"type": "finish", "finishReason": "stop"}

    stream = StreamController("e1")
    writer = StreamWriter(stream, "e1", "summarize", 3)

    await writer.pipe_from(
        agent_stream(),
        prefix="agent-",
        agent_id="summarizer",
        event_filter=lambda part: part["type"] != "finish",
    )

    events = stream.events
    assert [e.type for e in events] == ["agent-text-delta", "agent-text-delta", "agent-tool-call"]
    assert "".join(e.output for e in events[:2]) == "Hello"
    assert all(e.from_ == "summarizer" for e in events)
    assert events[2].input == {"q": "x"}
    assert events[2].metadata["toolName"] == "search"
    assert events[0].metadata["originalType"] == "text-delta"


async def test_pipe_from_attributes_sub_agent_parts():
    stream = StreamController("e1")
    writer = StreamWriter(stream, "e1", "step", 0)

    await writer.pipe_from([{"type": "text-delta", "textDelta": "x", "subAgentName": "helper"}])

    assert stream.events[0].from_ == "helper"


async def test_noop_writer_drains_the_source():
    consumed = []

    async def source():
        for i in range(3):
            consumed.append(i)
            yield {"type": "text-delta", "textDelta": str(i)}

    writer = NoOpStreamWriter("e1", "step", 0)
    assert writer.write("ignored") is None
    await writer.pipe_from(source())

    assert consumed == [0, 1, 2]


async def test_non_streamed_runs_discard_custom_events():
    workflow = Workflow("wf", [and_then(lambda ctx: ctx.writer.write("custom"))])
    controller = workflow.create_controller()
    await controller.run(None)

    assert "custom" not in [e.type for e in controller.stream.events]


async def test_stream_stays_open_across_suspend_and_resume():
    def gate(ctx):
        if ctx.resume_data is None:
            return ctx.suspend("approve?")
        return {"approved": ctx.resume_data}

    workflow = Workflow("wf", [and_then(gate, id="gate"), and_then(lambda ctx: ctx.data, id="done")])
    handle = workflow.stream(None)
    consumer = asyncio.create_task(collect(handle))

    suspended = await handle.result()
    assert suspended.status == ExecutionStatus.SUSPENDED
    await asyncio.sleep(0)
    assert not consumer.done()

    completed = await handle.resume(True)
    events = await asyncio.wait_for(consumer, timeout=1)

    assert completed.result == {"approved": True}
    assert [e.type for e in events] == [
        "workflow-start",
        "step-start",
        "workflow-suspended",
        "workflow-resumed",
        "step-start",
        "step-complete",
        "step-start",
        "step-complete",
        "workflow-complete",
    ]


async def test_stream_ends_on_workflow_error():
    def broken(ctx):
        raise ValueError("nope")

    handle = Workflow("wf", [and_then(broken, id="broken")]).stream(None)
    events = await asyncio.wait_for(collect(handle), timeout=1)

    assert [e.type for e in events][-2:] == ["step-error", "workflow-error"]
    assert events[-1].error["type"] == "StepExecutionError"
    with pytest.raises(StepExecutionError):
        await handle.result()
