"""Tests for the individual step variants."""

import asyncio
import logging

import pytest
from pydantic import BaseModel

from agno_stepflow.core import (
    Continue,
    Fail,
    SchemaValidationError,
    StepExecutionError,
    Suspend,
    WorkflowDefinitionError,
    and_agent,
    and_all,
    and_race,
    and_tap,
    and_then,
    and_when,
    run_step,
)
from agno_stepflow.core.steps import assign_step_ids

from conftest import isolated_context, usage


class Approval(BaseModel):
    amount: int


async def run_isolated(step, data=None):
    return await run_step(step, isolated_context(step, data))


async def test_function_step_sync_and_async():
    def double(ctx):
        return ctx.data * 2

    async def increment(ctx):
        await asyncio.sleep(0)
        return ctx.data + 1

    assert await run_isolated(and_then(double), 4) == Continue(8)
    assert await run_isolated(and_then(increment), 4) == Continue(5)


async def test_step_exception_becomes_step_error():
    def broken(ctx):
        raise ValueError("boom")

    outcome = await run_isolated(and_then(broken, id="broken"), 1)

    assert isinstance(outcome, Fail)
    assert isinstance(outcome.error, StepExecutionError)
    assert outcome.error.step_id == "broken"
    assert isinstance(outcome.error.cause, ValueError)


async def test_declared_output_schema_is_enforced():
    step = and_then(lambda ctx: {"amount": "lots"}, output_schema=Approval)

    outcome = await run_isolated(step)

    assert isinstance(outcome, Fail)
    assert isinstance(outcome.error, SchemaValidationError)
    assert outcome.error.boundary == "step-output"


async def test_declared_input_schema_is_enforced():
    step = and_then(lambda ctx: ctx.data, input_schema=Approval)

    assert await run_isolated(step, {"amount": 3}) == Continue({"amount": 3})
    outcome = await run_isolated(and_then(lambda ctx: ctx.data, input_schema=Approval), {})
    assert outcome.error.boundary == "step-input"


async def test_suspend_payload_is_validated():
    step = and_then(
        lambda ctx: ctx.suspend("needs approval", {"amount": 10}),
        id="approve",
        suspend_schema=Approval,
    )
    outcome = await run_isolated(step)
    assert outcome == Suspend(reason="needs approval", payload={"amount": 10}, step_id="approve")

    bad = and_then(lambda ctx: ctx.suspend("x", {"amount": "ten"}), suspend_schema=Approval)
    outcome = await run_isolated(bad)
    assert isinstance(outcome, Fail)
    assert outcome.error.boundary == "suspend"


async def test_agent_step_returns_object_and_reports_usage(make_agent):
    agent = make_agent({"answer": 42}, usage=usage(10, 5))
    step = and_agent(lambda ctx: f"question: {ctx.data}", agent)
    ctx = isolated_context(step, "life", user_id="u1", conversation_id="c1")
    reported = []
    ctx.usage_sink = reported.append

    outcome = await run_step(step, ctx)

    assert outcome == Continue({"answer": 42})
    assert agent.prompts == ["question: life"]
    assert agent.calls[0]["user_id"] == "u1"
    assert agent.calls[0]["conversation_id"] == "c1"
    assert reported[0].total_tokens == 15


async def test_agent_step_validates_against_schema(make_agent):
    step = and_agent("prompt", make_agent({"amount": "many"}), Approval)
    outcome = await run_isolated(step)
    assert isinstance(outcome, Fail)
    assert isinstance(outcome.error, SchemaValidationError)


async def test_conditional_true_runs_inner_step():
    step = and_when(lambda ctx: ctx.data > 0, and_then(lambda ctx: ctx.data * 10))
    assert await run_isolated(step, 3) == Continue(30)


async def test_conditional_false_passes_input_through():
    calls = []
    step = and_when(lambda ctx: False, and_then(lambda ctx: calls.append(1)))

    assert await run_isolated(step, {"x": 1}) == Continue({"x": 1})
    assert calls == []


async def test_conditional_predicate_error_fails_the_step():
    def predicate(ctx):
        raise KeyError("missing")

    step = and_when(predicate, and_then(lambda ctx: ctx.data), id="maybe")
    outcome = await run_isolated(step, 1)

    assert isinstance(outcome, Fail)
    assert isinstance(outcome.error, StepExecutionError)
    assert outcome.error.step_id == "maybe"


async def test_conditional_inner_error_keeps_inner_step_id():
    def broken(ctx):
        raise RuntimeError("inner")

    step = and_when(lambda ctx: True, and_then(broken, id="inner"), id="outer")
    outcome = await run_isolated(step, 1)
    assert outcome.error.step_id == "inner"


async def test_parallel_all_merges_in_declaration_order():
    async def slow_a(ctx):
        await asyncio.sleep(0.02)
        return {"x": 1, "a": True}

    def fast_b(ctx):
        return {"x": 2, "b": True}

    for _ in range(3):
        outcome = await run_isolated(and_all([and_then(slow_a), and_then(fast_b)]), {})
        assert outcome == Continue({"x": 2, "a": True, "b": True})


async def test_parallel_all_members_share_the_input():
    seen = []

    def member(ctx):
        seen.append(ctx.data)
        return {}

    await run_isolated(and_all([and_then(member), and_then(member)]), {"shared": 1})
    assert seen == [{"shared": 1}, {"shared": 1}]


async def test_parallel_all_surfaces_first_error_by_declaration_order():
    async def slow_fail(ctx):
        await asyncio.sleep(0.02)
        raise ValueError("first")

    def fast_fail(ctx):
        raise ValueError("second")

    completed = []

    async def slow_ok(ctx):
        await asyncio.sleep(0.04)
        completed.append(True)
        return {}

    step = and_all([
        and_then(slow_fail, id="a"),
        and_then(fast_fail, id="b"),
        and_then(slow_ok, id="c"),
    ])
    outcome = await run_isolated(step, {})

    assert isinstance(outcome, Fail)
    assert outcome.error.step_id == "a"
    assert str(outcome.error.cause) == "first"
    # All members settled before the error surfaced
    assert completed == [True]


async def test_parallel_all_requires_mapping_outputs():
    step = and_all([and_then(lambda ctx: {"a": 1}), and_then(lambda ctx: 5, id="scalar")])
    outcome = await run_isolated(step, {})
    assert isinstance(outcome, Fail)
    assert outcome.error.step_id == "scalar"


async def test_parallel_all_suspension_suspends_the_group():
    step = and_all([
        and_then(lambda ctx: {"a": 1}),
        and_then(lambda ctx: ctx.suspend("wait"), id="waiter"),
    ])
    outcome = await run_isolated(step, {})
    assert isinstance(outcome, Suspend)
    assert outcome.reason == "wait"


async def test_race_adopts_first_success():
    async def slow(ctx):
        await asyncio.sleep(0.05)
        return {"source": "slow"}

    async def fast(ctx):
        await asyncio.sleep(0.01)
        return {"source": "fast"}

    outcome = await run_isolated(and_race([and_then(slow), and_then(fast)]))
    assert outcome == Continue({"source": "fast"})


async def test_race_skips_failures_until_a_success():
    def cache(ctx):
        raise LookupError("miss")

    async def db(ctx):
        await asyncio.sleep(0.05)
        return {"v": 1}

    outcome = await run_isolated(and_race([and_then(cache), and_then(db)]))
    assert outcome == Continue({"v": 1})


async def test_race_fails_with_last_error_when_all_fail():
    def fast(ctx):
        raise ValueError("fast")

    async def slow(ctx):
        await asyncio.sleep(0.02)
        raise ValueError("slow")

    outcome = await run_isolated(and_race([and_then(fast, id="f"), and_then(slow, id="s")]))

    assert isinstance(outcome, Fail)
    assert outcome.error.step_id == "s"


async def test_race_cancels_losers():
    cancelled = asyncio.Event()

    async def loser(ctx):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return {}

    outcome = await run_isolated(and_race([and_then(loser), and_then(lambda ctx: {"won": True})]))

    assert outcome == Continue({"won": True})
    await asyncio.wait_for(cancelled.wait(), timeout=1)


def test_empty_race_is_rejected():
    with pytest.raises(WorkflowDefinitionError):
        and_race([])


async def test_tap_discards_result_and_swallows_errors(caplog):
    def noisy(ctx):
        raise RuntimeError("tap failed")

    with caplog.at_level(logging.WARNING, logger="agno_stepflow.core.steps"):
        outcome = await run_isolated(and_tap(noisy, id="audit"), {"keep": True})

    assert outcome == Continue({"keep": True})
    record = next(r for r in caplog.records if "audit" in r.getMessage())
    assert record.step_id == "audit"
    assert "tap failed" in record.error


async def test_tap_return_value_is_ignored():
    outcome = await run_isolated(and_tap(lambda ctx: {"replaced": True}), {"original": True})
    assert outcome == Continue({"original": True})


def test_positional_ids_are_assigned():
    steps = [and_then(lambda ctx: 1), and_all([and_then(lambda ctx: {}), and_tap(lambda ctx: None)])]
    assign_step_ids(steps)

    assert steps[0].id == "func-0"
    assert steps[1].id == "parallel-all-1"
    assert [child.id for child in steps[1].children] == ["func-1.0", "tap-1.1"]


def test_duplicate_ids_are_rejected_including_nested():
    steps = [
        and_then(lambda ctx: 1, id="same"),
        and_race([and_then(lambda ctx: {}, id="same")]),
    ]
    with pytest.raises(WorkflowDefinitionError):
        assign_step_ids(steps)
