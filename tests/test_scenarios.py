"""End-to-end scenarios over the bundled workflows and composed steps."""

import asyncio

import pytest

from agno_stepflow import (
    Workflow,
    create_approval_workflow,
    create_retrieval_workflow,
)
from agno_stepflow.core import (
    ExecutionStatus,
    and_agent,
    and_all,
    and_race,
    and_tap,
    and_then,
    validate,
)

from conftest import usage


async def collect(handle):
    return [event async for event in handle]


async def test_auto_approve():
    handle = create_approval_workflow().stream({"amount": 50})
    events = await collect(handle)
    result = await handle.result()

    assert result.status == ExecutionStatus.COMPLETED
    assert result.result["approved"] is True
    assert "workflow-suspended" not in [e.type for e in events]


async def test_manual_approval():
    workflow = create_approval_workflow()

    first = await workflow.run({"amount": 5000})
    assert first.status == ExecutionStatus.SUSPENDED
    assert first.suspension.reason

    second = await first.resume({"approved": True, "approverId": "m1"})

    assert second.status == ExecutionStatus.COMPLETED
    assert second.result["approved"] is True
    assert second.result["approvedBy"] == "m1"


async def test_race_timeout_fallback():
    def cache(ctx):
        raise LookupError("miss")

    async def db(ctx):
        await asyncio.sleep(0.05)
        return {"v": 1}

    workflow = Workflow("lookup", [and_race([and_then(cache, id="cache"), and_then(db, id="db")])])
    result = await workflow.run({})

    assert result.result == {"v": 1}


async def test_tap_swallow():
    received = []

    def broken_audit(ctx):
        raise RuntimeError("audit sink down")

    workflow = Workflow(
        "audited",
        [
            and_then(lambda ctx: {"total": 3}),
            and_tap(broken_audit),
            and_then(lambda ctx: received.append(ctx.data) or ctx.data),
        ],
    )
    result = await workflow.run(None)

    assert result.status == ExecutionStatus.COMPLETED
    assert received == [{"total": 3}]


async def test_parallel_all_merge_is_deterministic():
    async def a(ctx):
        await asyncio.sleep(0.01)
        return {"x": 1}

    workflow = Workflow("merge", [and_all([and_then(a), and_then(lambda ctx: {"x": 2})])])

    results = [(await workflow.run({})).result for _ in range(5)]
    assert results == [{"x": 2}] * 5


async def test_sequential_determinism():
    workflow = create_approval_workflow()

    async def run_once():
        handle = workflow.stream({"amount": 10})
        events = await collect(handle)
        return (await handle.result()).result, [e.type for e in events]

    assert await run_once() == await run_once()


async def test_resume_reenters_the_suspended_step():
    entered = []

    def step(name, gate=False):
        def body(ctx):
            entered.append(name)
            if gate and ctx.resume_data is None:
                return ctx.suspend("hold")
            return ctx.data
        return and_then(body, id=name)

    workflow = Workflow("positions", [step("s0"), step("s1", gate=True), step("s2")])
    suspended = await workflow.run(None)
    assert suspended.suspension.step_index == 1

    await suspended.resume("go")

    assert entered == ["s0", "s1", "s1", "s2"]


async def test_usage_is_monotonic_across_resume(make_agent):
    def gate(ctx):
        if ctx.resume_data is None:
            return ctx.suspend("review tokens")
        return ctx.data

    workflow = Workflow(
        "metered",
        [
            and_agent("draft", make_agent({"draft": 1}, usage=usage(10, 5))),
            and_then(gate),
            and_agent("polish", make_agent({"final": 1}, usage=usage(4, 1))),
        ],
    )

    suspended = await workflow.run(None)
    done = await suspended.resume(True)

    assert suspended.usage.total_tokens == 15
    assert done.usage.total_tokens >= suspended.usage.total_tokens
    assert done.usage.total_tokens == 20


@pytest.mark.parametrize("value", [{"amount": 12.5, "description": "", "requester": None}])
def test_schema_round_trip(value):
    from agno_stepflow.workflows.approval import ExpenseRequest

    validated = validate(ExpenseRequest, value)

    assert validated == value
    assert validate(ExpenseRequest, validated) == validated


async def test_retrieval_workflow_with_fake_agents(make_agent):
    web = make_agent({"web_results": "AI news roundup", "web_sources": ["https://a.example"]}, usage=usage(3, 2))
    news = make_agent({"news_results": "Chip launch", "headlines": ["Launch day"]}, usage=usage(2, 2))
    summarizer = make_agent({"summary": "Busy week", "key_findings": ["chips"]}, usage=usage(6, 4))

    workflow = create_retrieval_workflow(web_agent=web, news_agent=news, summary_agent=summarizer)
    handle = workflow.stream({"query": "AI hardware"})
    events = await collect(handle)
    result = await handle.result()

    assert result.result == {"summary": "Busy week", "key_findings": ["chips"]}
    assert result.usage.total_tokens == 19
    assert web.prompts == ["Search the web for: AI hardware"]

    prompt = summarizer.prompts[0]
    assert "Query: AI hardware" in prompt
    assert "AI news roundup" in prompt
    assert "- Launch day" in prompt

    sources = next(e for e in events if e.type == "retrieval-sources")
    assert sources.output == {"webSources": ["https://a.example"], "headlines": ["Launch day"]}
