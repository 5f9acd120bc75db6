"""Shared fixtures for the test suite."""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from agno_stepflow import InMemoryStorage, SQLiteStorage, WorkflowManager
from agno_stepflow.core import AgentResult, ExecutionState, StepState, UsageInfo
from agno_stepflow.core.steps import assign_step_ids, noop_context


class FakeAgent:
    """Agent double returning a canned object and usage."""

    def __init__(
        self,
        obj: Any = None,
        usage: Optional[UsageInfo] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self.obj = obj
        self.usage = usage
        self.delay = delay
        self.error = error
        self.prompts: List[str] = []
        self.calls: List[Dict[str, Any]] = []

    async def generate_object(
        self,
        prompt: str,
        schema: Any,
        user_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        user_context: Optional[Dict[str, Any]] = None,
    ) -> AgentResult:
        self.prompts.append(prompt)
        self.calls.append({
            "schema": schema,
            "user_id": user_id,
            "conversation_id": conversation_id,
            "user_context": user_context,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        obj = self.obj(prompt) if callable(self.obj) else self.obj
        return AgentResult(object=obj, usage=self.usage)


def usage(prompt: int, completion: int) -> UsageInfo:
    return UsageInfo(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=prompt + completion,
    )


def isolated_context(step, data: Any = None, **state_fields: Any):
    """Context for running a single step outside a workflow."""
    assign_step_ids([step])
    state = ExecutionState(workflow_id="isolated", **state_fields)
    return noop_context(step, data, StepState.from_execution(state, 0))


@pytest.fixture
def make_agent():
    return FakeAgent


@pytest.fixture
async def memory_storage():
    storage = InMemoryStorage()
    await storage.initialize()
    yield storage
    await storage.close()


@pytest.fixture(params=["memory", "sqlite"])
async def storage(request):
    """Every backend that runs without external services."""
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(":memory:")
    await backend.initialize()
    yield backend
    await backend.close()


@pytest.fixture
async def manager():
    """Create a workflow manager for testing."""
    storage = SQLiteStorage(":memory:")  # In-memory database for tests
    manager = WorkflowManager(storage=storage)
    await manager.initialize()
    yield manager
    await manager.close()
