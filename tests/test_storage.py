"""Tests for storage backends and stateless resume."""

import pytest

from agno_stepflow import InMemoryStorage, SQLiteStorage, Workflow, create_storage_backend
from agno_stepflow.core import (
    ExecutionNotFoundError,
    ExecutionSnapshot,
    ExecutionState,
    ExecutionStatus,
    InvalidStateError,
    StepRecord,
    SuspensionRecord,
    and_then,
)


def make_snapshot(workflow_id="wf", status=ExecutionStatus.SUSPENDED, **state_fields):
    state = ExecutionState(workflow_id=workflow_id, status=status, **state_fields)
    if status == ExecutionStatus.SUSPENDED:
        state.suspension = SuspensionRecord(step_id="gate", step_index=1, reason="wait", payload={"k": 1})
    return ExecutionSnapshot(
        state=state,
        step_records=[StepRecord(step_id="first", input={"a": 1}, output={"a": 2})],
    )


async def test_save_and_get_round_trip(storage):
    snapshot = make_snapshot(user_id="u1", data={"a": 2})

    await storage.save_execution(snapshot)
    loaded = await storage.get_execution(snapshot.execution_id)

    assert loaded.state == snapshot.state
    assert loaded.step_records == snapshot.step_records
    assert await storage.get_execution("missing") is None


async def test_save_replaces_previous_snapshot(storage):
    snapshot = make_snapshot()
    await storage.save_execution(snapshot)

    snapshot.state.status = ExecutionStatus.COMPLETED
    snapshot.state.suspension = None
    await storage.save_execution(snapshot)

    loaded = await storage.get_execution(snapshot.execution_id)
    assert loaded.state.status == ExecutionStatus.COMPLETED
    assert len(await storage.list_executions()) == 1


async def test_list_filters(storage):
    await storage.save_execution(make_snapshot("wf-a"))
    await storage.save_execution(make_snapshot("wf-a", ExecutionStatus.COMPLETED))
    await storage.save_execution(make_snapshot("wf-b"))

    assert len(await storage.list_executions()) == 3
    assert len(await storage.list_executions(workflow_id="wf-a")) == 2
    assert len(await storage.list_executions(status=ExecutionStatus.COMPLETED)) == 1
    assert len(await storage.list_executions(limit=2)) == 2
    assert len(await storage.list_suspended()) == 2
    assert [s.workflow_id for s in await storage.list_suspended("wf-b")] == ["wf-b"]


async def test_delete(storage):
    snapshot = make_snapshot()
    await storage.save_execution(snapshot)

    assert await storage.delete_execution(snapshot.execution_id) is True
    assert await storage.delete_execution(snapshot.execution_id) is False
    assert await storage.get_execution(snapshot.execution_id) is None


async def test_cleanup_keeps_suspended_executions(storage):
    await storage.save_execution(make_snapshot(status=ExecutionStatus.SUSPENDED))
    await storage.save_execution(make_snapshot(status=ExecutionStatus.COMPLETED))
    await storage.save_execution(make_snapshot(status=ExecutionStatus.ERROR))

    # A negative age puts the cutoff in the future
    deleted = await storage.cleanup_old_executions(days=-1)

    assert deleted == 2
    remaining = await storage.list_executions()
    assert [s.state.status for s in remaining] == [ExecutionStatus.SUSPENDED]


def build_gate_workflow(storage):
    def gate(ctx):
        if ctx.resume_data is None:
            return ctx.suspend("approve", {"total": ctx.data["total"]})
        return {**ctx.data, "approved": ctx.resume_data}

    return Workflow(
        "persisted",
        [
            and_then(lambda ctx: {"total": ctx.data * 2}, id="compute"),
            and_then(gate, id="gate"),
            and_then(lambda ctx: ctx.data, id="finish"),
        ],
        storage=storage,
    )


async def test_snapshots_follow_every_transition(storage):
    workflow = build_gate_workflow(storage)

    suspended = await workflow.run(21)
    snapshot = await storage.get_execution(suspended.execution_id)

    assert snapshot.state.status == ExecutionStatus.SUSPENDED
    assert snapshot.state.current_step_index == 1
    assert snapshot.state.suspension.payload == {"total": 42}
    assert [r.step_id for r in snapshot.step_records] == ["compute"]


async def test_stateless_resume_from_another_definition_instance(storage):
    suspended = await build_gate_workflow(storage).run(21)

    # Same definition built again, as another process would
    fresh = build_gate_workflow(storage)
    done = await fresh.resume(suspended.execution_id, True)

    assert done.status == ExecutionStatus.COMPLETED
    assert done.result == {"total": 42, "approved": True}
    stored = await storage.get_execution(suspended.execution_id)
    assert stored.state.status == ExecutionStatus.COMPLETED
    assert [r.step_id for r in stored.step_records] == ["compute", "gate", "finish"]


async def test_stateless_resume_rejects_unknown_and_finished(storage):
    workflow = build_gate_workflow(storage)

    with pytest.raises(ExecutionNotFoundError):
        await workflow.resume("does-not-exist", True)

    completed = make_snapshot("persisted", ExecutionStatus.COMPLETED)
    await storage.save_execution(completed)
    with pytest.raises(InvalidStateError):
        await workflow.resume(completed.execution_id, True)


async def test_stateless_resume_checks_workflow_id(storage):
    suspended = await build_gate_workflow(storage).run(1)
    other = Workflow("other", [and_then(lambda ctx: 1)], storage=storage)

    with pytest.raises(ExecutionNotFoundError):
        await other.resume(suspended.execution_id, True)


async def test_errored_execution_is_persisted(storage):
    def broken(ctx):
        raise RuntimeError("db down")

    workflow = Workflow("wf", [and_then(broken, id="broken")], storage=storage)
    controller = workflow.create_controller()
    with pytest.raises(Exception):
        await controller.run(None)

    snapshot = await storage.get_execution(controller.execution_id)
    assert snapshot.state.status == ExecutionStatus.ERROR
    assert snapshot.state.error["step_id"] == "broken"


def test_factory_selects_backend(monkeypatch, tmp_path):
    monkeypatch.setenv("SQLITE_DB_PATH", str(tmp_path / "db" / "stepflow.db"))

    assert isinstance(create_storage_backend("memory"), InMemoryStorage)
    assert isinstance(create_storage_backend("sqlite"), SQLiteStorage)

    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    assert isinstance(create_storage_backend(), InMemoryStorage)


def test_factory_requires_postgres_dsn(monkeypatch):
    monkeypatch.delenv("POSTGRES_DSN", raising=False)
    with pytest.raises(ValueError):
        create_storage_backend("postgres")


def test_factory_rejects_unknown_backend():
    with pytest.raises(ValueError):
        create_storage_backend("clickhouse")
