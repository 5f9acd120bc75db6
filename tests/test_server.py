"""Tests for the REST and SSE surface."""

import json

import pytest
from fastapi.testclient import TestClient

from agno_stepflow import SQLiteStorage, WorkflowManager
from agno_stepflow.server import create_app

BASE = "/workflows/expense-approval"


@pytest.fixture
def client():
    # The app owns the manager's lifecycle through its lifespan
    app = create_app(WorkflowManager(storage=SQLiteStorage(":memory:")))
    with TestClient(app) as client:
        yield client


def read_events(response):
    return [
        json.loads(line[len("data: "):])
        for line in response.iter_lines()
        if line.startswith("data: ")
    ]


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["components"]["storage"]["status"] == "healthy"


def test_list_and_describe_workflows(client):
    listed = client.get("/workflows").json()["data"]
    assert listed == [{
        "id": "expense-approval",
        "name": "Expense approval",
        "purpose": "Approve expenses, escalating large ones to a manager",
        "stepCount": 3,
    }]

    described = client.get(BASE).json()["data"]
    assert "amount" in described["inputSchema"]["properties"]
    assert [step["id"] for step in described["steps"]] == [
        "review-expense", "announce-decision", "finalize",
    ]


def test_unknown_workflow_is_404(client):
    response = client.post("/workflows/nope/execute", json={"input": {}})

    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": {
            "type": "WorkflowNotFoundError",
            "message": "Workflow nope not found",
            "execution_id": None,
        },
    }


def test_execute_auto_approved(client):
    response = client.post(f"{BASE}/execute", json={"input": {"amount": 50}})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "completed"
    assert data["result"] == {"approved": True, "approvedBy": "auto", "amount": 50}
    assert data["suspension"] is None


def test_invalid_input_is_400(client):
    response = client.post(f"{BASE}/execute", json={"input": {"amount": "lots"}})

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["type"] == "SchemaValidationError"
    assert error["boundary"] == "input"
    assert error["path"] == "amount"


def test_suspend_and_resume_round_trip(client):
    started = client.post(
        f"{BASE}/execute",
        json={"input": {"amount": 5000}, "options": {"userId": "u1"}},
    ).json()["data"]
    execution_id = started["executionId"]

    assert started["status"] == "suspended"
    assert started["suspension"]["payload"]["limit"] == 1000

    detail = client.get(f"{BASE}/executions/{execution_id}").json()["data"]
    assert detail["snapshot"]["state"]["user_id"] == "u1"
    assert detail["analysis"]["resumption_analysis"]["resumable"] is True

    pending = client.get(f"{BASE}/executions", params={"status": "suspended"}).json()["data"]
    assert [s["state"]["execution_id"] for s in pending] == [execution_id]

    resumed = client.post(
        f"{BASE}/executions/{execution_id}/resume",
        json={"resumeData": {"approved": True, "approverId": "m1"}},
    )
    assert resumed.status_code == 200
    assert resumed.json()["data"]["result"]["approvedBy"] == "m1"

    again = client.post(
        f"{BASE}/executions/{execution_id}/resume",
        json={"resumeData": {"approved": True, "approverId": "m1"}},
    )
    assert again.status_code == 404
    assert again.json()["success"] is False


def test_invalid_resume_payload_is_400(client):
    execution_id = client.post(f"{BASE}/execute", json={"input": {"amount": 5000}}).json()["data"]["executionId"]

    response = client.post(f"{BASE}/executions/{execution_id}/resume", json={"resumeData": {"approved": True}})

    assert response.status_code == 400
    assert response.json()["error"]["boundary"] == "resume"


def test_suspend_endpoint_errors(client):
    execution_id = client.post(f"{BASE}/execute", json={"input": {"amount": 5000}}).json()["data"]["executionId"]

    not_running = client.post(f"{BASE}/executions/{execution_id}/suspend", json={"reason": "x"})
    assert not_running.status_code == 400
    assert not_running.json()["error"]["type"] == "InvalidStateError"

    unknown = client.post(f"{BASE}/executions/unknown/suspend", json={})
    assert unknown.status_code == 404


def test_list_executions_filters(client):
    client.post(f"{BASE}/execute", json={"input": {"amount": 5}})
    client.post(f"{BASE}/execute", json={"input": {"amount": 5000}})

    everything = client.get(f"{BASE}/executions").json()["data"]
    completed = client.get(f"{BASE}/executions", params={"status": "completed"}).json()["data"]

    assert len(everything) == 2
    assert [s["state"]["status"] for s in completed] == ["completed"]
    assert client.get(f"{BASE}/executions", params={"status": "bogus"}).status_code == 400


def test_stream_delivers_events_until_completion(client):
    with client.stream("POST", f"{BASE}/stream", json={"input": {"amount": 20}}) as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = read_events(response)

    types = [e["type"] for e in events]
    assert types[0] == "workflow-start"
    assert "expense-decision" in types
    assert types[-1] == "workflow-complete"
    decision = next(e for e in events if e["type"] == "expense-decision")
    assert decision["from"] == "announce-decision"
    assert decision["output"] == {"approved": True, "approvedBy": "auto"}


def test_stream_closes_on_suspension(client):
    with client.stream("POST", f"{BASE}/stream", json={"input": {"amount": 9000}}) as response:
        events = read_events(response)

    assert events[-1]["type"] == "workflow-suspended"
    execution_id = events[-1]["executionId"]

    resumed = client.post(
        f"{BASE}/executions/{execution_id}/resume",
        json={"resumeData": {"approved": False, "approverId": "m9"}},
    ).json()["data"]
    assert resumed["result"] == {"approved": False, "approvedBy": "m9", "amount": 9000}
