"""FastAPI app factory.

Endpoints are thin wrappers over ``WorkflowManager``. Every response carries
``success``; engine errors are converted to ``{success: false, error}`` with a
matching HTTP status instead of escaping as raw exceptions.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse

import logging
logger = logging.getLogger(__name__)

from .. import WorkflowManager, __version__
from ..core.errors import (
    ExecutionNotFoundError,
    InvalidStateError,
    SchemaValidationError,
    WorkflowDefinitionError,
    WorkflowError,
    WorkflowNotFoundError,
)
from ..core.models import ExecutionStatus
from ..core.workflow import WorkflowStream
from ..monitoring.events import EventType
from .models import ExecuteRequest, ResumeRequest, SuspendRequest


def _status_code_for(error: WorkflowError) -> int:
    if isinstance(error, (WorkflowNotFoundError, ExecutionNotFoundError)):
        return 404
    if isinstance(error, (SchemaValidationError, InvalidStateError, WorkflowDefinitionError)):
        return 400
    return 500


def _error_response(status_code: int, error: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"success": False, "error": error}),
    )


def _sse(data: Dict[str, Any]) -> str:
    return f"data: {json.dumps(data, default=str)}\n\n"


async def _event_source(handle: WorkflowStream) -> AsyncIterator[str]:
    # A suspended execution is resumed by a separate request, so the
    # transport closes on suspension as well as on terminal events
    async for event in handle:
        yield _sse(event.to_dict())
        if event.is_terminal or event.type == EventType.WORKFLOW_SUSPENDED.value:
            break

    # Wait for the snapshot to be saved before the response ends. A failed
    # run already reached the client as a workflow-error event.
    await asyncio.gather(handle.result(), return_exceptions=True)


def create_app(manager: Optional[WorkflowManager] = None) -> FastAPI:
    manager = manager or WorkflowManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await manager.initialize()
        try:
            yield
        finally:
            await manager.close()

    app = FastAPI(
        title="Agno Stepflow",
        version=__version__,
        description="REST API for running, suspending and resuming step workflows.",
        lifespan=lifespan,
    )
    app.state.manager = manager

    @app.exception_handler(WorkflowError)
    async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
        status_code = _status_code_for(exc)
        if status_code == 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return _error_response(status_code, exc.to_dict())

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"success": True, "status": "ok", "components": await manager.health_check()}

    @app.get("/workflows")
    def list_workflows() -> Dict[str, Any]:
        return {
            "success": True,
            "data": [
                {
                    "id": workflow.id,
                    "name": workflow.name,
                    "purpose": workflow.purpose,
                    "stepCount": len(workflow.steps),
                }
                for workflow in manager.list_workflows()
            ],
        }

    @app.get("/workflows/{workflow_id}")
    def get_workflow(workflow_id: str) -> Dict[str, Any]:
        return {"success": True, "data": manager.get_workflow(workflow_id).to_dict()}

    @app.post("/workflows/{workflow_id}/execute")
    async def execute(workflow_id: str, req: ExecuteRequest) -> Dict[str, Any]:
        result = await manager.execute_workflow(workflow_id, req.input, req.run_options())
        return {"success": True, "data": result.to_api()}

    @app.post("/workflows/{workflow_id}/stream")
    async def stream(workflow_id: str, req: ExecuteRequest) -> StreamingResponse:
        handle = await manager.stream_workflow(workflow_id, req.input, req.run_options())
        return StreamingResponse(
            _event_source(handle),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    @app.post("/workflows/{workflow_id}/executions/{execution_id}/suspend")
    async def suspend(workflow_id: str, execution_id: str, req: SuspendRequest) -> Dict[str, Any]:
        data = await manager.suspend_execution(workflow_id, execution_id, req.reason)
        return {"success": True, "data": data}

    @app.post("/workflows/{workflow_id}/executions/{execution_id}/resume")
    async def resume(workflow_id: str, execution_id: str, req: ResumeRequest) -> Any:
        try:
            result = await manager.resume_execution(
                workflow_id, execution_id, req.resume_data, step_id=req.step_id
            )
        except InvalidStateError as e:
            # Not suspended is reported like an unknown execution
            return _error_response(404, e.to_dict())
        return {"success": True, "data": result.to_api()}

    @app.get("/workflows/{workflow_id}/executions/{execution_id}")
    async def get_execution(workflow_id: str, execution_id: str) -> Dict[str, Any]:
        snapshot = await manager.get_execution(execution_id, workflow_id)
        analysis = await manager.analyze_execution(execution_id, workflow_id)
        return jsonable_encoder({
            "success": True,
            "data": {
                "snapshot": snapshot.model_dump(mode="json"),
                "analysis": analysis,
            },
        })

    @app.get("/workflows/{workflow_id}/executions")
    async def list_executions(
        workflow_id: str,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Any:
        manager.get_workflow(workflow_id)
        if status is not None and status not in {s.value for s in ExecutionStatus}:
            return _error_response(400, {
                "type": "InvalidStateError",
                "message": f"Unknown status: {status}",
            })

        if status == ExecutionStatus.SUSPENDED.value:
            snapshots = await manager.list_suspended(workflow_id)
        else:
            snapshots = await manager.list_executions(
                workflow_id,
                ExecutionStatus(status) if status else None,
                limit=limit,
                offset=offset,
            )

        return jsonable_encoder({
            "success": True,
            "data": [snapshot.model_dump(mode="json") for snapshot in snapshots],
        })

    return app
