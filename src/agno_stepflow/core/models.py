"""Core data models for the workflow engine.

These models define the structure of execution state and provide validation.
Using Pydantic keeps snapshots serializable so a suspended execution can be
stored and resumed in another process.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, PrivateAttr

if TYPE_CHECKING:
    from .workflow import Workflow


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStatus(str, Enum):
    """Execution status enumeration."""

    IDLE = "idle"
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.ERROR)


class UsageInfo(BaseModel):
    """Token usage accumulated from agent calls."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: Optional["UsageInfo"]) -> "UsageInfo":
        """Return a new ``UsageInfo`` holding the sum of both values."""
        if other is None:
            return self.model_copy()
        return UsageInfo(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class SuspensionRecord(BaseModel):
    """Why and where an execution was suspended."""

    step_id: str
    step_index: int
    suspended_at: datetime = Field(default_factory=utcnow)
    reason: Optional[str] = None
    payload: Any = None


class StepRecord(BaseModel):
    """Input and output of one executed step."""

    step_id: str
    input: Any = None
    output: Any = None


class ExecutionState(BaseModel):
    """Per-execution state, owned by a single execution controller."""

    execution_id: str = Field(default_factory=lambda: str(uuid4()))
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.IDLE
    current_step_index: int = 0
    input: Any = None
    data: Any = None
    user_id: Optional[str] = None
    conversation_id: Optional[str] = None
    user_context: Dict[str, Any] = Field(default_factory=dict)
    usage: UsageInfo = Field(default_factory=UsageInfo)
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    suspension: Optional[SuspensionRecord] = None
    error: Optional[Dict[str, Any]] = None


class ExecutionSnapshot(BaseModel):
    """Everything needed to resume an execution in another process."""

    state: ExecutionState
    step_records: List[StepRecord] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def execution_id(self) -> str:
        return self.state.execution_id

    @property
    def workflow_id(self) -> str:
        return self.state.workflow_id


class WorkflowRunOptions(BaseModel):
    """Caller-supplied options for a run."""

    execution_id: Optional[str] = None
    user_id: Optional[str] = None
    conversation_id: Optional[str] = None
    user_context: Dict[str, Any] = Field(default_factory=dict)


class ResumeOptions(BaseModel):
    """Options for resuming a suspended execution."""

    step_id: Optional[str] = None


class WorkflowExecutionResult(BaseModel):
    """Outcome of ``run()`` or ``resume()``.

    When ``status`` is ``suspended`` the result can be resumed directly with
    :meth:`resume`.
    """

    execution_id: str
    workflow_id: str
    start_at: datetime
    end_at: Optional[datetime] = None
    status: ExecutionStatus
    result: Any = None
    suspension: Optional[SuspensionRecord] = None
    usage: UsageInfo = Field(default_factory=UsageInfo)
    error: Optional[Dict[str, Any]] = None

    _workflow: Optional["Workflow"] = PrivateAttr(default=None)

    @classmethod
    def from_state(
        cls,
        state: ExecutionState,
        workflow: Optional["Workflow"] = None,
    ) -> "WorkflowExecutionResult":
        result = cls(
            execution_id=state.execution_id,
            workflow_id=state.workflow_id,
            start_at=state.started_at,
            end_at=state.ended_at,
            status=state.status,
            result=state.data if state.status == ExecutionStatus.COMPLETED else None,
            suspension=state.suspension,
            usage=state.usage.model_copy(),
            error=state.error,
        )
        result._workflow = workflow
        return result

    async def resume(
        self,
        resume_data: Any = None,
        step_id: Optional[str] = None,
    ) -> "WorkflowExecutionResult":
        """Resume this suspended execution.

        Args:
            resume_data: Payload validated against the target step's resume schema
            step_id: Optional step to resume from instead of the suspended one

        Returns:
            The result of the resumed execution
        """
        from .errors import InvalidStateError

        if self.status != ExecutionStatus.SUSPENDED:
            raise InvalidStateError(
                f"Cannot resume execution in {self.status.value} state",
                execution_id=self.execution_id,
            )
        if self._workflow is None:
            raise InvalidStateError(
                "Result is not bound to a workflow; resume through the manager",
                execution_id=self.execution_id,
            )
        return await self._workflow.resume(self.execution_id, resume_data, step_id=step_id)

    def to_api(self) -> Dict[str, Any]:
        """Serialize in the wire shape used by the HTTP surface."""
        return {
            "executionId": self.execution_id,
            "workflowId": self.workflow_id,
            "startAt": self.start_at.isoformat(),
            "endAt": self.end_at.isoformat() if self.end_at else None,
            "status": self.status.value,
            "result": self.result,
            "suspension": (
                self.suspension.model_dump(mode="json") if self.suspension else None
            ),
            "usage": self.usage.model_dump(),
            "error": self.error,
        }
