"""Event definitions for execution streams.

This module defines the events that can occur during workflow execution.
Lifecycle events use the ``EventType`` values; steps may write custom events
with any other type string.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class EventType(str, Enum):
    """Types of lifecycle events emitted by the engine."""

    # Workflow lifecycle events
    WORKFLOW_START = "workflow-start"
    WORKFLOW_RESUMED = "workflow-resumed"
    WORKFLOW_SUSPENDED = "workflow-suspended"
    WORKFLOW_COMPLETE = "workflow-complete"
    WORKFLOW_ERROR = "workflow-error"

    # Step lifecycle events
    STEP_START = "step-start"
    STEP_COMPLETE = "step-complete"
    STEP_ERROR = "step-error"


TERMINAL_EVENT_TYPES = frozenset({
    EventType.WORKFLOW_COMPLETE.value,
    EventType.WORKFLOW_ERROR.value,
})


class EventStatus(str, Enum):
    """Status carried on every stream event."""

    RUNNING = "running"
    SUCCESS = "success"
    SUSPENDED = "suspended"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StreamEvent:
    """One entry of an execution's ordered event stream.

    Events are immutable once emitted. ``from_`` is the step id (or the
    workflow id for workflow-level events) and maps to ``from`` on the wire.
    """

    type: str
    execution_id: str
    from_: str
    status: str = EventStatus.RUNNING.value
    input: Any = None
    output: Any = None
    timestamp: datetime = field(default_factory=_utcnow)
    step_index: Optional[int] = None
    step_type: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    user_context: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to its wire dictionary."""
        data = {
            "type": self.type,
            "executionId": self.execution_id,
            "from": self.from_,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
        }
        optional = {
            "input": self.input,
            "output": self.output,
            "stepIndex": self.step_index,
            "stepType": self.step_type,
            "metadata": self.metadata,
            "error": self.error,
            "userContext": self.user_context,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data


class EventFactory:
    """Factory for creating lifecycle events."""

    @staticmethod
    def workflow_start(execution_id: str, workflow_id: str, input: Any) -> StreamEvent:
        return StreamEvent(
            type=EventType.WORKFLOW_START.value,
            execution_id=execution_id,
            from_=workflow_id,
            input=input,
        )

    @staticmethod
    def workflow_resumed(
        execution_id: str,
        workflow_id: str,
        step_id: str,
        step_index: int,
        resume_data: Any,
    ) -> StreamEvent:
        return StreamEvent(
            type=EventType.WORKFLOW_RESUMED.value,
            execution_id=execution_id,
            from_=workflow_id,
            input=resume_data,
            step_index=step_index,
            metadata={"stepId": step_id},
        )

    @staticmethod
    def step_start(
        execution_id: str,
        step_id: str,
        step_index: int,
        step_type: str,
        input: Any,
        user_context: Optional[Dict[str, Any]] = None,
    ) -> StreamEvent:
        """Create step started event."""
        return StreamEvent(
            type=EventType.STEP_START.value,
            execution_id=execution_id,
            from_=step_id,
            input=input,
            step_index=step_index,
            step_type=step_type,
            user_context=user_context,
        )

    @staticmethod
    def step_complete(
        execution_id: str,
        step_id: str,
        step_index: int,
        step_type: str,
        input: Any,
        output: Any,
    ) -> StreamEvent:
        """Create step completed event."""
        return StreamEvent(
            type=EventType.STEP_COMPLETE.value,
            execution_id=execution_id,
            from_=step_id,
            status=EventStatus.SUCCESS.value,
            input=input,
            output=output,
            step_index=step_index,
            step_type=step_type,
        )

    @staticmethod
    def step_error(
        execution_id: str,
        step_id: str,
        step_index: int,
        step_type: str,
        input: Any,
        error: Dict[str, Any],
    ) -> StreamEvent:
        """Create step failed event."""
        return StreamEvent(
            type=EventType.STEP_ERROR.value,
            execution_id=execution_id,
            from_=step_id,
            status=EventStatus.ERROR.value,
            input=input,
            step_index=step_index,
            step_type=step_type,
            error=error,
        )

    @staticmethod
    def workflow_suspended(
        execution_id: str,
        step_id: str,
        step_index: int,
        reason: Optional[str],
        payload: Any,
    ) -> StreamEvent:
        return StreamEvent(
            type=EventType.WORKFLOW_SUSPENDED.value,
            execution_id=execution_id,
            from_=step_id,
            status=EventStatus.SUSPENDED.value,
            output=payload,
            step_index=step_index,
            metadata={"reason": reason} if reason is not None else None,
        )

    @staticmethod
    def workflow_complete(execution_id: str, workflow_id: str, result: Any) -> StreamEvent:
        return StreamEvent(
            type=EventType.WORKFLOW_COMPLETE.value,
            execution_id=execution_id,
            from_=workflow_id,
            status=EventStatus.SUCCESS.value,
            output=result,
        )

    @staticmethod
    def workflow_error(execution_id: str, workflow_id: str, error: Dict[str, Any]) -> StreamEvent:
        return StreamEvent(
            type=EventType.WORKFLOW_ERROR.value,
            execution_id=execution_id,
            from_=workflow_id,
            status=EventStatus.ERROR.value,
            error=error,
        )

    @staticmethod
    def custom(
        execution_id: str,
        event_type: str,
        source: str,
        step_index: Optional[int] = None,
        **fields: Any,
    ) -> StreamEvent:
        """Create a custom event written by step code.

        Args:
            execution_id: Execution the event belongs to
            event_type: Free-form event type
            source: Step id the event is attributed to (unless ``fields`` overrides it)
            step_index: Index of the emitting step
            **fields: ``input``, ``output``, ``status``, ``metadata``, ``error``
                or ``from_``; anything else is folded into ``metadata``
        """
        known = {"input", "output", "status", "metadata", "error", "from_", "step_type"}
        extras = {key: value for key, value in fields.items() if key not in known}
        metadata = dict(fields.get("metadata") or {})
        metadata.update(extras)
        return StreamEvent(
            type=event_type,
            execution_id=execution_id,
            from_=fields.get("from_") or source,
            status=fields.get("status") or EventStatus.RUNNING.value,
            input=fields.get("input"),
            output=fields.get("output"),
            step_index=step_index,
            step_type=fields.get("step_type"),
            metadata=metadata or None,
            error=fields.get("error"),
        )
