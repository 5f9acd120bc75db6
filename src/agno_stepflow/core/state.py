"""Per-execution book-keeping owned by the execution controller.

- ``StepDataRegistry``: input/output of every executed step, keyed by step id
- ``UsageAccumulator``: running sum of agent token usage
- ``StepState``: read-only view of the execution state handed to steps
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .models import ExecutionState, StepRecord, UsageInfo


class StepDataRegistry:
    """Records the input and output of each executed step.

    Single writer (the controller), many readers (later steps). A re-executed
    step overwrites its previous record.
    """

    def __init__(self, records: Optional[Iterable[StepRecord]] = None):
        self._records: Dict[str, StepRecord] = {}
        for record in records or ():
            self._records[record.step_id] = record

    def set(self, step_id: str, input: Any, output: Any) -> StepRecord:
        record = StepRecord(step_id=step_id, input=input, output=output)
        # Re-insert so iteration order follows the latest execution order
        self._records.pop(step_id, None)
        self._records[step_id] = record
        return record

    def get(self, step_id: str) -> Optional[StepRecord]:
        return self._records.get(step_id)

    def records(self) -> List[StepRecord]:
        return list(self._records.values())

    def __contains__(self, step_id: str) -> bool:
        return step_id in self._records

    def __len__(self) -> int:
        return len(self._records)


class UsageAccumulator:
    """Running sum of usage reported by agent steps."""

    def __init__(self, initial: Optional[UsageInfo] = None):
        self._total = initial.model_copy() if initial else UsageInfo()

    @property
    def total(self) -> UsageInfo:
        return self._total.model_copy()

    def add(self, usage: Optional[UsageInfo]) -> UsageInfo:
        """Add a contribution and return the new total."""
        if usage is not None:
            self._total = self._total.add(usage)
        return self.total


@dataclass(frozen=True)
class StepState:
    """Read-only execution state visible to a running step.

    ``user_context`` is the execution's shared mapping: writes are visible to
    later steps of the same execution.
    """

    execution_id: str
    workflow_id: str
    step_index: int
    started_at: datetime
    usage: UsageInfo
    user_id: Optional[str] = None
    conversation_id: Optional[str] = None
    user_context: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_execution(cls, state: ExecutionState, step_index: int) -> "StepState":
        return cls(
            execution_id=state.execution_id,
            workflow_id=state.workflow_id,
            step_index=step_index,
            started_at=state.started_at,
            usage=state.usage.model_copy(),
            user_id=state.user_id,
            conversation_id=state.conversation_id,
            user_context=state.user_context,
        )
