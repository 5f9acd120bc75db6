"""Execution analyzer for resumption decisions.

This module analyzes execution snapshots to determine:
- What has been completed
- Where the execution is suspended and why
- Which steps it can be resumed from
"""

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..core.models import ExecutionSnapshot, ExecutionStatus

if TYPE_CHECKING:
    from ..core.workflow import Workflow


class ExecutionAnalyzer:
    """Analyzes execution snapshots for resumption capabilities."""

    def analyze(
        self,
        snapshot: ExecutionSnapshot,
        workflow: Optional["Workflow"] = None,
    ) -> Dict[str, Any]:
        """Analyze an execution to determine resumption options.

        Args:
            snapshot: Stored execution snapshot
            workflow: Definition of the execution's workflow, if registered

        Returns:
            Analysis results including valid resume targets
        """
        state = snapshot.state
        suspension = state.suspension
        recorded = [record.step_id for record in snapshot.step_records]

        analysis: Dict[str, Any] = {
            "execution_id": state.execution_id,
            "workflow_id": state.workflow_id,
            "status": state.status.value,
            "user_id": state.user_id,
            "conversation_id": state.conversation_id,
            "started_at": state.started_at.isoformat(),
            "ended_at": state.ended_at.isoformat() if state.ended_at else None,
            "usage": state.usage.model_dump(),
            "completed_steps": recorded,
            "error": state.error,
            "resumption_analysis": {
                "resumable": state.status == ExecutionStatus.SUSPENDED,
                "suspended_step": suspension.step_id if suspension else None,
                "suspended_step_index": suspension.step_index if suspension else None,
                "reason": suspension.reason if suspension else None,
                "suspended_at": suspension.suspended_at.isoformat() if suspension else None,
                "payload": suspension.payload if suspension else None,
                "resume_targets": [],
            },
        }

        if workflow is not None:
            analysis["remaining_work"] = self._estimate_remaining_work(snapshot, workflow)
            if state.status == ExecutionStatus.SUSPENDED:
                analysis["resumption_analysis"]["resume_targets"] = self._resume_targets(workflow)

        return analysis

    def summarize_suspended(self, snapshots: List[ExecutionSnapshot]) -> Dict[str, Any]:
        """Get summary of suspended executions.

        Args:
            snapshots: Snapshots of suspended executions

        Returns:
            Summary grouped by workflow
        """
        by_workflow: Dict[str, int] = {}
        executions = []

        for snapshot in snapshots:
            state = snapshot.state
            by_workflow[state.workflow_id] = by_workflow.get(state.workflow_id, 0) + 1
            executions.append({
                "execution_id": state.execution_id,
                "workflow_id": state.workflow_id,
                "user_id": state.user_id,
                "suspended_step": state.suspension.step_id if state.suspension else None,
                "reason": state.suspension.reason if state.suspension else None,
                "suspended_at": (
                    state.suspension.suspended_at.isoformat() if state.suspension else None
                ),
            })

        return {
            "total_suspended": len(executions),
            "by_workflow": by_workflow,
            "executions": executions,
        }

    def _resume_targets(self, workflow: "Workflow") -> List[Dict[str, Any]]:
        targets = []
        for index, step in enumerate(workflow.steps):
            for nested in step.iter_steps():
                targets.append({
                    "step_id": nested.id,
                    "step_index": index,
                    "type": nested.kind.value,
                    "nested": nested is not step,
                })
        return targets

    def _estimate_remaining_work(
        self,
        snapshot: ExecutionSnapshot,
        workflow: "Workflow",
    ) -> Dict[str, Any]:
        """Estimate remaining work for the execution.

        Args:
            snapshot: Execution snapshot
            workflow: Workflow definition

        Returns:
            Estimation of remaining work
        """
        total_steps = len(workflow.steps)
        if snapshot.state.status == ExecutionStatus.COMPLETED:
            completed_steps = total_steps
        else:
            completed_steps = min(snapshot.state.current_step_index, total_steps)

        return {
            "total_steps": total_steps,
            "completed_steps": completed_steps,
            "remaining_steps": [step.id for step in workflow.steps[completed_steps:]],
            "estimated_completion_percentage": round(
                (completed_steps / max(total_steps, 1)) * 100, 2
            ),
        }
