"""Expense approval workflow.

Small expenses are approved automatically. Anything above
``AUTO_APPROVE_LIMIT`` suspends the execution until a manager resumes it
with a decision, possibly hours or days later and from another process.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel

import logging
logger = logging.getLogger(__name__)

from ..core import StepContext, Workflow, and_tap, and_then

AUTO_APPROVE_LIMIT = 1000
WORKFLOW_ID = "expense-approval"


class ExpenseRequest(BaseModel):
    amount: float
    description: str = ""
    requester: Optional[str] = None


class ApprovalRequest(BaseModel):
    """Payload shown to the approver while the execution is suspended."""

    amount: float
    limit: float
    requester: Optional[str] = None


class ApprovalDecision(BaseModel):
    approved: bool
    approverId: str
    comment: Optional[str] = None


class ExpenseOutcome(BaseModel):
    approved: bool
    approvedBy: str
    amount: float


def review_expense(ctx: StepContext) -> Any:
    """Approve small expenses, suspend for manager approval otherwise."""
    expense = ctx.data

    if ctx.resume_data is not None:
        decision = ctx.resume_data
        logger.info(
            f"Expense in execution {ctx.execution_id} "
            f"{'approved' if decision['approved'] else 'rejected'} by {decision['approverId']}"
        )
        return {
            **expense,
            "approved": decision["approved"],
            "approvedBy": decision["approverId"],
        }

    if expense["amount"] > AUTO_APPROVE_LIMIT:
        return ctx.suspend(
            reason=f"Expense of {expense['amount']:.2f} exceeds the auto-approval limit",
            payload={
                "amount": expense["amount"],
                "limit": AUTO_APPROVE_LIMIT,
                "requester": expense.get("requester"),
            },
        )

    return {**expense, "approved": True, "approvedBy": "auto"}


def announce_decision(ctx: StepContext) -> None:
    ctx.writer.write(
        "expense-decision",
        output={"approved": ctx.data["approved"], "approvedBy": ctx.data["approvedBy"]},
    )


def finalize(ctx: StepContext) -> Dict[str, Any]:
    return {
        "approved": ctx.data["approved"],
        "approvedBy": ctx.data["approvedBy"],
        "amount": ctx.data["amount"],
    }


def create_approval_workflow(**config: Any) -> Workflow:
    """Build the expense approval workflow.

    Args:
        **config: Extra ``Workflow`` arguments (storage, monitor, hooks)

    Returns:
        Workflow ``expense-approval``
    """
    return Workflow(
        WORKFLOW_ID,
        [
            and_then(
                review_expense,
                id="review-expense",
                purpose="Approve or escalate the expense",
                suspend_schema=ApprovalRequest,
                resume_schema=ApprovalDecision,
            ),
            and_tap(announce_decision, id="announce-decision"),
            and_then(finalize, id="finalize", output_schema=ExpenseOutcome),
        ],
        name="Expense approval",
        purpose="Approve expenses, escalating large ones to a manager",
        input_schema=ExpenseRequest,
        result_schema=ExpenseOutcome,
        **config,
    )
