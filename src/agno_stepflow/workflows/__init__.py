"""Workflows module containing concrete workflow definitions.

This module provides:
- Expense approval with manual escalation
- Retrieval and summarization
"""

from .approval import create_approval_workflow
from .retrieval import create_retrieval_workflow

__all__ = [
    "create_approval_workflow",
    "create_retrieval_workflow",
]
