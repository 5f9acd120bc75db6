"""Resumption module for suspended executions.

This module provides:
- External suspension handles
- Execution analysis for resume decisions
- Suspend/resume coordination across registered workflows
"""

from .analyzer import ExecutionAnalyzer
from .controller import SuspendController
from .manager import ResumptionManager

__all__ = [
    "SuspendController",
    "ExecutionAnalyzer",
    "ResumptionManager",
]
