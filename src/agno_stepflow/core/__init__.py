"""Core module for the workflow engine.

This module contains the fundamental building blocks:
- Data models and schema validation
- Step variants and their builders
- The execution controller and workflow definitions
- Agent capability and configuration
"""

from .agents import AgentFactory, AgentResult, AgnoAgentAdapter, StructuredAgent
from .controller import ExecutionController, HookError, WorkflowHooks
from .errors import (
    ExecutionAbortedError,
    ExecutionNotFoundError,
    InvalidStateError,
    SchemaValidationError,
    StepExecutionError,
    WorkflowDefinitionError,
    WorkflowError,
    WorkflowNotFoundError,
)
from .models import (
    ExecutionSnapshot,
    ExecutionState,
    ExecutionStatus,
    ResumeOptions,
    StepRecord,
    SuspensionRecord,
    UsageInfo,
    WorkflowExecutionResult,
    WorkflowRunOptions,
)
from .schema import Boundary, validate
from .state import StepDataRegistry, StepState, UsageAccumulator
from .steps import (
    AgentStep,
    ConditionalStep,
    Continue,
    Fail,
    FunctionStep,
    ParallelAllStep,
    ParallelRaceStep,
    Step,
    StepContext,
    StepKind,
    Suspend,
    TapStep,
    and_agent,
    and_all,
    and_race,
    and_tap,
    and_then,
    and_when,
    run_step,
)
from .workflow import Workflow, WorkflowChain, WorkflowStream, create_workflow_chain

__all__ = [
    # Models
    "ExecutionStatus",
    "ExecutionState",
    "ExecutionSnapshot",
    "SuspensionRecord",
    "StepRecord",
    "UsageInfo",
    "WorkflowRunOptions",
    "ResumeOptions",
    "WorkflowExecutionResult",
    # Validation
    "Boundary",
    "validate",
    # Errors
    "WorkflowError",
    "WorkflowDefinitionError",
    "SchemaValidationError",
    "StepExecutionError",
    "ExecutionAbortedError",
    "InvalidStateError",
    "ExecutionNotFoundError",
    "WorkflowNotFoundError",
    "HookError",
    # Steps
    "Step",
    "StepKind",
    "StepContext",
    "FunctionStep",
    "AgentStep",
    "ConditionalStep",
    "ParallelAllStep",
    "ParallelRaceStep",
    "TapStep",
    "Continue",
    "Suspend",
    "Fail",
    "run_step",
    "and_then",
    "and_agent",
    "and_when",
    "and_all",
    "and_race",
    "and_tap",
    # State
    "StepDataRegistry",
    "StepState",
    "UsageAccumulator",
    # Execution
    "ExecutionController",
    "WorkflowHooks",
    "Workflow",
    "WorkflowChain",
    "WorkflowStream",
    "create_workflow_chain",
    # Agents
    "StructuredAgent",
    "AgentResult",
    "AgnoAgentAdapter",
    "AgentFactory",
]
