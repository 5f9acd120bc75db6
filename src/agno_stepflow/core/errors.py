"""Error taxonomy for the workflow engine.

Every error raised by the engine derives from ``WorkflowError`` so callers
can catch the whole family at the public API boundary. Suspension is not an
error and has no exception type: it travels as a ``Suspend`` outcome.
"""

from typing import Any, Optional


class WorkflowError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, execution_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.execution_id = execution_id

    def to_dict(self) -> dict:
        """Serialize the error for API responses and snapshots."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "execution_id": self.execution_id,
        }


class WorkflowDefinitionError(WorkflowError):
    """Raised when a workflow definition is malformed (e.g. duplicate step ids)."""


class SchemaValidationError(WorkflowError):
    """A value failed validation at a named boundary.

    Attributes:
        boundary: Where validation happened (input, step-input, step-output,
            suspend, resume, result)
        path: Dotted path of the first offending field ("" for the root)
        expected: Description of the expected shape
        actual: The offending value (or its type name when not representable)
        step_id: Step whose schema was applied, if any
        errors: Full list of pydantic error dicts
    """

    def __init__(
        self,
        boundary: str,
        path: str,
        expected: str,
        actual: Any,
        step_id: Optional[str] = None,
        errors: Optional[list] = None,
        execution_id: Optional[str] = None,
    ):
        where = f" of step '{step_id}'" if step_id else ""
        location = path or "<root>"
        super().__init__(
            f"Validation failed at {boundary}{where}: {location}: {expected}",
            execution_id=execution_id,
        )
        self.boundary = boundary
        self.path = path
        self.expected = expected
        self.actual = actual
        self.step_id = step_id
        self.errors = errors or []

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "boundary": self.boundary,
            "path": self.path,
            "expected": self.expected,
            "step_id": self.step_id,
        })
        return data


class StepExecutionError(WorkflowError):
    """An unhandled exception escaped a step.

    The original exception is kept both as ``cause`` and as ``__cause__``.
    """

    def __init__(
        self,
        step_id: str,
        cause: BaseException,
        execution_id: Optional[str] = None,
    ):
        super().__init__(f"Step '{step_id}' failed: {cause}", execution_id=execution_id)
        self.step_id = step_id
        self.cause = cause
        self.__cause__ = cause

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "step_id": self.step_id,
            "cause_type": type(self.cause).__name__,
        })
        return data


class ExecutionAbortedError(WorkflowError):
    """The execution was aborted through its stream controller."""


class InvalidStateError(WorkflowError):
    """An operation was attempted against an execution in the wrong status."""


class ExecutionNotFoundError(WorkflowError):
    """No execution exists with the requested id."""


class WorkflowNotFoundError(WorkflowError):
    """No workflow is registered under the requested id."""
