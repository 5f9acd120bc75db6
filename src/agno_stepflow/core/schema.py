"""Schema validation at workflow boundaries.

Schemas are anything pydantic's ``TypeAdapter`` understands: ``BaseModel``
subclasses, ``TypedDict``s, builtin generics such as ``dict[str, int]``,
``Literal``s and so on. A ``None`` schema means "not declared" and the value
passes through untouched.

Validation runs in strict mode unless configured otherwise, so values are
never coerced into the declared type. Models validated from a mapping are
handed back as plain dicts so that data flowing between steps keeps the
shape the step authors produced.
"""

from enum import Enum
from functools import lru_cache
from typing import Any, Mapping, Optional

from pydantic import BaseModel, TypeAdapter, ValidationError

from ..config import EngineConfig
from .errors import SchemaValidationError


class Boundary(str, Enum):
    """Named places where the engine validates values."""

    INPUT = "input"
    STEP_INPUT = "step-input"
    STEP_OUTPUT = "step-output"
    SUSPEND = "suspend"
    RESUME = "resume"
    RESULT = "result"


@lru_cache(maxsize=256)
def _adapter_for(schema: Any) -> TypeAdapter:
    return TypeAdapter(schema)


def _get_adapter(schema: Any) -> TypeAdapter:
    try:
        return _adapter_for(schema)
    except TypeError:
        # Unhashable schema objects (e.g. parametrised annotations built at runtime)
        return TypeAdapter(schema)


def _format_path(loc: tuple) -> str:
    return ".".join(str(part) for part in loc)


def _describe_actual(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return type(value).__name__


def _to_plain(validated: Any, original: Any) -> Any:
    if isinstance(validated, BaseModel) and isinstance(original, Mapping):
        return validated.model_dump()
    return validated


def validate(
    schema: Any,
    value: Any,
    boundary: Boundary = Boundary.INPUT,
    step_id: Optional[str] = None,
    strict: Optional[bool] = None,
) -> Any:
    """Validate ``value`` against ``schema``.

    Args:
        schema: Declared type contract, or ``None`` for pass-through
        value: Value to check
        boundary: Boundary name used in the error
        step_id: Step whose schema is applied, if any
        strict: Override the configured strictness

    Returns:
        The validated value (unchanged for already-conforming plain data)

    Raises:
        SchemaValidationError: If the value does not satisfy the schema
    """
    if schema is None:
        return value

    if strict is None:
        strict = EngineConfig.strict_schemas()

    adapter = _get_adapter(schema)
    try:
        validated = adapter.validate_python(value, strict=strict)
    except ValidationError as e:
        errors = e.errors(include_url=False)
        first = errors[0] if errors else {}
        loc = tuple(first.get("loc", ()))
        offending = first.get("input", value)
        raise SchemaValidationError(
            boundary=Boundary(boundary).value,
            path=_format_path(loc),
            expected=first.get("msg", str(e)),
            actual=_describe_actual(offending),
            step_id=step_id,
            errors=errors,
        ) from e

    return _to_plain(validated, value)


def json_schema(schema: Any) -> Optional[dict]:
    """Return the JSON schema for a declared schema, or ``None`` if undeclared."""
    if schema is None:
        return None
    return _get_adapter(schema).json_schema()
