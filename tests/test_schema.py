"""Tests for boundary schema validation."""

from typing import Dict, List, Optional

import pytest
from pydantic import BaseModel

from agno_stepflow.core import Boundary, SchemaValidationError, validate
from agno_stepflow.core.schema import json_schema


class LineItem(BaseModel):
    sku: str
    qty: int


class Order(BaseModel):
    customer: str
    items: List[LineItem]
    note: Optional[str] = None


def test_undeclared_schema_passes_value_through():
    value = {"anything": object()}
    assert validate(None, value) is value


def test_accepted_value_is_returned_unchanged_and_revalidates():
    order = {"customer": "c1", "items": [{"sku": "a", "qty": 2}], "note": None}

    validated = validate(Order, order)

    assert validated == order
    assert validate(Order, validated) == validated


def test_optional_fields_get_their_defaults():
    validated = validate(Order, {"customer": "c1", "items": []})
    assert validated == {"customer": "c1", "items": [], "note": None}


def test_missing_field_names_the_path():
    with pytest.raises(SchemaValidationError) as exc_info:
        validate(Order, {"items": []}, Boundary.INPUT)

    error = exc_info.value
    assert error.boundary == "input"
    assert error.path == "customer"
    assert error.errors


def test_nested_path_is_reported():
    with pytest.raises(SchemaValidationError) as exc_info:
        validate(
            Order,
            {"customer": "c1", "items": [{"sku": "a", "qty": 1}, {"sku": "b"}]},
            Boundary.STEP_OUTPUT,
            step_id="build-order",
        )

    error = exc_info.value
    assert error.path == "items.1.qty"
    assert error.step_id == "build-order"
    assert error.to_dict()["boundary"] == "step-output"


def test_types_are_not_coerced():
    with pytest.raises(SchemaValidationError) as exc_info:
        validate(Dict[str, int], {"a": "5"}, Boundary.RESUME)

    assert exc_info.value.actual == "5"
    assert exc_info.value.boundary == "resume"


def test_lenient_mode_can_be_requested():
    assert validate(Dict[str, int], {"a": "5"}, strict=False) == {"a": 5}


def test_strictness_follows_environment(monkeypatch):
    monkeypatch.setenv("STEPFLOW_STRICT_SCHEMAS", "false")
    assert validate(int, "7") == 7


def test_json_schema_for_declared_and_undeclared():
    assert json_schema(None) is None
    schema = json_schema(Order)
    assert "customer" in schema["properties"]
