"""Input validation for the query path."""

from datetime import date, datetime
from typing import Any, Dict

from dateutil.parser import isoparse
from jsonschema import Draft7Validator

from .errors import ValidationFailedError
from .interval_type import IntervalType
from .urgency import Urgency

LIST_FILTER_SCHEMA = {
    "type": "object",
    "properties": {
        "vehicle_ids": {"type": "array", "items": {"type": "string"}},
        "kind_ids": {"type": "array", "items": {"type": "integer"}},
        "interval_types": {
            "type": "array",
            "items": {"type": "integer", "enum": [int(t) for t in IntervalType]},
        },
        "urgency": {
            "type": "array",
            "items": {"type": "string", "enum": [u.value for u in Urgency]},
        },
    },
    "additionalProperties": False,
}

UPDATE_PARAMS_SCHEMA = {
    "type": "object",
    "properties": {
        "next_due_date": {"type": ["string", "null"]},
        "next_due_odometer": {"type": ["number", "null"], "minimum": 0},
    },
    "additionalProperties": False,
    "minProperties": 1,
}


INTERVAL_SETTINGS_SCHEMA = {
    "type": "object",
    "properties": {
        "interval_type": {"type": "integer", "enum": [int(t) for t in IntervalType]},
        "mileage_interval": {"type": "number", "minimum": 0},
        "days_interval": {"type": "integer", "minimum": 0},
    },
    "required": ["interval_type"],
    "additionalProperties": False,
}


def validate_params(instance: Dict[str, Any], schema: Dict[str, Any]) -> None:
    """Raise ValidationFailedError listing every schema violation."""
    errors = sorted(Draft7Validator(schema).iter_errors(instance), key=lambda e: list(e.path))
    if not errors:
        return
    failures = []
    for error in errors:
        field = ".".join(str(p) for p in error.path) or "params"
        if error.path and isinstance(error.path[-1], int):
            field = str(error.path[0])
        failures.append((field, error.message))
    raise ValidationFailedError(failures)


def parse_date(value: Any, field: str) -> date:
    """Parse an ISO date (or datetime) string into a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return isoparse(value).date()
    except (TypeError, ValueError):
        raise ValidationFailedError.single(field, f"Invalid date: {value!r}")
