"""Serialize item queries and finder calls into string query parameters."""

import json
from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel

QueryParams = dict[str, str]


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, set | frozenset | tuple):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(value: Any) -> str:
    """Encode ``value`` as compact JSON, with dates in ISO 8601."""
    return json.dumps(value, separators=(",", ":"), default=_json_default)


def _param_value(value: Any) -> str:
    match value:
        case str():
            return value
        case bool():
            return "true" if value else "false"
        case int() | float():
            return str(value)
        case datetime() | date():
            return value.isoformat()
        case Enum():
            return _param_value(value.value)
        case _:
            return to_json(value)


def query_to_params(query: Mapping[str, Any] | None) -> QueryParams:
    """Convert a query mapping into string query parameters.

    Strings pass through, booleans become ``"true"``/``"false"``, numbers use
    ``str``, dates are ISO 8601, and lists or mappings are compact JSON.
    ``None`` values are dropped.

    Args:
        query: Filter values keyed by parameter name.

    Returns:
        New mapping of parameter name to string value.
    """
    if not query:
        return {}
    return {
        str(name): _param_value(value)
        for name, value in query.items()
        if value is not None
    }


def finder_to_params(
    finder: str, finder_params: Mapping[str, Any] | None = None
) -> QueryParams:
    """Encode a named finder call as ``finder`` and JSON ``finderParams``."""
    return {"finder": finder, "finderParams": to_json(dict(finder_params or {}))}
