from __future__ import annotations

import json
import math
from collections.abc import Mapping
from typing import Any


def get_value_by_path(document: Any, path: str) -> Any:
    """Walk *document* along a dot-separated *path*.

    Returns ``None`` as soon as a segment is missing or the current value is
    not a mapping. Array indices and escaped dots are not supported.
    """
    current = document
    for key in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def format_number(value: float | int) -> str:
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
    return str(value)


def stringify_value(value: Any) -> str:
    """Render a field value the way it is stored on a violation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if is_number(value):
        return format_number(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)
