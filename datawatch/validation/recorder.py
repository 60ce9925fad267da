from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any

from datawatch.validation.evaluators import ViolationDescriptor
from datawatch.validation.paths import format_number, stringify_value

if TYPE_CHECKING:
    from datawatch.store import SqlStore


def json_safe(value: Any) -> Any:
    # Infinity/NaN are not valid JSON; spike deviations can be infinite.
    if isinstance(value, float) and not math.isfinite(value):
        return format_number(value)
    if isinstance(value, dict):
        return {key: json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(item) for item in value]
    return value


class ViolationRecorder:
    """Append-only writer of violations. No deduplication."""

    def __init__(self, store: SqlStore) -> None:
        self._store = store

    def record(
        self,
        rule: dict[str, Any],
        value: Any,
        descriptor: ViolationDescriptor,
    ) -> dict[str, Any]:
        return self._store.create_violation(
            {
                "rule_id": rule["id"],
                "field_path": rule["field_path"],
                "actual_value": stringify_value(value),
                "expected_value": descriptor.expected_value,
                "violation_type": descriptor.type,
                "severity": rule["severity"],
                "metadata": json_safe(descriptor.metadata) if descriptor.metadata else None,
            }
        )
