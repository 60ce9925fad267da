"""Rule evaluation strategies, one per ``ValidationRuleType``.

Each strategy receives the rule dict, the value found at the rule's field
path and the whole resolved document. It returns ``None`` when the value
passes or a ``ViolationDescriptor`` describing the failure.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional

from datawatch.models import ValidationRuleType
from datawatch.validation.errors import ConfigParseError
from datawatch.validation.history import SpikeHistorySource, ViolationHistorySource
from datawatch.validation.paths import format_number, get_value_by_path, is_number, stringify_value
from datawatch.validation.primitives import deviation_in_stddevs, mean, percent_difference, pstddev

if TYPE_CHECKING:
    from datawatch.store import SqlStore


DEFAULT_SPIKE_THRESHOLD = 3
DEFAULT_CROSS_SOURCE_TOLERANCE = 10

# JavaScript RegExp flags as stored in rule configs.
_REGEX_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "u": 0,
    "g": 0,
    "y": 0,
}


@dataclass(frozen=True)
class ViolationDescriptor:
    type: str
    expected_value: Optional[str] = None
    metadata: Optional[dict[str, Any]] = field(default=None)

    @property
    def actual_value(self) -> Any:
        if not self.metadata:
            return None
        return self.metadata.get("actual_value")

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "expected_value": self.expected_value,
            "metadata": self.metadata,
        }


Strategy = Callable[[dict[str, Any], Any, Any], Optional[ViolationDescriptor]]


def type_name(value: Any) -> str:
    """Name of *value*'s type using the vocabulary rule configs are written in."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def compile_pattern(rule_id: str | None, pattern: Any, flags: Any) -> tuple[re.Pattern[str], bool]:
    """Compile a JavaScript-style ``pattern``/``flags`` pair.

    Returns the compiled pattern and whether it is sticky (``y``), in which
    case it must match at the start of the string.
    """
    if not isinstance(pattern, str):
        raise ConfigParseError(rule_id, "CUSTOM_REGEX requires a string 'pattern'")
    flags = flags or ""
    if not isinstance(flags, str):
        raise ConfigParseError(rule_id, "'flags' must be a string")
    re_flags = 0
    for flag in flags:
        if flag not in _REGEX_FLAGS:
            raise ConfigParseError(rule_id, f"unsupported regex flag {flag!r}")
        re_flags |= _REGEX_FLAGS[flag]
    try:
        compiled = re.compile(pattern, re_flags)
    except re.error as exc:
        raise ConfigParseError(rule_id, f"invalid pattern {pattern!r}: {exc}") from exc
    return compiled, "y" in flags


def _bound(rule_id: str | None, config: dict[str, Any], key: str) -> float | int | None:
    bound = config.get(key)
    if bound is None:
        return None
    if not is_number(bound):
        raise ConfigParseError(rule_id, f"RANGE_CHECK '{key}' must be a number")
    return bound


def _describe_bound(bound: float | int | None) -> str:
    return "unbounded" if bound is None else format_number(bound)


class RuleEvaluator:
    def __init__(self, store: SqlStore, history: SpikeHistorySource | None = None) -> None:
        self._store = store
        self.history = history or ViolationHistorySource(store)
        self._strategies: dict[ValidationRuleType, Strategy] = {
            ValidationRuleType.NO_NEGATIVE_VALUES: self._no_negative_values,
            ValidationRuleType.RANGE_CHECK: self._range_check,
            ValidationRuleType.SPIKE_DETECTION: self._spike_detection,
            ValidationRuleType.MISSING_FIELD: self._missing_field,
            ValidationRuleType.REQUIRED_FIELD: self._required_field,
            ValidationRuleType.CROSS_SOURCE_CONSISTENCY: self._cross_source_consistency,
            ValidationRuleType.CUSTOM_REGEX: self._custom_regex,
            ValidationRuleType.DATA_TYPE_CHECK: self._data_type_check,
        }
        missing = set(ValidationRuleType) - set(self._strategies)
        if missing:
            raise RuntimeError(f"No evaluator registered for {sorted(m.value for m in missing)}")

    def evaluate(self, rule: dict[str, Any], value: Any, document: Any) -> ViolationDescriptor | None:
        rule_type = ValidationRuleType(rule["rule_type"])
        return self._strategies[rule_type](rule, value, document)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _no_negative_values(self, rule, value, document):
        if is_number(value) and value < 0:
            return ViolationDescriptor(
                type="NEGATIVE_VALUE",
                expected_value=">= 0",
                metadata={"actual_value": value},
            )
        return None

    def _range_check(self, rule, value, document):
        if not is_number(value):
            return None
        config = rule.get("config") or {}
        low = _bound(rule.get("id"), config, "min")
        high = _bound(rule.get("id"), config, "max")
        if (low is not None and value < low) or (high is not None and value > high):
            return ViolationDescriptor(
                type="OUT_OF_RANGE",
                expected_value=f"{_describe_bound(low)} - {_describe_bound(high)}",
                metadata={"actual_value": value, "min": low, "max": high},
            )
        return None

    def _spike_detection(self, rule, value, document):
        if not is_number(value):
            return None
        history = self.history.load(rule)
        if not history:
            return None

        config = rule.get("config") or {}
        threshold = config.get("standardDeviations")
        if threshold is None:
            threshold = DEFAULT_SPIKE_THRESHOLD
        elif not is_number(threshold):
            raise ConfigParseError(rule.get("id"), "'standardDeviations' must be a number")

        center = mean(history)
        spread = pstddev(history)
        deviation = deviation_in_stddevs(value, center, spread)
        if deviation > threshold:
            return ViolationDescriptor(
                type="SPIKE_DETECTED",
                expected_value=f"{center:.2f} ± {threshold * spread:.2f}",
                metadata={
                    "actual_value": value,
                    "mean": center,
                    "std_dev": spread,
                    "deviation": deviation,
                    "threshold": threshold,
                },
            )
        return None

    def _missing_field(self, rule, value, document):
        if value is None or value == "":
            return ViolationDescriptor(type="MISSING_FIELD", expected_value="non-empty value")
        return None

    def _required_field(self, rule, value, document):
        if value is None:
            return ViolationDescriptor(type="REQUIRED_FIELD_MISSING", expected_value="any value")
        return None

    def _cross_source_consistency(self, rule, value, document):
        config = rule.get("config") or {}
        compare_integration_id = config.get("compareIntegrationId")
        compare_field_path = config.get("compareFieldPath")
        if not compare_integration_id or not compare_field_path:
            return None

        # Only the comparison widget's static config is read, never the cache.
        widgets = self._store.list_widgets_for_integration(compare_integration_id, limit=1)
        if not widgets:
            return None
        compare_value = get_value_by_path(widgets[0]["config"], compare_field_path)
        if not is_number(value) or not is_number(compare_value):
            return None

        tolerance = config.get("tolerance")
        if tolerance is None:
            tolerance = DEFAULT_CROSS_SOURCE_TOLERANCE
        percent = percent_difference(value, compare_value)
        if percent > tolerance:
            return ViolationDescriptor(
                type="CROSS_SOURCE_INCONSISTENCY",
                expected_value=stringify_value(compare_value),
                metadata={
                    "actual_value": value,
                    "compare_value": compare_value,
                    "percent_diff": format_number(percent) if math.isinf(percent) else f"{percent:.2f}",
                    "tolerance": tolerance,
                },
            )
        return None

    def _custom_regex(self, rule, value, document):
        if not isinstance(value, str):
            return None
        config = rule.get("config") or {}
        pattern, sticky = compile_pattern(rule.get("id"), config.get("pattern"), config.get("flags"))
        matched = pattern.match(value) if sticky else pattern.search(value)
        if matched is None:
            return ViolationDescriptor(
                type="REGEX_MISMATCH",
                expected_value=f"matching {pattern.pattern}",
                metadata={"actual_value": value, "pattern": pattern.pattern},
            )
        return None

    def _data_type_check(self, rule, value, document):
        config = rule.get("config") or {}
        expected_type = config.get("expectedType")
        if not isinstance(expected_type, str):
            raise ConfigParseError(rule.get("id"), "DATA_TYPE_CHECK requires 'expectedType'")
        actual_type = type_name(value)
        if actual_type != expected_type:
            return ViolationDescriptor(
                type="DATA_TYPE_MISMATCH",
                expected_value=expected_type,
                metadata={"actual_type": actual_type, "actual_value": stringify_value(value)},
            )
        return None
