from __future__ import annotations


class ValidationEngineError(Exception):
    """Base class for errors raised by the validation engine."""


class ConfigParseError(ValidationEngineError):
    """A rule's config cannot be interpreted (bad regex, unknown flag, missing key)."""

    def __init__(self, rule_id: str | None, message: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"Invalid config for rule {rule_id}: {message}" if rule_id else message)


class RuleTimeoutError(ValidationEngineError):
    def __init__(self, rule_id: str, timeout_seconds: float) -> None:
        self.rule_id = rule_id
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Rule {rule_id} exceeded {timeout_seconds:g}s")


class RunInProgressError(ValidationEngineError):
    """Another batch run holds the run lock."""
