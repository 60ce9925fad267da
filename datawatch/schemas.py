from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from datawatch.models import ValidationRuleType, ValidationSeverity


class ApiError(BaseModel):
    code: str
    message: str
    retryable: bool = False
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: ApiError


class Violation(BaseModel):
    id: str
    rule_id: str
    rule_name: str | None = None
    timestamp: str
    field_path: str
    actual_value: str | None = None
    expected_value: str | None = None
    violation_type: str
    severity: ValidationSeverity
    resolved: bool
    resolved_at: str | None = None
    resolved_by: str | None = None
    resolution_notes: str | None = None
    metadata: dict[str, Any] | None = None


class CreateRuleRequest(BaseModel):
    workspace_id: str
    integration_id: str | None = None
    portal_id: str | None = None
    name: str = Field(min_length=1)
    description: str | None = None
    data_source: str | None = None
    field_path: str = Field(min_length=1)
    rule_type: ValidationRuleType
    config: dict[str, Any] = Field(default_factory=dict)
    severity: ValidationSeverity = ValidationSeverity.WARNING
    enabled: bool = True
    notify_on_failure: bool = True
    notify_emails: list[str] = Field(default_factory=list)


class UpdateRuleRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    enabled: bool | None = None
    config: dict[str, Any] | None = None
    severity: ValidationSeverity | None = None
    notify_on_failure: bool | None = None
    notify_emails: list[str] | None = None


class Rule(BaseModel):
    id: str
    workspace_id: str
    integration_id: str | None = None
    portal_id: str | None = None
    name: str
    description: str | None = None
    data_source: str | None = None
    field_path: str
    rule_type: ValidationRuleType
    config: dict[str, Any]
    severity: ValidationSeverity
    enabled: bool
    notify_on_failure: bool
    notify_emails: list[str]
    created_at: str
    updated_at: str
    violations: list[Violation] = Field(default_factory=list)


class ResolveViolationRequest(BaseModel):
    resolved_by: str = Field(min_length=1)
    notes: str | None = None


class ViolationStats(BaseModel):
    total: int
    resolved: int
    unresolved: int
    by_severity: dict[str, int]
    by_type: dict[str, int]
    period: str


class ValidateDataRequest(BaseModel):
    workspace_id: str
    field_path: str = Field(min_length=1)
    data: dict[str, Any]


class OnDemandResult(BaseModel):
    rule_id: str
    rule_name: str
    passed: bool
    violation: dict[str, Any] | None = None


class ValidateDataResponse(BaseModel):
    results: list[OnDemandResult]


class TriggerRunRequest(BaseModel):
    trigger: str = "manual"


class ValidationRun(BaseModel):
    id: str
    status: str
    trigger: str
    failure_reason: str | None = None
    started_at: str
    completed_at: str | None = None
    rules_total: int
    rules_evaluated: int
    rules_skipped: int
    violations_recorded: int
    rule_failures: int
    notifications_sent: int
    notifications_failed: int
    failed_rule_ids: list[str] = Field(default_factory=list)
