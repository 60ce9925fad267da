
from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from datawatch.config import load_settings
from datawatch.models import ValidationRuleType, ValidationSeverity
from datawatch.schemas import (
    CreateRuleRequest,
    ErrorResponse,
    OnDemandResult,
    ResolveViolationRequest,
    Rule,
    TriggerRunRequest,
    UpdateRuleRequest,
    ValidateDataRequest,
    ValidateDataResponse,
    ValidationRun,
    Violation,
    ViolationStats,
)
from datawatch.store import STORE
from datawatch.validation.engine import build_engine
from datawatch.validation.errors import ConfigParseError, RunInProgressError
from datawatch.validation.evaluators import compile_pattern
from datawatch.validation.recorder import json_safe


SETTINGS = load_settings()

app = FastAPI(title="Datawatch")
VALIDATION_ENGINE = build_engine(STORE, SETTINGS)


def _error(status_code: int, code: str, message: str, retryable: bool = False) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=ErrorResponse(
            error={
                "code": code,
                "message": message,
                "retryable": retryable,
            }
        ).model_dump(),
    )


def _parse_severity(severity: str | None) -> str | None:
    if severity is None:
        return None
    try:
        return ValidationSeverity(severity.upper()).value
    except ValueError:
        raise _error(400, "INVALID_SEVERITY", f"Unknown severity: {severity}") from None


@app.exception_handler(HTTPException)
async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(ConfigParseError)
async def config_parse_error_handler(_: Request, exc: ConfigParseError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error={"code": "INVALID_RULE_CONFIG", "message": str(exc), "retryable": False}
        ).model_dump(),
    )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/v1/validation/rules", response_model=Rule, status_code=status.HTTP_201_CREATED)
def create_rule(payload: CreateRuleRequest) -> Rule:
    if payload.rule_type == ValidationRuleType.CUSTOM_REGEX:
        compile_pattern(None, payload.config.get("pattern"), payload.config.get("flags"))
    try:
        rule = STORE.create_rule(payload.model_dump(mode="json"))
    except KeyError:
        raise _error(404, "WORKSPACE_NOT_FOUND", "Workspace not found")
    except ValueError as exc:
        raise _error(422, str(exc), "Rule config does not match its rule type")
    return Rule(**rule)


@app.get("/v1/validation/rules", response_model=list[Rule])
def list_rules(workspace_id: str, enabled: bool | None = None) -> list[Rule]:
    return [Rule(**rule) for rule in STORE.list_rules(workspace_id, enabled=enabled)]


@app.get("/v1/validation/rules/{rule_id}", response_model=Rule)
def get_rule(rule_id: str) -> Rule:
    rule = STORE.get_rule(rule_id)
    if rule is None:
        raise _error(404, "RULE_NOT_FOUND", "Validation rule not found")
    return Rule(**rule)


@app.patch("/v1/validation/rules/{rule_id}", response_model=Rule)
def update_rule(rule_id: str, payload: UpdateRuleRequest) -> Rule:
    changes = payload.model_dump(mode="json", exclude_unset=True)
    existing = STORE.get_rule(rule_id)
    if existing is None:
        raise _error(404, "RULE_NOT_FOUND", "Validation rule not found")
    if "config" in changes and existing["rule_type"] == ValidationRuleType.CUSTOM_REGEX.value:
        config = changes["config"] or {}
        compile_pattern(rule_id, config.get("pattern"), config.get("flags"))
    try:
        rule = STORE.update_rule(rule_id, changes)
    except KeyError:
        raise _error(404, "RULE_NOT_FOUND", "Validation rule not found")
    except ValueError as exc:
        raise _error(422, str(exc), "Invalid rule update")
    return Rule(**rule)


@app.delete("/v1/validation/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(rule_id: str) -> Response:
    try:
        STORE.delete_rule(rule_id)
    except KeyError:
        raise _error(404, "RULE_NOT_FOUND", "Validation rule not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/v1/validation/violations", response_model=list[Violation])
def list_violations(
    workspace_id: str,
    resolved: bool | None = None,
    severity: str | None = None,
    rule_id: str | None = None,
) -> list[Violation]:
    items = STORE.list_violations(
        workspace_id,
        resolved=resolved,
        severity=_parse_severity(severity),
        rule_id=rule_id,
    )
    return [Violation(**item) for item in items]


@app.post("/v1/validation/violations/{violation_id}/resolve", response_model=Violation)
def resolve_violation(violation_id: str, payload: ResolveViolationRequest) -> Violation:
    try:
        violation = STORE.resolve_violation(violation_id, payload.resolved_by, payload.notes)
    except KeyError:
        raise _error(404, "VIOLATION_NOT_FOUND", "Violation not found")
    return Violation(**violation)


@app.get("/v1/validation/stats", response_model=ViolationStats)
def violation_stats(workspace_id: str, days: int = 7) -> ViolationStats:
    if days < 1:
        raise _error(400, "INVALID_PERIOD", "days must be at least 1")
    return ViolationStats(**STORE.get_violation_stats(workspace_id, days=days))


@app.post("/v1/validation/validate", response_model=ValidateDataResponse)
def validate_data(payload: ValidateDataRequest) -> ValidateDataResponse:
    results = VALIDATION_ENGINE.validate_data_on_demand(
        payload.workspace_id, payload.data, payload.field_path
    )
    return ValidateDataResponse(results=[OnDemandResult(**json_safe(result)) for result in results])


@app.post("/v1/validation/runs", response_model=ValidationRun, status_code=status.HTTP_201_CREATED)
def trigger_run(payload: TriggerRunRequest | None = None) -> ValidationRun:
    trigger = payload.trigger if payload is not None else "manual"
    try:
        run = VALIDATION_ENGINE.run_scheduled_validations(trigger, fail_if_running=True)
    except RunInProgressError:
        raise _error(409, "RUN_IN_PROGRESS", "A validation run is already in progress", retryable=True)
    return ValidationRun(**run)


@app.get("/v1/validation/runs", response_model=list[ValidationRun])
def list_runs(limit: int = 20) -> list[ValidationRun]:
    return [ValidationRun(**run) for run in STORE.list_runs(limit=limit)]
