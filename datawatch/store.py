from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, select

from datawatch.db import SessionLocal, init_db, reset_db
from datawatch.models import (
    PortalModel,
    ValidationRuleModel,
    ValidationRuleType,
    ValidationRunModel,
    ValidationRunStatus,
    ValidationSeverity,
    ValidationViolationModel,
    WidgetModel,
    WorkspaceModel,
)


RULE_DETAIL_VIOLATION_LIMIT = 50
RULE_LIST_VIOLATION_LIMIT = 5
VIOLATION_LIST_LIMIT = 100

_RULE_UPDATABLE_FIELDS = {
    "name",
    "description",
    "enabled",
    "config",
    "severity",
    "notify_on_failure",
    "notify_emails",
}

_RUN_COUNTERS = (
    "rules_total",
    "rules_evaluated",
    "rules_skipped",
    "violations_recorded",
    "rule_failures",
    "notifications_sent",
    "notifications_failed",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: datetime | None) -> str | None:
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.isoformat()


def _workspace_to_dict(model: WorkspaceModel) -> dict[str, Any]:
    return {
        "id": model.id,
        "name": model.name,
        "created_at": _iso(model.created_at),
        "updated_at": _iso(model.updated_at),
    }


def _portal_to_dict(model: PortalModel) -> dict[str, Any]:
    return {
        "id": model.id,
        "workspace_id": model.workspace_id,
        "name": model.name,
        "created_at": _iso(model.created_at),
        "updated_at": _iso(model.updated_at),
    }


def _widget_to_dict(model: WidgetModel) -> dict[str, Any]:
    return {
        "id": model.id,
        "portal_id": model.portal_id,
        "integration_id": model.integration_id,
        "name": model.name,
        "config": model.config,
        "position": model.position,
        "created_at": _iso(model.created_at),
        "updated_at": _iso(model.updated_at),
    }


def _rule_to_dict(model: ValidationRuleModel) -> dict[str, Any]:
    return {
        "id": model.id,
        "workspace_id": model.workspace_id,
        "integration_id": model.integration_id,
        "portal_id": model.portal_id,
        "name": model.name,
        "description": model.description,
        "data_source": model.data_source,
        "field_path": model.field_path,
        "rule_type": model.rule_type.value,
        "config": model.config or {},
        "severity": model.severity.value,
        "enabled": model.enabled,
        "notify_on_failure": model.notify_on_failure,
        "notify_emails": list(model.notify_emails or []),
        "created_at": _iso(model.created_at),
        "updated_at": _iso(model.updated_at),
    }


def _violation_to_dict(model: ValidationViolationModel) -> dict[str, Any]:
    return {
        "id": model.id,
        "rule_id": model.rule_id,
        "timestamp": _iso(model.timestamp),
        "field_path": model.field_path,
        "actual_value": model.actual_value,
        "expected_value": model.expected_value,
        "violation_type": model.violation_type,
        "severity": model.severity.value,
        "resolved": model.resolved,
        "resolved_at": _iso(model.resolved_at),
        "resolved_by": model.resolved_by,
        "resolution_notes": model.resolution_notes,
        "metadata": model.details,
    }


def _run_to_dict(model: ValidationRunModel) -> dict[str, Any]:
    data = {
        "id": model.id,
        "status": model.status.value,
        "trigger": model.trigger,
        "failure_reason": model.failure_reason,
        "started_at": _iso(model.started_at),
        "completed_at": _iso(model.completed_at),
    }
    for counter in _RUN_COUNTERS:
        data[counter] = getattr(model, counter)
    return data


def _validate_rule_config(rule_type: ValidationRuleType, config: Any) -> None:
    if not isinstance(config, dict):
        raise ValueError("INVALID_RULE_CONFIG")
    if rule_type == ValidationRuleType.CUSTOM_REGEX and not isinstance(config.get("pattern"), str):
        raise ValueError("INVALID_RULE_CONFIG")
    if rule_type == ValidationRuleType.DATA_TYPE_CHECK and not isinstance(config.get("expectedType"), str):
        raise ValueError("INVALID_RULE_CONFIG")


class SqlStore:
    def __init__(self) -> None:
        init_db()

    def reset(self) -> None:
        reset_db()

    # ------------------------------------------------------------------
    # Workspaces, portals, widgets
    # ------------------------------------------------------------------

    def create_workspace(self, name: str) -> dict[str, Any]:
        with SessionLocal.begin() as session:
            workspace = WorkspaceModel(name=name)
            session.add(workspace)
            session.flush()
            return _workspace_to_dict(workspace)

    def get_workspace_name(self, workspace_id: str) -> str | None:
        with SessionLocal() as session:
            return session.execute(
                select(WorkspaceModel.name).where(WorkspaceModel.id == workspace_id)
            ).scalar_one_or_none()

    def create_portal(self, workspace_id: str, name: str) -> dict[str, Any]:
        with SessionLocal.begin() as session:
            if session.get(WorkspaceModel, workspace_id) is None:
                raise KeyError("WORKSPACE_NOT_FOUND")
            portal = PortalModel(workspace_id=workspace_id, name=name)
            session.add(portal)
            session.flush()
            return _portal_to_dict(portal)

    def create_widget(self, payload: dict[str, Any]) -> dict[str, Any]:
        with SessionLocal.begin() as session:
            if session.get(PortalModel, payload["portal_id"]) is None:
                raise KeyError("PORTAL_NOT_FOUND")
            now = _now()
            widget = WidgetModel(
                portal_id=payload["portal_id"],
                integration_id=payload.get("integration_id"),
                name=payload["name"],
                config=payload.get("config") or {},
                position=payload.get("position", 0),
                created_at=now,
                updated_at=payload.get("updated_at") or now,
            )
            session.add(widget)
            session.flush()
            return _widget_to_dict(widget)

    def update_widget_config(self, widget_id: str, config: dict[str, Any]) -> dict[str, Any]:
        with SessionLocal.begin() as session:
            widget = session.get(WidgetModel, widget_id)
            if widget is None:
                raise KeyError("WIDGET_NOT_FOUND")
            widget.config = config
            widget.updated_at = _now()
            session.flush()
            return _widget_to_dict(widget)

    def list_widgets_for_integration(self, integration_id: str, limit: int) -> list[dict[str, Any]]:
        with SessionLocal() as session:
            rows = session.execute(
                select(WidgetModel)
                .where(WidgetModel.integration_id == integration_id)
                .order_by(WidgetModel.position.asc(), WidgetModel.created_at.asc())
                .limit(limit)
            ).scalars().all()
            return [_widget_to_dict(row) for row in rows]

    def list_recent_portal_widgets(self, portal_id: str, limit: int) -> list[dict[str, Any]]:
        with SessionLocal() as session:
            rows = session.execute(
                select(WidgetModel)
                .where(WidgetModel.portal_id == portal_id)
                .order_by(WidgetModel.updated_at.desc())
                .limit(limit)
            ).scalars().all()
            return [_widget_to_dict(row) for row in rows]

    def list_first_portal_widgets(self, workspace_id: str, limit: int) -> list[dict[str, Any]]:
        with SessionLocal() as session:
            portal_id = session.execute(
                select(PortalModel.id)
                .where(PortalModel.workspace_id == workspace_id)
                .order_by(PortalModel.created_at.asc())
                .limit(1)
            ).scalar_one_or_none()
            if portal_id is None:
                return []
            rows = session.execute(
                select(WidgetModel)
                .where(WidgetModel.portal_id == portal_id)
                .order_by(WidgetModel.position.asc(), WidgetModel.created_at.asc())
                .limit(limit)
            ).scalars().all()
            return [_widget_to_dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def create_rule(self, payload: dict[str, Any]) -> dict[str, Any]:
        rule_type = ValidationRuleType(payload["rule_type"])
        config = payload.get("config") or {}
        _validate_rule_config(rule_type, config)
        with SessionLocal.begin() as session:
            if session.get(WorkspaceModel, payload["workspace_id"]) is None:
                raise KeyError("WORKSPACE_NOT_FOUND")
            rule = ValidationRuleModel(
                workspace_id=payload["workspace_id"],
                integration_id=payload.get("integration_id"),
                portal_id=payload.get("portal_id"),
                name=payload["name"],
                description=payload.get("description"),
                data_source=payload.get("data_source"),
                field_path=payload["field_path"],
                rule_type=rule_type,
                config=config,
                severity=ValidationSeverity(payload.get("severity") or ValidationSeverity.WARNING),
                enabled=payload.get("enabled", True),
                notify_on_failure=payload.get("notify_on_failure", True),
                notify_emails=payload.get("notify_emails") or [],
            )
            session.add(rule)
            session.flush()
            return _rule_to_dict(rule)

    def get_rule(self, rule_id: str) -> dict[str, Any] | None:
        with SessionLocal() as session:
            rule = session.get(ValidationRuleModel, rule_id)
            if rule is None:
                return None
            data = _rule_to_dict(rule)
            violations = session.execute(
                select(ValidationViolationModel)
                .where(ValidationViolationModel.rule_id == rule_id)
                .order_by(ValidationViolationModel.timestamp.desc())
                .limit(RULE_DETAIL_VIOLATION_LIMIT)
            ).scalars().all()
            data["violations"] = [_violation_to_dict(v) for v in violations]
            return data

    def list_rules(self, workspace_id: str, enabled: bool | None = None) -> list[dict[str, Any]]:
        with SessionLocal() as session:
            query = select(ValidationRuleModel).where(ValidationRuleModel.workspace_id == workspace_id)
            if enabled is not None:
                query = query.where(ValidationRuleModel.enabled.is_(enabled))
            rules = session.execute(
                query.order_by(ValidationRuleModel.created_at.desc())
            ).scalars().all()
            items: list[dict[str, Any]] = []
            for rule in rules:
                data = _rule_to_dict(rule)
                open_violations = session.execute(
                    select(ValidationViolationModel)
                    .where(
                        ValidationViolationModel.rule_id == rule.id,
                        ValidationViolationModel.resolved.is_(False),
                    )
                    .order_by(ValidationViolationModel.timestamp.desc())
                    .limit(RULE_LIST_VIOLATION_LIMIT)
                ).scalars().all()
                data["violations"] = [_violation_to_dict(v) for v in open_violations]
                items.append(data)
            return items

    def update_rule(self, rule_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        unknown = set(payload) - _RULE_UPDATABLE_FIELDS
        if unknown:
            raise ValueError("INVALID_RULE_UPDATE")
        with SessionLocal.begin() as session:
            rule = session.get(ValidationRuleModel, rule_id)
            if rule is None:
                raise KeyError("RULE_NOT_FOUND")
            if "config" in payload:
                _validate_rule_config(rule.rule_type, payload["config"])
                rule.config = payload["config"]
            if "severity" in payload:
                rule.severity = ValidationSeverity(payload["severity"])
            if "notify_emails" in payload:
                rule.notify_emails = list(payload["notify_emails"] or [])
            for key in ("name", "description", "enabled", "notify_on_failure"):
                if key in payload:
                    setattr(rule, key, payload[key])
            rule.updated_at = _now()
            session.flush()
            return _rule_to_dict(rule)

    def delete_rule(self, rule_id: str) -> None:
        with SessionLocal.begin() as session:
            rule = session.get(ValidationRuleModel, rule_id)
            if rule is None:
                raise KeyError("RULE_NOT_FOUND")
            session.execute(
                delete(ValidationViolationModel).where(ValidationViolationModel.rule_id == rule_id)
            )
            session.delete(rule)

    def list_enabled_rules(self) -> list[dict[str, Any]]:
        with SessionLocal() as session:
            rules = session.execute(
                select(ValidationRuleModel)
                .where(ValidationRuleModel.enabled.is_(True))
                .order_by(ValidationRuleModel.created_at.asc())
            ).scalars().all()
            return [_rule_to_dict(rule) for rule in rules]

    def list_rules_for(self, workspace_id: str, field_path: str) -> list[dict[str, Any]]:
        with SessionLocal() as session:
            rules = session.execute(
                select(ValidationRuleModel)
                .where(
                    ValidationRuleModel.workspace_id == workspace_id,
                    ValidationRuleModel.field_path == field_path,
                    ValidationRuleModel.enabled.is_(True),
                )
                .order_by(ValidationRuleModel.created_at.asc())
            ).scalars().all()
            return [_rule_to_dict(rule) for rule in rules]

    def get_active_rules_for_integration(self, integration_id: str) -> list[dict[str, Any]]:
        with SessionLocal() as session:
            rules = session.execute(
                select(ValidationRuleModel).where(
                    ValidationRuleModel.integration_id == integration_id,
                    ValidationRuleModel.enabled.is_(True),
                )
            ).scalars().all()
            return [_rule_to_dict(rule) for rule in rules]

    # ------------------------------------------------------------------
    # Violations
    # ------------------------------------------------------------------

    def create_violation(self, payload: dict[str, Any]) -> dict[str, Any]:
        with SessionLocal.begin() as session:
            violation = ValidationViolationModel(
                rule_id=payload["rule_id"],
                timestamp=payload.get("timestamp") or _now(),
                field_path=payload["field_path"],
                actual_value=payload.get("actual_value"),
                expected_value=payload.get("expected_value"),
                violation_type=payload["violation_type"],
                severity=ValidationSeverity(payload["severity"]),
                details=payload.get("metadata"),
            )
            session.add(violation)
            session.flush()
            return _violation_to_dict(violation)

    def list_recent_violations(self, rule_id: str, since: datetime, limit: int) -> list[dict[str, Any]]:
        with SessionLocal() as session:
            rows = session.execute(
                select(ValidationViolationModel)
                .where(
                    ValidationViolationModel.rule_id == rule_id,
                    ValidationViolationModel.timestamp >= since,
                )
                .order_by(ValidationViolationModel.timestamp.desc())
                .limit(limit)
            ).scalars().all()
            return [_violation_to_dict(row) for row in rows]

    def list_violations(
        self,
        workspace_id: str,
        resolved: bool | None = None,
        severity: str | None = None,
        rule_id: str | None = None,
    ) -> list[dict[str, Any]]:
        with SessionLocal() as session:
            query = (
                select(ValidationViolationModel, ValidationRuleModel.name)
                .join(ValidationRuleModel, ValidationRuleModel.id == ValidationViolationModel.rule_id)
                .where(ValidationRuleModel.workspace_id == workspace_id)
            )
            if resolved is not None:
                query = query.where(ValidationViolationModel.resolved.is_(resolved))
            if severity is not None:
                query = query.where(ValidationViolationModel.severity == ValidationSeverity(severity))
            if rule_id is not None:
                query = query.where(ValidationViolationModel.rule_id == rule_id)
            rows = session.execute(
                query.order_by(ValidationViolationModel.timestamp.desc()).limit(VIOLATION_LIST_LIMIT)
            ).all()
            items = []
            for violation, rule_name in rows:
                data = _violation_to_dict(violation)
                data["rule_name"] = rule_name
                items.append(data)
            return items

    def resolve_violation(
        self, violation_id: str, resolved_by: str, notes: str | None = None
    ) -> dict[str, Any]:
        with SessionLocal.begin() as session:
            violation = session.get(ValidationViolationModel, violation_id)
            if violation is None:
                raise KeyError("VIOLATION_NOT_FOUND")
            violation.resolved = True
            violation.resolved_at = _now()
            violation.resolved_by = resolved_by
            violation.resolution_notes = notes
            session.flush()
            return _violation_to_dict(violation)

    def get_violation_stats(self, workspace_id: str, days: int = 7) -> dict[str, Any]:
        since = _now() - timedelta(days=days)
        with SessionLocal() as session:
            rows = session.execute(
                select(ValidationViolationModel.severity, ValidationViolationModel.violation_type, ValidationViolationModel.resolved)
                .join(ValidationRuleModel, ValidationRuleModel.id == ValidationViolationModel.rule_id)
                .where(
                    ValidationRuleModel.workspace_id == workspace_id,
                    ValidationViolationModel.timestamp >= since,
                )
            ).all()

        by_severity = {severity.value: 0 for severity in reversed(list(ValidationSeverity))}
        by_type: Counter[str] = Counter()
        resolved = 0
        for severity, violation_type, is_resolved in rows:
            by_severity[severity.value] += 1
            by_type[violation_type] += 1
            if is_resolved:
                resolved += 1

        return {
            "total": len(rows),
            "resolved": resolved,
            "unresolved": len(rows) - resolved,
            "by_severity": by_severity,
            "by_type": dict(by_type),
            "period": f"{days} days",
        }

    # ------------------------------------------------------------------
    # Run history
    # ------------------------------------------------------------------

    def start_run(self, trigger: str) -> dict[str, Any]:
        with SessionLocal.begin() as session:
            run = ValidationRunModel(trigger=trigger, status=ValidationRunStatus.RUNNING)
            session.add(run)
            session.flush()
            return _run_to_dict(run)

    def finish_run(
        self,
        run_id: str,
        status: ValidationRunStatus,
        counters: dict[str, int],
        failure_reason: str | None = None,
    ) -> dict[str, Any]:
        with SessionLocal.begin() as session:
            run = session.get(ValidationRunModel, run_id)
            if run is None:
                raise KeyError("RUN_NOT_FOUND")
            run.status = ValidationRunStatus(status)
            for counter in _RUN_COUNTERS:
                if counter in counters:
                    setattr(run, counter, int(counters[counter]))
            run.failure_reason = failure_reason
            run.completed_at = _now()
            session.flush()
            return _run_to_dict(run)

    def record_skipped_run(self, trigger: str, reason: str) -> dict[str, Any]:
        with SessionLocal.begin() as session:
            now = _now()
            run = ValidationRunModel(
                trigger=trigger,
                status=ValidationRunStatus.SKIPPED,
                failure_reason=reason,
                started_at=now,
                completed_at=now,
            )
            session.add(run)
            session.flush()
            return _run_to_dict(run)

    def list_runs(self, limit: int = 20) -> list[dict[str, Any]]:
        with SessionLocal() as session:
            rows = session.execute(
                select(ValidationRunModel).order_by(ValidationRunModel.started_at.desc()).limit(limit)
            ).scalars().all()
            return [_run_to_dict(row) for row in rows]


STORE = SqlStore()
