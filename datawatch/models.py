from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, ForeignKey, Index, Integer, JSON, Text, Uuid
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class ValidationRuleType(str, Enum):
    NO_NEGATIVE_VALUES = "NO_NEGATIVE_VALUES"
    RANGE_CHECK = "RANGE_CHECK"
    SPIKE_DETECTION = "SPIKE_DETECTION"
    MISSING_FIELD = "MISSING_FIELD"
    REQUIRED_FIELD = "REQUIRED_FIELD"
    CROSS_SOURCE_CONSISTENCY = "CROSS_SOURCE_CONSISTENCY"
    CUSTOM_REGEX = "CUSTOM_REGEX"
    DATA_TYPE_CHECK = "DATA_TYPE_CHECK"


class ValidationSeverity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ValidationRunStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    SKIPPED = "skipped"
    FAILED = "failed"


UUID_TEXT = Uuid(as_uuid=False)
TEXT_LIST = JSON().with_variant(ARRAY(Text), "postgresql")
JSON_DOC = JSON().with_variant(JSONB, "postgresql")


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class WorkspaceModel(Base):
    __tablename__ = "workspace"

    id: Mapped[str] = mapped_column(UUID_TEXT, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class PortalModel(Base):
    __tablename__ = "portal"

    id: Mapped[str] = mapped_column(UUID_TEXT, primary_key=True, default=_new_id)
    workspace_id: Mapped[str] = mapped_column(
        UUID_TEXT, ForeignKey("workspace.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class WidgetModel(Base):
    __tablename__ = "widget"
    __table_args__ = (Index("ix_widget_integration_id", "integration_id"),)

    id: Mapped[str] = mapped_column(UUID_TEXT, primary_key=True, default=_new_id)
    portal_id: Mapped[str] = mapped_column(
        UUID_TEXT, ForeignKey("portal.id", ondelete="CASCADE"), nullable=False
    )
    integration_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    config: Mapped[dict] = mapped_column(JSON_DOC, nullable=False, default=dict)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class ValidationRuleModel(Base):
    __tablename__ = "validation_rule"
    __table_args__ = (Index("ix_validation_rule_workspace_field", "workspace_id", "field_path"),)

    id: Mapped[str] = mapped_column(UUID_TEXT, primary_key=True, default=_new_id)
    workspace_id: Mapped[str] = mapped_column(
        UUID_TEXT, ForeignKey("workspace.id", ondelete="CASCADE"), nullable=False
    )
    integration_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    portal_id: Mapped[str | None] = mapped_column(
        UUID_TEXT, ForeignKey("portal.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_source: Mapped[str | None] = mapped_column(Text, nullable=True)
    field_path: Mapped[str] = mapped_column(Text, nullable=False)
    rule_type: Mapped[ValidationRuleType] = mapped_column(
        SAEnum(ValidationRuleType, name="validation_rule_type", values_callable=_enum_values), nullable=False
    )
    config: Mapped[dict] = mapped_column(JSON_DOC, nullable=False, default=dict)
    severity: Mapped[ValidationSeverity] = mapped_column(
        SAEnum(ValidationSeverity, name="validation_severity", values_callable=_enum_values),
        nullable=False,
        default=ValidationSeverity.WARNING,
    )
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_on_failure: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_emails: Mapped[list[str]] = mapped_column(TEXT_LIST, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class ValidationViolationModel(Base):
    __tablename__ = "validation_violation"
    __table_args__ = (Index("ix_validation_violation_rule_timestamp", "rule_id", "timestamp"),)

    id: Mapped[str] = mapped_column(UUID_TEXT, primary_key=True, default=_new_id)
    rule_id: Mapped[str] = mapped_column(
        UUID_TEXT, ForeignKey("validation_rule.id", ondelete="CASCADE"), nullable=False
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    field_path: Mapped[str] = mapped_column(Text, nullable=False)
    actual_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    expected_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    violation_type: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[ValidationSeverity] = mapped_column(
        SAEnum(ValidationSeverity, name="validation_severity", values_callable=_enum_values), nullable=False
    )
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict | None] = mapped_column("metadata", JSON_DOC, nullable=True)


class ValidationRunModel(Base):
    __tablename__ = "validation_run"

    id: Mapped[str] = mapped_column(UUID_TEXT, primary_key=True, default=_new_id)
    status: Mapped[ValidationRunStatus] = mapped_column(
        SAEnum(ValidationRunStatus, name="validation_run_status", values_callable=_enum_values),
        nullable=False,
        default=ValidationRunStatus.RUNNING,
    )
    trigger: Mapped[str] = mapped_column(Text, nullable=False, default="schedule")
    rules_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rules_evaluated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rules_skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    violations_recorded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rule_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notifications_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notifications_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class ValidationRunLeaseModel(Base):
    __tablename__ = "validation_run_lease"

    name: Mapped[str] = mapped_column(Text, primary_key=True)
    holder: Mapped[str] = mapped_column(Text, nullable=False)
    fencing_counter: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    acquired_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
