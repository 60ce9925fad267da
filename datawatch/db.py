from __future__ import annotations

import logging
import os
from pathlib import Path

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from datawatch.config import database_url
from datawatch.models import Base


logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url:
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {"pool_pre_ping": True}


DATABASE_URL = database_url()
ENGINE = create_engine(DATABASE_URL, future=True, **_engine_kwargs(DATABASE_URL))
SessionLocal = sessionmaker(bind=ENGINE, autoflush=False, autocommit=False, expire_on_commit=False)


REQUIRED_SCHEMA: dict[str, set[str]] = {
    "workspace": {"id", "name", "created_at", "updated_at"},
    "portal": {"id", "workspace_id", "name", "created_at", "updated_at"},
    "widget": {"id", "portal_id", "integration_id", "name", "config", "position", "updated_at"},
    "validation_rule": {
        "id",
        "workspace_id",
        "integration_id",
        "portal_id",
        "name",
        "field_path",
        "rule_type",
        "config",
        "severity",
        "enabled",
        "notify_on_failure",
        "notify_emails",
        "created_at",
    },
    "validation_violation": {
        "id",
        "rule_id",
        "timestamp",
        "field_path",
        "actual_value",
        "expected_value",
        "violation_type",
        "severity",
        "resolved",
        "metadata",
    },
    "validation_run": {"id", "status", "trigger", "started_at", "completed_at"},
    "validation_run_lease": {"name", "holder", "fencing_counter", "expires_at"},
}


def _is_sqlite_url(url: str) -> bool:
    return url.startswith("sqlite")


def _migrations_dir() -> Path:
    configured = os.getenv("DATAWATCH_DB_MIGRATIONS_DIR")
    if configured:
        return Path(configured).expanduser().resolve()
    return Path(__file__).resolve().parents[1] / "docs" / "db" / "migrations"


def _migration_sql_files() -> list[Path]:
    migrations_dir = _migrations_dir()
    if not migrations_dir.is_dir():
        raise RuntimeError(f"Migrations directory not found: {migrations_dir}")
    migration_files = sorted(path.resolve() for path in migrations_dir.glob("*.sql"))
    if not migration_files:
        raise RuntimeError(f"No SQL migration files found in: {migrations_dir}")
    return migration_files


def _applied_migration_versions(engine: Engine) -> set[str]:
    with engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE IF NOT EXISTS schema_migrations ("
                "version TEXT PRIMARY KEY, "
                "applied_at TIMESTAMPTZ NOT NULL DEFAULT now())"
            )
        )
        rows = conn.execute(text("SELECT version FROM schema_migrations")).all()
    return {row[0] for row in rows}


def _apply_migration(engine: Engine, migration_file: Path) -> None:
    sql = migration_file.read_text(encoding="utf-8")
    with engine.begin() as conn:
        conn.exec_driver_sql(sql)
        conn.execute(
            text("INSERT INTO schema_migrations (version) VALUES (:version)"),
            {"version": migration_file.name},
        )


def _run_postgres_migrations(engine: Engine) -> None:
    applied = _applied_migration_versions(engine)
    for migration_file in _migration_sql_files():
        if migration_file.name in applied:
            continue
        logger.info("Applying migration %s", migration_file.name)
        _apply_migration(engine, migration_file)


def verify_schema(engine: Engine, required: dict[str, set[str]] | None = None) -> None:
    inspector = inspect(engine)
    required_schema = required or REQUIRED_SCHEMA
    existing_tables = set(inspector.get_table_names())
    missing: list[str] = []
    for table_name, columns in required_schema.items():
        if table_name not in existing_tables:
            missing.extend(f"{table_name}.{column}" for column in sorted(columns))
            continue
        present = {column["name"] for column in inspector.get_columns(table_name)}
        missing.extend(f"{table_name}.{column}" for column in sorted(columns - present))
    if missing:
        raise RuntimeError(f"Schema verification failed; missing columns: {', '.join(missing)}")


def init_db() -> None:
    if _is_sqlite_url(DATABASE_URL):
        Base.metadata.create_all(bind=ENGINE)
    else:
        _run_postgres_migrations(ENGINE)
    verify_schema(ENGINE)


def reset_db() -> None:
    Base.metadata.drop_all(bind=ENGINE)
    Base.metadata.create_all(bind=ENGINE)
