import pytest
from sqlalchemy import create_engine, text

import datawatch.db as db


def test_verify_schema_detects_missing_required_column():
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    with engine.begin() as conn:
        conn.exec_driver_sql("CREATE TABLE validation_rule (id TEXT PRIMARY KEY)")

    with pytest.raises(RuntimeError, match=r"validation_rule\.field_path"):
        db.verify_schema(engine, {"validation_rule": {"id", "field_path"}})


def test_verify_schema_reports_missing_tables():
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)

    with pytest.raises(RuntimeError, match=r"validation_run\.status"):
        db.verify_schema(engine, {"validation_run": {"status"}})


def test_default_schema_is_complete_after_bootstrap():
    db.verify_schema(db.ENGINE)


def test_init_db_calls_migration_path_for_non_sqlite(monkeypatch):
    called = {"migrate": False, "create_all": False, "verify": False}

    monkeypatch.setattr(db, "DATABASE_URL", "postgresql+psycopg://x:y@localhost:5432/datawatch")
    monkeypatch.setattr(db, "_run_postgres_migrations", lambda engine: called.__setitem__("migrate", True))
    monkeypatch.setattr(db, "verify_schema", lambda engine, required=None: called.__setitem__("verify", True))
    monkeypatch.setattr(db.Base.metadata, "create_all", lambda bind=None: called.__setitem__("create_all", True))

    db.init_db()

    assert called == {"migrate": True, "create_all": False, "verify": True}


def test_init_db_uses_sqlite_create_all_path(monkeypatch):
    called = {"migrate": False, "create_all": False, "verify": False}

    monkeypatch.setattr(db, "DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setattr(db, "_run_postgres_migrations", lambda engine: called.__setitem__("migrate", True))
    monkeypatch.setattr(db, "verify_schema", lambda engine, required=None: called.__setitem__("verify", True))
    monkeypatch.setattr(db.Base.metadata, "create_all", lambda bind=None: called.__setitem__("create_all", True))

    db.init_db()

    assert called == {"migrate": False, "create_all": True, "verify": True}


def test_run_postgres_migrations_applies_only_pending_files(monkeypatch):
    applied: list[str] = []
    monkeypatch.setattr(
        db, "_migration_sql_files", lambda: [db.Path("/tmp/0001_init.sql"), db.Path("/tmp/0002_extra.sql")]
    )
    monkeypatch.setattr(db, "_applied_migration_versions", lambda engine: {"0001_init.sql"})
    monkeypatch.setattr(db, "_apply_migration", lambda engine, path: applied.append(path.name))

    db._run_postgres_migrations(db.ENGINE)

    assert applied == ["0002_extra.sql"]


def test_migrations_dir_can_be_overridden(monkeypatch, tmp_path):
    (tmp_path / "0001_init.sql").write_text("SELECT 1;", encoding="utf-8")
    monkeypatch.setenv("DATAWATCH_DB_MIGRATIONS_DIR", str(tmp_path))

    assert [path.name for path in db._migration_sql_files()] == ["0001_init.sql"]


def test_missing_migrations_dir_raises(monkeypatch, tmp_path):
    monkeypatch.setenv("DATAWATCH_DB_MIGRATIONS_DIR", str(tmp_path / "absent"))

    with pytest.raises(RuntimeError, match="Migrations directory not found"):
        db._migration_sql_files()


def test_bundled_migration_creates_every_table():
    sql = db._migrations_dir().joinpath("0001_init.sql").read_text(encoding="utf-8")
    for table in db.REQUIRED_SCHEMA:
        assert f"CREATE TABLE {table}" in sql or f"CREATE TABLE IF NOT EXISTS {table}" in sql


def test_reset_db_clears_rows():
    with db.ENGINE.begin() as conn:
        conn.execute(text("INSERT INTO workspace (id, name, created_at, updated_at) VALUES ('a', 'x', '2026-01-01', '2026-01-01')"))

    db.reset_db()

    with db.ENGINE.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM workspace")).scalar_one() == 0
