from __future__ import annotations

import shutil
import sqlite3
from pathlib import Path

import allure
import pytest

from workgraph.errors import MigrationFailureError
from workgraph.storage.alembic_runner import (
    ROOT_DIR,
    applied_versions,
    downgrade_to,
    migration_status,
    upgrade_head,
)
from workgraph.store import EntityStore

pytestmark = [
    allure.epic("Work Graph"),
    allure.feature("Schema Migrations"),
]

_BROKEN_REVISION = '''"""Broken revision used to exercise rollback."""

import sqlalchemy as sa

from alembic import op

revision = "0003"
down_revision = "0002"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table("half_done", sa.Column("id", sa.Integer(), primary_key=True))
    op.execute("INSERT INTO no_such_table VALUES (1)")


def downgrade() -> None:
    op.drop_table("half_done")
'''


def _tables(db_path: Path) -> set[str]:
    with sqlite3.connect(db_path) as connection:
        rows = connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {str(row[0]) for row in rows}


def _broken_scripts(tmp_path: Path) -> Path:
    scripts = tmp_path / "alembic"
    shutil.copytree(ROOT_DIR / "alembic", scripts, ignore=shutil.ignore_patterns("__pycache__"))
    (scripts / "versions" / "20261018_0003_broken.py").write_text(_BROKEN_REVISION)
    return scripts


def test_schema_is_initialized_to_head(tmp_path: Path) -> None:
    store = EntityStore(tmp_path / "migrations.db")
    applied = store.init_schema()

    assert applied == ["0001", "0002"]
    assert store.schema_version() == "0002"
    assert {
        "work_items",
        "workers",
        "dependencies",
        "acceptance_criteria",
        "audit_log",
        "schema_migrations",
    } <= _tables(tmp_path / "migrations.db")
    store.close()


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    store = EntityStore(tmp_path / "migrations.db")
    store.init_schema()

    assert store.init_schema() == []
    assert [version for version, _ in applied_versions(tmp_path / "migrations.db")] == [
        "0001",
        "0002",
    ]
    store.close()


def test_migration_status_lists_applied_and_pending(tmp_path: Path) -> None:
    db_path = tmp_path / "status.db"

    fresh = migration_status(db_path)
    assert fresh.applied == []
    assert fresh.pending == ["0001", "0002"]
    assert fresh.current_version is None

    upgrade_head(db_path)
    status = migration_status(db_path)
    assert [version for version, _ in status.applied] == ["0001", "0002"]
    assert status.pending == []
    assert status.current_version == "0002"


def test_failed_migration_rolls_back_entirely(tmp_path: Path) -> None:
    db_path = tmp_path / "broken.db"
    scripts = _broken_scripts(tmp_path)

    with pytest.raises(MigrationFailureError) as error_info:
        upgrade_head(db_path, script_location=scripts)

    assert error_info.value.version == "0003"
    assert error_info.value.code == "migration_failure"
    assert "work_items" not in _tables(db_path)
    assert "half_done" not in _tables(db_path)
    assert applied_versions(db_path) == []


def test_failed_migration_keeps_previously_recorded_version(tmp_path: Path) -> None:
    db_path = tmp_path / "broken-after-head.db"
    upgrade_head(db_path)
    scripts = _broken_scripts(tmp_path)

    with pytest.raises(MigrationFailureError) as error_info:
        upgrade_head(db_path, script_location=scripts)

    assert error_info.value.version == "0003"
    assert migration_status(db_path, script_location=scripts).pending == ["0003"]
    assert migration_status(db_path).current_version == "0002"
    assert "half_done" not in _tables(db_path)


def test_downgrade_removes_recorded_version(tmp_path: Path) -> None:
    db_path = tmp_path / "downgrade.db"
    upgrade_head(db_path)

    downgrade_to(db_path, "0001")

    assert [version for version, _ in applied_versions(db_path)] == ["0001"]
    tables = _tables(db_path)
    assert "dependencies" not in tables
    assert "acceptance_criteria" not in tables
    assert "work_items" in tables

    assert upgrade_head(db_path) == ["0002"]
