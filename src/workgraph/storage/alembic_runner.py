"""Utilities to run Alembic migrations programmatically.

All pending revisions run inside one transaction with transactional DDL, and
every applied revision is recorded in ``schema_migrations`` within that same
transaction. A failing revision therefore leaves both the schema and the
recorded version exactly as they were before the call.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationInfo
from alembic.script import ScriptDirectory
from sqlalchemy import delete as sa_delete
from sqlalchemy import inspect
from sqlalchemy import insert as sa_insert
from sqlalchemy import select
from sqlalchemy.engine import Connection

from workgraph.errors import MigrationFailureError
from workgraph.models import MigrationStatus
from workgraph.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from workgraph.storage.sqlmodel_models import SchemaMigration

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parents[3]
APPLIED_VERSIONS_KEY = "applied_versions"
BUSY_TIMEOUT_KEY = "busy_timeout_ms"


def upgrade_head(
    db_path: Path,
    *,
    script_location: Path | None = None,
    busy_timeout_ms: int = 5_000,
) -> list[str]:
    """Apply Alembic migrations up to head; return the versions applied by this call."""

    pending = pending_versions(db_path, script_location=script_location)
    if not pending:
        return []

    config = _alembic_config(
        db_path,
        script_location=script_location,
        busy_timeout_ms=busy_timeout_ms,
    )
    applied: list[str] = []
    config.attributes[APPLIED_VERSIONS_KEY] = applied
    try:
        command.upgrade(config, "head")
    except Exception as error:
        failed = next((version for version in pending if version not in applied), pending[-1])
        logger.error("Migration %s failed, schema left unchanged: %s", failed, error)
        raise MigrationFailureError(version=failed, reason=str(error)) from error

    logger.info("Applied migrations: %s", ", ".join(applied))
    return applied


def downgrade_to(
    db_path: Path,
    version: str,
    *,
    script_location: Path | None = None,
    busy_timeout_ms: int = 5_000,
) -> None:
    """Roll the schema back to ``version`` (or ``base``)."""

    config = _alembic_config(
        db_path,
        script_location=script_location,
        busy_timeout_ms=busy_timeout_ms,
    )
    try:
        command.downgrade(config, version)
    except Exception as error:
        raise MigrationFailureError(version=version, reason=str(error)) from error
    logger.info("Schema downgraded to %s", version)


def migration_status(db_path: Path, *, script_location: Path | None = None) -> MigrationStatus:
    """Applied versions with timestamps plus revisions still pending."""

    applied = applied_versions(db_path)
    applied_ids = {version for version, _ in applied}
    return MigrationStatus(
        applied=applied,
        pending=[
            version
            for version in _ordered_revisions(script_location)
            if version not in applied_ids
        ],
    )


def pending_versions(db_path: Path, *, script_location: Path | None = None) -> list[str]:
    applied_ids = {version for version, _ in applied_versions(db_path)}
    return [
        version for version in _ordered_revisions(script_location) if version not in applied_ids
    ]


def applied_versions(db_path: Path) -> list[tuple[str, datetime]]:
    """Rows of ``schema_migrations`` in version order; empty for a fresh database."""

    engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=5_000)
    try:
        with engine.connect() as connection:
            if not inspect(connection).has_table(SchemaMigration.__tablename__):
                return []
            rows = connection.execute(
                select(SchemaMigration.version, SchemaMigration.applied_at).order_by(
                    SchemaMigration.version,
                ),
            ).all()
    finally:
        engine.dispose()
    return [(str(row[0]), to_utc_aware_datetime(row[1])) for row in rows]


def record_schema_version(connection: Connection, step: MigrationInfo) -> None:
    """Mirror one applied/reverted revision into ``schema_migrations``."""

    version = step.up_revision_id
    if step.is_upgrade:
        connection.execute(
            sa_insert(SchemaMigration).values(
                version=version,
                applied_at=to_db_datetime(utc_now()),
            ),
        )
        return
    if not step.down_revision_ids:
        # The base revision drops the ledger table itself.
        return
    connection.execute(sa_delete(SchemaMigration).where(SchemaMigration.version == version))


def _ordered_revisions(script_location: Path | None) -> list[str]:
    script = ScriptDirectory(str(script_location or ROOT_DIR / "alembic"))
    return [revision.revision for revision in reversed(list(script.walk_revisions()))]


def _alembic_config(
    db_path: Path,
    *,
    script_location: Path | None,
    busy_timeout_ms: int,
) -> Config:
    config = Config(str(ROOT_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(script_location or ROOT_DIR / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    config.attributes[BUSY_TIMEOUT_KEY] = busy_timeout_ms
    return config
