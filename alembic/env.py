"""Alembic environment for the work graph store."""

from __future__ import annotations

from pathlib import Path

from sqlmodel import SQLModel

from alembic import context
from workgraph.storage import sqlmodel_models  # noqa: F401
from workgraph.storage.alembic_runner import (
    APPLIED_VERSIONS_KEY,
    BUSY_TIMEOUT_KEY,
    record_schema_version,
)
from workgraph.storage.common import build_sqlite_engine

config = context.config
target_metadata = SQLModel.metadata


def _on_version_apply(*, ctx, step, heads, run_args) -> None:  # noqa: ARG001
    record_schema_version(ctx.connection, step)
    if step.is_upgrade:
        config.attributes.setdefault(APPLIED_VERSIONS_KEY, []).append(step.up_revision_id)


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = config.get_main_option("sqlalchemy.url") or ""
    engine = build_sqlite_engine(
        db_path=Path(url.removeprefix("sqlite:///")),
        busy_timeout_ms=int(config.attributes.get(BUSY_TIMEOUT_KEY, 5_000)),
    )
    try:
        with engine.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                transactional_ddl=True,
                render_as_batch=True,
                on_version_apply=_on_version_apply,
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
