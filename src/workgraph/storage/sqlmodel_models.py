"""SQLModel ORM tables for the work graph store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel


class WorkItem(SQLModel, table=True):
    __tablename__ = "work_items"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("display_id", name="uq_work_items_display_id"),
        Index("ix_work_items_status", "status"),
        Index("ix_work_items_epic_name", "epic_name"),
        Index("ix_work_items_parent_id", "parent_id"),
        Index("ix_work_items_assigned_worker_id", "assigned_worker_id"),
    )

    id: str = Field(primary_key=True)
    display_id: int
    title: str
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    status: str
    priority: str
    parent_id: str | None = Field(
        default=None,
        sa_column=Column(String, ForeignKey("work_items.id"), nullable=True),
    )
    epic_name: str | None = None
    assigned_worker_id: str | None = Field(
        default=None,
        sa_column=Column(String, ForeignKey("workers.id"), nullable=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    estimated_minutes: int | None = None
    actual_minutes: int | None = None


class Worker(SQLModel, table=True):
    __tablename__ = "workers"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("display_id", name="uq_workers_display_id"),
        UniqueConstraint("name", name="uq_workers_name"),
    )

    id: str = Field(primary_key=True)
    display_id: int
    name: str
    status: str
    current_item_id: str | None = Field(
        default=None,
        sa_column=Column(
            String,
            ForeignKey("work_items.id", use_alter=True, name="fk_workers_current_item_id"),
            nullable=True,
        ),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    last_active_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Dependency(SQLModel, table=True):
    __tablename__ = "dependencies"  # type: ignore[bad-override]
    __table_args__ = (
        CheckConstraint("item_id <> depends_on_id", name="ck_dependencies_no_self_loop"),
        Index("ix_dependencies_depends_on_id", "depends_on_id"),
    )

    item_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("work_items.id", ondelete="CASCADE"),
            nullable=False,
            primary_key=True,
        ),
    )
    depends_on_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("work_items.id", ondelete="CASCADE"),
            nullable=False,
            primary_key=True,
        ),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AcceptanceCriterion(SQLModel, table=True):
    __tablename__ = "acceptance_criteria"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("item_id", "position", name="uq_acceptance_criteria_item_position"),
    )

    id: int | None = Field(default=None, primary_key=True)
    item_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("work_items.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    position: int
    text: str = Field(sa_column=Column(Text, nullable=False))
    completed: bool = False
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AuditEntry(SQLModel, table=True):
    __tablename__ = "audit_log"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    item_id: str | None = Field(
        default=None,
        sa_column=Column(String, ForeignKey("work_items.id"), nullable=True, index=True),
    )
    worker_id: str | None = Field(
        default=None,
        sa_column=Column(String, ForeignKey("workers.id"), nullable=True),
    )
    action: str
    details_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )


class SchemaMigration(SQLModel, table=True):
    __tablename__ = "schema_migrations"  # type: ignore[bad-override]

    version: str = Field(primary_key=True)
    applied_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
