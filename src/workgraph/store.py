"""Entity store and audit log backed by SQLModel + SQLite.

The store is the only component that opens database transactions. Readers get
a ``BEGIN DEFERRED`` snapshot of committed data; writers take the database
write lock up front with ``BEGIN IMMEDIATE`` so concurrent processes serialize
instead of interleaving. Engine components receive the store handle explicitly
and compose their row-level helpers inside one ``write()`` block.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, col, select

from workgraph.errors import ConstraintViolationError, NotFoundError, StoreBusyError
from workgraph.models import (
    AuditEntryView,
    EntityKind,
    EpicSummary,
    ItemFilter,
    Priority,
    WorkerStatus,
    WorkerView,
    WorkItemCreate,
    WorkItemStatus,
    WorkItemView,
)
from workgraph.storage.alembic_runner import applied_versions, upgrade_head
from workgraph.storage.common import (
    BEGIN_IMMEDIATE,
    build_sqlite_engine,
    is_lock_error,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from workgraph.storage.sqlmodel_models import AuditEntry, Worker, WorkItem

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class EntityStore:
    """Durable work graph persistence facade."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)
        self._writer = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=busy_timeout_ms,
            begin_mode=BEGIN_IMMEDIATE,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()
        self._writer.dispose()

    def init_schema(self) -> list[str]:
        """Run schema migrations; return the versions applied now."""

        return upgrade_head(self.db_path, busy_timeout_ms=self.busy_timeout_ms)

    def schema_version(self) -> str | None:
        versions = applied_versions(self.db_path)
        if not versions:
            return None
        return versions[-1][0]

    @contextmanager
    def read(self) -> Iterator[Session]:
        """Snapshot read session over committed data; never writes."""

        with Session(self.engine) as session:
            try:
                yield session
            except OperationalError as error:
                _raise_if_locked(error)
                raise
            finally:
                session.rollback()

    @contextmanager
    def write(self) -> Iterator[Session]:
        """One all-or-nothing write transaction holding the store write lock."""

        with Session(self._writer) as session:
            try:
                yield session
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise ConstraintViolationError(detail=str(error.orig)) from error
            except OperationalError as error:
                session.rollback()
                _raise_if_locked(error)
                raise
            except BaseException:
                session.rollback()
                raise

    # Items

    def create_item(self, payload: WorkItemCreate) -> WorkItemView:
        """Create a pending work item with the next display id."""

        with self.write() as session:
            row = self.insert_item(session, payload)
            view = to_item_view(row)
        logger.info("Created item %s %r", view.display, view.title)
        return view

    def insert_item(self, session: Session, payload: WorkItemCreate) -> WorkItem:
        title = payload.title.strip()
        if not title:
            raise ConstraintViolationError(detail="work item title must not be empty")
        if payload.parent_id is not None and session.get(WorkItem, payload.parent_id) is None:
            raise ConstraintViolationError(
                detail=f"parent item does not exist: {payload.parent_id}",
            )

        now = to_db_datetime(utc_now())
        row = WorkItem(
            id=str(uuid4()),
            display_id=self._next_display_id(session, WorkItem),
            title=title,
            description=payload.description,
            status=WorkItemStatus.PENDING.value,
            priority=Priority(payload.priority).value,
            parent_id=payload.parent_id,
            epic_name=payload.epic_name or None,
            assigned_worker_id=None,
            created_at=now,
            updated_at=now,
            completed_at=None,
            estimated_minutes=payload.estimated_minutes,
            actual_minutes=None,
        )
        session.add(row)
        session.flush()
        self.append_audit(
            session,
            action="created",
            item_id=row.id,
            details={
                "title": row.title,
                "priority": row.priority,
                "epic_name": row.epic_name,
                "parent_id": row.parent_id,
            },
        )
        return row

    def get_item(self, item_id: str) -> WorkItemView | None:
        with self.read() as session:
            row = session.get(WorkItem, item_id)
            return to_item_view(row) if row is not None else None

    def get_items(self, item_ids: Iterable[str]) -> list[WorkItemView]:
        """Items for the given ids ordered by display id; unknown ids are skipped."""

        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return []
        with self.read() as session:
            rows = session.exec(
                select(WorkItem)
                .where(col(WorkItem.id).in_(ids))
                .order_by(col(WorkItem.display_id).asc()),
            ).all()
            return [to_item_view(row) for row in rows]

    def list_items(self, filters: ItemFilter | None = None) -> list[WorkItemView]:
        """List items ordered by display id, optionally filtered."""

        filters = filters or ItemFilter()
        statement = select(WorkItem).order_by(col(WorkItem.display_id).asc())
        if filters.status is not None:
            statement = statement.where(WorkItem.status == filters.status.value)
        if filters.epic_name is not None:
            statement = statement.where(WorkItem.epic_name == filters.epic_name)
        if filters.priority is not None:
            statement = statement.where(WorkItem.priority == filters.priority.value)
        if filters.worker_id is not None:
            statement = statement.where(WorkItem.assigned_worker_id == filters.worker_id)
        if filters.unassigned:
            statement = statement.where(col(WorkItem.assigned_worker_id).is_(None))
        if filters.parent_id is not None:
            statement = statement.where(WorkItem.parent_id == filters.parent_id)
        if filters.limit is not None:
            statement = statement.limit(filters.limit)
        with self.read() as session:
            return [to_item_view(row) for row in session.exec(statement).all()]

    def subitems(self, parent_id: str) -> list[WorkItemView]:
        return self.list_items(ItemFilter(parent_id=parent_id))

    def update_item_fields(
        self,
        item_id: str,
        *,
        title: str | None = None,
        description: str | None = _UNSET,
        priority: Priority | None = None,
        epic_name: str | None = _UNSET,
    ) -> WorkItemView:
        """Edit descriptive fields; status and assignment have dedicated operations."""

        with self.write() as session:
            row = self.item_row(session, item_id)
            changes: dict[str, object] = {}
            if title is not None:
                if not title.strip():
                    raise ConstraintViolationError(detail="work item title must not be empty")
                row.title = title.strip()
                changes["title"] = row.title
            if description is not _UNSET:
                row.description = description
                changes["description"] = description
            if priority is not None:
                row.priority = Priority(priority).value
                changes["priority"] = row.priority
            if epic_name is not _UNSET:
                row.epic_name = epic_name or None
                changes["epic_name"] = row.epic_name
            if changes:
                row.updated_at = to_db_datetime(utc_now())
                session.add(row)
                self.append_audit(session, action="updated", item_id=row.id, details=changes)
            session.flush()
            return to_item_view(row)

    def set_duration(
        self,
        item_id: str,
        *,
        estimated_minutes: int | None = None,
        actual_minutes: int | None = None,
    ) -> WorkItemView:
        """Record estimated and/or actual effort in minutes."""

        for value in (estimated_minutes, actual_minutes):
            if value is not None and value < 0:
                raise ConstraintViolationError(detail="durations must be >= 0 minutes")
        with self.write() as session:
            row = self.item_row(session, item_id)
            if estimated_minutes is not None:
                row.estimated_minutes = estimated_minutes
            if actual_minutes is not None:
                row.actual_minutes = actual_minutes
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            self.append_audit(
                session,
                action="duration_set",
                item_id=row.id,
                details={
                    "estimated_minutes": row.estimated_minutes,
                    "actual_minutes": row.actual_minutes,
                },
            )
            session.flush()
            return to_item_view(row)

    def item_row(self, session: Session, item_id: str) -> WorkItem:
        row = session.get(WorkItem, item_id)
        if row is None:
            raise NotFoundError(kind=EntityKind.ITEM.value, token=item_id)
        return row

    # Workers

    def create_worker(self, name: str) -> WorkerView:
        """Register an idle worker under a unique name."""

        with self.write() as session:
            row = self.insert_worker(session, name)
            view = to_worker_view(row)
        logger.info("Registered worker %s (%s)", view.display, view.name)
        return view

    def insert_worker(self, session: Session, name: str) -> Worker:
        normalized = name.strip()
        if not normalized:
            raise ConstraintViolationError(detail="worker name must not be empty")
        existing = session.exec(select(Worker).where(Worker.name == normalized)).one_or_none()
        if existing is not None:
            raise ConstraintViolationError(detail=f"worker name already taken: {normalized!r}")

        now = to_db_datetime(utc_now())
        row = Worker(
            id=str(uuid4()),
            display_id=self._next_display_id(session, Worker),
            name=normalized,
            status=WorkerStatus.IDLE.value,
            current_item_id=None,
            created_at=now,
            last_active_at=now,
        )
        session.add(row)
        session.flush()
        self.append_audit(
            session,
            action="worker_registered",
            worker_id=row.id,
            details={"name": row.name},
        )
        return row

    def get_worker(self, worker_id: str) -> WorkerView | None:
        with self.read() as session:
            row = session.get(Worker, worker_id)
            return to_worker_view(row) if row is not None else None

    def list_workers(self, *, status: WorkerStatus | None = None) -> list[WorkerView]:
        statement = select(Worker).order_by(col(Worker.display_id).asc())
        if status is not None:
            statement = statement.where(Worker.status == status.value)
        with self.read() as session:
            return [to_worker_view(row) for row in session.exec(statement).all()]

    def worker_row(self, session: Session, worker_id: str) -> Worker:
        row = session.get(Worker, worker_id)
        if row is None:
            raise NotFoundError(kind=EntityKind.WORKER.value, token=worker_id)
        return row

    def bound_workers(self, session: Session, item_id: str) -> list[Worker]:
        """Workers whose current item is ``item_id``."""

        return list(session.exec(select(Worker).where(Worker.current_item_id == item_id)).all())

    # Audit log

    def append_audit(
        self,
        session: Session,
        *,
        action: str,
        item_id: str | None = None,
        worker_id: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        session.add(
            AuditEntry(
                item_id=item_id,
                worker_id=worker_id,
                action=action,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )

    def audit_entries(self, item_id: str) -> list[AuditEntryView]:
        """Audit trail of one item, oldest first."""

        with self.read() as session:
            rows = session.exec(
                select(AuditEntry)
                .where(AuditEntry.item_id == item_id)
                .order_by(col(AuditEntry.id).asc()),
            ).all()
            return [to_audit_view(row) for row in rows]

    def recent_audit(self, *, limit: int = 20) -> list[AuditEntryView]:
        """Most recent audit entries across all items, newest first."""

        with self.read() as session:
            rows = session.exec(
                select(AuditEntry).order_by(col(AuditEntry.id).desc()).limit(limit),
            ).all()
            return [to_audit_view(row) for row in rows]

    # Aggregates

    def status_counts(self) -> dict[WorkItemStatus, int]:
        counts = {status: 0 for status in WorkItemStatus}
        with self.read() as session:
            rows = session.exec(
                select(WorkItem.status, func.count()).group_by(WorkItem.status),
            ).all()
        for status, count in rows:
            counts[WorkItemStatus(status)] = int(count)
        return counts

    def epic_summaries(self) -> list[EpicSummary]:
        """Total and completed item counts per epic label, sorted by epic name."""

        completed = func.sum(
            case((col(WorkItem.status) == WorkItemStatus.COMPLETED.value, 1), else_=0),
        )
        with self.read() as session:
            rows = session.exec(
                select(WorkItem.epic_name, func.count(), completed)
                .where(col(WorkItem.epic_name).is_not(None))
                .group_by(WorkItem.epic_name)
                .order_by(col(WorkItem.epic_name).asc()),
            ).all()
        return [
            EpicSummary(epic_name=str(epic), total=int(total), completed=int(done or 0))
            for epic, total, done in rows
        ]

    def _next_display_id(self, session: Session, model: type[WorkItem] | type[Worker]) -> int:
        current = session.exec(select(func.max(model.display_id))).one()
        return int(current or 0) + 1


def to_item_view(row: WorkItem) -> WorkItemView:
    return WorkItemView(
        id=row.id,
        display_id=row.display_id,
        title=row.title,
        description=row.description,
        status=WorkItemStatus(row.status),
        priority=Priority(row.priority),
        parent_id=row.parent_id,
        epic_name=row.epic_name,
        assigned_worker_id=row.assigned_worker_id,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        completed_at=optional_utc(row.completed_at),
        estimated_minutes=row.estimated_minutes,
        actual_minutes=row.actual_minutes,
    )


def to_worker_view(row: Worker) -> WorkerView:
    return WorkerView(
        id=row.id,
        display_id=row.display_id,
        name=row.name,
        status=WorkerStatus(row.status),
        current_item_id=row.current_item_id,
        created_at=to_utc_aware_datetime(row.created_at),
        last_active_at=to_utc_aware_datetime(row.last_active_at),
    )


def to_audit_view(row: AuditEntry) -> AuditEntryView:
    details: dict[str, Any] = {}
    if row.details_json:
        parsed = json.loads(row.details_json)
        if isinstance(parsed, dict):
            details = parsed
    return AuditEntryView(
        entry_id=row.id or 0,
        item_id=row.item_id,
        worker_id=row.worker_id,
        action=row.action,
        created_at=to_utc_aware_datetime(row.created_at),
        details=details,
    )


def _raise_if_locked(error: OperationalError) -> None:
    if is_lock_error(error):
        logger.warning("Store lock not acquired within busy timeout: %s", error.orig)
        raise StoreBusyError() from error
