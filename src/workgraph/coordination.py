"""Worker coordination: assignment, claim-and-start, completion, cancellation.

Every public operation is one store write transaction, so a status change and
the matching worker release are committed together or not at all. The binding
``Worker.current_item_id -> WorkItem`` is the active assignment: a bound
worker's item always names that worker as ``assigned_worker_id``, and a worker
is bound to at most one open item. ``assign`` alone only reserves an item for
a worker without binding it.
An item started by a worker that later went idle or offline without finishing
it is free for any other worker to take over.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlmodel import Session

from workgraph.errors import (
    AlreadyAssignedError,
    BatchOperationError,
    ConstraintViolationError,
    InvalidStateTransitionError,
    WorkerBusyError,
    WorkgraphError,
)
from workgraph.graph import DependencyGraph
from workgraph.models import (
    ALLOWED_TRANSITIONS,
    STARTABLE_STATUSES,
    CompletionRecord,
    WorkerStatus,
    WorkerView,
    WorkItemStatus,
    WorkItemView,
)
from workgraph.storage.common import to_db_datetime, utc_now
from workgraph.storage.sqlmodel_models import Worker, WorkItem
from workgraph.store import EntityStore, to_item_view, to_worker_view

logger = logging.getLogger(__name__)


class CoordinationManager:
    """Enforces item/worker state machines and single assignment."""

    def __init__(
        self,
        store: EntityStore,
        graph: DependencyGraph | None = None,
        *,
        sync_requires_ready: bool = False,
    ) -> None:
        self.store = store
        self.graph = graph or DependencyGraph(store)
        self.sync_requires_ready = sync_requires_ready

    def assign(self, item_id: str, worker_id: str, *, reassign: bool = False) -> WorkItemView:
        """Reserve an item for a worker without changing its status."""

        with self.store.write() as session:
            item = self.store.item_row(session, item_id)
            worker = self.store.worker_row(session, worker_id)
            self._assign(session, item, worker, reassign=reassign)
            view = to_item_view(item)
        logger.info("Assigned %s to worker %s", view.display, worker_id)
        return view

    def sync(self, worker_id: str, item_id: str, *, reassign: bool = False) -> WorkItemView:
        """Claim and start: bind the worker to the item and move it to in_progress."""

        with self.store.write() as session:
            worker = self.store.worker_row(session, worker_id)
            item = self.store.item_row(session, item_id)
            self._sync(session, worker, item, reassign=reassign)
            view = to_item_view(item)
        logger.info("Worker %s started %s", worker_id, view.display)
        return view

    def complete(self, item_id: str, worker_id: str | None = None) -> WorkItemView:
        """Complete an item whose prerequisites are all completed; release its worker."""

        with self.store.write() as session:
            item = self.store.item_row(session, item_id)
            worker = self.store.worker_row(session, worker_id) if worker_id else None
            self._complete(session, item, worker)
            view = to_item_view(item)
        logger.info("Completed %s", view.display)
        return view

    def cancel(
        self,
        item_id: str,
        reason: str | None = None,
        *,
        worker_id: str | None = None,
    ) -> WorkItemView:
        """Cancel a non-terminal item regardless of dependencies; release its worker."""

        with self.store.write() as session:
            item = self.store.item_row(session, item_id)
            worker = self.store.worker_row(session, worker_id) if worker_id else None
            self._cancel(session, item, reason=reason, worker=worker)
            view = to_item_view(item)
        logger.info("Cancelled %s", view.display)
        return view

    def update_status(
        self,
        item_id: str,
        status: WorkItemStatus,
        *,
        worker_id: str | None = None,
    ) -> WorkItemView:
        """Move an item along the status state machine."""

        with self.store.write() as session:
            item = self.store.item_row(session, item_id)
            worker = self.store.worker_row(session, worker_id) if worker_id else None
            self._update_status(session, item, WorkItemStatus(status), worker)
            return to_item_view(item)

    def set_worker_status(
        self,
        worker_id: str,
        status: WorkerStatus,
        *,
        item_id: str | None = None,
    ) -> WorkerView:
        """Change a worker's status; ``working`` with an item behaves like ``sync``."""

        status = WorkerStatus(status)
        with self.store.write() as session:
            worker = self.store.worker_row(session, worker_id)
            now = to_db_datetime(utc_now())
            if status is WorkerStatus.WORKING and item_id is not None:
                self._sync(session, worker, self.store.item_row(session, item_id), reassign=False)
                return to_worker_view(worker)
            if status is WorkerStatus.WORKING and worker.current_item_id is None:
                raise ConstraintViolationError(
                    detail=f"worker A{worker.display_id} needs an item to be working",
                )
            if status in {WorkerStatus.IDLE, WorkerStatus.OFFLINE}:
                worker.current_item_id = None
            previous = worker.status
            worker.status = status.value
            worker.last_active_at = now
            session.add(worker)
            self.store.append_audit(
                session,
                action="worker_status_changed",
                worker_id=worker.id,
                details={"status_from": previous, "status_to": status.value},
            )
            session.flush()
            return to_worker_view(worker)

    def batch_update(
        self,
        item_ids: Sequence[str],
        status: WorkItemStatus,
        *,
        worker_id: str | None = None,
    ) -> list[WorkItemView]:
        """Apply one status update to every item, all-or-nothing."""

        target = WorkItemStatus(status)
        with self.store.write() as session:
            worker = self.store.worker_row(session, worker_id) if worker_id else None
            views: list[WorkItemView] = []
            for index, item_id in enumerate(item_ids):
                try:
                    item = self.store.item_row(session, item_id)
                    self._update_status(session, item, target, worker)
                except WorkgraphError as error:
                    raise _batch_error(index, item_id, error) from error
                views.append(to_item_view(item))
        logger.info("Batch-updated %d item(s) to %s", len(views), target.value)
        return views

    def batch_assign(
        self,
        item_ids: Sequence[str],
        worker_id: str,
        *,
        reassign: bool = False,
    ) -> list[WorkItemView]:
        """Reserve every item for one worker, all-or-nothing."""

        with self.store.write() as session:
            worker = self.store.worker_row(session, worker_id)
            views: list[WorkItemView] = []
            for index, item_id in enumerate(item_ids):
                try:
                    item = self.store.item_row(session, item_id)
                    self._assign(session, item, worker, reassign=reassign)
                except WorkgraphError as error:
                    raise _batch_error(index, item_id, error) from error
                views.append(to_item_view(item))
        logger.info("Batch-assigned %d item(s) to worker %s", len(views), worker_id)
        return views

    def complete_batch(self, records: Sequence[CompletionRecord]) -> list[WorkItemView]:
        """Complete several items, each credited to its own worker, all-or-nothing."""

        with self.store.write() as session:
            views: list[WorkItemView] = []
            for index, record in enumerate(records):
                try:
                    item = self.store.item_row(session, record.item_id)
                    worker = (
                        self.store.worker_row(session, record.worker_id)
                        if record.worker_id
                        else None
                    )
                    self._complete(session, item, worker)
                except WorkgraphError as error:
                    raise _batch_error(index, record.item_id, error) from error
                views.append(to_item_view(item))
        logger.info("Batch-completed %d item(s)", len(views))
        return views

    def _assign(
        self,
        session: Session,
        item: WorkItem,
        worker: Worker,
        *,
        reassign: bool,
    ) -> None:
        status = WorkItemStatus(item.status)
        if status.is_terminal:
            raise _invalid_transition(
                item,
                status,
                status,
                reason=f"cannot assign a {status.value} item",
            )
        current = item.assigned_worker_id
        if current == worker.id:
            return
        if current is not None:
            if reassign:
                self._release_bound_workers(session, item)
            elif _holder_is_active(session, item, current):
                raise _already_assigned(session, item, current)

        item.assigned_worker_id = worker.id
        item.updated_at = to_db_datetime(utc_now())
        session.add(item)
        self.store.append_audit(
            session,
            action="assigned",
            item_id=item.id,
            worker_id=worker.id,
            details={"previous_worker_id": current} if current else None,
        )
        session.flush()

    def _sync(self, session: Session, worker: Worker, item: WorkItem, *, reassign: bool) -> None:
        status = WorkItemStatus(item.status)
        if status not in STARTABLE_STATUSES:
            raise _invalid_transition(
                item,
                status,
                WorkItemStatus.IN_PROGRESS,
                reason=f"item is {status.value}",
            )
        current = item.assigned_worker_id
        if current is not None and current != worker.id:
            if reassign:
                self._release_bound_workers(session, item)
            elif _holder_is_active(session, item, current):
                raise _already_assigned(session, item, current)
        if worker.current_item_id is not None and worker.current_item_id != item.id:
            other = session.get(WorkItem, worker.current_item_id)
            if other is not None and not WorkItemStatus(other.status).is_terminal:
                raise WorkerBusyError(
                    message=(
                        f"Worker A{worker.display_id} is already working on #{other.display_id}"
                    ),
                    worker_id=worker.id,
                    current_item_id=other.id,
                )
        if self.sync_requires_ready:
            unmet = self.graph.unmet_dependencies(session, item.id)
            if unmet:
                raise _invalid_transition(
                    item,
                    status,
                    WorkItemStatus.IN_PROGRESS,
                    reason=_unmet_reason(unmet),
                )

        details: dict[str, object] = {"status_from": status.value, "status_to": "in_progress"}
        if current is not None and current != worker.id:
            details["previous_worker_id"] = current
        now = to_db_datetime(utc_now())
        item.status = WorkItemStatus.IN_PROGRESS.value
        item.assigned_worker_id = worker.id
        item.updated_at = now
        worker.status = WorkerStatus.WORKING.value
        worker.current_item_id = item.id
        worker.last_active_at = now
        session.add(item)
        session.add(worker)
        self.store.append_audit(
            session,
            action="synced",
            item_id=item.id,
            worker_id=worker.id,
            details=details,
        )
        session.flush()

    def _complete(self, session: Session, item: WorkItem, worker: Worker | None) -> None:
        status = WorkItemStatus(item.status)
        if WorkItemStatus.COMPLETED not in ALLOWED_TRANSITIONS[status]:
            raise _invalid_transition(
                item,
                status,
                WorkItemStatus.COMPLETED,
                reason=f"item is {status.value}",
            )
        holder = item.assigned_worker_id
        if (
            worker is not None
            and holder not in (None, worker.id)
            and _holder_is_active(session, item, holder)
        ):
            raise _already_assigned(session, item, item.assigned_worker_id)
        unmet = self.graph.unmet_dependencies(session, item.id)
        if unmet:
            raise _invalid_transition(
                item,
                status,
                WorkItemStatus.COMPLETED,
                reason=_unmet_reason(unmet),
            )

        now = to_db_datetime(utc_now())
        item.status = WorkItemStatus.COMPLETED.value
        item.completed_at = now
        item.updated_at = now
        if worker is not None and item.assigned_worker_id != worker.id:
            item.assigned_worker_id = worker.id
        session.add(item)
        self._release_bound_workers(session, item)
        self.store.append_audit(
            session,
            action="completed",
            item_id=item.id,
            worker_id=worker.id if worker is not None else item.assigned_worker_id,
            details={"status_from": status.value, "status_to": item.status},
        )
        session.flush()

    def _cancel(
        self,
        session: Session,
        item: WorkItem,
        *,
        reason: str | None,
        worker: Worker | None,
    ) -> None:
        status = WorkItemStatus(item.status)
        if status.is_terminal:
            raise _invalid_transition(
                item,
                status,
                WorkItemStatus.CANCELLED,
                reason=f"item is already {status.value}",
            )

        item.status = WorkItemStatus.CANCELLED.value
        item.updated_at = to_db_datetime(utc_now())
        session.add(item)
        self._release_bound_workers(session, item)
        details: dict[str, object] = {"status_from": status.value, "status_to": item.status}
        if reason:
            details["reason"] = reason
        self.store.append_audit(
            session,
            action="cancelled",
            item_id=item.id,
            worker_id=worker.id if worker is not None else None,
            details=details,
        )
        session.flush()

    def _update_status(
        self,
        session: Session,
        item: WorkItem,
        target: WorkItemStatus,
        worker: Worker | None,
    ) -> None:
        if target is WorkItemStatus.COMPLETED:
            self._complete(session, item, worker)
            return
        if target is WorkItemStatus.CANCELLED:
            self._cancel(session, item, reason=None, worker=worker)
            return

        status = WorkItemStatus(item.status)
        if target is status:
            raise _invalid_transition(
                item,
                status,
                target,
                reason=f"item is already {status.value}",
            )
        if target not in ALLOWED_TRANSITIONS[status]:
            raise _invalid_transition(item, status, target, reason="transition not allowed")

        item.status = target.value
        item.updated_at = to_db_datetime(utc_now())
        session.add(item)
        self.store.append_audit(
            session,
            action="status_changed",
            item_id=item.id,
            worker_id=worker.id if worker is not None else None,
            details={"status_from": status.value, "status_to": target.value},
        )
        session.flush()

    def _release_bound_workers(self, session: Session, item: WorkItem) -> None:
        now = to_db_datetime(utc_now())
        for worker in self.store.bound_workers(session, item.id):
            worker.status = WorkerStatus.IDLE.value
            worker.current_item_id = None
            worker.last_active_at = now
            session.add(worker)
            self.store.append_audit(
                session,
                action="worker_released",
                item_id=item.id,
                worker_id=worker.id,
            )


def _invalid_transition(
    item: WorkItem,
    status_from: WorkItemStatus,
    status_to: WorkItemStatus,
    *,
    reason: str,
) -> InvalidStateTransitionError:
    return InvalidStateTransitionError(
        message=(
            f"Cannot move #{item.display_id} from {status_from.value} "
            f"to {status_to.value}: {reason}"
        ),
        item_id=item.id,
        status_from=status_from.value,
        status_to=status_to.value,
        reason=reason,
    )


def _holder_is_active(session: Session, item: WorkItem, worker_id: str) -> bool:
    """Whether the worker named on ``item`` still holds it.

    A bound holder is active unless it went offline. An unbound holder keeps a
    reservation on a pending item; once the item was started, an unbound holder
    has walked away from it and any worker may take it over.
    """

    holder = session.get(Worker, worker_id)
    if holder is None or holder.status == WorkerStatus.OFFLINE.value:
        return False
    if holder.current_item_id == item.id:
        return True
    return item.status == WorkItemStatus.PENDING.value


def _already_assigned(session: Session, item: WorkItem, worker_id: str) -> AlreadyAssignedError:
    holder = session.get(Worker, worker_id)
    label = f"A{holder.display_id} ({holder.name})" if holder is not None else worker_id
    return AlreadyAssignedError(
        message=f"Item #{item.display_id} is already assigned to worker {label}",
        item_id=item.id,
        current_worker_id=worker_id,
    )


def _unmet_reason(unmet: Sequence[WorkItem]) -> str:
    listed = ", ".join(f"#{row.display_id} ({row.status})" for row in unmet)
    return f"unmet dependencies: {listed}"


def _batch_error(index: int, item_id: str, error: WorkgraphError) -> BatchOperationError:
    return BatchOperationError(index=index, item_id=item_id, cause=error)
