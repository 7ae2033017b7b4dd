from __future__ import annotations

import multiprocessing
import multiprocessing.queues
import multiprocessing.synchronize
from pathlib import Path

import allure
import pytest

from workgraph.coordination import CoordinationManager
from workgraph.errors import (
    AlreadyAssignedError,
    BatchOperationError,
    ConstraintViolationError,
    InvalidStateTransitionError,
    WorkerBusyError,
)
from workgraph.graph import DependencyGraph
from workgraph.models import CompletionRecord, WorkerStatus, WorkItemCreate, WorkItemStatus
from workgraph.store import EntityStore

pytestmark = [
    allure.epic("Work Graph"),
    allure.feature("Worker Coordination"),
]


def _run_sync(  # pragma: no cover - executed in child process
    db_path: str,
    worker_id: str,
    item_id: str,
    start_event: multiprocessing.synchronize.Event,
    result_queue: multiprocessing.queues.Queue[tuple[str, str, str]],
) -> None:
    store = EntityStore(Path(db_path))
    try:
        start_event.wait(timeout=5)
        CoordinationManager(store).sync(worker_id, item_id)
        result_queue.put((worker_id, "ok", ""))
    except AlreadyAssignedError as error:
        result_queue.put((worker_id, "already_assigned", str(error)))
    except Exception as error:  # noqa: BLE001
        result_queue.put((worker_id, "error", repr(error)))
    finally:
        store.close()


def _assert_binding_consistent(store: EntityStore) -> None:
    items = {item.id: item for item in store.list_items()}
    bound: set[str] = set()
    for worker in store.list_workers():
        if worker.current_item_id is None:
            continue
        assert items[worker.current_item_id].assigned_worker_id == worker.id
        assert worker.current_item_id not in bound
        bound.add(worker.current_item_id)


def test_sync_binds_worker_and_item(engines) -> None:
    item = engines.item("Build API")
    worker = engines.store.create_worker("alpha")

    synced = engines.coordination.sync(worker.id, item.id)

    refreshed = engines.store.get_worker(worker.id)
    assert synced.status == WorkItemStatus.IN_PROGRESS
    assert synced.assigned_worker_id == worker.id
    assert refreshed is not None
    assert refreshed.status == WorkerStatus.WORKING
    assert refreshed.current_item_id == item.id
    assert engines.store.audit_entries(item.id)[-1].action == "synced"
    _assert_binding_consistent(engines.store)


def test_sync_rejects_item_held_by_other_worker(engines) -> None:
    item = engines.item("Build API")
    alpha = engines.store.create_worker("alpha")
    beta = engines.store.create_worker("beta")
    engines.coordination.sync(alpha.id, item.id)

    with pytest.raises(AlreadyAssignedError) as error_info:
        engines.coordination.sync(beta.id, item.id)

    assert error_info.value.current_worker_id == alpha.id
    assert "A1 (alpha)" in str(error_info.value)
    idle_beta = engines.store.get_worker(beta.id)
    assert idle_beta is not None
    assert idle_beta.status == WorkerStatus.IDLE


def test_sync_with_reassign_releases_previous_worker(engines) -> None:
    item = engines.item("Build API")
    alpha = engines.store.create_worker("alpha")
    beta = engines.store.create_worker("beta")
    engines.coordination.sync(alpha.id, item.id)

    engines.coordination.sync(beta.id, item.id, reassign=True)

    released = engines.store.get_worker(alpha.id)
    assert released is not None
    assert released.status == WorkerStatus.IDLE
    assert released.current_item_id is None
    _assert_binding_consistent(engines.store)


def test_sync_takes_over_item_from_offline_worker(engines) -> None:
    item = engines.item("Build API")
    alpha = engines.store.create_worker("alpha")
    beta = engines.store.create_worker("beta")
    engines.coordination.sync(alpha.id, item.id)
    engines.coordination.set_worker_status(alpha.id, WorkerStatus.OFFLINE)

    taken = engines.coordination.sync(beta.id, item.id)

    assert taken.status == WorkItemStatus.IN_PROGRESS
    assert taken.assigned_worker_id == beta.id
    synced = engines.store.audit_entries(item.id)[-1]
    assert synced.action == "synced"
    assert synced.details["previous_worker_id"] == alpha.id
    _assert_binding_consistent(engines.store)


def test_started_item_left_by_idle_worker_can_be_completed(engines) -> None:
    item = engines.item("Build API")
    alpha = engines.store.create_worker("alpha")
    beta = engines.store.create_worker("beta")
    engines.coordination.sync(alpha.id, item.id)
    engines.coordination.set_worker_status(alpha.id, WorkerStatus.IDLE)

    completed = engines.coordination.complete(item.id, beta.id)

    assert completed.status == WorkItemStatus.COMPLETED
    assert completed.assigned_worker_id == beta.id


def test_pending_reservation_still_blocks_other_workers(engines) -> None:
    item = engines.item("Docs")
    alpha = engines.store.create_worker("alpha")
    beta = engines.store.create_worker("beta")
    engines.coordination.assign(item.id, alpha.id)

    with pytest.raises(AlreadyAssignedError):
        engines.coordination.sync(beta.id, item.id)

    engines.coordination.set_worker_status(alpha.id, WorkerStatus.OFFLINE)
    assert engines.coordination.sync(beta.id, item.id).assigned_worker_id == beta.id


def test_worker_cannot_hold_two_open_items(engines) -> None:
    first = engines.item("First")
    second = engines.item("Second")
    worker = engines.store.create_worker("alpha")
    engines.coordination.sync(worker.id, first.id)

    with pytest.raises(WorkerBusyError) as error_info:
        engines.coordination.sync(worker.id, second.id)

    assert error_info.value.current_item_id == first.id
    untouched = engines.store.get_item(second.id)
    assert untouched is not None
    assert untouched.status == WorkItemStatus.PENDING


def test_sync_ignores_unmet_dependencies_by_default(engines) -> None:
    a = engines.item("A")
    b = engines.item("B")
    engines.graph.add_dependency(b.id, a.id)
    worker = engines.store.create_worker("alpha")

    started = engines.coordination.sync(worker.id, b.id)

    assert started.status == WorkItemStatus.IN_PROGRESS


def test_sync_can_require_ready_items(engines) -> None:
    a = engines.item("A")
    b = engines.item("B")
    engines.graph.add_dependency(b.id, a.id)
    worker = engines.store.create_worker("alpha")
    strict = CoordinationManager(
        engines.store,
        DependencyGraph(engines.store),
        sync_requires_ready=True,
    )

    with pytest.raises(InvalidStateTransitionError, match="unmet dependencies: #1"):
        strict.sync(worker.id, b.id)


def test_sync_rejects_terminal_items(engines) -> None:
    item = engines.item("Done already")
    worker = engines.store.create_worker("alpha")
    engines.coordination.complete(item.id)

    with pytest.raises(InvalidStateTransitionError) as error_info:
        engines.coordination.sync(worker.id, item.id)

    assert error_info.value.status_from == "completed"
    assert error_info.value.status_to == "in_progress"


def test_assign_reserves_without_status_change(engines) -> None:
    item = engines.item("Docs")
    alpha = engines.store.create_worker("alpha")
    beta = engines.store.create_worker("beta")

    assigned = engines.coordination.assign(item.id, alpha.id)

    assert assigned.status == WorkItemStatus.PENDING
    assert assigned.assigned_worker_id == alpha.id
    worker = engines.store.get_worker(alpha.id)
    assert worker is not None
    assert worker.current_item_id is None
    with pytest.raises(AlreadyAssignedError):
        engines.coordination.assign(item.id, beta.id)

    reassigned = engines.coordination.assign(item.id, beta.id, reassign=True)
    assert reassigned.assigned_worker_id == beta.id


def test_complete_requires_completed_dependencies(engines) -> None:
    a = engines.item("A")
    b = engines.item("B")
    engines.graph.add_dependency(b.id, a.id)

    with pytest.raises(InvalidStateTransitionError, match="unmet dependencies: #1"):
        engines.coordination.complete(b.id)

    engines.coordination.complete(a.id)
    completed = engines.coordination.complete(b.id)
    assert completed.status == WorkItemStatus.COMPLETED
    assert completed.completed_at is not None


def test_complete_releases_worker(engines) -> None:
    item = engines.item("Build API")
    worker = engines.store.create_worker("alpha")
    engines.coordination.sync(worker.id, item.id)

    engines.coordination.complete(item.id, worker.id)

    released = engines.store.get_worker(worker.id)
    assert released is not None
    assert released.status == WorkerStatus.IDLE
    assert released.current_item_id is None
    done = engines.store.get_item(item.id)
    assert done is not None
    assert done.assigned_worker_id == worker.id


def test_complete_by_foreign_worker_is_rejected(engines) -> None:
    item = engines.item("Build API")
    alpha = engines.store.create_worker("alpha")
    beta = engines.store.create_worker("beta")
    engines.coordination.sync(alpha.id, item.id)

    with pytest.raises(AlreadyAssignedError):
        engines.coordination.complete(item.id, beta.id)


def test_cancel_in_progress_item_releases_worker(engines) -> None:
    a = engines.item("A")
    b = engines.item("B")
    engines.graph.add_dependency(b.id, a.id)
    worker = engines.store.create_worker("alpha")
    engines.coordination.sync(worker.id, b.id)

    cancelled = engines.coordination.cancel(b.id, "out of scope")

    released = engines.store.get_worker(worker.id)
    assert cancelled.status == WorkItemStatus.CANCELLED
    assert released is not None
    assert released.status == WorkerStatus.IDLE
    assert released.current_item_id is None
    entry = next(
        entry for entry in engines.store.audit_entries(b.id) if entry.action == "cancelled"
    )
    assert entry.details["reason"] == "out of scope"

    with pytest.raises(InvalidStateTransitionError, match="already cancelled"):
        engines.coordination.cancel(b.id)


def test_update_status_follows_state_machine(engines) -> None:
    item = engines.item("Review me")

    assert engines.coordination.update_status(item.id, WorkItemStatus.IN_PROGRESS).status == (
        WorkItemStatus.IN_PROGRESS
    )
    assert engines.coordination.update_status(item.id, WorkItemStatus.REVIEW).status == (
        WorkItemStatus.REVIEW
    )
    with pytest.raises(InvalidStateTransitionError, match="transition not allowed"):
        engines.coordination.update_status(item.id, WorkItemStatus.BLOCKED)
    with pytest.raises(InvalidStateTransitionError, match="already review"):
        engines.coordination.update_status(item.id, WorkItemStatus.REVIEW)

    done = engines.coordination.update_status(item.id, WorkItemStatus.COMPLETED)
    assert done.status == WorkItemStatus.COMPLETED
    with pytest.raises(InvalidStateTransitionError):
        engines.coordination.update_status(item.id, WorkItemStatus.PENDING)


def test_blocked_item_returns_to_pending(engines) -> None:
    item = engines.item("Waiting")

    engines.coordination.update_status(item.id, WorkItemStatus.BLOCKED)
    with pytest.raises(InvalidStateTransitionError):
        engines.coordination.update_status(item.id, WorkItemStatus.COMPLETED)
    back = engines.coordination.update_status(item.id, WorkItemStatus.PENDING)

    assert back.status == WorkItemStatus.PENDING


def test_set_worker_status(engines) -> None:
    item = engines.item("Build API")
    worker = engines.store.create_worker("alpha")

    with pytest.raises(ConstraintViolationError, match="needs an item"):
        engines.coordination.set_worker_status(worker.id, WorkerStatus.WORKING)

    working = engines.coordination.set_worker_status(
        worker.id,
        WorkerStatus.WORKING,
        item_id=item.id,
    )
    assert working.current_item_id == item.id

    blocked = engines.coordination.set_worker_status(worker.id, WorkerStatus.BLOCKED)
    assert blocked.status == WorkerStatus.BLOCKED
    assert blocked.current_item_id == item.id

    offline = engines.coordination.set_worker_status(worker.id, WorkerStatus.OFFLINE)
    assert offline.status == WorkerStatus.OFFLINE
    assert offline.current_item_id is None
    _assert_binding_consistent(engines.store)


def test_batch_update_is_all_or_nothing(engines) -> None:
    x = engines.item("X")
    blocker = engines.item("Blocker")
    y = engines.item("Y")
    z = engines.item("Z")
    engines.graph.add_dependency(y.id, blocker.id)
    audit_before = engines.store.recent_audit(limit=100)

    with pytest.raises(BatchOperationError) as error_info:
        engines.coordination.batch_update([x.id, y.id, z.id], WorkItemStatus.COMPLETED)

    assert error_info.value.index == 1
    assert error_info.value.item_id == y.id
    assert isinstance(error_info.value.cause, InvalidStateTransitionError)
    assert "No changes applied" in str(error_info.value)
    for item in (x, y, z):
        current = engines.store.get_item(item.id)
        assert current is not None
        assert current.status == WorkItemStatus.PENDING
    assert engines.store.recent_audit(limit=100) == audit_before


def test_batch_update_sees_earlier_elements(engines) -> None:
    a = engines.item("A")
    b = engines.item("B")
    engines.graph.add_dependency(b.id, a.id)

    done = engines.coordination.batch_update([a.id, b.id], WorkItemStatus.COMPLETED)

    assert [item.status for item in done] == [WorkItemStatus.COMPLETED] * 2


def test_batch_assign_is_all_or_nothing(engines) -> None:
    free = engines.item("Free")
    taken = engines.item("Taken")
    alpha = engines.store.create_worker("alpha")
    beta = engines.store.create_worker("beta")
    engines.coordination.assign(taken.id, alpha.id)

    with pytest.raises(BatchOperationError) as error_info:
        engines.coordination.batch_assign([free.id, taken.id], beta.id)

    assert error_info.value.index == 1
    assert isinstance(error_info.value.cause, AlreadyAssignedError)
    untouched = engines.store.get_item(free.id)
    assert untouched is not None
    assert untouched.assigned_worker_id is None

    assigned = engines.coordination.batch_assign([free.id, taken.id], beta.id, reassign=True)
    assert {item.assigned_worker_id for item in assigned} == {beta.id}


def test_complete_batch_credits_each_worker(engines) -> None:
    first = engines.item("First")
    second = engines.item("Second")
    alpha = engines.store.create_worker("alpha")
    beta = engines.store.create_worker("beta")
    engines.coordination.sync(alpha.id, first.id)
    engines.coordination.sync(beta.id, second.id)

    done = engines.coordination.complete_batch(
        [
            CompletionRecord(item_id=first.id, worker_id=alpha.id),
            CompletionRecord(item_id=second.id, worker_id=beta.id),
        ],
    )

    assert [item.status for item in done] == [WorkItemStatus.COMPLETED] * 2
    assert all(worker.status == WorkerStatus.IDLE for worker in engines.store.list_workers())


def test_concurrent_sync_has_single_winner(tmp_path: Path) -> None:
    db_path = tmp_path / "race.db"
    store = EntityStore(db_path)
    store.init_schema()
    item = store.create_item(WorkItemCreate(title="Contended"))
    alpha = store.create_worker("alpha")
    beta = store.create_worker("beta")
    store.close()

    context = multiprocessing.get_context("spawn")
    start_event = context.Event()
    result_queue: multiprocessing.queues.Queue[tuple[str, str, str]] = context.Queue()
    processes = [
        context.Process(
            target=_run_sync,
            args=(str(db_path), worker.id, item.id, start_event, result_queue),
        )
        for worker in (alpha, beta)
    ]
    for process in processes:
        process.start()
    start_event.set()
    for process in processes:
        process.join(timeout=20)
        assert process.exitcode == 0

    results = {
        worker_id: (status, message)
        for worker_id, status, message in (result_queue.get(), result_queue.get())
    }
    outcomes = sorted(status for status, _ in results.values())
    assert outcomes == ["already_assigned", "ok"]

    winner = next(worker_id for worker_id, (status, _) in results.items() if status == "ok")
    reopened = EntityStore(db_path)
    try:
        current = reopened.get_item(item.id)
        assert current is not None
        assert current.assigned_worker_id == winner
        assert current.status == WorkItemStatus.IN_PROGRESS
        _assert_binding_consistent(reopened)
    finally:
        reopened.close()
