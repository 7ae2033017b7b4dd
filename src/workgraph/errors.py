"""Error taxonomy for store, graph, and coordination operations.

Every error carries a machine-readable ``code`` plus the offending ids so
callers (the CLI in particular) can render an actionable message without
parsing text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from workgraph.models import EntityRef


@dataclass(slots=True)
class WorkgraphError(Exception):
    """Base error for all engine failures."""

    message: str = ""
    code: str = "workgraph_error"

    def __post_init__(self) -> None:
        if not self.message:
            self.message = self._default_message()

    def _default_message(self) -> str:
        return self.code

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class NotFoundError(WorkgraphError):
    """Referenced entity does not exist."""

    code: str = "not_found"
    kind: str = ""
    token: str = ""

    def _default_message(self) -> str:
        return f"{self.kind or 'entity'} not found: {self.token!r}"


@dataclass(slots=True)
class AmbiguousReferenceError(WorkgraphError):
    """A token matched several entities; nothing was guessed."""

    code: str = "ambiguous_reference"
    kind: str = ""
    token: str = ""
    candidates: tuple[EntityRef, ...] = ()

    def _default_message(self) -> str:
        listed = ", ".join(f"{ref.display} ({ref.id})" for ref in self.candidates)
        return f"Ambiguous {self.kind} reference {self.token!r} matches: {listed}"


@dataclass(slots=True)
class CycleDetectedError(WorkgraphError):
    """Adding the edge would close a cycle in the depends-on graph."""

    code: str = "cycle_detected"
    item_id: str = ""
    depends_on_id: str = ""
    path: tuple[str, ...] = ()

    def _default_message(self) -> str:
        chain = " -> ".join(self.path) if self.path else self.depends_on_id
        return (
            f"Dependency {self.item_id} -> {self.depends_on_id} would create a cycle "
            f"(existing path: {chain})"
        )


@dataclass(slots=True)
class InvalidStateTransitionError(WorkgraphError):
    """Requested status change is not allowed."""

    code: str = "invalid_state_transition"
    item_id: str = ""
    status_from: str = ""
    status_to: str = ""
    reason: str = ""

    def _default_message(self) -> str:
        text = f"Cannot move {self.item_id} from {self.status_from} to {self.status_to}"
        if self.reason:
            text += f": {self.reason}"
        return text


@dataclass(slots=True)
class AlreadyAssignedError(WorkgraphError):
    """Item is held by a different worker."""

    code: str = "already_assigned"
    item_id: str = ""
    current_worker_id: str = ""

    def _default_message(self) -> str:
        return f"Item {self.item_id} is already assigned to worker {self.current_worker_id}"


@dataclass(slots=True)
class WorkerBusyError(WorkgraphError):
    """Worker is already bound to another open item."""

    code: str = "worker_busy"
    worker_id: str = ""
    current_item_id: str = ""

    def _default_message(self) -> str:
        return f"Worker {self.worker_id} is already working on item {self.current_item_id}"


@dataclass(slots=True)
class ConstraintViolationError(WorkgraphError):
    """Referential integrity or uniqueness rule rejected the write."""

    code: str = "constraint_violation"
    detail: str = ""

    def _default_message(self) -> str:
        return f"Constraint violation: {self.detail}"


@dataclass(slots=True)
class MigrationFailureError(WorkgraphError):
    """Schema migration failed and was rolled back."""

    code: str = "migration_failure"
    version: str = ""
    reason: str = ""

    def _default_message(self) -> str:
        return f"Migration {self.version} failed: {self.reason}"


@dataclass(slots=True)
class StoreBusyError(WorkgraphError):
    """Store lock could not be acquired in time; safe to retry."""

    code: str = "store_busy"
    retryable: bool = True

    def _default_message(self) -> str:
        return "Store is locked by another writer; please retry."


@dataclass(slots=True)
class BatchOperationError(WorkgraphError):
    """First failing element of an all-or-nothing batch."""

    code: str = "batch_failed"
    index: int = -1
    item_id: str = ""
    cause: WorkgraphError = field(default_factory=WorkgraphError)

    def _default_message(self) -> str:
        return (
            f"Batch failed at index {self.index} ({self.item_id}): {self.cause}. "
            "No changes applied."
        )
