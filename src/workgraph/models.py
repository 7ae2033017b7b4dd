"""Domain models for work items, workers, dependencies, and the audit trail."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class WorkItemStatus(str, Enum):
    """Work item lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    REVIEW = "review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({WorkItemStatus.COMPLETED, WorkItemStatus.CANCELLED})

# Transitions accepted by a plain status update.
ALLOWED_TRANSITIONS: dict[WorkItemStatus, frozenset[WorkItemStatus]] = {
    WorkItemStatus.PENDING: frozenset(
        {
            WorkItemStatus.IN_PROGRESS,
            WorkItemStatus.BLOCKED,
            WorkItemStatus.COMPLETED,
            WorkItemStatus.CANCELLED,
        },
    ),
    WorkItemStatus.IN_PROGRESS: frozenset(
        {
            WorkItemStatus.REVIEW,
            WorkItemStatus.BLOCKED,
            WorkItemStatus.PENDING,
            WorkItemStatus.COMPLETED,
            WorkItemStatus.CANCELLED,
        },
    ),
    WorkItemStatus.BLOCKED: frozenset({WorkItemStatus.PENDING, WorkItemStatus.CANCELLED}),
    WorkItemStatus.REVIEW: frozenset(
        {
            WorkItemStatus.IN_PROGRESS,
            WorkItemStatus.COMPLETED,
            WorkItemStatus.CANCELLED,
        },
    ),
    WorkItemStatus.COMPLETED: frozenset(),
    WorkItemStatus.CANCELLED: frozenset(),
}

# States from which sync ("claim and start") may move an item to in_progress.
STARTABLE_STATUSES = frozenset(
    {
        WorkItemStatus.PENDING,
        WorkItemStatus.BLOCKED,
        WorkItemStatus.REVIEW,
        WorkItemStatus.IN_PROGRESS,
    },
)

# Statuses considered by the readiness frontier.
READY_CANDIDATE_STATUSES = frozenset({WorkItemStatus.PENDING, WorkItemStatus.BLOCKED})


class Priority(str, Enum):
    """Work item priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Sort weight, higher is more urgent."""

        return _PRIORITY_RANKS[self]


_PRIORITY_RANKS = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.CRITICAL: 4,
}


class WorkerStatus(str, Enum):
    """Worker lifecycle states."""

    IDLE = "idle"
    WORKING = "working"
    BLOCKED = "blocked"
    OFFLINE = "offline"


class EntityKind(str, Enum):
    """Closed set of entity kinds addressable by the resolver."""

    ITEM = "item"
    WORKER = "worker"

    @property
    def display_prefix(self) -> str:
        """Marker in front of the sequential display id, e.g. ``#12`` or ``A3``."""

        if self is EntityKind.ITEM:
            return "#"
        if self is EntityKind.WORKER:
            return "A"
        raise AssertionError(f"Unhandled entity kind: {self!r}")

    def format_display_id(self, display_id: int) -> str:
        return f"{self.display_prefix}{display_id}"


@dataclass(slots=True, frozen=True)
class EntityRef:
    """Canonical reference to one resolved entity."""

    kind: EntityKind
    id: str
    display_id: int
    label: str

    @property
    def display(self) -> str:
        return self.kind.format_display_id(self.display_id)


@dataclass(slots=True)
class WorkItemCreate:
    """Input payload for creating a work item."""

    title: str
    description: str | None = None
    priority: Priority = Priority.MEDIUM
    parent_id: str | None = None
    epic_name: str | None = None
    estimated_minutes: int | None = None


@dataclass(slots=True)
class WorkItemView:
    """Readable work item view."""

    id: str
    display_id: int
    title: str
    description: str | None
    status: WorkItemStatus
    priority: Priority
    parent_id: str | None
    epic_name: str | None
    assigned_worker_id: str | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    estimated_minutes: int | None
    actual_minutes: int | None

    @property
    def display(self) -> str:
        return EntityKind.ITEM.format_display_id(self.display_id)


@dataclass(slots=True)
class WorkerView:
    """Readable worker view."""

    id: str
    display_id: int
    name: str
    status: WorkerStatus
    current_item_id: str | None
    created_at: datetime
    last_active_at: datetime

    @property
    def display(self) -> str:
        return EntityKind.WORKER.format_display_id(self.display_id)


@dataclass(slots=True)
class AuditEntryView:
    """One immutable audit log entry."""

    entry_id: int
    item_id: str | None
    worker_id: str | None
    action: str
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ItemFilter:
    """Filters for item listing."""

    status: WorkItemStatus | None = None
    epic_name: str | None = None
    priority: Priority | None = None
    worker_id: str | None = None
    parent_id: str | None = None
    unassigned: bool = False
    limit: int | None = None


@dataclass(slots=True)
class ItemDependencies:
    """Both directions of the depends-on relation for one item."""

    item_id: str
    depends_on: frozenset[str]
    blocks: frozenset[str]


@dataclass(slots=True)
class AcceptanceCriterionView:
    """One checklist entry of an item."""

    item_id: str
    position: int
    text: str
    completed: bool
    completed_at: datetime | None
    created_at: datetime


@dataclass(slots=True, frozen=True)
class CriteriaProgress:
    """Checked vs total acceptance criteria."""

    done: int
    total: int

    @property
    def is_complete(self) -> bool:
        return self.total > 0 and self.done == self.total


@dataclass(slots=True)
class CompletionRecord:
    """One element of a batch completion."""

    item_id: str
    worker_id: str | None = None


@dataclass(slots=True)
class EpicSummary:
    """Progress for one epic label."""

    epic_name: str
    total: int
    completed: int

    @property
    def percent(self) -> float:
        if self.total == 0:
            return 0.0
        return self.completed / self.total * 100.0


@dataclass(slots=True)
class MigrationStatus:
    """Applied and pending schema versions."""

    applied: list[tuple[str, datetime]]
    pending: list[str]

    @property
    def current_version(self) -> str | None:
        if not self.applied:
            return None
        return self.applied[-1][0]
