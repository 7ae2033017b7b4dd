"""Read-only aggregates over the work graph and their CLI rendering."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from workgraph.models import (
    AuditEntryView,
    EpicSummary,
    ItemFilter,
    WorkerStatus,
    WorkerView,
    WorkItemStatus,
    WorkItemView,
)
from workgraph.store import EntityStore

PROGRESS_BAR_WIDTH = 20


@dataclass(slots=True)
class StatsSnapshot:
    """Item counts by status plus worker counts by status."""

    status_counts: dict[WorkItemStatus, int]
    worker_counts: dict[WorkerStatus, int]
    ready_count: int

    @property
    def total(self) -> int:
        return sum(self.status_counts.values())

    @property
    def completion_ratio(self) -> float | None:
        if self.total == 0:
            return None
        return self.status_counts[WorkItemStatus.COMPLETED] / self.total


@dataclass(slots=True)
class DashboardSnapshot:
    """One polling tick worth of aggregate data; built from fresh reads."""

    taken_at: datetime
    stats: StatsSnapshot
    epics: list[EpicSummary]
    in_progress: list[WorkItemView]
    blocked: list[WorkItemView]
    workers: list[WorkerView]
    recent_activity: list[AuditEntryView]


def build_stats(store: EntityStore, *, ready_count: int) -> StatsSnapshot:
    worker_counts = {status: 0 for status in WorkerStatus}
    for worker in store.list_workers():
        worker_counts[worker.status] += 1
    return StatsSnapshot(
        status_counts=store.status_counts(),
        worker_counts=worker_counts,
        ready_count=ready_count,
    )


def build_dashboard_snapshot(
    store: EntityStore,
    *,
    ready_count: int,
    recent_activity_limit: int,
) -> DashboardSnapshot:
    """Collect every dashboard panel; each query is its own short read."""

    return DashboardSnapshot(
        taken_at=datetime.now(UTC),
        stats=build_stats(store, ready_count=ready_count),
        epics=store.epic_summaries(),
        in_progress=store.list_items(ItemFilter(status=WorkItemStatus.IN_PROGRESS)),
        blocked=store.list_items(ItemFilter(status=WorkItemStatus.BLOCKED)),
        workers=store.list_workers(),
        recent_activity=store.recent_audit(limit=recent_activity_limit),
    )


def render_stats_lines(*, snapshot: StatsSnapshot) -> list[str]:
    """Render operator-facing stats lines for CLI output."""

    lines = [
        f"Items: {snapshot.total}",
        "Status: " + _fmt_key_value(_by_value(snapshot.status_counts)),
        f"Ready: {snapshot.ready_count}",
        f"Completion: {_fmt_ratio(snapshot.completion_ratio)}",
        "Workers: " + _fmt_key_value(_by_value(snapshot.worker_counts)),
    ]
    return lines


def render_epic_lines(epics: list[EpicSummary]) -> list[str]:
    if not epics:
        return ["Epics: none"]
    lines = [f"Epics: {len(epics)}"]
    width = max(len(epic.epic_name) for epic in epics)
    for epic in epics:
        lines.append(
            f"  {epic.epic_name.ljust(width)} {_progress_bar(epic.percent)} "
            f"{epic.completed}/{epic.total} ({epic.percent:.0f}%)",
        )
    return lines


def render_dashboard_lines(
    snapshot: DashboardSnapshot,
    *,
    item_labels: dict[str, str],
    worker_labels: dict[str, str],
) -> list[str]:
    """Render one dashboard tick; labels map internal ids to display ids."""

    lines = [f"Dashboard at {snapshot.taken_at.isoformat(timespec='seconds')}"]
    lines.extend(render_stats_lines(snapshot=snapshot.stats))
    lines.extend(render_epic_lines(snapshot.epics))

    lines.append(f"In progress: {len(snapshot.in_progress)}")
    for item in snapshot.in_progress:
        worker = worker_labels.get(item.assigned_worker_id or "", "-")
        lines.append(f"  {item.display} [{item.priority.value}] {item.title} worker={worker}")
    lines.append(f"Blocked: {len(snapshot.blocked)}")
    for item in snapshot.blocked:
        lines.append(f"  {item.display} [{item.priority.value}] {item.title}")

    lines.append(f"Workers: {len(snapshot.workers)}")
    for worker in snapshot.workers:
        current = item_labels.get(worker.current_item_id or "", "-")
        lines.append(
            f"  {worker.display} {worker.name} status={worker.status.value} item={current}",
        )

    lines.append("Recent activity:")
    if not snapshot.recent_activity:
        lines.append("  none")
    for entry in snapshot.recent_activity:
        lines.append(
            "  "
            + render_audit_line(entry, item_labels=item_labels, worker_labels=worker_labels),
        )
    return lines


def render_audit_line(
    entry: AuditEntryView,
    *,
    item_labels: dict[str, str],
    worker_labels: dict[str, str],
) -> str:
    item = item_labels.get(entry.item_id or "", "-")
    worker = worker_labels.get(entry.worker_id or "", "-")
    stamp = entry.created_at.isoformat(timespec="seconds")
    line = f"{stamp} {entry.action} item={item} worker={worker}"
    if entry.details:
        line += " " + " ".join(f"{key}={entry.details[key]}" for key in sorted(entry.details))
    return line


def _by_value(counts: dict[WorkItemStatus, int] | dict[WorkerStatus, int]) -> dict[str, int]:
    return {key.value: value for key, value in counts.items()}


def _progress_bar(percent: float) -> str:
    filled = round(PROGRESS_BAR_WIDTH * percent / 100)
    return "[" + "#" * filled + "." * (PROGRESS_BAR_WIDTH - filled) + "]"


def _fmt_key_value(values: dict[str, int]) -> str:
    if not values:
        return "none"
    return " ".join(f"{key}={values[key]}" for key in values)


def _fmt_ratio(value: float | None) -> str:
    if value is None:
        return "n/a"
    return f"{value * 100:.1f}%"
