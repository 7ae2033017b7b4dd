"""Controllers for workgraph CLI commands."""

from __future__ import annotations

import csv
import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from workgraph.config import Settings
from workgraph.coordination import CoordinationManager
from workgraph.criteria import AcceptanceCriteriaTracker
from workgraph.errors import BatchOperationError, WorkgraphError
from workgraph.graph import DependencyGraph
from workgraph.models import (
    CompletionRecord,
    EntityKind,
    ItemFilter,
    Priority,
    WorkerStatus,
    WorkItemCreate,
    WorkItemStatus,
    WorkItemView,
)
from workgraph.reports import (
    build_dashboard_snapshot,
    build_stats,
    render_audit_line,
    render_dashboard_lines,
    render_epic_lines,
    render_stats_lines,
)
from workgraph.resolver import IdentifierResolver
from workgraph.storage.alembic_runner import downgrade_to, migration_status
from workgraph.store import EntityStore

logger = logging.getLogger(__name__)

MIGRATION_ACTIONS = ("latest", "status", "rollback")


@dataclass(slots=True)
class MigrateCommand:
    """CLI input for schema migrations."""

    db_path: Path | None
    action: str = "latest"
    version: str | None = None


@dataclass(slots=True)
class CreateItemCommand:
    """CLI input for item creation."""

    db_path: Path | None
    title: str
    description: str | None = None
    priority: str = Priority.MEDIUM.value
    parent: str | None = None
    epic: str | None = None
    estimated_minutes: int | None = None
    depends_on: tuple[str, ...] = ()


@dataclass(slots=True)
class ListItemsCommand:
    """CLI input for item listing."""

    db_path: Path | None
    status: str | None = None
    epic: str | None = None
    priority: str | None = None
    worker: str | None = None
    unassigned: bool = False
    limit: int | None = None


@dataclass(slots=True)
class ItemCommand:
    """CLI input for read-only commands addressing one item."""

    db_path: Path | None
    item: str


@dataclass(slots=True)
class UpdateStatusCommand:
    """CLI input for a single status change."""

    db_path: Path | None
    item: str
    status: str
    worker: str | None = None


@dataclass(slots=True)
class EditItemCommand:
    """CLI input for descriptive field edits."""

    db_path: Path | None
    item: str
    title: str | None = None
    description: str | None = None
    priority: str | None = None
    epic: str | None = None


@dataclass(slots=True)
class DependencyCommand:
    """CLI input for adding/removing one depends-on edge."""

    db_path: Path | None
    item: str
    other: str
    remove: bool = False
    reverse: bool = False


@dataclass(slots=True)
class NextItemCommand:
    """CLI input for picking the next ready item."""

    db_path: Path | None
    priority: str | None = None
    epic: str | None = None
    worker: str | None = None
    sync: bool = False


@dataclass(slots=True)
class CriterionAddCommand:
    """CLI input for appending an acceptance criterion."""

    db_path: Path | None
    item: str
    text: str


@dataclass(slots=True)
class CriterionCheckCommand:
    """CLI input for check/uncheck of an acceptance criterion."""

    db_path: Path | None
    item: str
    position: int
    completed: bool = True


@dataclass(slots=True)
class AssignCommand:
    """CLI input for reservation and claim-and-start."""

    db_path: Path | None
    item: str
    worker: str
    reassign: bool = False


@dataclass(slots=True)
class CompleteCommand:
    """CLI input for completing one item."""

    db_path: Path | None
    item: str
    worker: str | None = None


@dataclass(slots=True)
class CancelCommand:
    """CLI input for cancelling one item."""

    db_path: Path | None
    item: str
    reason: str | None = None


@dataclass(slots=True)
class BatchUpdateCommand:
    """CLI input for an all-or-nothing status update."""

    db_path: Path | None
    items: str
    status: str
    worker: str | None = None


@dataclass(slots=True)
class BatchAssignCommand:
    """CLI input for an all-or-nothing reservation."""

    db_path: Path | None
    items: str
    worker: str
    reassign: bool = False


@dataclass(slots=True)
class CompleteBatchCommand:
    """CLI input for batch completion from flags or a JSON/CSV file."""

    db_path: Path | None
    tasks: str | None = None
    agent_map: str | None = None
    from_file: Path | None = None


@dataclass(slots=True)
class WorkerCreateCommand:
    """CLI input for worker registration."""

    db_path: Path | None
    name: str


@dataclass(slots=True)
class WorkerListCommand:
    """CLI input for worker listing."""

    db_path: Path | None
    status: str | None = None


@dataclass(slots=True)
class WorkerStatusCommand:
    """CLI input for worker status change."""

    db_path: Path | None
    worker: str
    status: str
    item: str | None = None


@dataclass(slots=True)
class DurationCommand:
    """CLI input for effort tracking."""

    db_path: Path | None
    item: str
    estimated_minutes: int | None = None
    actual_minutes: int | None = None


@dataclass(slots=True)
class ReportCommand:
    """CLI input for aggregate reports (stats, epics, dashboard)."""

    db_path: Path | None
    limit: int | None = None


@dataclass(slots=True)
class _Engines:
    store: EntityStore
    resolver: IdentifierResolver
    graph: DependencyGraph
    criteria: AcceptanceCriteriaTracker
    coordination: CoordinationManager

    def item(self, token: str) -> str:
        return self.resolver.resolve_id(EntityKind.ITEM, token)

    def worker(self, token: str) -> str:
        return self.resolver.resolve_id(EntityKind.WORKER, token)


class WorkgraphCliController:
    """Resolves CLI tokens, runs one engine operation, renders the outcome."""

    def migrate(self, command: MigrateCommand) -> list[str]:
        settings = _settings(command.db_path)
        if command.action not in MIGRATION_ACTIONS:
            raise ValueError(
                f"Unknown migration action {command.action!r}. "
                f"Expected one of {', '.join(MIGRATION_ACTIONS)}.",
            )
        if command.action == "status":
            status = migration_status(settings.db_path)
            lines = [f"Current version: {status.current_version or 'none'}"]
            for version, applied_at in status.applied:
                lines.append(f"  applied {version} at {applied_at.isoformat(timespec='seconds')}")
            for version in status.pending:
                lines.append(f"  pending {version}")
            return lines
        if command.action == "rollback":
            target = command.version or _previous_version(settings)
            downgrade_to(
                settings.db_path,
                target,
                busy_timeout_ms=settings.store.busy_timeout_ms,
            )
            return [f"Schema rolled back to {target}"]

        store = EntityStore(settings.db_path, busy_timeout_ms=settings.store.busy_timeout_ms)
        try:
            applied = store.init_schema()
            version = store.schema_version()
        finally:
            store.close()
        if not applied:
            return [f"Schema is up to date (version {version})"]
        return [f"Applied migrations: {', '.join(applied)}", f"Schema version: {version}"]

    def create_item(self, command: CreateItemCommand) -> list[str]:
        with _engines(_settings(command.db_path)) as engines:
            parent_id = engines.item(command.parent) if command.parent else None
            prerequisites = list(dict.fromkeys(engines.item(token) for token in command.depends_on))
            item = engines.graph.create_item(
                WorkItemCreate(
                    title=command.title,
                    description=command.description,
                    priority=_parse_priority(command.priority) or Priority.MEDIUM,
                    parent_id=parent_id,
                    epic_name=command.epic,
                    estimated_minutes=command.estimated_minutes,
                ),
                prerequisites,
            )
        lines = [f"Created {item.display}: {item.title} (id={item.id})"]
        if prerequisites:
            lines.append(f"Depends on {len(prerequisites)} item(s)")
        return lines

    def list_items(self, command: ListItemsCommand) -> list[str]:
        if command.unassigned and command.worker:
            raise ValueError("Use either --agent or --unassigned, not both.")
        with _engines(_settings(command.db_path)) as engines:
            items = engines.store.list_items(
                ItemFilter(
                    status=_parse_status(command.status),
                    epic_name=command.epic,
                    priority=_parse_priority(command.priority),
                    worker_id=engines.worker(command.worker) if command.worker else None,
                    unassigned=command.unassigned,
                    limit=command.limit,
                ),
            )
            workers = _worker_labels(engines.store)

        lines = [f"Items: {len(items)}"]
        for item in items:
            lines.append(_item_line(item, worker_labels=workers))
        return lines

    def show_item(self, command: ItemCommand) -> list[str]:
        with _engines(_settings(command.db_path)) as engines:
            item_id = engines.item(command.item)
            item = engines.store.get_item(item_id)
            dependencies = engines.graph.list_dependencies(item_id)
            depends_on = engines.store.get_items(dependencies.depends_on)
            blocks = engines.store.get_items(dependencies.blocks)
            subitems = engines.store.subitems(item_id)
            criteria = engines.criteria.list_criteria(item_id)
            audit = engines.store.audit_entries(item_id)
            items = _item_labels(engines.store)
            workers = _worker_labels(engines.store)
        if item is None:
            return [f"Item not found: {command.item}"]

        done = sum(1 for criterion in criteria if criterion.completed)
        lines = [
            f"Item: {item.display} {item.title}",
            f"Id: {item.id}",
            f"Status: {item.status.value}",
            f"Priority: {item.priority.value}",
            f"Epic: {item.epic_name or '-'}",
            f"Parent: {items.get(item.parent_id or '', '-')}",
            f"Worker: {workers.get(item.assigned_worker_id or '', '-')}",
            f"Created: {item.created_at.isoformat(timespec='seconds')}",
            f"Completed: {_fmt_time(item.completed_at)}",
            f"Estimate: {_fmt_minutes(item.estimated_minutes)} "
            f"Actual: {_fmt_minutes(item.actual_minutes)}",
        ]
        if item.description:
            lines.append(f"Description: {item.description}")
        lines.append("Depends on: " + (_fmt_refs(depends_on) or "none"))
        lines.append("Blocks: " + (_fmt_refs(blocks) or "none"))
        if subitems:
            lines.append("Subitems: " + _fmt_refs(subitems))
        lines.append(f"Acceptance criteria: {done}/{len(criteria)}")
        for criterion in criteria:
            mark = "x" if criterion.completed else " "
            lines.append(f"  [{mark}] {criterion.position}. {criterion.text}")
        lines.append(f"History: {len(audit)}")
        for entry in audit:
            lines.append("  " + render_audit_line(entry, item_labels=items, worker_labels=workers))
        return lines

    def update_status(self, command: UpdateStatusCommand) -> list[str]:
        status = _require_status(command.status)
        with _engines(_settings(command.db_path)) as engines:
            item = engines.coordination.update_status(
                engines.item(command.item),
                status,
                worker_id=engines.worker(command.worker) if command.worker else None,
            )
        return [f"Updated {item.display} -> {item.status.value}"]

    def edit_item(self, command: EditItemCommand) -> list[str]:
        fields: dict[str, object] = {}
        if command.title is not None:
            fields["title"] = command.title
        if command.description is not None:
            fields["description"] = command.description
        if command.priority is not None:
            fields["priority"] = _parse_priority(command.priority)
        if command.epic is not None:
            fields["epic_name"] = command.epic
        if not fields:
            raise ValueError("Nothing to edit: pass at least one field option.")
        with _engines(_settings(command.db_path)) as engines:
            item = engines.store.update_item_fields(engines.item(command.item), **fields)
        return [f"Edited {item.display}: {', '.join(sorted(fields))}"]

    def change_dependency(self, command: DependencyCommand) -> list[str]:
        with _engines(_settings(command.db_path)) as engines:
            item = engines.resolver.resolve(EntityKind.ITEM, command.item)
            other = engines.resolver.resolve(EntityKind.ITEM, command.other)
            dependent, prerequisite = (other, item) if command.reverse else (item, other)
            if command.remove:
                engines.graph.remove_dependency(dependent.id, prerequisite.id)
                return [f"Removed: {dependent.display} no longer depends on {prerequisite.display}"]
            engines.graph.add_dependency(dependent.id, prerequisite.id)
        return [f"Added: {dependent.display} depends on {prerequisite.display}"]

    def list_dependencies(self, command: ItemCommand) -> list[str]:
        with _engines(_settings(command.db_path)) as engines:
            item = engines.resolver.resolve(EntityKind.ITEM, command.item)
            dependencies = engines.graph.list_dependencies(item.id)
            depends_on = engines.store.get_items(dependencies.depends_on)
            blocks = engines.store.get_items(dependencies.blocks)
            can_complete = engines.graph.can_complete(item.id)
        lines = [f"Dependencies of {item.display} {item.label}"]
        lines.append(f"Depends on: {len(depends_on)}")
        for dependency in depends_on:
            lines.append(f"  {dependency.display} [{dependency.status.value}] {dependency.title}")
        lines.append(f"Blocks: {len(blocks)}")
        for blocked in blocks:
            lines.append(f"  {blocked.display} [{blocked.status.value}] {blocked.title}")
        lines.append(f"Can complete: {'yes' if can_complete else 'no'}")
        return lines

    def ready(self, command: ReportCommand) -> list[str]:
        with _engines(_settings(command.db_path)) as engines:
            items = engines.graph.ready()
        if command.limit is not None:
            items = items[: command.limit]
        lines = [f"Ready: {len(items)}"]
        for item in items:
            lines.append(_item_line(item, worker_labels={}))
        return lines

    def next_item(self, command: NextItemCommand) -> list[str]:
        if command.sync and not command.worker:
            raise ValueError("--sync requires --agent.")
        with _engines(_settings(command.db_path)) as engines:
            item = engines.graph.next_ready(
                priority=_parse_priority(command.priority),
                epic_name=command.epic,
            )
            if item is None:
                return ["No ready items."]
            lines = [f"Next: {item.display} [{item.priority.value}] {item.title}"]
            if command.sync and command.worker:
                worker_id = engines.worker(command.worker)
                engines.coordination.sync(worker_id, item.id)
                worker = _worker_labels(engines.store)[worker_id]
                lines.append(f"Started {item.display} by {worker}")
            elif command.worker:
                worker_id = engines.worker(command.worker)
                engines.coordination.assign(item.id, worker_id)
                worker = _worker_labels(engines.store)[worker_id]
                lines.append(f"Assigned {item.display} to {worker}")
        return lines

    def add_criterion(self, command: CriterionAddCommand) -> list[str]:
        with _engines(_settings(command.db_path)) as engines:
            item_id = engines.item(command.item)
            criterion = engines.criteria.add(item_id, command.text)
            progress = engines.criteria.progress(item_id)
        return [
            f"Added criterion {criterion.position}: {criterion.text}",
            f"Progress: {progress.done}/{progress.total}",
        ]

    def list_criteria(self, command: ItemCommand) -> list[str]:
        with _engines(_settings(command.db_path)) as engines:
            item_id = engines.item(command.item)
            criteria = engines.criteria.list_criteria(item_id)
            progress = engines.criteria.progress(item_id)
        lines = [f"Acceptance criteria: {progress.done}/{progress.total}"]
        for criterion in criteria:
            mark = "x" if criterion.completed else " "
            lines.append(f"  [{mark}] {criterion.position}. {criterion.text}")
        return lines

    def check_criterion(self, command: CriterionCheckCommand) -> list[str]:
        with _engines(_settings(command.db_path)) as engines:
            item_id = engines.item(command.item)
            if command.completed:
                criterion = engines.criteria.check(item_id, command.position)
            else:
                criterion = engines.criteria.uncheck(item_id, command.position)
            progress = engines.criteria.progress(item_id)
        state = "checked" if criterion.completed else "unchecked"
        return [
            f"Criterion {criterion.position} {state}: {criterion.text}",
            f"Progress: {progress.done}/{progress.total}",
        ]

    def assign(self, command: AssignCommand) -> list[str]:
        with _engines(_settings(command.db_path)) as engines:
            worker_id = engines.worker(command.worker)
            item = engines.coordination.assign(
                engines.item(command.item),
                worker_id,
                reassign=command.reassign,
            )
            worker = _worker_labels(engines.store)[worker_id]
        return [f"Assigned {item.display} to {worker}"]

    def sync(self, command: AssignCommand) -> list[str]:
        with _engines(_settings(command.db_path)) as engines:
            worker_id = engines.worker(command.worker)
            item = engines.coordination.sync(
                worker_id,
                engines.item(command.item),
                reassign=command.reassign,
            )
            worker = _worker_labels(engines.store)[worker_id]
        return [f"Synced {worker} -> {item.display} ({item.status.value})"]

    def complete(self, command: CompleteCommand) -> list[str]:
        with _engines(_settings(command.db_path)) as engines:
            item = engines.coordination.complete(
                engines.item(command.item),
                engines.worker(command.worker) if command.worker else None,
            )
            unblocked = [
                ready for ready in engines.graph.ready() if ready.id in _blocked_by(engines, item)
            ]
        lines = [f"Completed {item.display}: {item.title}"]
        if unblocked:
            lines.append("Now ready: " + _fmt_refs(unblocked))
        return lines

    def cancel(self, command: CancelCommand) -> list[str]:
        with _engines(_settings(command.db_path)) as engines:
            item = engines.coordination.cancel(engines.item(command.item), command.reason)
        return [f"Cancelled {item.display}" + (f": {command.reason}" if command.reason else "")]

    def batch_update(self, command: BatchUpdateCommand) -> list[str]:
        status = _require_status(command.status)
        with _engines(_settings(command.db_path)) as engines:
            item_ids = _resolve_batch(engines, _split_tokens(command.items))
            items = engines.coordination.batch_update(
                item_ids,
                status,
                worker_id=engines.worker(command.worker) if command.worker else None,
            )
        return [f"Updated {len(items)} item(s) -> {status.value}: {_fmt_refs(items)}"]

    def batch_assign(self, command: BatchAssignCommand) -> list[str]:
        with _engines(_settings(command.db_path)) as engines:
            worker_id = engines.worker(command.worker)
            item_ids = _resolve_batch(engines, _split_tokens(command.items))
            items = engines.coordination.batch_assign(
                item_ids,
                worker_id,
                reassign=command.reassign,
            )
            worker = _worker_labels(engines.store)[worker_id]
        return [f"Assigned {len(items)} item(s) to {worker}: {_fmt_refs(items)}"]

    def complete_batch(self, command: CompleteBatchCommand) -> list[str]:
        raw = _completion_pairs(command)
        with _engines(_settings(command.db_path)) as engines:
            records = _resolve_completion_records(engines, raw)
            items = engines.coordination.complete_batch(records)
        return [f"Completed {len(items)} item(s): {_fmt_refs(items)}"]

    def create_worker(self, command: WorkerCreateCommand) -> list[str]:
        with _engines(_settings(command.db_path)) as engines:
            worker = engines.store.create_worker(command.name)
        return [f"Registered {worker.display}: {worker.name} (id={worker.id})"]

    def list_workers(self, command: WorkerListCommand) -> list[str]:
        status = WorkerStatus(command.status.strip().lower()) if command.status else None
        with _engines(_settings(command.db_path)) as engines:
            workers = engines.store.list_workers(status=status)
            items = _item_labels(engines.store)
        lines = [f"Workers: {len(workers)}"]
        for worker in workers:
            lines.append(
                f"  {worker.display} {worker.name} status={worker.status.value} "
                f"item={items.get(worker.current_item_id or '', '-')} "
                f"last_active={worker.last_active_at.isoformat(timespec='seconds')}",
            )
        return lines

    def set_worker_status(self, command: WorkerStatusCommand) -> list[str]:
        status = WorkerStatus(command.status.strip().lower())
        with _engines(_settings(command.db_path)) as engines:
            worker = engines.coordination.set_worker_status(
                engines.worker(command.worker),
                status,
                item_id=engines.item(command.item) if command.item else None,
            )
            items = _item_labels(engines.store)
        current = items.get(worker.current_item_id or "", "-")
        return [f"Worker {worker.display} ({worker.name}) -> {worker.status.value} item={current}"]

    def set_duration(self, command: DurationCommand) -> list[str]:
        if command.estimated_minutes is None and command.actual_minutes is None:
            raise ValueError("Pass --estimated and/or --actual.")
        with _engines(_settings(command.db_path)) as engines:
            item = engines.store.set_duration(
                engines.item(command.item),
                estimated_minutes=command.estimated_minutes,
                actual_minutes=command.actual_minutes,
            )
        return [
            f"Duration for {item.display}: estimated={_fmt_minutes(item.estimated_minutes)} "
            f"actual={_fmt_minutes(item.actual_minutes)}",
        ]

    def epics(self, command: ReportCommand) -> list[str]:
        with _engines(_settings(command.db_path)) as engines:
            return render_epic_lines(engines.store.epic_summaries())

    def stats(self, command: ReportCommand) -> list[str]:
        with _engines(_settings(command.db_path)) as engines:
            snapshot = build_stats(engines.store, ready_count=len(engines.graph.ready()))
        return render_stats_lines(snapshot=snapshot)

    def dashboard(self, command: ReportCommand) -> list[str]:
        settings = _settings(command.db_path)
        limit = command.limit or settings.dashboard.recent_activity_limit
        with _engines(settings) as engines:
            snapshot = build_dashboard_snapshot(
                engines.store,
                ready_count=len(engines.graph.ready()),
                recent_activity_limit=limit,
            )
            items = _item_labels(engines.store)
            workers = _worker_labels(engines.store)
        return render_dashboard_lines(snapshot, item_labels=items, worker_labels=workers)


@contextmanager
def _engines(settings: Settings) -> Iterator[_Engines]:
    store = EntityStore(settings.db_path, busy_timeout_ms=settings.store.busy_timeout_ms)
    store.init_schema()
    graph = DependencyGraph(store)
    try:
        yield _Engines(
            store=store,
            resolver=IdentifierResolver(store),
            graph=graph,
            criteria=AcceptanceCriteriaTracker(store),
            coordination=CoordinationManager(
                store,
                graph,
                sync_requires_ready=settings.coordination.sync_requires_ready,
            ),
        )
    finally:
        store.close()


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _previous_version(settings: Settings) -> str:
    applied = migration_status(settings.db_path).applied
    if not applied:
        raise ValueError("Nothing to roll back: no migrations applied.")
    if len(applied) == 1:
        return "base"
    return applied[-2][0]


def _parse_status(value: str | None) -> WorkItemStatus | None:
    if value is None:
        return None
    return WorkItemStatus(value.strip().lower().replace("-", "_"))


def _require_status(value: str) -> WorkItemStatus:
    return WorkItemStatus(value.strip().lower().replace("-", "_"))


def _parse_priority(value: str | None) -> Priority | None:
    if value is None:
        return None
    return Priority(value.strip().lower())


def _split_tokens(value: str) -> list[str]:
    tokens = [token.strip() for token in value.split(",") if token.strip()]
    if not tokens:
        raise ValueError("Expected a comma-separated list of item ids.")
    return tokens


def _completion_pairs(command: CompleteBatchCommand) -> list[tuple[str, str | None]]:
    """(item token, worker token) pairs from ``--tasks/--agent-map`` or a file."""

    if command.from_file is not None:
        if command.tasks or command.agent_map:
            raise ValueError("Use either --from-file or --tasks/--agent-map, not both.")
        return _read_completion_file(command.from_file)
    if not command.tasks:
        raise ValueError("Pass --tasks (with --agent-map) or --from-file.")

    mapping: dict[str, str] = {}
    if command.agent_map:
        for pair in command.agent_map.split(","):
            parts = [part.strip() for part in pair.split(":")]
            if len(parts) != 2 or not all(parts):
                raise ValueError(f"Invalid agent-map entry {pair!r}. Expected 'item:agent'.")
            mapping[parts[0]] = parts[1]
    return [(token, mapping.get(token)) for token in _split_tokens(command.tasks)]


def _read_completion_file(path: Path) -> list[tuple[str, str | None]]:
    if path.suffix.lower() == ".json":
        payload = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(payload, list):
            raise ValueError(f"{path}: expected a JSON list of {{task, agent}} records.")
        rows = payload
    elif path.suffix.lower() == ".csv":
        with path.open(newline="", encoding="utf-8") as handle:
            rows = list(csv.DictReader(handle))
    else:
        raise ValueError(f"{path}: unsupported completion file type (use .json or .csv).")

    pairs: list[tuple[str, str | None]] = []
    for position, row in enumerate(rows, start=1):
        if not isinstance(row, dict) or not str(row.get("task") or "").strip():
            raise ValueError(f"{path}: record {position} has no 'task' field.")
        agent = str(row.get("agent") or "").strip()
        pairs.append((str(row["task"]).strip(), agent or None))
    if not pairs:
        raise ValueError(f"{path}: contains no records.")
    logger.debug("Loaded %d completion record(s) from %s", len(pairs), path)
    return pairs


def _resolve_batch(engines: _Engines, tokens: list[str]) -> list[str]:
    """Resolve batch item tokens; a bad token fails the batch at its index."""

    item_ids: list[str] = []
    for index, token in enumerate(tokens):
        try:
            item_ids.append(engines.item(token))
        except WorkgraphError as error:
            raise BatchOperationError(index=index, item_id=token, cause=error) from error
    return item_ids


def _resolve_completion_records(
    engines: _Engines,
    pairs: list[tuple[str, str | None]],
) -> list[CompletionRecord]:
    records: list[CompletionRecord] = []
    for index, (item_token, worker_token) in enumerate(pairs):
        try:
            records.append(
                CompletionRecord(
                    item_id=engines.item(item_token),
                    worker_id=engines.worker(worker_token) if worker_token else None,
                ),
            )
        except WorkgraphError as error:
            raise BatchOperationError(index=index, item_id=item_token, cause=error) from error
    return records


def _blocked_by(engines: _Engines, item: WorkItemView) -> frozenset[str]:
    return engines.graph.list_dependencies(item.id).blocks


def _item_labels(store: EntityStore) -> dict[str, str]:
    return {item.id: item.display for item in store.list_items()}


def _worker_labels(store: EntityStore) -> dict[str, str]:
    return {worker.id: f"{worker.display} ({worker.name})" for worker in store.list_workers()}


def _item_line(item: WorkItemView, *, worker_labels: dict[str, str]) -> str:
    line = f"  {item.display} [{item.status.value}] [{item.priority.value}] {item.title}"
    if item.epic_name:
        line += f" epic={item.epic_name}"
    if item.assigned_worker_id:
        line += f" worker={worker_labels.get(item.assigned_worker_id, item.assigned_worker_id)}"
    return line


def _fmt_refs(items: list[WorkItemView]) -> str:
    return ", ".join(item.display for item in items)


def _fmt_time(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.isoformat(timespec="seconds")


def _fmt_minutes(value: int | None) -> str:
    if value is None:
        return "-"
    return f"{value}m"
