"""CLI entrypoint for workgraph."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from workgraph import __version__
from workgraph.config import Settings
from workgraph.controllers import (
    MIGRATION_ACTIONS,
    AssignCommand,
    BatchAssignCommand,
    BatchUpdateCommand,
    CancelCommand,
    CompleteBatchCommand,
    CompleteCommand,
    CreateItemCommand,
    CriterionAddCommand,
    CriterionCheckCommand,
    DependencyCommand,
    DurationCommand,
    EditItemCommand,
    ItemCommand,
    ListItemsCommand,
    MigrateCommand,
    NextItemCommand,
    ReportCommand,
    UpdateStatusCommand,
    WorkerCreateCommand,
    WorkerListCommand,
    WorkerStatusCommand,
    WorkgraphCliController,
)
from workgraph.errors import WorkgraphError
from workgraph.models import Priority, WorkerStatus, WorkItemStatus

click.rich_click.USE_MARKDOWN = True
CONTROLLER = WorkgraphCliController()

ITEM_STATUSES = [status.value for status in WorkItemStatus]
PRIORITIES = [priority.value for priority in Priority]
WORKER_STATUSES = [status.value for status in WorkerStatus]

db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path (default: WORKGRAPH_DB_PATH or .workgraph.db).",
)


@click.group()
@click.version_option(version=__version__, prog_name="workgraph")
def workgraph() -> None:
    """Work item dependency graph and worker coordination.

    Items are addressed as `#12`, `12`, or an internal-id prefix;
    workers as `A3`, `3`, their name, or an internal-id prefix.
    """

    settings = Settings.from_env()
    try:
        settings.validate()
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    logging.basicConfig(
        level=settings.logging_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@workgraph.command("init")
@db_path_option
def init(db_path: Path | None) -> None:
    """Create or upgrade the store schema."""

    _run(CONTROLLER.migrate, MigrateCommand(db_path=db_path, action="latest"))


@workgraph.command("migrate")
@db_path_option
@click.argument("action", type=click.Choice(MIGRATION_ACTIONS), default="latest")
@click.option("--to", "version", default=None, help="Target version for rollback.")
def migrate(db_path: Path | None, action: str, version: str | None) -> None:
    """Apply (`latest`), inspect (`status`) or roll back (`rollback`) migrations."""

    _run(CONTROLLER.migrate, MigrateCommand(db_path=db_path, action=action, version=version))


@workgraph.command("create")
@db_path_option
@click.argument("title")
@click.option("--description", "-d", default=None, help="Longer description.")
@click.option(
    "--priority",
    "-p",
    type=click.Choice(PRIORITIES),
    default=Priority.MEDIUM.value,
    show_default=True,
)
@click.option("--parent", default=None, help="Parent item.")
@click.option("--epic", default=None, help="Epic label.")
@click.option("--estimate", type=click.IntRange(min=0), default=None, help="Minutes.")
@click.option(
    "--depends-on",
    "depends_on",
    multiple=True,
    help="Prerequisite item. Can be repeated.",
)
def create(  # noqa: PLR0913
    db_path: Path | None,
    title: str,
    description: str | None,
    priority: str,
    parent: str | None,
    epic: str | None,
    estimate: int | None,
    depends_on: tuple[str, ...],
) -> None:
    """Create a pending work item."""

    _run(
        CONTROLLER.create_item,
        CreateItemCommand(
            db_path=db_path,
            title=title,
            description=description,
            priority=priority,
            parent=parent,
            epic=epic,
            estimated_minutes=estimate,
            depends_on=depends_on,
        ),
    )


@workgraph.command("list")
@db_path_option
@click.option("--status", type=click.Choice(ITEM_STATUSES), default=None)
@click.option("--epic", default=None)
@click.option("--priority", type=click.Choice(PRIORITIES), default=None)
@click.option("--agent", "worker", default=None, help="Assigned worker.")
@click.option("--unassigned", is_flag=True, help="Only items without a worker.")
@click.option("--limit", type=click.IntRange(min=1), default=None)
def list_items(  # noqa: PLR0913
    db_path: Path | None,
    status: str | None,
    epic: str | None,
    priority: str | None,
    worker: str | None,
    unassigned: bool,
    limit: int | None,
) -> None:
    """List items ordered by display id."""

    _run(
        CONTROLLER.list_items,
        ListItemsCommand(
            db_path=db_path,
            status=status,
            epic=epic,
            priority=priority,
            worker=worker,
            unassigned=unassigned,
            limit=limit,
        ),
    )


@workgraph.command("show")
@db_path_option
@click.argument("item")
def show(db_path: Path | None, item: str) -> None:
    """Show one item with dependencies, checklist and history."""

    _run(CONTROLLER.show_item, ItemCommand(db_path=db_path, item=item))


@workgraph.command("update")
@db_path_option
@click.argument("item")
@click.argument("status", type=click.Choice(ITEM_STATUSES))
@click.option("--agent", "worker", default=None, help="Worker performing the change.")
def update(db_path: Path | None, item: str, status: str, worker: str | None) -> None:
    """Change an item's status."""

    _run(
        CONTROLLER.update_status,
        UpdateStatusCommand(db_path=db_path, item=item, status=status, worker=worker),
    )


@workgraph.command("edit")
@db_path_option
@click.argument("item")
@click.option("--title", default=None)
@click.option("--description", "-d", default=None)
@click.option("--priority", type=click.Choice(PRIORITIES), default=None)
@click.option("--epic", default=None)
def edit(  # noqa: PLR0913
    db_path: Path | None,
    item: str,
    title: str | None,
    description: str | None,
    priority: str | None,
    epic: str | None,
) -> None:
    """Edit an item's descriptive fields."""

    _run(
        CONTROLLER.edit_item,
        EditItemCommand(
            db_path=db_path,
            item=item,
            title=title,
            description=description,
            priority=priority,
            epic=epic,
        ),
    )


@workgraph.group()
def depends() -> None:
    """Dependency edges between items."""


@depends.command("add")
@db_path_option
@click.argument("item")
@click.argument("depends_on")
@click.option(
    "--blocks",
    "reverse",
    is_flag=True,
    help="Read as ITEM blocks DEPENDS_ON instead.",
)
def depends_add(db_path: Path | None, item: str, depends_on: str, reverse: bool) -> None:
    """Record that ITEM depends on DEPENDS_ON."""

    _run(
        CONTROLLER.change_dependency,
        DependencyCommand(db_path=db_path, item=item, other=depends_on, reverse=reverse),
    )


@depends.command("remove")
@db_path_option
@click.argument("item")
@click.argument("depends_on")
def depends_remove(db_path: Path | None, item: str, depends_on: str) -> None:
    """Drop the edge ITEM -> DEPENDS_ON."""

    _run(
        CONTROLLER.change_dependency,
        DependencyCommand(db_path=db_path, item=item, other=depends_on, remove=True),
    )


@depends.command("list")
@db_path_option
@click.argument("item")
def depends_list(db_path: Path | None, item: str) -> None:
    """Show what ITEM depends on and what it blocks."""

    _run(CONTROLLER.list_dependencies, ItemCommand(db_path=db_path, item=item))


@workgraph.command("ready")
@db_path_option
@click.option("--limit", type=click.IntRange(min=1), default=None)
def ready(db_path: Path | None, limit: int | None) -> None:
    """List items whose prerequisites are all completed."""

    _run(CONTROLLER.ready, ReportCommand(db_path=db_path, limit=limit))


@workgraph.command("next")
@db_path_option
@click.option("--priority", type=click.Choice(PRIORITIES), default=None)
@click.option("--epic", default=None)
@click.option(
    "--agent",
    "worker",
    default=None,
    help="Worker to reserve the item for (started with --sync).",
)
@click.option("--sync", is_flag=True, help="Claim and start the item for --agent.")
def next_item(  # noqa: PLR0913
    db_path: Path | None,
    priority: str | None,
    epic: str | None,
    worker: str | None,
    sync: bool,
) -> None:
    """Pick the most urgent ready item."""

    _run(
        CONTROLLER.next_item,
        NextItemCommand(
            db_path=db_path,
            priority=priority,
            epic=epic,
            worker=worker,
            sync=sync,
        ),
    )


@workgraph.group()
def ac() -> None:
    """Acceptance criteria checklists."""


@ac.command("add")
@db_path_option
@click.argument("item")
@click.argument("text")
def ac_add(db_path: Path | None, item: str, text: str) -> None:
    """Append a criterion to ITEM."""

    _run(CONTROLLER.add_criterion, CriterionAddCommand(db_path=db_path, item=item, text=text))


@ac.command("list")
@db_path_option
@click.argument("item")
def ac_list(db_path: Path | None, item: str) -> None:
    """Show ITEM's checklist and progress."""

    _run(CONTROLLER.list_criteria, ItemCommand(db_path=db_path, item=item))


@ac.command("check")
@db_path_option
@click.argument("item")
@click.argument("position", type=click.IntRange(min=1))
def ac_check(db_path: Path | None, item: str, position: int) -> None:
    """Mark criterion POSITION as done."""

    _run(
        CONTROLLER.check_criterion,
        CriterionCheckCommand(db_path=db_path, item=item, position=position),
    )


@ac.command("uncheck")
@db_path_option
@click.argument("item")
@click.argument("position", type=click.IntRange(min=1))
def ac_uncheck(db_path: Path | None, item: str, position: int) -> None:
    """Mark criterion POSITION as not done."""

    _run(
        CONTROLLER.check_criterion,
        CriterionCheckCommand(db_path=db_path, item=item, position=position, completed=False),
    )


@workgraph.command("assign")
@db_path_option
@click.argument("item")
@click.argument("worker")
@click.option("--reassign", is_flag=True, help="Take the item from its current worker.")
def assign(db_path: Path | None, item: str, worker: str, reassign: bool) -> None:
    """Reserve ITEM for WORKER without starting it."""

    _run(
        CONTROLLER.assign,
        AssignCommand(db_path=db_path, item=item, worker=worker, reassign=reassign),
    )


@workgraph.command("sync")
@db_path_option
@click.argument("worker")
@click.argument("item")
@click.option("--reassign", is_flag=True, help="Take the item from its current worker.")
def sync(db_path: Path | None, worker: str, item: str, reassign: bool) -> None:
    """Claim and start: WORKER begins ITEM."""

    _run(
        CONTROLLER.sync,
        AssignCommand(db_path=db_path, item=item, worker=worker, reassign=reassign),
    )


@workgraph.command("complete")
@db_path_option
@click.argument("item")
@click.option("--agent", "worker", default=None, help="Worker completing the item.")
def complete(db_path: Path | None, item: str, worker: str | None) -> None:
    """Complete ITEM and release its worker."""

    _run(CONTROLLER.complete, CompleteCommand(db_path=db_path, item=item, worker=worker))


@workgraph.command("cancel")
@db_path_option
@click.argument("item")
@click.option("--reason", default=None)
def cancel(db_path: Path | None, item: str, reason: str | None) -> None:
    """Cancel ITEM and release its worker."""

    _run(CONTROLLER.cancel, CancelCommand(db_path=db_path, item=item, reason=reason))


@workgraph.command("batch-update")
@db_path_option
@click.argument("items")
@click.argument("status", type=click.Choice(ITEM_STATUSES))
@click.option("--agent", "worker", default=None)
def batch_update(db_path: Path | None, items: str, status: str, worker: str | None) -> None:
    """Set STATUS on comma-separated ITEMS, all-or-nothing."""

    _run(
        CONTROLLER.batch_update,
        BatchUpdateCommand(db_path=db_path, items=items, status=status, worker=worker),
    )


@workgraph.command("batch-assign")
@db_path_option
@click.argument("items")
@click.argument("worker")
@click.option("--reassign", is_flag=True)
def batch_assign(db_path: Path | None, items: str, worker: str, reassign: bool) -> None:
    """Reserve comma-separated ITEMS for WORKER, all-or-nothing."""

    _run(
        CONTROLLER.batch_assign,
        BatchAssignCommand(db_path=db_path, items=items, worker=worker, reassign=reassign),
    )


@workgraph.command("complete-batch")
@db_path_option
@click.option("--tasks", default=None, help="Comma-separated items, e.g. `33,34,35`.")
@click.option("--agent-map", default=None, help="Item to worker pairs, e.g. `33:A11,34:A12`.")
@click.option(
    "--from-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="JSON list or CSV with `task` and `agent` fields.",
)
def complete_batch(
    db_path: Path | None,
    tasks: str | None,
    agent_map: str | None,
    from_file: Path | None,
) -> None:
    """Complete several items at once, all-or-nothing."""

    _run(
        CONTROLLER.complete_batch,
        CompleteBatchCommand(
            db_path=db_path,
            tasks=tasks,
            agent_map=agent_map,
            from_file=from_file,
        ),
    )


@workgraph.group()
def agent() -> None:
    """Worker registry."""


@agent.command("create")
@db_path_option
@click.argument("name")
def agent_create(db_path: Path | None, name: str) -> None:
    """Register a worker."""

    _run(CONTROLLER.create_worker, WorkerCreateCommand(db_path=db_path, name=name))


@agent.command("list")
@db_path_option
@click.option("--status", type=click.Choice(WORKER_STATUSES), default=None)
def agent_list(db_path: Path | None, status: str | None) -> None:
    """List workers."""

    _run(CONTROLLER.list_workers, WorkerListCommand(db_path=db_path, status=status))


@agent.command("status")
@db_path_option
@click.argument("worker")
@click.argument("status", type=click.Choice(WORKER_STATUSES))
@click.option("--item", default=None, help="Item to start when STATUS is `working`.")
def agent_status(db_path: Path | None, worker: str, status: str, item: str | None) -> None:
    """Change a worker's status."""

    _run(
        CONTROLLER.set_worker_status,
        WorkerStatusCommand(db_path=db_path, worker=worker, status=status, item=item),
    )


@workgraph.command("duration")
@db_path_option
@click.argument("item")
@click.option("--estimated", type=click.IntRange(min=0), default=None, help="Minutes.")
@click.option("--actual", type=click.IntRange(min=0), default=None, help="Minutes.")
def duration(
    db_path: Path | None,
    item: str,
    estimated: int | None,
    actual: int | None,
) -> None:
    """Record estimated and/or actual effort."""

    _run(
        CONTROLLER.set_duration,
        DurationCommand(
            db_path=db_path,
            item=item,
            estimated_minutes=estimated,
            actual_minutes=actual,
        ),
    )


@workgraph.command("epics")
@db_path_option
def epics(db_path: Path | None) -> None:
    """Progress per epic label."""

    _run(CONTROLLER.epics, ReportCommand(db_path=db_path))


@workgraph.command("stats")
@db_path_option
def stats(db_path: Path | None) -> None:
    """Counts by status plus readiness."""

    _run(CONTROLLER.stats, ReportCommand(db_path=db_path))


@workgraph.command("dashboard")
@db_path_option
@click.option(
    "--recent",
    type=click.IntRange(min=1, max=100),
    default=None,
    help="Recent activity entries (default: WORKGRAPH_DASHBOARD_RECENT_ACTIVITY).",
)
def dashboard(db_path: Path | None, recent: int | None) -> None:
    """Print one dashboard snapshot."""

    _run(CONTROLLER.dashboard, ReportCommand(db_path=db_path, limit=recent))


def _run(handler: Callable[[Any], list[str]], command: object) -> None:
    try:
        lines = handler(command)
    except (WorkgraphError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    workgraph()
