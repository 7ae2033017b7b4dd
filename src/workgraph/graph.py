"""Dependency graph engine over work items.

Edges point from an item to the item it depends on. The relation is kept
acyclic by checking, before every insert, whether the new dependency can
already reach the dependent item. The readiness frontier is recomputed from
one committed snapshot on each call instead of being cached, so concurrent
writers never leave it stale.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Sequence

from sqlmodel import Session, col, select

from workgraph.errors import ConstraintViolationError, CycleDetectedError, NotFoundError
from workgraph.models import (
    READY_CANDIDATE_STATUSES,
    ItemDependencies,
    Priority,
    WorkItemCreate,
    WorkItemStatus,
    WorkItemView,
)
from workgraph.storage.common import to_db_datetime, utc_now
from workgraph.storage.sqlmodel_models import Dependency, WorkItem
from workgraph.store import EntityStore, to_item_view

logger = logging.getLogger(__name__)


class DependencyGraph:
    """Validated mutations and read-only queries of the depends-on relation."""

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    def add_dependency(self, item_id: str, depends_on_id: str) -> None:
        """Record that ``item_id`` depends on ``depends_on_id``.

        Raises ``CycleDetectedError`` without writing anything when
        ``item_id`` is already reachable from ``depends_on_id``.
        """

        with self.store.write() as session:
            self.insert_edge(session, item_id, depends_on_id)

    def create_item(
        self,
        payload: WorkItemCreate,
        depends_on: Sequence[str] = (),
    ) -> WorkItemView:
        """Create an item together with its prerequisites in one transaction."""

        with self.store.write() as session:
            row = self.store.insert_item(session, payload)
            for depends_on_id in depends_on:
                self.insert_edge(session, row.id, depends_on_id)
            view = to_item_view(row)
        logger.info("Created item %s with %d prerequisite(s)", view.display, len(depends_on))
        return view

    def insert_edge(self, session: Session, item_id: str, depends_on_id: str) -> None:
        """Add one edge inside the caller's transaction after the cycle check."""

        item = self.store.item_row(session, item_id)
        dependency = self.store.item_row(session, depends_on_id)
        if item.id == dependency.id:
            raise ConstraintViolationError(
                detail=f"item #{item.display_id} cannot depend on itself",
            )
        if self._edge(session, item.id, dependency.id) is not None:
            raise ConstraintViolationError(
                detail=(
                    f"dependency #{item.display_id} -> #{dependency.display_id} "
                    "already exists"
                ),
            )

        path = find_dependency_path(self._edges(session), start=dependency.id, goal=item.id)
        if path is not None:
            labels = _display_labels(session, path)
            raise CycleDetectedError(
                message=(
                    f"Dependency #{item.display_id} -> #{dependency.display_id} would "
                    f"create a cycle (existing path: {' -> '.join(labels)})"
                ),
                item_id=item.id,
                depends_on_id=dependency.id,
                path=tuple(path),
            )

        session.add(
            Dependency(
                item_id=item.id,
                depends_on_id=dependency.id,
                created_at=to_db_datetime(utc_now()),
            ),
        )
        self.store.append_audit(
            session,
            action="dependency_added",
            item_id=item.id,
            details={"depends_on_id": dependency.id},
        )
        session.flush()
        logger.info("Item #%d now depends on #%d", item.display_id, dependency.display_id)

    def remove_dependency(self, item_id: str, depends_on_id: str) -> None:
        with self.store.write() as session:
            item = self.store.item_row(session, item_id)
            dependency = self.store.item_row(session, depends_on_id)
            edge = self._edge(session, item.id, dependency.id)
            if edge is None:
                raise NotFoundError(
                    kind="dependency",
                    token=f"#{item.display_id} -> #{dependency.display_id}",
                )
            session.delete(edge)
            self.store.append_audit(
                session,
                action="dependency_removed",
                item_id=item.id,
                details={"depends_on_id": dependency.id},
            )

    def list_dependencies(self, item_id: str) -> ItemDependencies:
        """Direct prerequisites of an item and the items it blocks."""

        with self.store.read() as session:
            self.store.item_row(session, item_id)
            depends_on = session.exec(
                select(Dependency.depends_on_id).where(Dependency.item_id == item_id),
            ).all()
            blocks = session.exec(
                select(Dependency.item_id).where(Dependency.depends_on_id == item_id),
            ).all()
        return ItemDependencies(
            item_id=item_id,
            depends_on=frozenset(depends_on),
            blocks=frozenset(blocks),
        )

    def ready(self) -> list[WorkItemView]:
        """Pending (or blocked) items whose prerequisites are all completed."""

        candidate_statuses = [status.value for status in READY_CANDIDATE_STATUSES]
        with self.store.read() as session:
            candidates = session.exec(
                select(WorkItem)
                .where(col(WorkItem.status).in_(candidate_statuses))
                .order_by(col(WorkItem.display_id).asc()),
            ).all()
            waiting = set(
                session.exec(
                    select(Dependency.item_id)
                    .join(WorkItem, col(WorkItem.id) == col(Dependency.depends_on_id))
                    .where(WorkItem.status != WorkItemStatus.COMPLETED.value),
                ).all(),
            )
            return [to_item_view(row) for row in candidates if row.id not in waiting]

    def next_ready(
        self,
        *,
        priority: Priority | None = None,
        epic_name: str | None = None,
    ) -> WorkItemView | None:
        """Most urgent ready item (highest priority, then lowest display id)."""

        items = [
            item
            for item in self.ready()
            if (priority is None or item.priority == priority)
            and (epic_name is None or item.epic_name == epic_name)
        ]
        if not items:
            return None
        return min(items, key=lambda item: (-item.priority.rank, item.display_id))

    def can_complete(self, item_id: str) -> bool:
        """False while any prerequisite of the item is not completed."""

        with self.store.read() as session:
            self.store.item_row(session, item_id)
            return not self.unmet_dependencies(session, item_id)

    def unmet_dependencies(self, session: Session, item_id: str) -> list[WorkItem]:
        return list(
            session.exec(
                select(WorkItem)
                .join(Dependency, col(Dependency.depends_on_id) == col(WorkItem.id))
                .where(
                    Dependency.item_id == item_id,
                    WorkItem.status != WorkItemStatus.COMPLETED.value,
                )
                .order_by(col(WorkItem.display_id).asc()),
            ).all(),
        )

    def _edge(self, session: Session, item_id: str, depends_on_id: str) -> Dependency | None:
        return session.exec(
            select(Dependency).where(
                Dependency.item_id == item_id,
                Dependency.depends_on_id == depends_on_id,
            ),
        ).one_or_none()

    def _edges(self, session: Session) -> list[tuple[str, str]]:
        rows = session.exec(select(Dependency.item_id, Dependency.depends_on_id)).all()
        return [(str(item_id), str(depends_on_id)) for item_id, depends_on_id in rows]


def find_dependency_path(
    edges: Iterable[tuple[str, str]],
    *,
    start: str,
    goal: str,
) -> list[str] | None:
    """Breadth-first search along depends-on edges.

    Nodes are interned into a flat index so the traversal works on integer
    slots with an explicit visited list; depth never touches the call stack.
    Returns the node path ``start .. goal`` or ``None`` when unreachable.
    """

    index: dict[str, int] = {}
    nodes: list[str] = []
    adjacency: list[list[int]] = []

    def _slot(node: str) -> int:
        position = index.get(node)
        if position is None:
            position = len(nodes)
            index[node] = position
            nodes.append(node)
            adjacency.append([])
        return position

    for source, target in edges:
        source_slot = _slot(source)
        adjacency[source_slot].append(_slot(target))

    if start == goal:
        return [start]
    if start not in index or goal not in index:
        return None

    origin = index[start]
    target_slot = index[goal]
    parent = [-1] * len(nodes)
    visited = [False] * len(nodes)
    visited[origin] = True
    queue = deque([origin])
    while queue:
        current = queue.popleft()
        if current == target_slot:
            path = [current]
            while path[-1] != origin:
                path.append(parent[path[-1]])
            return [nodes[slot] for slot in reversed(path)]
        for following in adjacency[current]:
            if not visited[following]:
                visited[following] = True
                parent[following] = current
                queue.append(following)
    return None


def _display_labels(session: Session, item_ids: list[str]) -> list[str]:
    rows = session.exec(select(WorkItem).where(col(WorkItem.id).in_(item_ids))).all()
    by_id = {row.id: row.display_id for row in rows}
    return [f"#{by_id[item_id]}" if item_id in by_id else item_id for item_id in item_ids]
