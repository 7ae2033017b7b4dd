"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import pytest

from workgraph.coordination import CoordinationManager
from workgraph.criteria import AcceptanceCriteriaTracker
from workgraph.graph import DependencyGraph
from workgraph.models import WorkItemCreate, WorkItemView
from workgraph.resolver import IdentifierResolver
from workgraph.store import EntityStore

_ENV_VARS = (
    "WORKGRAPH_DB_PATH",
    "WORKGRAPH_SQLITE_BUSY_TIMEOUT_MS",
    "WORKGRAPH_SYNC_REQUIRES_READY",
    "WORKGRAPH_DASHBOARD_RECENT_ACTIVITY",
    "WORKGRAPH_LOG_LEVEL",
)


@dataclass(slots=True)
class Engines:
    store: EntityStore
    resolver: IdentifierResolver
    graph: DependencyGraph
    criteria: AcceptanceCriteriaTracker
    coordination: CoordinationManager

    def item(self, title: str, **kwargs) -> WorkItemView:
        return self.store.create_item(WorkItemCreate(title=title, **kwargs))


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    """Keep developer WORKGRAPH_* variables out of the tests."""

    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "workgraph.db"


@pytest.fixture()
def store(db_path: Path) -> Iterator[EntityStore]:
    store = EntityStore(db_path)
    store.init_schema()
    try:
        yield store
    finally:
        store.close()


@pytest.fixture()
def engines(store: EntityStore) -> Engines:
    graph = DependencyGraph(store)
    return Engines(
        store=store,
        resolver=IdentifierResolver(store),
        graph=graph,
        criteria=AcceptanceCriteriaTracker(store),
        coordination=CoordinationManager(store, graph),
    )
