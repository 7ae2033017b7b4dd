"""Identifier resolution: user tokens to canonical internal ids.

Accepted token forms, tried in priority order (the first form that matches
anything decides the outcome):

1. kind-prefixed display id: ``#12`` for items, ``A3`` for workers;
2. bare numeric display id: ``12``;
3. exact worker name (workers only);
4. prefix of the internal id (at least ``MIN_ID_PREFIX_LENGTH`` characters).

Only the prefix form can match several entities. In that case every match is
reported through ``AmbiguousReferenceError``; the resolver never picks one.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from sqlmodel import Session, col, select

from workgraph.errors import AmbiguousReferenceError, NotFoundError
from workgraph.models import EntityKind, EntityRef
from workgraph.storage.sqlmodel_models import Worker, WorkItem
from workgraph.store import EntityStore

MIN_ID_PREFIX_LENGTH = 4

_NUMERIC_RE = re.compile(r"^\d+$")
_ID_PREFIX_RE = re.compile(r"^[0-9a-f-]+$")


class IdentifierResolver:
    """Read-only lookup of items and workers by any supported token form."""

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    def resolve(self, kind: EntityKind, token: str) -> EntityRef:
        """Return the single entity ``token`` denotes or raise NotFound/Ambiguous."""

        matches = self.candidates(kind, token)
        if not matches:
            raise NotFoundError(kind=kind.value, token=token)
        if len(matches) > 1:
            raise AmbiguousReferenceError(kind=kind.value, token=token, candidates=tuple(matches))
        return matches[0]

    def resolve_id(self, kind: EntityKind, token: str) -> str:
        return self.resolve(kind, token).id

    def resolve_many(self, kind: EntityKind, tokens: Iterable[str]) -> list[EntityRef]:
        """Resolve every token, failing on the first unresolved one."""

        return [self.resolve(kind, token) for token in tokens]

    def candidates(self, kind: EntityKind, token: str) -> list[EntityRef]:
        """All entities matched by the highest-priority form that matches anything."""

        normalized = token.strip()
        if not normalized:
            return []
        with self.store.read() as session:
            prefixed = _strip_display_prefix(kind, normalized)
            if prefixed is not None:
                found = self._by_display_id(session, kind, int(prefixed))
                if found:
                    return found
            if _NUMERIC_RE.match(normalized):
                found = self._by_display_id(session, kind, int(normalized))
                if found:
                    return found
            if kind is EntityKind.WORKER:
                found = self._worker_by_name(session, normalized)
                if found:
                    return found
            return self._by_id_prefix(session, kind, normalized.lower())

    def _by_display_id(
        self,
        session: Session,
        kind: EntityKind,
        display_id: int,
    ) -> list[EntityRef]:
        model = _model_for(kind)
        rows = session.exec(select(model).where(model.display_id == display_id)).all()
        return [_to_ref(kind, row) for row in rows]

    def _worker_by_name(self, session: Session, name: str) -> list[EntityRef]:
        rows = session.exec(select(Worker).where(Worker.name == name)).all()
        return [_to_ref(EntityKind.WORKER, row) for row in rows]

    def _by_id_prefix(self, session: Session, kind: EntityKind, prefix: str) -> list[EntityRef]:
        if len(prefix) < MIN_ID_PREFIX_LENGTH or not _ID_PREFIX_RE.match(prefix):
            return []
        model = _model_for(kind)
        rows = session.exec(
            select(model)
            .where(col(model.id).startswith(prefix, autoescape=True))
            .order_by(col(model.display_id).asc()),
        ).all()
        return [_to_ref(kind, row) for row in rows]


def _strip_display_prefix(kind: EntityKind, token: str) -> str | None:
    marker = kind.display_prefix
    if len(token) > len(marker) and token[: len(marker)].upper() == marker.upper():
        rest = token[len(marker) :]
        if _NUMERIC_RE.match(rest):
            return rest
    return None


def _model_for(kind: EntityKind) -> type[WorkItem] | type[Worker]:
    if kind is EntityKind.ITEM:
        return WorkItem
    if kind is EntityKind.WORKER:
        return Worker
    raise AssertionError(f"Unhandled entity kind: {kind!r}")


def _to_ref(kind: EntityKind, row: WorkItem | Worker) -> EntityRef:
    if isinstance(row, WorkItem):
        label = row.title
    elif isinstance(row, Worker):
        label = row.name
    else:
        raise AssertionError(f"Unhandled row type: {type(row)!r}")
    return EntityRef(kind=kind, id=row.id, display_id=row.display_id, label=label)
