from __future__ import annotations

import allure
import pytest

from workgraph.errors import AmbiguousReferenceError, NotFoundError
from workgraph.models import EntityKind, WorkItemCreate
from workgraph.resolver import MIN_ID_PREFIX_LENGTH, IdentifierResolver
from workgraph.storage.common import to_db_datetime, utc_now
from workgraph.storage.sqlmodel_models import WorkItem
from workgraph.store import EntityStore

pytestmark = [
    allure.epic("Work Graph"),
    allure.feature("Identifier Resolution"),
]


def _insert_item_with_id(store: EntityStore, item_id: str, display_id: int) -> None:
    now = to_db_datetime(utc_now())
    with store.write() as session:
        session.add(
            WorkItem(
                id=item_id,
                display_id=display_id,
                title=f"Item {display_id}",
                status="pending",
                priority="medium",
                created_at=now,
                updated_at=now,
            ),
        )


def test_all_token_forms_resolve_to_same_item(store: EntityStore) -> None:
    store.create_item(WorkItemCreate(title="Filler"))
    item = store.create_item(WorkItemCreate(title="Target"))
    resolver = IdentifierResolver(store)

    resolved = {
        resolver.resolve_id(EntityKind.ITEM, token)
        for token in ("#2", "2", " 2 ", item.id[:8], item.id.upper()[:8], item.id)
    }

    assert resolved == {item.id}


def test_worker_resolves_by_prefixed_id_number_name_and_prefix(store: EntityStore) -> None:
    store.create_worker("alpha")
    worker = store.create_worker("beta")
    resolver = IdentifierResolver(store)

    for token in ("A2", "a2", "2", "beta", worker.id[:6]):
        ref = resolver.resolve(EntityKind.WORKER, token)
        assert ref.id == worker.id
        assert ref.display == "A2"
        assert ref.label == "beta"


def test_display_id_form_wins_over_name(store: EntityStore) -> None:
    first = store.create_worker("first")
    store.create_worker("1")
    resolver = IdentifierResolver(store)

    assert resolver.resolve_id(EntityKind.WORKER, "1") == first.id


def test_item_marker_does_not_resolve_workers(store: EntityStore) -> None:
    store.create_worker("alpha")
    resolver = IdentifierResolver(store)

    with pytest.raises(NotFoundError) as error_info:
        resolver.resolve(EntityKind.WORKER, "#1")

    assert error_info.value.kind == "worker"
    assert error_info.value.token == "#1"


def test_ambiguous_prefix_lists_every_match(store: EntityStore) -> None:
    _insert_item_with_id(store, "abcd1111-0000-0000-0000-000000000001", 1)
    _insert_item_with_id(store, "abcd2222-0000-0000-0000-000000000002", 2)
    _insert_item_with_id(store, "ffff0000-0000-0000-0000-000000000003", 3)
    resolver = IdentifierResolver(store)

    with pytest.raises(AmbiguousReferenceError) as error_info:
        resolver.resolve(EntityKind.ITEM, "abcd")

    candidates = error_info.value.candidates
    assert [ref.display for ref in candidates] == ["#1", "#2"]
    assert "#1" in str(error_info.value)
    assert "#2" in str(error_info.value)
    assert resolver.resolve_id(EntityKind.ITEM, "abcd2") == "abcd2222-0000-0000-0000-000000000002"


def test_short_or_non_hex_prefix_does_not_match(store: EntityStore) -> None:
    _insert_item_with_id(store, "abcd1111-0000-0000-0000-000000000001", 1)
    resolver = IdentifierResolver(store)

    assert resolver.candidates(EntityKind.ITEM, "abcd"[: MIN_ID_PREFIX_LENGTH - 1]) == []
    assert resolver.candidates(EntityKind.ITEM, "ab%d") == []
    assert resolver.candidates(EntityKind.ITEM, "") == []


def test_unknown_token_is_not_found(store: EntityStore) -> None:
    store.create_item(WorkItemCreate(title="Only"))
    resolver = IdentifierResolver(store)

    for token in ("#9", "9", "nobody", "deadbeef"):
        with pytest.raises(NotFoundError):
            resolver.resolve(EntityKind.ITEM, token)


def test_resolution_is_read_only(store: EntityStore) -> None:
    item = store.create_item(WorkItemCreate(title="Quiet"))
    before = store.recent_audit(limit=50)

    IdentifierResolver(store).resolve(EntityKind.ITEM, "#1")

    assert store.recent_audit(limit=50) == before
    assert store.get_item(item.id) == item


def test_resolve_many_keeps_order(store: EntityStore) -> None:
    first = store.create_item(WorkItemCreate(title="One"))
    second = store.create_item(WorkItemCreate(title="Two"))
    resolver = IdentifierResolver(store)

    refs = resolver.resolve_many(EntityKind.ITEM, ["#2", "1"])

    assert [ref.id for ref in refs] == [second.id, first.id]
