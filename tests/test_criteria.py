from __future__ import annotations

import allure
import pytest

from workgraph.errors import ConstraintViolationError, NotFoundError
from workgraph.models import CriteriaProgress, WorkItemStatus

pytestmark = [
    allure.epic("Work Graph"),
    allure.feature("Acceptance Criteria"),
]


def test_criteria_are_appended_in_order(engines) -> None:
    item = engines.item("Login form")

    first = engines.criteria.add(item.id, "Validates email")
    second = engines.criteria.add(item.id, "  Shows errors  ")

    assert (first.position, second.position) == (1, 2)
    assert [criterion.text for criterion in engines.criteria.list_criteria(item.id)] == [
        "Validates email",
        "Shows errors",
    ]
    assert engines.criteria.progress(item.id) == CriteriaProgress(done=0, total=2)


def test_check_and_uncheck_toggle_timestamp(engines) -> None:
    item = engines.item("Login form")
    engines.criteria.add(item.id, "Validates email")
    engines.criteria.add(item.id, "Shows errors")

    checked = engines.criteria.check(item.id, 2)
    assert checked.completed is True
    assert checked.completed_at is not None
    assert engines.criteria.progress(item.id) == CriteriaProgress(done=1, total=2)

    unchecked = engines.criteria.uncheck(item.id, 2)
    assert unchecked.completed is False
    assert unchecked.completed_at is None
    assert engines.criteria.progress(item.id).done == 0


def test_repeated_check_is_not_audited_twice(engines) -> None:
    item = engines.item("Login form")
    engines.criteria.add(item.id, "Validates email")

    engines.criteria.check(item.id, 1)
    engines.criteria.check(item.id, 1)

    actions = [entry.action for entry in engines.store.audit_entries(item.id)]
    assert actions == ["created", "criterion_added", "criterion_checked"]


def test_progress_is_complete_only_with_all_checked() -> None:
    assert CriteriaProgress(done=0, total=0).is_complete is False
    assert CriteriaProgress(done=1, total=2).is_complete is False
    assert CriteriaProgress(done=2, total=2).is_complete is True


def test_unknown_position_and_empty_text_are_rejected(engines) -> None:
    item = engines.item("Login form")

    with pytest.raises(NotFoundError, match="#1/3"):
        engines.criteria.check(item.id, 3)
    with pytest.raises(ConstraintViolationError, match="must not be empty"):
        engines.criteria.add(item.id, "   ")
    with pytest.raises(NotFoundError):
        engines.criteria.add("missing", "Anything")


def test_criteria_do_not_gate_completion(engines) -> None:
    item = engines.item("Login form")
    engines.criteria.add(item.id, "Never checked")

    completed = engines.coordination.complete(item.id)

    assert completed.status == WorkItemStatus.COMPLETED
    assert engines.criteria.progress(item.id).is_complete is False
