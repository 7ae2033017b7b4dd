"""Acceptance criteria: an ordered per-item "definition of done" checklist.

Criteria never gate status transitions; they are informational progress only.
"""

from __future__ import annotations

from sqlalchemy import func
from sqlmodel import Session, col, select

from workgraph.errors import ConstraintViolationError, NotFoundError
from workgraph.models import AcceptanceCriterionView, CriteriaProgress
from workgraph.storage.common import optional_utc, to_db_datetime, to_utc_aware_datetime, utc_now
from workgraph.storage.sqlmodel_models import AcceptanceCriterion
from workgraph.store import EntityStore


class AcceptanceCriteriaTracker:
    def __init__(self, store: EntityStore) -> None:
        self.store = store

    def add(self, item_id: str, text: str) -> AcceptanceCriterionView:
        """Append a criterion at the next ordinal position (1-based)."""

        normalized = text.strip()
        if not normalized:
            raise ConstraintViolationError(detail="acceptance criterion text must not be empty")
        with self.store.write() as session:
            item = self.store.item_row(session, item_id)
            last = session.exec(
                select(func.max(AcceptanceCriterion.position)).where(
                    AcceptanceCriterion.item_id == item.id,
                ),
            ).one()
            row = AcceptanceCriterion(
                item_id=item.id,
                position=int(last or 0) + 1,
                text=normalized,
                completed=False,
                completed_at=None,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            self.store.append_audit(
                session,
                action="criterion_added",
                item_id=item.id,
                details={"position": row.position, "text": row.text},
            )
            session.flush()
            return _to_view(row)

    def list_criteria(self, item_id: str) -> list[AcceptanceCriterionView]:
        with self.store.read() as session:
            self.store.item_row(session, item_id)
            rows = session.exec(
                select(AcceptanceCriterion)
                .where(AcceptanceCriterion.item_id == item_id)
                .order_by(col(AcceptanceCriterion.position).asc()),
            ).all()
            return [_to_view(row) for row in rows]

    def check(self, item_id: str, position: int) -> AcceptanceCriterionView:
        return self._set_completed(item_id, position, completed=True)

    def uncheck(self, item_id: str, position: int) -> AcceptanceCriterionView:
        return self._set_completed(item_id, position, completed=False)

    def progress(self, item_id: str) -> CriteriaProgress:
        """(done, total) for the item's checklist."""

        criteria = self.list_criteria(item_id)
        return CriteriaProgress(
            done=sum(1 for criterion in criteria if criterion.completed),
            total=len(criteria),
        )

    def _set_completed(
        self,
        item_id: str,
        position: int,
        *,
        completed: bool,
    ) -> AcceptanceCriterionView:
        with self.store.write() as session:
            item = self.store.item_row(session, item_id)
            row = self._criterion_row(session, item.id, position)
            if row is None:
                raise NotFoundError(
                    kind="acceptance criterion",
                    token=f"#{item.display_id}/{position}",
                )
            if row.completed != completed:
                row.completed = completed
                row.completed_at = to_db_datetime(utc_now()) if completed else None
                session.add(row)
                self.store.append_audit(
                    session,
                    action="criterion_checked" if completed else "criterion_unchecked",
                    item_id=item.id,
                    details={"position": position},
                )
                session.flush()
            return _to_view(row)

    def _criterion_row(
        self,
        session: Session,
        item_id: str,
        position: int,
    ) -> AcceptanceCriterion | None:
        return session.exec(
            select(AcceptanceCriterion).where(
                AcceptanceCriterion.item_id == item_id,
                AcceptanceCriterion.position == position,
            ),
        ).one_or_none()


def _to_view(row: AcceptanceCriterion) -> AcceptanceCriterionView:
    return AcceptanceCriterionView(
        item_id=row.item_id,
        position=row.position,
        text=row.text,
        completed=row.completed,
        completed_at=optional_utc(row.completed_at),
        created_at=to_utc_aware_datetime(row.created_at),
    )
