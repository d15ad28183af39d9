from __future__ import annotations

from datetime import date
from typing import Any, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from finance_tracker import models


def idempotency_key_for(schedule_id: int, due_date: date) -> str:
    return f"recurring-{schedule_id}-{due_date.isoformat()}"


class ScheduleStore(Protocol):
    """Storage operations the due-occurrence processor relies on.

    ``claim``, ``insert_transaction`` and ``advance`` for one schedule run in a
    single unit of work that is finished with ``commit`` or ``rollback``.
    """

    def find_due(self, as_of: date, *, limit: int, user_id: Optional[str] = None) -> list[models.RecurringSchedule]:
        ...

    def claim(self, schedule_id: int, *, version: int, next_due_date: date) -> bool:
        ...

    def find_materialized(self, schedule_id: int, due_date: date) -> models.Transaction | None:
        ...

    def insert_transaction(self, txn: models.Transaction) -> models.Transaction:
        ...

    def advance(self, schedule_id: int, *, version: int, **changes: Any) -> bool:
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


class SqlScheduleStore:
    """SQLAlchemy implementation of :class:`ScheduleStore`."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def find_due(self, as_of: date, *, limit: int, user_id: Optional[str] = None) -> list[models.RecurringSchedule]:
        stmt = select(models.RecurringSchedule).where(
            models.RecurringSchedule.is_active.is_(True),
            models.RecurringSchedule.next_due_date <= as_of,
        )
        if user_id is not None:
            stmt = stmt.where(models.RecurringSchedule.user_id == user_id)
        stmt = stmt.order_by(models.RecurringSchedule.next_due_date, models.RecurringSchedule.id).limit(limit)
        rows = list(self.db.execute(stmt).scalars().all())
        # Detach from the identity map so each claim starts from a fresh read
        for row in rows:
            self.db.expunge(row)
        # End the read transaction; claims open their own
        self.db.rollback()
        return rows

    def claim(self, schedule_id: int, *, version: int, next_due_date: date) -> bool:
        """Bump ``version`` only if the schedule still matches what was read.

        Returns False when another worker (or an edit) got there first.
        """
        result = self.db.execute(
            update(models.RecurringSchedule)
            .where(
                models.RecurringSchedule.id == schedule_id,
                models.RecurringSchedule.version == version,
                models.RecurringSchedule.next_due_date == next_due_date,
                models.RecurringSchedule.is_active.is_(True),
            )
            .values(version=models.RecurringSchedule.version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def find_materialized(self, schedule_id: int, due_date: date) -> models.Transaction | None:
        return (
            self.db.query(models.Transaction)
            .filter(
                models.Transaction.recurring_schedule_id == schedule_id,
                models.Transaction.idempotency_key == idempotency_key_for(schedule_id, due_date),
            )
            .first()
        )

    def insert_transaction(self, txn: models.Transaction) -> models.Transaction:
        self.db.add(txn)
        self.db.flush()
        return txn

    def advance(self, schedule_id: int, *, version: int, **changes: Any) -> bool:
        changes.setdefault("updated_at", models.now_local_naive())
        result = self.db.execute(
            update(models.RecurringSchedule)
            .where(
                models.RecurringSchedule.id == schedule_id,
                models.RecurringSchedule.version == version,
            )
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

