from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from finance_tracker import models
from finance_tracker.exceptions import ScheduleNotFound, ScheduleValidationError
from finance_tracker.schemas import RecurringScheduleCreate, RecurringScheduleUpdate
from finance_tracker.services import schedule_lifecycle as lifecycle
from finance_tracker.services.recurrence import RecurrenceRule, validate_rule

logger = logging.getLogger(__name__)

_NON_NULLABLE = ("title", "amount", "type", "category", "payment_method", "is_active")
_CALENDAR_OVERFLOW = "recurrence runs past the last supported date"


class RecurringScheduleService:
    """Owner-scoped create/read/update/delete for recurring schedules."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def create(self, payload: RecurringScheduleCreate, *, user_id: str) -> models.RecurringSchedule:
        rule = validate_rule(payload.recurrence_rule.to_rule())
        _check_window(payload.start_date, payload.end_date)
        _check_calendar_room(rule, payload.start_date)

        data = payload.model_dump(exclude={"recurrence_rule"})
        row = models.RecurringSchedule(
            **data,
            user_id=user_id,
            next_due_date=payload.start_date,  # first occurrence is the anchor itself
            total_occurrences=0,
            version=0,
        )
        row.recurrence_rule = rule
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        logger.info("recurring schedule %s created for user %s (next due %s)", row.id, user_id, row.next_due_date)
        return row

    def get(self, user_id: str, schedule_id: int) -> models.RecurringSchedule:
        row = (
            self.db.query(models.RecurringSchedule)
            .filter(models.RecurringSchedule.id == schedule_id, models.RecurringSchedule.user_id == user_id)
            .first()
        )
        if row is None:
            raise ScheduleNotFound(schedule_id)
        return row

    def get_all(
        self,
        user_id: str,
        *,
        status: str = "all",
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[models.RecurringSchedule], int]:
        q = self.db.query(models.RecurringSchedule).filter(models.RecurringSchedule.user_id == user_id)
        if status == "active":
            q = q.filter(models.RecurringSchedule.is_active.is_(True))
        elif status == "inactive":
            q = q.filter(models.RecurringSchedule.is_active.is_(False))
        total = q.count()
        rows = (
            q.order_by(models.RecurringSchedule.created_at.desc(), models.RecurringSchedule.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return rows, total

    def update(self, user_id: str, schedule_id: int, payload: RecurringScheduleUpdate) -> models.RecurringSchedule:
        row = self.get(user_id, schedule_id)
        changes = payload.model_dump(exclude_unset=True)
        if not changes:
            return row

        for key in _NON_NULLABLE:
            if key in changes and changes[key] is None:
                raise ScheduleValidationError(f"{key} must not be null")

        rule_in = changes.pop("recurrence_rule", None)
        new_start: Optional[date] = changes.pop("start_date", None)
        effective_start = new_start or row.start_date
        effective_end = changes["end_date"] if "end_date" in changes else row.end_date
        _check_window(effective_start, effective_end)

        if "max_occurrences" in changes and changes["max_occurrences"] is not None:
            if changes["max_occurrences"] < row.total_occurrences:
                raise ScheduleValidationError(
                    f"max_occurrences must be at least the {row.total_occurrences} occurrences already produced"
                )

        rule_changed = payload.recurrence_rule is not None or new_start is not None
        if rule_changed:
            new_rule = payload.recurrence_rule.to_rule() if payload.recurrence_rule is not None else row.recurrence_rule
            try:
                # validates the rule and bumps version; raises before mutating
                lifecycle.apply_rule_change(row, new_rule, new_start)
            except OverflowError:
                raise ScheduleValidationError(_CALENDAR_OVERFLOW) from None
            try:
                _check_calendar_room(row.recurrence_rule, row.next_due_date)
            except ScheduleValidationError:
                self.db.rollback()
                raise
        else:
            row.version = (row.version or 0) + 1

        for key, value in changes.items():
            setattr(row, key, value)

        if changes.get("is_active") and lifecycle.is_exhausted(row):
            self.db.rollback()
            raise ScheduleValidationError("schedule has no remaining occurrences and cannot be reactivated")

        self.db.commit()
        self.db.refresh(row)
        logger.info(
            "recurring schedule %s updated (fields=%s, next due %s)",
            row.id,
            sorted(changes) + (["recurrence_rule"] if rule_in is not None else []),
            row.next_due_date,
        )
        return row

    def delete(self, user_id: str, schedule_id: int) -> None:
        row = self.get(user_id, schedule_id)
        # Realized transactions stay; their back-reference is cleared
        self.db.delete(row)
        self.db.commit()
        logger.info("recurring schedule %s deleted", schedule_id)

    def upcoming(self, user_id: str, schedule_id: int, count: int) -> list[date]:
        return lifecycle.upcoming_due_dates(self.get(user_id, schedule_id), count)

    def transactions(self, user_id: str, schedule_id: int) -> list[models.Transaction]:
        row = self.get(user_id, schedule_id)
        return (
            self.db.query(models.Transaction)
            .filter(
                models.Transaction.user_id == user_id,
                models.Transaction.recurring_schedule_id == row.id,
            )
            .order_by(models.Transaction.occurred_at, models.Transaction.id)
            .all()
        )


def _check_window(start: date, end: Optional[date]) -> None:
    if end is not None and end < start:
        raise ScheduleValidationError("end_date must not precede start_date")


def _check_calendar_room(rule: RecurrenceRule, due: date) -> None:
    """Reject a schedule whose occurrence after ``due`` falls past ``date.max``."""
    try:
        lifecycle.next_occurrence_after(rule, due)
    except OverflowError:
        raise ScheduleValidationError(_CALENDAR_OVERFLOW) from None
