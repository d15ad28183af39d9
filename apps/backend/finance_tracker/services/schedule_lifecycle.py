"""Decisions over a single recurring schedule.

Every function takes the schedule explicitly; nothing here touches the
database. ``apply_rule_change`` and ``terminate`` set attributes on the object
they are given and return it, so callers decide when to persist.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Protocol

from finance_tracker.models import LOCAL_ZONE
from finance_tracker.services.recurrence import RecurrenceRule, compute_next_due_date, validate_rule


class ScheduleLike(Protocol):
    start_date: date
    end_date: date | None
    next_due_date: date
    is_active: bool
    total_occurrences: int
    max_occurrences: int | None
    version: int
    recurrence_rule: RecurrenceRule


def calendar_day(now: date | datetime) -> date:
    """Local calendar day for ``now``.

    Aware datetimes are converted to the configured timezone first; naive ones
    are taken to already be local.
    """
    if isinstance(now, datetime):
        if now.tzinfo is not None:
            now = now.astimezone(LOCAL_ZONE)
        return now.date()
    return now


def occurrence_cap_reached(schedule: ScheduleLike, total_occurrences: int | None = None) -> bool:
    total = schedule.total_occurrences if total_occurrences is None else total_occurrences
    return schedule.max_occurrences is not None and total >= schedule.max_occurrences


def past_end_date(schedule: ScheduleLike, due_date: date) -> bool:
    return schedule.end_date is not None and due_date > schedule.end_date


def should_process(schedule: ScheduleLike, now: date | datetime) -> bool:
    """True when the schedule's next occurrence may be materialized at ``now``."""
    today = calendar_day(now)
    if not schedule.is_active:
        return False
    if today < schedule.next_due_date:
        return False
    if occurrence_cap_reached(schedule):
        return False
    if schedule.end_date is not None and today > schedule.end_date:
        return False
    return True


def should_terminate(schedule: ScheduleLike, *, next_due_date: date, total_occurrences: int) -> bool:
    """Post-materialization check: cap reached or the next date is out of range."""
    return occurrence_cap_reached(schedule, total_occurrences) or past_end_date(schedule, next_due_date)


def is_exhausted(schedule: ScheduleLike) -> bool:
    """A schedule that can never produce another occurrence."""
    return occurrence_cap_reached(schedule) or past_end_date(schedule, schedule.next_due_date)


def next_occurrence_after(rule: RecurrenceRule, due_date: date) -> date:
    """Due date that follows an occurrence materialized on ``due_date``.

    Normally ``compute_next_due_date(rule, due_date)``. A weekly rule whose due
    date already sits on ``day_of_week`` evaluates to a zero offset; with
    ``interval=1`` that is ``due_date`` itself, so the evaluation is repeated
    from the following day to keep due dates strictly increasing.
    """
    candidate = compute_next_due_date(rule, due_date)
    if candidate <= due_date:
        candidate = compute_next_due_date(rule, due_date + timedelta(days=1))
    return candidate


def apply_rule_change(
    schedule: ScheduleLike,
    new_rule: RecurrenceRule,
    new_start_date: date | None = None,
) -> ScheduleLike:
    """Install ``new_rule`` (and optionally a new anchor) and recompute the due date.

    The next due date is evaluated from the anchor (``new_start_date`` or the
    existing ``start_date``). ``version`` is bumped so any claim taken against
    the old due date can no longer succeed.
    """
    validate_rule(new_rule)
    anchor = new_start_date if new_start_date is not None else schedule.start_date
    next_due = compute_next_due_date(new_rule, anchor)
    schedule.recurrence_rule = new_rule
    schedule.start_date = anchor
    schedule.next_due_date = next_due
    schedule.version = (schedule.version or 0) + 1
    return schedule


def terminate(schedule: ScheduleLike) -> ScheduleLike:
    schedule.is_active = False
    return schedule


def upcoming_due_dates(schedule: ScheduleLike, count: int) -> list[date]:
    """Preview the next ``count`` due dates, starting with ``next_due_date``.

    Stops early at ``end_date``, at ``date.max``, or when the remaining
    occurrence budget is spent. Inactive schedules have no upcoming dates.
    """
    if not schedule.is_active or count <= 0:
        return []
    remaining = count
    if schedule.max_occurrences is not None:
        remaining = min(remaining, max(schedule.max_occurrences - schedule.total_occurrences, 0))

    rule = schedule.recurrence_rule
    dates: list[date] = []
    current = schedule.next_due_date
    while len(dates) < remaining and not past_end_date(schedule, current):
        dates.append(current)
        try:
            current = next_occurrence_after(rule, current)
        except OverflowError:
            # Ran off the end of the calendar
            break
    return dates
