"""Recurrence rule evaluation.

``compute_next_due_date`` maps a rule and a reference date to the next date an
obligation falls due. It performs no I/O and never substitutes defaults for an
invalid rule.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum

from finance_tracker.exceptions import InvalidRecurrenceRule


class RecurringFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


@dataclass(frozen=True)
class RecurrenceRule:
    """How often an obligation repeats.

    ``day_of_week`` uses 0=Sunday .. 6=Saturday and only applies to weekly
    rules. ``day_of_month`` only applies to monthly rules. ``month_of_year`` is
    stored but advisory: yearly rules keep the reference date's month/day.
    """

    frequency: RecurringFrequency
    interval: int = 1
    day_of_week: int | None = None
    day_of_month: int | None = None
    month_of_year: int | None = None


def validate_rule(rule: RecurrenceRule) -> RecurrenceRule:
    """Raise ``InvalidRecurrenceRule`` unless ``rule`` can be evaluated."""
    try:
        frequency = RecurringFrequency(rule.frequency)
    except ValueError:
        raise InvalidRecurrenceRule(f"unknown frequency: {rule.frequency!r}") from None
    if isinstance(rule.interval, bool) or not isinstance(rule.interval, int) or rule.interval < 1:
        raise InvalidRecurrenceRule("interval must be an integer >= 1")
    if frequency is RecurringFrequency.WEEKLY and rule.day_of_week is not None:
        if not 0 <= rule.day_of_week <= 6:
            raise InvalidRecurrenceRule("day_of_week must be between 0 and 6")
    if frequency is RecurringFrequency.MONTHLY and rule.day_of_month is not None:
        if not 1 <= rule.day_of_month <= 31:
            raise InvalidRecurrenceRule("day_of_month must be between 1 and 31")
    if frequency is RecurringFrequency.YEARLY and rule.month_of_year is not None:
        if not 1 <= rule.month_of_year <= 12:
            raise InvalidRecurrenceRule("month_of_year must be between 1 and 12")
    return rule


def _days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _sunday_based_weekday(d: date) -> int:
    # date.weekday() is Monday=0
    return (d.weekday() + 1) % 7


def _clamped_date(year: int, month: int, day: int) -> date:
    if year > date.max.year:
        raise OverflowError("date value out of range")
    return date(year, month, min(day, _days_in_month(year, month)))


def _add_months(reference: date, months: int, day: int) -> date:
    index = reference.month - 1 + months
    return _clamped_date(reference.year + index // 12, index % 12 + 1, day)


def compute_next_due_date(rule: RecurrenceRule, reference_date: date) -> date:
    """Return the next due date for ``rule`` counted from ``reference_date``.

    - daily: ``reference + interval`` days.
    - weekly with ``day_of_week``: forward to that weekday, then
      ``interval - 1`` more weeks. A reference already on the weekday has a
      zero offset, so ``interval=1`` returns the reference date itself.
    - weekly without ``day_of_week``: ``reference + 7 * interval`` days.
    - monthly: ``interval`` months on, day = ``day_of_month`` (or the
      reference day) clamped to the length of the target month.
    - yearly: ``interval`` years on, same month/day; Feb 29 clamps to Feb 28.

    Raises ``OverflowError`` when the result would fall after ``date.max``.
    """
    validate_rule(rule)
    frequency = RecurringFrequency(rule.frequency)
    interval = rule.interval

    if frequency is RecurringFrequency.DAILY:
        return reference_date + timedelta(days=interval)

    if frequency is RecurringFrequency.WEEKLY:
        if rule.day_of_week is None:
            return reference_date + timedelta(days=interval * 7)
        days_until_target = (rule.day_of_week - _sunday_based_weekday(reference_date) + 7) % 7
        return reference_date + timedelta(days=days_until_target + (interval - 1) * 7)

    if frequency is RecurringFrequency.MONTHLY:
        day = rule.day_of_month if rule.day_of_month is not None else reference_date.day
        return _add_months(reference_date, interval, day)

    return _clamped_date(reference_date.year + interval, reference_date.month, reference_date.day)
