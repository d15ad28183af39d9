"""Domain errors raised by the recurring-schedule services.

Routers translate these into HTTP responses; the services never import FastAPI.
"""

from __future__ import annotations


class FinanceTrackerError(Exception):
    """Base class for errors raised by finance_tracker services."""


class InvalidRecurrenceRule(FinanceTrackerError, ValueError):
    """A recurrence rule cannot be evaluated (bad interval, field out of range)."""


class ScheduleValidationError(FinanceTrackerError, ValueError):
    """A schedule create/update request violates a cross-field constraint."""


class ScheduleNotFound(FinanceTrackerError, LookupError):
    """No schedule with the given id is owned by the requesting account."""

    def __init__(self, schedule_id: int) -> None:
        super().__init__(f"RecurringSchedule {schedule_id} not found")
        self.schedule_id = schedule_id
