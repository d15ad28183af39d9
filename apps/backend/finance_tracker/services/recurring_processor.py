"""Due-occurrence processing.

A cycle looks up active schedules whose ``next_due_date`` has arrived and
handles each one in its own unit of work:

1. claim: conditional version bump against the snapshot that was read
2. materialize: insert the realized transaction dated at the claimed due date
3. advance: next due date, occurrence counter, last-processed timestamp,
   deactivation when the cap or end date is hit

The three steps commit together or not at all. A lost claim means another
worker already handled the schedule and is skipped silently. A storage failure
rolls the unit back (claim included) so the same due date is retried, with the
same idempotency key, on the next attempt or the next cycle. A schedule whose
rule cannot be advanced (a due date at the end of the calendar) is rolled back
and reported as failed without retrying.

Only one occurrence per schedule is materialized per cycle; a schedule that
fell several periods behind stays due and catches up one cycle at a time. A
schedule whose ``last_processed_at`` is not earlier than the cycle's ``now``
is left alone, so repeating a cycle for the same instant produces nothing new.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from finance_tracker import models
from finance_tracker.core.config import settings
from finance_tracker.exceptions import InvalidRecurrenceRule
from finance_tracker.services import schedule_lifecycle as lifecycle
from finance_tracker.services.schedule_store import ScheduleStore, idempotency_key_for

logger = logging.getLogger(__name__)

AUTO_GENERATED_SUFFIX = "(Auto-generated from recurring transaction)"


class _Outcome(enum.Enum):
    MATERIALIZED = "materialized"
    ALREADY_MATERIALIZED = "already_materialized"
    TERMINATED_STALE = "terminated_stale"
    CONFLICT = "conflict"
    SKIPPED = "skipped"


@dataclass
class ProcessCycleResult:
    processed_count: int = 0
    created_transaction_ids: list[int] = field(default_factory=list)
    terminated_schedule_ids: list[int] = field(default_factory=list)
    failed_schedule_ids: list[int] = field(default_factory=list)


def build_realized_transaction(schedule: models.RecurringSchedule, due_date: date) -> models.Transaction:
    """Transaction for the occurrence of ``schedule`` due on ``due_date``."""
    description = f"{schedule.description or ''} {AUTO_GENERATED_SUFFIX}".strip()
    return models.Transaction(
        user_id=schedule.user_id,
        title=schedule.title,
        amount=schedule.amount,
        type=schedule.type,
        category=schedule.category,
        payment_method=schedule.payment_method,
        occurred_at=due_date,
        description=description,
        notes="",
        source=models.TransactionSource.RECURRING,
        recurring_schedule_id=schedule.id,
        idempotency_key=idempotency_key_for(schedule.id, due_date),
    )


def _as_local_naive(now: date | datetime) -> datetime:
    if isinstance(now, datetime):
        if now.tzinfo is not None:
            return now.astimezone(models.LOCAL_ZONE).replace(tzinfo=None)
        return now
    return datetime.combine(now, datetime.min.time())


class RecurringProcessor:
    """Run processing cycles against an injected :class:`ScheduleStore`."""

    def __init__(
        self,
        store: ScheduleStore,
        *,
        batch_size: Optional[int] = None,
        insert_retries: Optional[int] = None,
    ) -> None:
        self.store = store
        self.batch_size = batch_size if batch_size is not None else settings.RECURRING_BATCH_SIZE
        retries = insert_retries if insert_retries is not None else settings.RECURRING_INSERT_RETRIES
        self.insert_retries = max(int(retries), 0)

    def run_cycle(self, now: date | datetime | None = None, *, user_id: Optional[str] = None) -> ProcessCycleResult:
        """Process every due schedule (optionally only ``user_id``'s) once."""
        if now is None:
            now = models.now_local_naive()
        today = lifecycle.calendar_day(now)
        due = self.store.find_due(today, limit=self.batch_size, user_id=user_id)
        logger.info("recurring cycle started as_of=%s due=%d user_id=%s", today, len(due), user_id)
        result = self.process_batch(due, now)
        logger.info(
            "recurring cycle finished processed=%d created=%d terminated=%d failed=%d",
            result.processed_count,
            len(result.created_transaction_ids),
            len(result.terminated_schedule_ids),
            len(result.failed_schedule_ids),
        )
        return result

    def process_batch(self, schedules: Iterable[models.RecurringSchedule], now: date | datetime) -> ProcessCycleResult:
        """Handle each schedule snapshot independently; one failure never aborts the batch."""
        result = ProcessCycleResult()
        for snapshot in schedules:
            self._process_with_retry(snapshot, now, result)
        return result

    # ---- per-schedule unit of work ------------------------------------------
    def _process_with_retry(
        self,
        snapshot: models.RecurringSchedule,
        now: date | datetime,
        result: ProcessCycleResult,
    ) -> None:
        attempts = 1 + self.insert_retries
        for attempt in range(1, attempts + 1):
            try:
                outcome, txn_id = self._process_one(snapshot, now)
            except SQLAlchemyError:
                self.store.rollback()
                if attempt < attempts:
                    logger.warning(
                        "recurring schedule %s due %s failed (attempt %d/%d); retrying",
                        snapshot.id,
                        snapshot.next_due_date,
                        attempt,
                        attempts,
                    )
                    continue
                logger.exception(
                    "recurring schedule %s due %s failed; left unchanged for the next cycle",
                    snapshot.id,
                    snapshot.next_due_date,
                )
                result.failed_schedule_ids.append(snapshot.id)
                return
            except (OverflowError, InvalidRecurrenceRule):
                # Deterministic for this snapshot, so no retry
                self.store.rollback()
                logger.exception(
                    "recurring schedule %s due %s cannot be advanced; left unchanged",
                    snapshot.id,
                    snapshot.next_due_date,
                )
                result.failed_schedule_ids.append(snapshot.id)
                return
            self._record(snapshot, outcome, txn_id, result)
            return

    def _process_one(
        self,
        snapshot: models.RecurringSchedule,
        now: date | datetime,
    ) -> tuple[_Outcome, Optional[int]]:
        due_date = snapshot.next_due_date
        processed_at = _as_local_naive(now)
        if snapshot.last_processed_at is not None and snapshot.last_processed_at >= processed_at:
            # Already handled by a cycle at this instant or later
            return _Outcome.SKIPPED, None
        if not snapshot.is_active or lifecycle.calendar_day(now) < snapshot.next_due_date:
            return _Outcome.SKIPPED, None
        processable = lifecycle.should_process(snapshot, now)

        if not self.store.claim(snapshot.id, version=snapshot.version, next_due_date=due_date):
            self.store.rollback()
            logger.debug("recurring schedule %s due %s already claimed elsewhere", snapshot.id, due_date)
            return _Outcome.CONFLICT, None
        claimed_version = snapshot.version + 1

        if not processable:
            # Due but unreachable: cap already hit or now is past the end date
            self.store.advance(snapshot.id, version=claimed_version, is_active=False)
            self.store.commit()
            return _Outcome.TERMINATED_STALE, None

        existing = self.store.find_materialized(snapshot.id, due_date)
        if existing is None:
            txn = self.store.insert_transaction(build_realized_transaction(snapshot, due_date))
            txn_id: Optional[int] = txn.id
            total = snapshot.total_occurrences + 1
            outcome = _Outcome.MATERIALIZED
        else:
            # Occurrence was already realized (e.g. an edit moved the due date back); only advance
            txn_id = None
            total = snapshot.total_occurrences
            outcome = _Outcome.ALREADY_MATERIALIZED

        next_due = lifecycle.next_occurrence_after(snapshot.recurrence_rule, due_date)
        changes = {
            "next_due_date": next_due,
            "total_occurrences": total,
            "last_processed_at": processed_at,
        }
        terminating = lifecycle.should_terminate(snapshot, next_due_date=next_due, total_occurrences=total)
        if terminating:
            changes["is_active"] = False

        if not self.store.advance(snapshot.id, version=claimed_version, **changes):
            self.store.rollback()
            return _Outcome.CONFLICT, None
        self.store.commit()

        # Keep the detached snapshot in step with what was persisted
        snapshot.version = claimed_version
        snapshot.next_due_date = next_due
        snapshot.total_occurrences = total
        snapshot.last_processed_at = changes["last_processed_at"]
        if terminating:
            lifecycle.terminate(snapshot)
        return outcome, txn_id

    def _record(
        self,
        snapshot: models.RecurringSchedule,
        outcome: _Outcome,
        txn_id: Optional[int],
        result: ProcessCycleResult,
    ) -> None:
        if outcome in (_Outcome.CONFLICT, _Outcome.SKIPPED):
            return
        if outcome is _Outcome.TERMINATED_STALE:
            logger.info("recurring schedule %s terminated (no further occurrences possible)", snapshot.id)
            result.terminated_schedule_ids.append(snapshot.id)
            return

        result.processed_count += 1
        if outcome is _Outcome.MATERIALIZED and txn_id is not None:
            result.created_transaction_ids.append(txn_id)
            logger.info("recurring schedule %s materialized transaction %s", snapshot.id, txn_id)
        else:
            logger.info("recurring schedule %s occurrence already materialized; advanced only", snapshot.id)
        if not snapshot.is_active:
            logger.info("recurring schedule %s terminated after %d occurrences", snapshot.id, snapshot.total_occurrences)
            result.terminated_schedule_ids.append(snapshot.id)
