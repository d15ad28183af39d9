from __future__ import annotations

from datetime import date, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from finance_tracker import models
from finance_tracker.schemas import RecurringScheduleUpdate
from finance_tracker.services import schedule_lifecycle as lifecycle
from finance_tracker.services.recurrence import RecurrenceRule, RecurringFrequency
from finance_tracker.services.recurring_processor import AUTO_GENERATED_SUFFIX, RecurringProcessor
from finance_tracker.services.recurring_schedule_service import RecurringScheduleService
from finance_tracker.services.schedule_store import SqlScheduleStore, idempotency_key_for


def _processor(db, **kw) -> RecurringProcessor:
    return RecurringProcessor(SqlScheduleStore(db), **kw)


def _reload(db, schedule_id: int) -> models.RecurringSchedule:
    db.expire_all()
    return db.get(models.RecurringSchedule, schedule_id)


def _realized(db, schedule_id: int) -> list[models.Transaction]:
    return (
        db.query(models.Transaction)
        .filter(models.Transaction.recurring_schedule_id == schedule_id)
        .order_by(models.Transaction.occurred_at)
        .all()
    )


def test_materializes_due_occurrence_at_claimed_date(db_session, make_schedule):
    s = make_schedule(start_date=date(2025, 1, 1))

    result = _processor(db_session).run_cycle(datetime(2025, 1, 3, 9, 0))

    assert result.processed_count == 1
    assert len(result.created_transaction_ids) == 1
    assert result.terminated_schedule_ids == []
    assert result.failed_schedule_ids == []

    [txn] = _realized(db_session, s.id)
    assert txn.id == result.created_transaction_ids[0]
    assert txn.occurred_at == date(2025, 1, 1)
    assert txn.source == models.TransactionSource.RECURRING
    assert txn.user_id == "user-1"
    assert txn.title == "Rent"
    assert float(txn.amount) == 1200
    assert txn.type == models.TxnType.EXPENSE
    assert txn.description == f"Monthly rent {AUTO_GENERATED_SUFFIX}"
    assert txn.idempotency_key == idempotency_key_for(s.id, date(2025, 1, 1))

    row = _reload(db_session, s.id)
    assert row.next_due_date == date(2025, 2, 1)
    assert row.total_occurrences == 1
    assert row.last_processed_at == datetime(2025, 1, 3, 9, 0)
    assert row.is_active is True


def test_not_due_schedule_is_left_alone(db_session, make_schedule):
    s = make_schedule(start_date=date(2025, 2, 1))
    result = _processor(db_session).run_cycle(date(2025, 1, 31))
    assert result.processed_count == 0
    assert _realized(db_session, s.id) == []


def test_weekly_biweekly_monday_scenario(db_session, make_schedule):
    start = date(2025, 1, 6)  # Monday
    s = make_schedule(
        start_date=start,
        recurrence_rule={"frequency": "weekly", "interval": 2, "day_of_week": 1},
    )
    processor = _processor(db_session)

    processor.run_cycle(datetime(2025, 1, 6, 8, 0))
    assert _reload(db_session, s.id).next_due_date == start + timedelta(days=7)

    processor.run_cycle(datetime(2025, 1, 13, 8, 0))
    assert _reload(db_session, s.id).next_due_date == start + timedelta(days=14)
    assert [t.occurred_at for t in _realized(db_session, s.id)] == [start, start + timedelta(days=7)]


def test_should_process_false_until_next_due_date(db_session, make_schedule):
    s = make_schedule(start_date=date(2025, 1, 1))
    now = datetime(2025, 1, 1, 12, 0)
    _processor(db_session).run_cycle(now)

    row = _reload(db_session, s.id)
    assert not lifecycle.should_process(row, now)
    assert not lifecycle.should_process(row, date(2025, 1, 31))
    assert lifecycle.should_process(row, date(2025, 2, 1))


def test_same_now_twice_materializes_once(db_session, make_schedule):
    # Several days behind, so the schedule is still due after the first run
    s = make_schedule(start_date=date(2025, 1, 1), recurrence_rule={"frequency": "daily"})
    now = datetime(2025, 1, 5, 10, 0)
    processor = _processor(db_session)

    first = processor.run_cycle(now)
    second = processor.run_cycle(now)

    assert first.processed_count == 1
    assert second.processed_count == 0
    assert second.created_transaction_ids == []
    assert len(_realized(db_session, s.id)) == 1
    assert _reload(db_session, s.id).next_due_date == date(2025, 1, 2)


def test_missed_cycles_catch_up_one_occurrence_per_cycle(db_session, make_schedule):
    s = make_schedule(start_date=date(2025, 1, 1), recurrence_rule={"frequency": "daily"})
    processor = _processor(db_session)
    base = datetime(2025, 1, 5, 10, 0)

    counts = [processor.run_cycle(base + timedelta(minutes=i)).processed_count for i in range(6)]

    assert counts == [1, 1, 1, 1, 1, 0]
    assert [t.occurred_at for t in _realized(db_session, s.id)] == [date(2025, 1, d) for d in range(1, 6)]
    assert _reload(db_session, s.id).next_due_date == date(2025, 1, 6)


def test_occurrence_cap_stops_after_three(db_session, make_schedule):
    s = make_schedule(start_date=date(2025, 1, 1), max_occurrences=3)
    processor = _processor(db_session)

    results = [processor.run_cycle(date(2025, m, 1)) for m in range(1, 6)]

    assert [r.processed_count for r in results] == [1, 1, 1, 0, 0]
    assert results[2].terminated_schedule_ids == [s.id]
    assert len(_realized(db_session, s.id)) == 3
    row = _reload(db_session, s.id)
    assert row.is_active is False
    assert row.total_occurrences == 3


def test_end_date_cutoff(db_session, make_schedule):
    s = make_schedule(start_date=date(2025, 1, 15), end_date=date(2025, 3, 20))
    processor = _processor(db_session)

    results = [processor.run_cycle(date(2025, m, 15)) for m in range(1, 6)]

    assert [r.processed_count for r in results] == [1, 1, 1, 0, 0]
    assert results[2].terminated_schedule_ids == [s.id]
    assert [t.occurred_at for t in _realized(db_session, s.id)] == [
        date(2025, 1, 15),
        date(2025, 2, 15),
        date(2025, 3, 15),
    ]
    assert _reload(db_session, s.id).is_active is False


def test_unreachable_due_schedule_is_terminated(db_session, make_schedule):
    s = make_schedule(start_date=date(2025, 1, 1), max_occurrences=1)
    row = _reload(db_session, s.id)
    row.total_occurrences = 1
    db_session.commit()

    result = _processor(db_session).run_cycle(date(2025, 1, 2))

    assert result.processed_count == 0
    assert result.terminated_schedule_ids == [s.id]
    assert _realized(db_session, s.id) == []
    assert _reload(db_session, s.id).is_active is False


def test_already_materialized_occurrence_only_advances(db_session, make_schedule):
    s = make_schedule(start_date=date(2025, 1, 1))
    db_session.add(
        models.Transaction(
            user_id="user-1",
            title="Rent",
            amount=1200,
            type=models.TxnType.EXPENSE,
            category="Housing",
            payment_method="Bank transfer",
            occurred_at=date(2025, 1, 1),
            source=models.TransactionSource.RECURRING,
            recurring_schedule_id=s.id,
            idempotency_key=idempotency_key_for(s.id, date(2025, 1, 1)),
        )
    )
    db_session.commit()

    result = _processor(db_session).run_cycle(date(2025, 1, 1))

    assert result.processed_count == 1
    assert result.created_transaction_ids == []
    assert len(_realized(db_session, s.id)) == 1
    row = _reload(db_session, s.id)
    assert row.next_due_date == date(2025, 2, 1)
    assert row.total_occurrences == 0


def test_cycle_can_be_limited_to_one_owner(db_session, make_schedule):
    mine = make_schedule(start_date=date(2025, 1, 1))
    theirs = make_schedule(user_id="user-2", start_date=date(2025, 1, 1))

    result = _processor(db_session).run_cycle(date(2025, 1, 1), user_id="user-2")

    assert result.processed_count == 1
    assert _realized(db_session, mine.id) == []
    assert len(_realized(db_session, theirs.id)) == 1


def test_batch_size_bounds_a_cycle(db_session, make_schedule):
    make_schedule(start_date=date(2025, 1, 1))
    make_schedule(start_date=date(2025, 1, 2))

    assert _processor(db_session, batch_size=1).run_cycle(date(2025, 1, 5)).processed_count == 1
    assert _processor(db_session, batch_size=1).run_cycle(date(2025, 1, 6)).processed_count == 1
    assert _processor(db_session, batch_size=1).run_cycle(date(2025, 1, 7)).processed_count == 0


class FailingInsertStore(SqlScheduleStore):
    def __init__(self, db, fail_for: int, failures: int | None = None):
        super().__init__(db)
        self.fail_for = fail_for
        self.failures = failures
        self.calls = 0

    def insert_transaction(self, txn):
        if txn.recurring_schedule_id == self.fail_for:
            self.calls += 1
            if self.failures is None or self.calls <= self.failures:
                raise SQLAlchemyError("insert failed")
        return super().insert_transaction(txn)


def test_storage_failure_is_isolated_to_one_schedule(db_session, make_schedule):
    bad = make_schedule(title="Gym", start_date=date(2025, 1, 1))
    good = make_schedule(start_date=date(2025, 1, 1))
    store = FailingInsertStore(db_session, fail_for=bad.id)

    result = RecurringProcessor(store, insert_retries=1).run_cycle(date(2025, 1, 1))

    assert store.calls == 2
    assert result.failed_schedule_ids == [bad.id]
    assert result.processed_count == 1
    assert len(_realized(db_session, good.id)) == 1
    assert _realized(db_session, bad.id) == []

    row = _reload(db_session, bad.id)
    assert row.next_due_date == date(2025, 1, 1)
    assert row.total_occurrences == 0
    assert row.version == 0
    assert row.is_active is True


def test_failed_schedule_is_retried_next_cycle(db_session, make_schedule):
    s = make_schedule(start_date=date(2025, 1, 1))
    failing = FailingInsertStore(db_session, fail_for=s.id)

    assert RecurringProcessor(failing, insert_retries=0).run_cycle(date(2025, 1, 1)).failed_schedule_ids == [s.id]
    result = _processor(db_session).run_cycle(date(2025, 1, 1))

    assert result.processed_count == 1
    [txn] = _realized(db_session, s.id)
    assert txn.idempotency_key == idempotency_key_for(s.id, date(2025, 1, 1))


def test_transient_failure_recovers_within_retry_budget(db_session, make_schedule):
    s = make_schedule(start_date=date(2025, 1, 1))
    store = FailingInsertStore(db_session, fail_for=s.id, failures=1)

    result = RecurringProcessor(store, insert_retries=1).run_cycle(date(2025, 1, 1))

    assert result.failed_schedule_ids == []
    assert result.processed_count == 1
    assert len(_realized(db_session, s.id)) == 1


def test_competing_workers_with_same_snapshot_materialize_once(db_session, session_factory, make_schedule):
    s = make_schedule(start_date=date(2025, 1, 1))
    first, second = session_factory(), session_factory()
    try:
        worker_a, worker_b = SqlScheduleStore(first), SqlScheduleStore(second)
        snapshot_a = worker_a.find_due(date(2025, 1, 1), limit=10)
        snapshot_b = worker_b.find_due(date(2025, 1, 1), limit=10)

        result_a = RecurringProcessor(worker_a).process_batch(snapshot_a, date(2025, 1, 1))
        result_b = RecurringProcessor(worker_b).process_batch(snapshot_b, date(2025, 1, 1))
    finally:
        first.close()
        second.close()

    assert result_a.processed_count == 1
    assert result_b.processed_count == 0
    assert result_b.created_transaction_ids == []
    assert result_b.failed_schedule_ids == []
    assert len(_realized(db_session, s.id)) == 1
    assert _reload(db_session, s.id).total_occurrences == 1


def test_edit_after_read_invalidates_claim(db_session, session_factory, make_schedule):
    s = make_schedule(start_date=date(2025, 1, 1))
    worker = session_factory()
    try:
        store = SqlScheduleStore(worker)
        snapshot = store.find_due(date(2025, 1, 1), limit=10)
        RecurringScheduleService(db_session).update("user-1", s.id, RecurringScheduleUpdate(amount=1300))
        result = RecurringProcessor(store).process_batch(snapshot, date(2025, 1, 1))
    finally:
        worker.close()

    assert result.processed_count == 0
    assert _realized(db_session, s.id) == []
    # Still due; the next cycle picks up the edited amount
    _processor(db_session).run_cycle(date(2025, 1, 1))
    [txn] = _realized(db_session, s.id)
    assert float(txn.amount) == 1300


def test_not_yet_due_snapshot_is_left_active(db_session, make_schedule):
    s = make_schedule(start_date=date(2025, 1, 5))
    store = SqlScheduleStore(db_session)
    snapshots = store.find_due(date(2025, 1, 5), limit=10)

    result = RecurringProcessor(store).process_batch(snapshots, date(2025, 1, 1))

    assert result.processed_count == 0
    assert result.terminated_schedule_ids == []
    row = _reload(db_session, s.id)
    assert row.is_active is True
    assert row.version == 0
    assert row.next_due_date == date(2025, 1, 5)


def test_cycle_after_end_date_terminates_without_materializing(db_session, make_schedule):
    # Pending in-range occurrence is dropped once now is past end_date
    s = make_schedule(start_date=date(2025, 1, 15), end_date=date(2025, 1, 20))

    result = _processor(db_session).run_cycle(date(2025, 1, 25))

    assert result.processed_count == 0
    assert result.terminated_schedule_ids == [s.id]
    assert _realized(db_session, s.id) == []
    assert _reload(db_session, s.id).is_active is False


def test_recreated_schedule_never_inherits_deleted_occurrences(db_session, make_schedule):
    old = make_schedule(start_date=date(2025, 1, 1))
    old_id = old.id
    _processor(db_session).run_cycle(date(2025, 1, 1))
    RecurringScheduleService(db_session).delete("user-1", old_id)

    new = make_schedule(user_id="user-2", start_date=date(2025, 1, 1))
    assert new.id != old_id
    assert SqlScheduleStore(db_session).find_materialized(old_id, date(2025, 1, 1)) is None

    result = _processor(db_session).run_cycle(date(2025, 1, 2))

    assert result.processed_count == 1
    assert len(result.created_transaction_ids) == 1
    [txn] = _realized(db_session, new.id)
    assert txn.user_id == "user-2"
    assert _reload(db_session, new.id).total_occurrences == 1


def test_schedule_at_end_of_calendar_fails_alone(db_session, make_schedule):
    good = make_schedule(start_date=date(2025, 1, 1))
    edge = models.RecurringSchedule(
        user_id="user-1",
        title="Edge",
        amount=1,
        type=models.TxnType.EXPENSE,
        category="Misc",
        payment_method="Cash",
        start_date=date.max,
        next_due_date=date.max,
    )
    edge.recurrence_rule = RecurrenceRule(RecurringFrequency.DAILY)
    db_session.add(edge)
    db_session.commit()
    edge_id = edge.id

    store = SqlScheduleStore(db_session)
    snapshots = store.find_due(date.max, limit=10)
    # Edge case first so the healthy schedule runs after the failure
    snapshots.sort(key=lambda snap: snap.id != edge_id)

    result = RecurringProcessor(store).process_batch(snapshots, date.max)

    assert result.failed_schedule_ids == [edge_id]
    assert result.processed_count == 1
    assert len(_realized(db_session, good.id)) == 1
    assert _realized(db_session, edge_id) == []
    row = _reload(db_session, edge_id)
    assert row.next_due_date == date.max
    assert row.version == 0
    assert row.is_active is True
