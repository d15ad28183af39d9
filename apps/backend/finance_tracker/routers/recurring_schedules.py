from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from finance_tracker.core.database import get_db
from finance_tracker.core.deps import get_current_user_id
from finance_tracker.exceptions import InvalidRecurrenceRule, ScheduleNotFound, ScheduleValidationError
from finance_tracker.schemas import (
    ProcessCycleOut,
    ProcessCycleRequest,
    RecurringScheduleCreate,
    RecurringScheduleOut,
    RecurringScheduleUpdate,
    ScheduleStatus,
    TransactionOut,
    UpcomingOccurrencesOut,
)
from finance_tracker.services.recurring_processor import RecurringProcessor
from finance_tracker.services.recurring_schedule_service import RecurringScheduleService
from finance_tracker.services.schedule_store import SqlScheduleStore


router = APIRouter(prefix="/recurring-schedules", tags=["recurring-schedules"])

NOT_FOUND_DETAIL = "RecurringSchedule not found"


@router.post("/process", response_model=ProcessCycleOut)
def process_due_schedules(
    payload: ProcessCycleRequest | None = Body(default=None),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Run a processing cycle over the caller's due schedules."""
    now = payload.now if payload is not None else None
    result = RecurringProcessor(SqlScheduleStore(db)).run_cycle(now, user_id=user_id)
    return ProcessCycleOut.model_validate(result, from_attributes=True)


@router.post("", response_model=RecurringScheduleOut, status_code=201)
def create_recurring_schedule(
    payload: RecurringScheduleCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        return RecurringScheduleService(db).create(payload, user_id=user_id)
    except (InvalidRecurrenceRule, ScheduleValidationError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("", response_model=list[RecurringScheduleOut])
def list_recurring_schedules(
    response: Response,
    status: ScheduleStatus = Query("all"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    rows, total = RecurringScheduleService(db).get_all(user_id, status=status, page=page, limit=limit)
    response.headers["X-Total-Count"] = str(total)
    return rows


@router.get("/{schedule_id}", response_model=RecurringScheduleOut)
def get_recurring_schedule(
    schedule_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        return RecurringScheduleService(db).get(user_id, schedule_id)
    except ScheduleNotFound:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)


@router.patch("/{schedule_id}", response_model=RecurringScheduleOut)
def update_recurring_schedule(
    schedule_id: int,
    payload: RecurringScheduleUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        return RecurringScheduleService(db).update(user_id, schedule_id, payload)
    except ScheduleNotFound:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
    except (InvalidRecurrenceRule, ScheduleValidationError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.delete("/{schedule_id}", status_code=204)
def delete_recurring_schedule(
    schedule_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        RecurringScheduleService(db).delete(user_id, schedule_id)
    except ScheduleNotFound:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
    return None


@router.get("/{schedule_id}/upcoming", response_model=UpcomingOccurrencesOut)
def upcoming_occurrences(
    schedule_id: int,
    count: int = Query(5, ge=1, le=24),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        dates = RecurringScheduleService(db).upcoming(user_id, schedule_id, count)
    except ScheduleNotFound:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
    return UpcomingOccurrencesOut(schedule_id=schedule_id, dates=dates)


@router.get("/{schedule_id}/transactions", response_model=list[TransactionOut])
def list_schedule_transactions(
    schedule_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        return RecurringScheduleService(db).transactions(user_id, schedule_id)
    except ScheduleNotFound:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
