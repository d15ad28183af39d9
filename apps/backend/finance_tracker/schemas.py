from __future__ import annotations

import math
from datetime import date, datetime
from typing import Optional, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .models import TxnType, TransactionSource
from .services.recurrence import RecurrenceRule, RecurringFrequency


def _positive_amount(v: float | None) -> float | None:
    if v is None:
        return v
    if not math.isfinite(v):
        raise ValueError("amount must be finite")
    if v <= 0:
        raise ValueError("amount must be positive")
    return v


def _required_text(v: str | None, name: str) -> str | None:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError(f"{name} is required")
    return v


class RecurrenceRuleIn(BaseModel):
    frequency: RecurringFrequency
    interval: int = Field(1, ge=1)
    day_of_week: Optional[int] = None  # 0=Sun .. 6=Sat
    day_of_month: Optional[int] = None
    month_of_year: Optional[int] = None

    @field_validator("day_of_week")
    def validate_weekday(cls, v: int | None):
        if v is not None and not (0 <= v <= 6):
            raise ValueError("day_of_week must be between 0 and 6")
        return v

    @field_validator("day_of_month")
    def validate_day(cls, v: int | None):
        if v is not None and not (1 <= v <= 31):
            raise ValueError("day_of_month must be between 1 and 31")
        return v

    @field_validator("month_of_year")
    def validate_month(cls, v: int | None):
        if v is not None and not (1 <= v <= 12):
            raise ValueError("month_of_year must be between 1 and 12")
        return v

    def to_rule(self) -> RecurrenceRule:
        return RecurrenceRule(
            frequency=self.frequency,
            interval=self.interval,
            day_of_week=self.day_of_week,
            day_of_month=self.day_of_month,
            month_of_year=self.month_of_year,
        )


class RecurrenceRuleOut(BaseModel):
    frequency: RecurringFrequency
    interval: int
    day_of_week: Optional[int]
    day_of_month: Optional[int]
    month_of_year: Optional[int]

    model_config = ConfigDict(from_attributes=True)


class RecurringScheduleCreate(BaseModel):
    title: str = Field(..., max_length=100)
    amount: float
    type: TxnType
    category: str = Field(..., max_length=100)
    payment_method: str = Field(..., max_length=50)
    description: Optional[str] = None
    recurrence_rule: RecurrenceRuleIn
    start_date: date
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = Field(None, ge=1)
    is_active: bool = True

    @field_validator("amount")
    def amount_positive(cls, v: float):
        return _positive_amount(v)

    @field_validator("title", "category", "payment_method")
    def text_required(cls, v: str, info):
        return _required_text(v, info.field_name)

    @model_validator(mode="after")
    def validate_window(self) -> "RecurringScheduleCreate":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date")
        return self


class RecurringScheduleUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=100)
    amount: Optional[float] = None
    type: Optional[TxnType] = None
    category: Optional[str] = Field(None, max_length=100)
    payment_method: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = None
    recurrence_rule: Optional[RecurrenceRuleIn] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None

    @field_validator("amount")
    def amount_positive(cls, v: float | None):
        return _positive_amount(v)

    @field_validator("title", "category", "payment_method")
    def text_required(cls, v: str | None, info):
        return _required_text(v, info.field_name)


class RecurringScheduleOut(BaseModel):
    id: int
    user_id: str
    title: str
    amount: float
    type: TxnType
    category: str
    payment_method: str
    description: Optional[str]
    recurrence_rule: RecurrenceRuleOut
    start_date: date
    end_date: Optional[date]
    next_due_date: date
    is_active: bool
    last_processed_at: Optional[datetime]
    total_occurrences: int
    max_occurrences: Optional[int]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


ScheduleStatus = Literal["active", "inactive", "all"]


class UpcomingOccurrencesOut(BaseModel):
    schedule_id: int
    dates: list[date] = Field(default_factory=list)


class TransactionOut(BaseModel):
    id: int
    user_id: str
    title: str
    amount: float
    type: TxnType
    category: str
    payment_method: str
    occurred_at: date
    description: str
    notes: str
    source: TransactionSource
    recurring_schedule_id: Optional[int]
    idempotency_key: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProcessCycleRequest(BaseModel):
    now: Optional[datetime] = None


class ProcessCycleOut(BaseModel):
    processed_count: int
    created_transaction_ids: list[int] = Field(default_factory=list)
    terminated_schedule_ids: list[int] = Field(default_factory=list)
    failed_schedule_ids: list[int] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)
