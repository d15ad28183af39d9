from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Index,
    Boolean,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .core.config import settings
from .core.database import Base
from .services.recurrence import RecurrenceRule, RecurringFrequency


try:
    LOCAL_ZONE = ZoneInfo(getattr(settings, "TIMEZONE", "UTC"))
except Exception:
    LOCAL_ZONE = ZoneInfo("UTC")


def now_local_naive() -> datetime:
    """Return naive datetime normalized to configured local timezone."""
    return datetime.now(LOCAL_ZONE).replace(tzinfo=None)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_local_naive, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=now_local_naive, onupdate=now_local_naive, nullable=False)


class TxnType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class TransactionSource(str, Enum):
    MANUAL = "manual"
    SMS_IMPORT = "sms_import"
    API = "api"
    RECURRING = "recurring"


class RecurringSchedule(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[float] = mapped_column(Numeric(18, 2), nullable=False)
    type: Mapped[TxnType] = mapped_column(SAEnum(TxnType), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    # Recurrence rule, flattened
    frequency: Mapped[RecurringFrequency] = mapped_column(SAEnum(RecurringFrequency), nullable=False)
    interval: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    day_of_week: Mapped[int | None] = mapped_column(Integer)  # 0=Sun .. 6=Sat
    day_of_month: Mapped[int | None] = mapped_column(Integer)
    month_of_year: Mapped[int | None] = mapped_column(Integer)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date)
    next_due_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_processed_at: Mapped[datetime | None] = mapped_column(DateTime)
    total_occurrences: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_occurrences: Mapped[int | None] = mapped_column(Integer)
    # Optimistic-concurrency marker, bumped by every claim and every edit
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="recurring_schedule",
    )

    @property
    def recurrence_rule(self) -> RecurrenceRule:
        return RecurrenceRule(
            frequency=self.frequency,
            interval=self.interval,
            day_of_week=self.day_of_week,
            day_of_month=self.day_of_month,
            month_of_year=self.month_of_year,
        )

    @recurrence_rule.setter
    def recurrence_rule(self, rule: RecurrenceRule) -> None:
        self.frequency = rule.frequency
        self.interval = rule.interval
        self.day_of_week = rule.day_of_week
        self.day_of_month = rule.day_of_month
        self.month_of_year = rule.month_of_year

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_recurring_schedule_amount_positive"),
        CheckConstraint("interval >= 1", name="ck_recurring_schedule_interval"),
        CheckConstraint("total_occurrences >= 0", name="ck_recurring_schedule_occurrences"),
        Index("ix_recurring_schedule_user_active", "user_id", "is_active"),
        Index("ix_recurring_schedule_due_active", "next_due_date", "is_active"),
        # Ids are never reused, so idempotency keys of deleted schedules stay unique
        {"sqlite_autoincrement": True},
    )


class Transaction(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[float] = mapped_column(Numeric(18, 2), nullable=False)
    type: Mapped[TxnType] = mapped_column(SAEnum(TxnType), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    occurred_at: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    source: Mapped[TransactionSource] = mapped_column(
        SAEnum(TransactionSource), nullable=False, default=TransactionSource.MANUAL
    )
    recurring_schedule_id: Mapped[int | None] = mapped_column(
        ForeignKey("recurringschedule.id", ondelete="SET NULL")
    )
    # recurring-{schedule_id}-{YYYY-MM-DD} for realized occurrences
    idempotency_key: Mapped[str | None] = mapped_column(String(64), unique=True)

    recurring_schedule: Mapped["RecurringSchedule | None"] = relationship(
        "RecurringSchedule", back_populates="transactions"
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_transaction_amount_non_negative"),
        Index("ix_transaction_user_date", "user_id", "occurred_at"),
        Index("ix_transaction_recurring_schedule", "recurring_schedule_id"),
    )
