from __future__ import annotations

from datetime import date

from sqlalchemy.orm import Session

from .core.database import SessionLocal
from .models import RecurringSchedule, TxnType
from .services.recurrence import RecurrenceRule, RecurringFrequency

DEMO_USER_ID = "demo-user"


def seed(session_factory=SessionLocal) -> None:
    """Insert a few demo schedules for the demo account (idempotent by title)."""
    db: Session = session_factory()
    try:
        today = date.today()
        demos = [
            ("Rent", 1200, TxnType.EXPENSE, "Housing", "Bank Transfer",
             RecurrenceRule(RecurringFrequency.MONTHLY, 1, day_of_month=1)),
            ("Salary", 4000, TxnType.INCOME, "Salary", "Bank Transfer",
             RecurrenceRule(RecurringFrequency.MONTHLY, 1, day_of_month=25)),
            ("Streaming", 12.99, TxnType.EXPENSE, "Entertainment", "Credit Card",
             RecurrenceRule(RecurringFrequency.MONTHLY, 1)),
            ("Groceries", 80, TxnType.EXPENSE, "Food", "Debit Card",
             RecurrenceRule(RecurringFrequency.WEEKLY, 1, day_of_week=6)),
        ]
        for title, amount, txn_type, category, method, rule in demos:
            exists = db.query(RecurringSchedule).filter_by(user_id=DEMO_USER_ID, title=title).first()
            if exists:
                continue
            row = RecurringSchedule(
                user_id=DEMO_USER_ID,
                title=title,
                amount=amount,
                type=txn_type,
                category=category,
                payment_method=method,
                start_date=today,
                next_due_date=today,
            )
            row.recurrence_rule = rule
            db.add(row)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
