"""Create recurring schedule and transaction tables

Revision ID: 3e1f0a9c2b7d
Revises:
Create Date: 2026-10-17 10:00:00.000000
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3e1f0a9c2b7d"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


TXN_TYPE = sa.Enum("INCOME", "EXPENSE", name="txntype")
FREQUENCY = sa.Enum("DAILY", "WEEKLY", "MONTHLY", "YEARLY", name="recurringfrequency")
SOURCE = sa.Enum("MANUAL", "SMS_IMPORT", "API", "RECURRING", name="transactionsource")


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    existing_tables = inspector.get_table_names()

    if "recurringschedule" not in existing_tables:
        op.create_table(
            "recurringschedule",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("title", sa.String(length=100), nullable=False),
            sa.Column("amount", sa.Numeric(18, 2), nullable=False),
            sa.Column("type", TXN_TYPE, nullable=False),
            sa.Column("category", sa.String(length=100), nullable=False),
            sa.Column("payment_method", sa.String(length=50), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("frequency", FREQUENCY, nullable=False),
            sa.Column("interval", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("day_of_week", sa.Integer(), nullable=True),
            sa.Column("day_of_month", sa.Integer(), nullable=True),
            sa.Column("month_of_year", sa.Integer(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("next_due_date", sa.Date(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("last_processed_at", sa.DateTime(), nullable=True),
            sa.Column("total_occurrences", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_occurrences", sa.Integer(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.CheckConstraint("amount > 0", name="ck_recurring_schedule_amount_positive"),
            sa.CheckConstraint("interval >= 1", name="ck_recurring_schedule_interval"),
            sa.CheckConstraint("total_occurrences >= 0", name="ck_recurring_schedule_occurrences"),
            sqlite_autoincrement=True,
        )
        op.create_index("ix_recurring_schedule_user_active", "recurringschedule", ["user_id", "is_active"])
        op.create_index("ix_recurring_schedule_due_active", "recurringschedule", ["next_due_date", "is_active"])

    if "transaction" not in existing_tables:
        op.create_table(
            "transaction",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("title", sa.String(length=100), nullable=False),
            sa.Column("amount", sa.Numeric(18, 2), nullable=False),
            sa.Column("type", TXN_TYPE, nullable=False),
            sa.Column("category", sa.String(length=100), nullable=False),
            sa.Column("payment_method", sa.String(length=50), nullable=False),
            sa.Column("occurred_at", sa.Date(), nullable=False),
            sa.Column("description", sa.Text(), nullable=False, server_default=""),
            sa.Column("notes", sa.Text(), nullable=False, server_default=""),
            sa.Column("source", SOURCE, nullable=False, server_default="MANUAL"),
            sa.Column(
                "recurring_schedule_id",
                sa.Integer(),
                sa.ForeignKey("recurringschedule.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("idempotency_key", sa.String(length=64), nullable=True, unique=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.CheckConstraint("amount >= 0", name="ck_transaction_amount_non_negative"),
        )
        op.create_index("ix_transaction_user_date", "transaction", ["user_id", "occurred_at"])
        op.create_index("ix_transaction_recurring_schedule", "transaction", ["recurring_schedule_id"])


def downgrade() -> None:
    op.drop_index("ix_transaction_recurring_schedule", table_name="transaction")
    op.drop_index("ix_transaction_user_date", table_name="transaction")
    op.drop_table("transaction")
    op.drop_index("ix_recurring_schedule_due_active", table_name="recurringschedule")
    op.drop_index("ix_recurring_schedule_user_active", table_name="recurringschedule")
    op.drop_table("recurringschedule")
