"""create billing ledger tables

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-17 09:00:00.000000

This migration:
1. Creates the enrollment tables billing reads (students, tuition schemes,
   enrollments, curriculum and enrollment subjects)
2. Creates the ledger tables (accounts, fees, installments, payments,
   gateway transactions, account transactions, notifications)

Unique constraints back the idempotency rules: one account per student,
one fee per (enrollment, fee type), one installment per (enrollment,
number), one gateway transaction per payment and a unique payment
idempotency key.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0a1b2c3d4e5f"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# Enum labels are the Python member names, which is what SQLAlchemy persists
ENUMS = {
    "scheme_type": ("FULL_PAYMENT", "INSTALLMENT"),
    "enrollment_status": ("PENDING", "ENROLLED", "COMPLETED", "CANCELLED"),
    "enrollment_payment_status": ("UNPAID", "PARTIAL", "PAID"),
    "fee_type": ("TUITION", "DOWNPAYMENT"),
    "installment_status": ("PENDING", "PAID"),
    "payment_status": ("PENDING", "COMPLETED", "FAILED", "CANCELLED"),
    "payment_type": (
        "FULL_PAYMENT",
        "DOWNPAYMENT",
        "INSTALLMENT",
        "BALANCE",
        "MONTHLY",
        "ENROLLMENT",
    ),
    "transaction_status": ("PENDING", "PAID", "FAILED", "CANCELLED", "EXPIRED"),
    "account_transaction_type": ("CHARGE", "PAYMENT"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def _money(name: str, nullable: bool = False, **kwargs) -> sa.Column:
    return sa.Column(name, sa.Numeric(precision=12, scale=2), nullable=nullable, **kwargs)


def upgrade() -> None:
    """Create enrollment and billing ledger tables."""
    bind = op.get_bind()
    for name in ENUMS:
        _enum(name).create(bind, checkfirst=True)

    # Enrollment side
    op.create_table(
        "students",
        *_timestamps(),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("year_level", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "tuition_schemes",
        *_timestamps(),
        sa.Column("scheme_name", sa.String(length=200), nullable=False),
        sa.Column("scheme_type", _enum("scheme_type"), nullable=False),
        _money("amount"),
        _money("discount", server_default="0"),
        _money("downpayment", nullable=True),
        _money("monthly_payment", nullable=True),
        sa.Column("months", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "enrollments",
        *_timestamps(),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("program_id", sa.Integer(), nullable=False),
        sa.Column("semester_id", sa.Integer(), nullable=False),
        sa.Column("scheme_id", sa.Integer(), nullable=True),
        sa.Column(
            "status",
            _enum("enrollment_status"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column(
            "payment_status",
            _enum("enrollment_payment_status"),
            nullable=False,
            server_default="UNPAID",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["scheme_id"], ["tuition_schemes.id"]),
    )
    op.create_index("ix_enrollments_student_id", "enrollments", ["student_id"], unique=False)

    op.create_table(
        "course_subjects",
        *_timestamps(),
        sa.Column("program_id", sa.Integer(), nullable=False),
        sa.Column("semester_id", sa.Integer(), nullable=False),
        sa.Column("year_level", sa.Integer(), nullable=False),
        sa.Column("subject_id", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_course_subjects_lookup",
        "course_subjects",
        ["program_id", "semester_id", "year_level"],
        unique=False,
    )

    op.create_table(
        "enrollment_subjects",
        *_timestamps(),
        sa.Column("enrollment_id", sa.Integer(), nullable=False),
        sa.Column("subject_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="Enrolled"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["enrollment_id"], ["enrollments.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_enrollment_subjects_enrollment_id",
        "enrollment_subjects",
        ["enrollment_id"],
        unique=False,
    )

    # Ledger
    op.create_table(
        "accounts",
        *_timestamps(),
        sa.Column("student_id", sa.Integer(), nullable=False),
        _money("total_balance", server_default="0"),
        sa.Column(
            "last_updated",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("student_id", name="uq_accounts_student_id"),
    )

    op.create_table(
        "enrollment_fees",
        *_timestamps(),
        sa.Column("enrollment_id", sa.Integer(), nullable=False),
        sa.Column("fee_type", _enum("fee_type"), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        _money("amount"),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["enrollment_id"], ["enrollments.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "enrollment_id", "fee_type", name="uq_enrollment_fees_enrollment_type"
        ),
    )
    op.create_index(
        "ix_enrollment_fees_enrollment_id", "enrollment_fees", ["enrollment_id"], unique=False
    )

    op.create_table(
        "payments",
        *_timestamps(),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("enrollment_id", sa.Integer(), nullable=True),
        _money("amount"),
        sa.Column("status", _enum("payment_status"), nullable=False, server_default="PENDING"),
        sa.Column("payment_type", _enum("payment_type"), nullable=False),
        sa.Column("method", sa.String(length=50), nullable=False, server_default="paymongo"),
        sa.Column("reference_no", sa.String(length=255), nullable=True),
        sa.Column("for_semester_id", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("idempotency_key", sa.String(length=100), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["enrollment_id"], ["enrollments.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("idempotency_key", name="uq_payments_idempotency_key"),
    )
    op.create_index("ix_payments_account_id", "payments", ["account_id"], unique=False)
    op.create_index("ix_payments_enrollment_id", "payments", ["enrollment_id"], unique=False)
    op.create_index("ix_payments_status", "payments", ["status"], unique=False)

    op.create_table(
        "payment_installments",
        *_timestamps(),
        sa.Column("enrollment_id", sa.Integer(), nullable=False),
        sa.Column("installment_number", sa.Integer(), nullable=False),
        _money("amount"),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            _enum("installment_status"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_id", sa.Integer(), nullable=True),
        sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["enrollment_id"], ["enrollments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"], ondelete="SET NULL"),
        sa.UniqueConstraint(
            "enrollment_id", "installment_number", name="uq_payment_installments_number"
        ),
    )
    op.create_index(
        "ix_payment_installments_status_due",
        "payment_installments",
        ["status", "due_date"],
        unique=False,
    )

    op.create_table(
        "payment_transactions",
        *_timestamps(),
        sa.Column("payment_id", sa.Integer(), nullable=False),
        sa.Column("checkout_id", sa.String(length=255), nullable=False),
        sa.Column("checkout_url", sa.Text(), nullable=False),
        _money("amount"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="PHP"),
        sa.Column(
            "status",
            _enum("transaction_status"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("gateway_status", sa.String(length=50), nullable=True),
        sa.Column("payment_method", sa.String(length=50), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("webhook_data", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("payment_id", name="uq_payment_transactions_payment_id"),
    )
    op.create_index(
        "ix_payment_transactions_checkout_id",
        "payment_transactions",
        ["checkout_id"],
        unique=False,
    )

    op.create_table(
        "account_transactions",
        *_timestamps(),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("payment_id", sa.Integer(), nullable=True),
        sa.Column("transaction_type", _enum("account_transaction_type"), nullable=False),
        _money("amount"),
        _money("balance_before"),
        _money("balance_after"),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "ix_account_transactions_account_id", "account_transactions", ["account_id"], unique=False
    )
    op.create_index(
        "ix_account_transactions_payment_id", "account_transactions", ["payment_id"], unique=False
    )

    op.create_table(
        "student_notifications",
        *_timestamps(),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default="false"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_student_notifications_student_id",
        "student_notifications",
        ["student_id"],
        unique=False,
    )


def downgrade() -> None:
    """Drop all tables and enum types in reverse dependency order."""
    op.drop_index("ix_student_notifications_student_id", table_name="student_notifications")
    op.drop_table("student_notifications")
    op.drop_index("ix_account_transactions_payment_id", table_name="account_transactions")
    op.drop_index("ix_account_transactions_account_id", table_name="account_transactions")
    op.drop_table("account_transactions")
    op.drop_index("ix_payment_transactions_checkout_id", table_name="payment_transactions")
    op.drop_table("payment_transactions")
    op.drop_index("ix_payment_installments_status_due", table_name="payment_installments")
    op.drop_table("payment_installments")
    op.drop_index("ix_payments_status", table_name="payments")
    op.drop_index("ix_payments_enrollment_id", table_name="payments")
    op.drop_index("ix_payments_account_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_enrollment_fees_enrollment_id", table_name="enrollment_fees")
    op.drop_table("enrollment_fees")
    op.drop_table("accounts")
    op.drop_index("ix_enrollment_subjects_enrollment_id", table_name="enrollment_subjects")
    op.drop_table("enrollment_subjects")
    op.drop_index("ix_course_subjects_lookup", table_name="course_subjects")
    op.drop_table("course_subjects")
    op.drop_index("ix_enrollments_student_id", table_name="enrollments")
    op.drop_table("enrollments")
    op.drop_table("tuition_schemes")
    op.drop_table("students")

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        _enum(name).drop(bind, checkfirst=True)
