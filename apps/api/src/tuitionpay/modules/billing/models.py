"""
Billing Models

Ledger tables for student accounts, enrollment fees, installment plans,
payments and their gateway mirrors, plus the append-only account
transaction log.
"""

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tuitionpay.modules.shared import BaseModel


class FeeType(str, enum.Enum):
    TUITION = "Tuition"
    DOWNPAYMENT = "Downpayment"


class InstallmentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"


class PaymentStatus(str, enum.Enum):
    """Lifecycle of a payment. Only PENDING has outgoing transitions."""

    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class PaymentType(str, enum.Enum):
    FULL_PAYMENT = "full_payment"
    DOWNPAYMENT = "downpayment"
    INSTALLMENT = "installment"
    BALANCE = "balance"
    MONTHLY = "monthly"
    ENROLLMENT = "enrollment"


class TransactionStatus(str, enum.Enum):
    """Gateway-side status of a checkout session."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class AccountTransactionType(str, enum.Enum):
    CHARGE = "charge"
    PAYMENT = "payment"


# Valid payment status transitions (terminal states have none)
VALID_PAYMENT_TRANSITIONS: dict[PaymentStatus, list[PaymentStatus]] = {
    PaymentStatus.PENDING: [
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    ],
    PaymentStatus.COMPLETED: [],
    PaymentStatus.FAILED: [],
    PaymentStatus.CANCELLED: [],
}


def can_transition(current: PaymentStatus, new: PaymentStatus) -> bool:
    return new in VALID_PAYMENT_TRANSITIONS.get(current, [])


class Account(BaseModel):
    """One ledger account per student. The balance never goes below zero."""

    __tablename__ = "accounts"

    student_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    total_balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class EnrollmentFee(BaseModel):
    __tablename__ = "enrollment_fees"

    enrollment_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False
    )
    fee_type: Mapped[FeeType] = mapped_column(Enum(FeeType, name="fee_type"), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_enrollment_fees_enrollment_id", "enrollment_id"),
        UniqueConstraint("enrollment_id", "fee_type", name="uq_enrollment_fees_enrollment_type"),
    )


class PaymentInstallment(BaseModel):
    __tablename__ = "payment_installments"

    enrollment_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False
    )
    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[InstallmentStatus] = mapped_column(
        Enum(InstallmentStatus, name="installment_status"),
        nullable=False,
        default=InstallmentStatus.PENDING,
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True
    )
    reminder_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        UniqueConstraint(
            "enrollment_id", "installment_number", name="uq_payment_installments_number"
        ),
        Index("ix_payment_installments_status_due", "status", "due_date"),
    )


class Payment(BaseModel):
    __tablename__ = "payments"

    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    enrollment_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("enrollments.id", ondelete="SET NULL"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    payment_type: Mapped[PaymentType] = mapped_column(
        Enum(PaymentType, name="payment_type"), nullable=False
    )
    method: Mapped[str] = mapped_column(String(50), nullable=False, default="paymongo")
    reference_no: Mapped[str | None] = mapped_column(String(255), nullable=True)
    for_semester_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    transaction: Mapped["PaymentTransaction | None"] = relationship(
        "PaymentTransaction", back_populates="payment", uselist=False, lazy="selectin"
    )

    __table_args__ = (
        Index("ix_payments_account_id", "account_id"),
        Index("ix_payments_enrollment_id", "enrollment_id"),
        Index("ix_payments_status", "status"),
    )


class PaymentTransaction(BaseModel):
    """Gateway mirror of a payment: one checkout session per payment."""

    __tablename__ = "payment_transactions"

    payment_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    checkout_id: Mapped[str] = mapped_column(String(255), nullable=False)
    checkout_url: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="PHP")
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus, name="transaction_status"),
        nullable=False,
        default=TransactionStatus.PENDING,
    )
    gateway_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    webhook_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payment: Mapped["Payment"] = relationship("Payment", back_populates="transaction")

    __table_args__ = (Index("ix_payment_transactions_checkout_id", "checkout_id"),)


class AccountTransaction(BaseModel):
    """Append-only audit row for every change applied to an account."""

    __tablename__ = "account_transactions"

    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    payment_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True
    )
    transaction_type: Mapped[AccountTransactionType] = mapped_column(
        Enum(AccountTransactionType, name="account_transaction_type"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_account_transactions_account_id", "account_id"),
        Index("ix_account_transactions_payment_id", "payment_id"),
    )


class StudentNotification(BaseModel):
    __tablename__ = "student_notifications"

    student_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (Index("ix_student_notifications_student_id", "student_id"),)
