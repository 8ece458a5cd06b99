"""
Billing Repository

Database operations for the billing ledger.

Design Principles:
- Functions only add/flush; the calling service commits or rolls back once
  per operation so every ledger mutation is all-or-nothing
- State changes that must happen at most once are conditional UPDATEs
  whose returned row is the signal, never a read followed by a write
- Row locks (SELECT ... FOR UPDATE) where a value is read and then rewritten
"""

from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from tuitionpay.modules.billing.errors import PaymentStateError
from tuitionpay.modules.billing.models import (
    Account,
    AccountTransaction,
    AccountTransactionType,
    EnrollmentFee,
    FeeType,
    InstallmentStatus,
    Payment,
    PaymentInstallment,
    PaymentStatus,
    PaymentTransaction,
    PaymentType,
    StudentNotification,
    TransactionStatus,
    can_transition,
)
from tuitionpay.modules.enrollments.models import (
    CourseSubject,
    Enrollment,
    EnrollmentSubject,
    Student,
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


# Enrollments and students


async def get_enrollment(db: AsyncSession, enrollment_id: int) -> Enrollment | None:
    result = await db.execute(
        select(Enrollment)
        .where(Enrollment.id == enrollment_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_student(db: AsyncSession, student_id: int) -> Student | None:
    return await db.get(Student, student_id)


# Accounts


async def get_account_by_student(
    db: AsyncSession, student_id: int, for_update: bool = False
) -> Account | None:
    query = (
        select(Account)
        .where(Account.student_id == student_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_account(db: AsyncSession, account_id: int, for_update: bool = False) -> Account | None:
    query = select(Account).where(Account.id == account_id).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def upsert_account_balance(db: AsyncSession, student_id: int, total_balance: Decimal) -> int:
    """
    Create the student's account or reset its balance in one statement.

    Returns the account id.
    """
    dialect = db.get_bind().dialect.name
    insert = postgresql.insert if dialect == "postgresql" else sqlite.insert

    stmt = insert(Account).values(
        student_id=student_id,
        total_balance=total_balance,
        last_updated=func.now(),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Account.student_id],
        set_={
            "total_balance": total_balance,
            "last_updated": func.now(),
            "updated_at": func.now(),
        },
    ).returning(Account.id)

    result = await db.execute(stmt)
    return result.scalar_one()


async def set_account_balance(db: AsyncSession, account: Account, new_balance: Decimal) -> None:
    account.total_balance = new_balance
    account.last_updated = _utcnow()
    await db.flush()


async def add_account_transaction(
    db: AsyncSession,
    *,
    account_id: int,
    transaction_type: AccountTransactionType,
    amount: Decimal,
    balance_before: Decimal,
    balance_after: Decimal,
    description: str,
    payment_id: int | None = None,
    created_by: int | None = None,
) -> AccountTransaction:
    row = AccountTransaction(
        account_id=account_id,
        payment_id=payment_id,
        transaction_type=transaction_type,
        amount=amount,
        balance_before=balance_before,
        balance_after=balance_after,
        description=description,
        created_by=created_by,
    )
    db.add(row)
    await db.flush()
    return row


async def list_account_transactions(
    db: AsyncSession, account_id: int, payment_id: int | None = None
) -> list[AccountTransaction]:
    query = select(AccountTransaction).where(AccountTransaction.account_id == account_id)
    if payment_id is not None:
        query = query.where(AccountTransaction.payment_id == payment_id)
    result = await db.execute(query.order_by(AccountTransaction.id))
    return list(result.scalars().all())


# Fees and installments


async def has_billing(db: AsyncSession, enrollment_id: int) -> bool:
    """True when any fee or installment already exists for the enrollment."""
    fee_count = await db.scalar(
        select(func.count()).select_from(EnrollmentFee).where(
            EnrollmentFee.enrollment_id == enrollment_id
        )
    )
    installment_count = await db.scalar(
        select(func.count()).select_from(PaymentInstallment).where(
            PaymentInstallment.enrollment_id == enrollment_id
        )
    )
    return bool(fee_count or installment_count)


async def create_fee(
    db: AsyncSession,
    enrollment_id: int,
    fee_type: FeeType,
    description: str,
    amount: Decimal,
) -> EnrollmentFee:
    fee = EnrollmentFee(
        enrollment_id=enrollment_id,
        fee_type=fee_type,
        description=description,
        amount=amount,
        is_paid=False,
    )
    db.add(fee)
    await db.flush()
    return fee


async def create_installments(
    db: AsyncSession,
    enrollment_id: int,
    schedule: list[tuple[int, Decimal, date]],
) -> list[PaymentInstallment]:
    """Insert (installment_number, amount, due_date) rows as pending."""
    installments = [
        PaymentInstallment(
            enrollment_id=enrollment_id,
            installment_number=number,
            amount=amount,
            due_date=due_date,
            status=InstallmentStatus.PENDING,
        )
        for number, amount, due_date in schedule
    ]
    db.add_all(installments)
    await db.flush()
    return installments


async def list_fees(
    db: AsyncSession, enrollment_id: int, unpaid_only: bool = False
) -> list[EnrollmentFee]:
    query = (
        select(EnrollmentFee)
        .where(EnrollmentFee.enrollment_id == enrollment_id)
        .execution_options(populate_existing=True)
    )
    if unpaid_only:
        query = query.where(EnrollmentFee.is_paid.is_(False))
    result = await db.execute(query.order_by(EnrollmentFee.id))
    return list(result.scalars().all())


async def get_fee(db: AsyncSession, enrollment_id: int, fee_type: FeeType) -> EnrollmentFee | None:
    result = await db.execute(
        select(EnrollmentFee)
        .where(EnrollmentFee.enrollment_id == enrollment_id, EnrollmentFee.fee_type == fee_type)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def mark_fees_paid(
    db: AsyncSession,
    enrollment_id: int,
    fee_type: FeeType | None = None,
) -> int:
    """Flip unpaid fees to paid. Returns the number of fees updated."""
    stmt = (
        update(EnrollmentFee)
        .where(
            EnrollmentFee.enrollment_id == enrollment_id,
            EnrollmentFee.is_paid.is_(False),
        )
        .values(is_paid=True, paid_at=_utcnow())
    )
    if fee_type is not None:
        stmt = stmt.where(EnrollmentFee.fee_type == fee_type)
    result = await db.execute(stmt)
    return result.rowcount


async def list_installments(
    db: AsyncSession,
    enrollment_id: int,
    status: InstallmentStatus | None = None,
) -> list[PaymentInstallment]:
    query = (
        select(PaymentInstallment)
        .where(PaymentInstallment.enrollment_id == enrollment_id)
        .execution_options(populate_existing=True)
    )
    if status is not None:
        query = query.where(PaymentInstallment.status == status)
    result = await db.execute(query.order_by(PaymentInstallment.installment_number))
    return list(result.scalars().all())


async def get_earliest_pending_installment(
    db: AsyncSession, enrollment_id: int, for_update: bool = False
) -> PaymentInstallment | None:
    query = (
        select(PaymentInstallment)
        .where(
            PaymentInstallment.enrollment_id == enrollment_id,
            PaymentInstallment.status == InstallmentStatus.PENDING,
        )
        .order_by(PaymentInstallment.installment_number.asc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def mark_installment_paid(
    db: AsyncSession, installment: PaymentInstallment, payment_id: int
) -> None:
    installment.status = InstallmentStatus.PAID
    installment.paid_at = _utcnow()
    installment.payment_id = payment_id
    await db.flush()


async def count_outstanding(db: AsyncSession, enrollment_id: int) -> tuple[int, int]:
    """Return (unpaid fee count, pending installment count)."""
    unpaid_fees = await db.scalar(
        select(func.count()).select_from(EnrollmentFee).where(
            EnrollmentFee.enrollment_id == enrollment_id,
            EnrollmentFee.is_paid.is_(False),
        )
    )
    pending_installments = await db.scalar(
        select(func.count()).select_from(PaymentInstallment).where(
            PaymentInstallment.enrollment_id == enrollment_id,
            PaymentInstallment.status == InstallmentStatus.PENDING,
        )
    )
    return int(unpaid_fees or 0), int(pending_installments or 0)


async def list_pending_installments_for_student(
    db: AsyncSession, student_id: int
) -> list[PaymentInstallment]:
    result = await db.execute(
        select(PaymentInstallment)
        .join(Enrollment, Enrollment.id == PaymentInstallment.enrollment_id)
        .where(
            Enrollment.student_id == student_id,
            PaymentInstallment.status == InstallmentStatus.PENDING,
        )
        .order_by(PaymentInstallment.due_date, PaymentInstallment.installment_number)
    )
    return list(result.scalars().all())


async def sum_billed_for_student(db: AsyncSession, student_id: int) -> Decimal:
    """Total of all fees and installments across the student's enrollments."""
    fees = await db.scalar(
        select(func.coalesce(func.sum(EnrollmentFee.amount), 0))
        .join(Enrollment, Enrollment.id == EnrollmentFee.enrollment_id)
        .where(Enrollment.student_id == student_id)
    )
    installments = await db.scalar(
        select(func.coalesce(func.sum(PaymentInstallment.amount), 0))
        .join(Enrollment, Enrollment.id == PaymentInstallment.enrollment_id)
        .where(Enrollment.student_id == student_id)
    )
    return Decimal(str(fees or 0)) + Decimal(str(installments or 0))


async def sum_outstanding_for_student(db: AsyncSession, student_id: int) -> Decimal:
    """Total of unpaid fees and pending installments across the student's enrollments."""
    fees = await db.scalar(
        select(func.coalesce(func.sum(EnrollmentFee.amount), 0))
        .join(Enrollment, Enrollment.id == EnrollmentFee.enrollment_id)
        .where(Enrollment.student_id == student_id, EnrollmentFee.is_paid.is_(False))
    )
    installments = await db.scalar(
        select(func.coalesce(func.sum(PaymentInstallment.amount), 0))
        .join(Enrollment, Enrollment.id == PaymentInstallment.enrollment_id)
        .where(
            Enrollment.student_id == student_id,
            PaymentInstallment.status == InstallmentStatus.PENDING,
        )
    )
    return Decimal(str(fees or 0)) + Decimal(str(installments or 0))


# Payments


async def create_payment(
    db: AsyncSession,
    *,
    account_id: int,
    enrollment_id: int | None,
    amount: Decimal,
    payment_type: PaymentType,
    idempotency_key: str,
    for_semester_id: int | None = None,
    created_by: int | None = None,
) -> Payment:
    payment = Payment(
        account_id=account_id,
        enrollment_id=enrollment_id,
        amount=amount,
        status=PaymentStatus.PENDING,
        payment_type=payment_type,
        method="paymongo",
        for_semester_id=for_semester_id,
        created_by=created_by,
        idempotency_key=idempotency_key,
    )
    db.add(payment)
    await db.flush()
    return payment


async def get_payment(db: AsyncSession, payment_id: int) -> Payment | None:
    result = await db.execute(
        select(Payment).where(Payment.id == payment_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def transition_payment_status(
    db: AsyncSession,
    payment_id: int,
    from_status: PaymentStatus,
    to_status: PaymentStatus,
    **values: Any,
) -> bool:
    """
    Conditionally move a payment between states.

    Returns True only for the caller whose UPDATE matched the row in
    from_status; concurrent callers see False.
    Raises PaymentStateError when the state table forbids the move.
    """
    if not can_transition(from_status, to_status):
        raise PaymentStateError(payment_id, from_status.value, "transition")

    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == from_status)
        .values(status=to_status, **values)
        .returning(Payment.id)
    )
    return result.scalar_one_or_none() is not None


async def list_payments_for_account(
    db: AsyncSession, account_id: int, limit: int = 20, offset: int = 0
) -> tuple[list[Payment], int]:
    total = await db.scalar(
        select(func.count()).select_from(Payment).where(Payment.account_id == account_id)
    )
    result = await db.execute(
        select(Payment)
        .where(Payment.account_id == account_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), int(total or 0)


async def sum_completed_payments(db: AsyncSession, account_id: int) -> Decimal:
    total = await db.scalar(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(
            Payment.account_id == account_id,
            Payment.status == PaymentStatus.COMPLETED,
        )
    )
    return Decimal(str(total or 0))


async def list_expired_pending_payments(db: AsyncSession, now: datetime) -> list[Payment]:
    result = await db.execute(
        select(Payment)
        .join(PaymentTransaction, PaymentTransaction.payment_id == Payment.id)
        .where(
            Payment.status == PaymentStatus.PENDING,
            PaymentTransaction.expires_at < now,
        )
    )
    return list(result.scalars().all())


# Gateway transactions


async def create_transaction(
    db: AsyncSession,
    *,
    payment_id: int,
    checkout_id: str,
    checkout_url: str,
    amount: Decimal,
    currency: str,
    expires_at: datetime,
) -> PaymentTransaction:
    transaction = PaymentTransaction(
        payment_id=payment_id,
        checkout_id=checkout_id,
        checkout_url=checkout_url,
        amount=amount,
        currency=currency,
        status=TransactionStatus.PENDING,
        expires_at=expires_at,
    )
    db.add(transaction)
    await db.flush()
    return transaction


async def get_transaction_by_payment(
    db: AsyncSession, payment_id: int
) -> PaymentTransaction | None:
    result = await db.execute(
        select(PaymentTransaction)
        .where(PaymentTransaction.payment_id == payment_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def update_transaction(db: AsyncSession, payment_id: int, **values: Any) -> None:
    await db.execute(
        update(PaymentTransaction)
        .where(PaymentTransaction.payment_id == payment_id)
        .values(**values)
    )


# Subjects


async def list_curriculum_subject_ids(
    db: AsyncSession, program_id: int, semester_id: int, year_level: int
) -> list[int]:
    result = await db.execute(
        select(CourseSubject.subject_id).where(
            CourseSubject.program_id == program_id,
            CourseSubject.semester_id == semester_id,
            CourseSubject.year_level == year_level,
        )
    )
    return list(result.scalars().all())


async def count_enrollment_subjects(db: AsyncSession, enrollment_id: int) -> int:
    count = await db.scalar(
        select(func.count()).select_from(EnrollmentSubject).where(
            EnrollmentSubject.enrollment_id == enrollment_id
        )
    )
    return int(count or 0)


async def create_enrollment_subjects(
    db: AsyncSession, enrollment_id: int, subject_ids: list[int]
) -> None:
    db.add_all(
        EnrollmentSubject(enrollment_id=enrollment_id, subject_id=subject_id, status="Enrolled")
        for subject_id in subject_ids
    )
    await db.flush()


# Reminders


async def list_installments_due_for_reminder(
    db: AsyncSession, start: date, end: date
) -> list[tuple[PaymentInstallment, Enrollment]]:
    """Pending installments due in [start, end] that have not been reminded."""
    result = await db.execute(
        select(PaymentInstallment, Enrollment)
        .join(Enrollment, Enrollment.id == PaymentInstallment.enrollment_id)
        .where(
            PaymentInstallment.status == InstallmentStatus.PENDING,
            PaymentInstallment.due_date >= start,
            PaymentInstallment.due_date <= end,
            PaymentInstallment.reminder_sent_at.is_(None),
        )
        .order_by(PaymentInstallment.due_date, PaymentInstallment.id)
    )
    return [(row[0], row[1]) for row in result.all()]


async def get_installment_for_reminder(
    db: AsyncSession, installment_id: int
) -> tuple[PaymentInstallment, Enrollment] | None:
    """The installment and its enrollment, if it is still pending and unreminded."""
    result = await db.execute(
        select(PaymentInstallment, Enrollment)
        .join(Enrollment, Enrollment.id == PaymentInstallment.enrollment_id)
        .where(
            PaymentInstallment.id == installment_id,
            PaymentInstallment.status == InstallmentStatus.PENDING,
            PaymentInstallment.reminder_sent_at.is_(None),
        )
    )
    row = result.first()
    return (row[0], row[1]) if row else None


async def mark_reminder_sent(db: AsyncSession, installment_id: int) -> None:
    await db.execute(
        update(PaymentInstallment)
        .where(PaymentInstallment.id == installment_id)
        .values(reminder_sent_at=_utcnow())
    )


async def create_notification(
    db: AsyncSession, student_id: int, type: str, title: str, message: str
) -> StudentNotification:
    notification = StudentNotification(
        student_id=student_id, type=type, title=title, message=message, is_read=False
    )
    db.add(notification)
    await db.flush()
    return notification
