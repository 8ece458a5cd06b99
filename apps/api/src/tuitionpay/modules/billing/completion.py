"""
Payment Completion Engine

Applies a settled payment to the ledger exactly once, whichever path
reports it first: gateway webhook, browser success redirect or the
offline mock-complete endpoint.

The guard is a conditional UPDATE of the payment from Pending to
Completed. Only the caller whose UPDATE matched applies ledger effects;
everyone else gets already_processed=True. All effects share one
transaction with the guard.

Settlement rules by payment type:
- enrollment / full_payment: every unpaid fee is marked paid
- downpayment: the Downpayment fee is marked paid
- installment / monthly: the earliest pending installment is marked paid
- balance: the account balance is reduced, floored at zero

Fee and installment settlement leaves the account balance untouched.
Every completion appends one AccountTransaction.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from tuitionpay.core.email import send_payment_receipt
from tuitionpay.modules.billing import repository
from tuitionpay.modules.billing.errors import PaymentNotFoundError, PaymentStateError
from tuitionpay.modules.billing.models import (
    AccountTransactionType,
    FeeType,
    Payment,
    PaymentStatus,
    PaymentType,
    TransactionStatus,
)
from tuitionpay.modules.enrollments.models import EnrollmentPaymentStatus, EnrollmentStatus
from tuitionpay.modules.shared import round2

logger = logging.getLogger(__name__)

# Payment types whose completion admits the student
ENROLLING_PAYMENT_TYPES = {
    PaymentType.ENROLLMENT,
    PaymentType.FULL_PAYMENT,
    PaymentType.DOWNPAYMENT,
}

# Payment types after which subjects are auto-enrolled
SUBJECT_ENROLLMENT_PAYMENT_TYPES = {PaymentType.FULL_PAYMENT, PaymentType.DOWNPAYMENT}


@dataclass
class CompletionResult:
    payment_id: int
    status: PaymentStatus
    already_processed: bool
    balance_before: Decimal | None = None
    balance_after: Decimal | None = None
    installment_number: int | None = None


def _utcnow() -> datetime:
    return datetime.now(UTC)


async def complete_payment(
    db: AsyncSession,
    payment_id: int,
    payment: Payment | None = None,
    *,
    method: str | None = None,
    reference_no: str | None = None,
    gateway_status: str = "paid",
    gateway_payload: dict[str, Any] | None = None,
    completed_by: int | None = None,
) -> CompletionResult:
    """
    Complete a payment and apply its ledger effects at most once.

    Raises:
        PaymentNotFoundError: Unknown payment
        PaymentStateError: Payment is Failed or Cancelled
    """
    if payment is None:
        payment = await repository.get_payment(db, payment_id)
        if payment is None:
            raise PaymentNotFoundError(payment_id)

    if payment.status == PaymentStatus.COMPLETED:
        logger.info(f"Payment {payment_id} already completed, skipping")
        return CompletionResult(payment_id, PaymentStatus.COMPLETED, already_processed=True)

    payment_type = payment.payment_type
    amount = payment.amount
    account_id = payment.account_id
    enrollment_id = payment.enrollment_id
    method = method or payment.method
    now = _utcnow()

    try:
        claimed = await repository.transition_payment_status(
            db,
            payment_id,
            PaymentStatus.PENDING,
            PaymentStatus.COMPLETED,
            method=method,
            reference_no=reference_no or payment.reference_no,
            payment_date=now,
        )

        if not claimed:
            await db.rollback()
            current = await repository.get_payment(db, payment_id)
            if current is not None and current.status == PaymentStatus.COMPLETED:
                logger.info(f"Payment {payment_id} completed concurrently, skipping")
                return CompletionResult(
                    payment_id, PaymentStatus.COMPLETED, already_processed=True
                )
            current_status = current.status.value if current is not None else "missing"
            raise PaymentStateError(payment_id, current_status, "complete")

        await repository.update_transaction(
            db,
            payment_id,
            status=TransactionStatus.PAID,
            paid_at=now,
            payment_method=method,
            gateway_status=gateway_status,
            webhook_data=gateway_payload,
        )

        account = await repository.get_account(db, account_id, for_update=True)
        balance_before = account.total_balance
        balance_after = balance_before
        installment_number = None

        if payment_type in (PaymentType.ENROLLMENT, PaymentType.FULL_PAYMENT):
            if enrollment_id is not None:
                settled = await repository.mark_fees_paid(db, enrollment_id)
                logger.info(f"Payment {payment_id} settled {settled} fee(s)")

        elif payment_type == PaymentType.DOWNPAYMENT:
            if enrollment_id is not None:
                await repository.mark_fees_paid(db, enrollment_id, fee_type=FeeType.DOWNPAYMENT)

        elif payment_type in (PaymentType.INSTALLMENT, PaymentType.MONTHLY):
            installment = None
            if enrollment_id is not None:
                installment = await repository.get_earliest_pending_installment(
                    db, enrollment_id, for_update=True
                )
            if installment is None:
                logger.warning(
                    f"Payment {payment_id} completed with no pending installment to settle"
                )
            else:
                await repository.mark_installment_paid(db, installment, payment_id)
                installment_number = installment.installment_number

        elif payment_type == PaymentType.BALANCE:
            balance_after = max(Decimal("0.00"), round2(balance_before - amount))
            await repository.set_account_balance(db, account, balance_after)

        if enrollment_id is not None:
            await _update_enrollment_status(db, enrollment_id, payment_type)

        await repository.add_account_transaction(
            db,
            account_id=account_id,
            payment_id=payment_id,
            transaction_type=AccountTransactionType.PAYMENT,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            description=f"Payment #{payment_id} ({payment_type.value}) via {method}",
            created_by=completed_by,
        )

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        f"Payment {payment_id} completed: type={payment_type.value}, amount={amount}, "
        f"balance {balance_before} -> {balance_after}"
    )

    if enrollment_id is not None and payment_type in SUBJECT_ENROLLMENT_PAYMENT_TYPES:
        await enroll_subjects(db, enrollment_id)
    await _send_receipt(db, payment_id)

    return CompletionResult(
        payment_id,
        PaymentStatus.COMPLETED,
        already_processed=False,
        balance_before=balance_before,
        balance_after=balance_after,
        installment_number=installment_number,
    )


async def _update_enrollment_status(
    db: AsyncSession, enrollment_id: int, payment_type: PaymentType
) -> None:
    enrollment = await repository.get_enrollment(db, enrollment_id)
    if enrollment is None:
        logger.warning(f"Enrollment {enrollment_id} vanished during payment completion")
        return

    if payment_type in ENROLLING_PAYMENT_TYPES:
        enrollment.status = EnrollmentStatus.ENROLLED

    unpaid_fees, pending_installments = await repository.count_outstanding(db, enrollment_id)
    if unpaid_fees == 0 and pending_installments == 0:
        enrollment.payment_status = EnrollmentPaymentStatus.PAID
    else:
        enrollment.payment_status = EnrollmentPaymentStatus.PARTIAL

    await db.flush()


async def enroll_subjects(db: AsyncSession, enrollment_id: int) -> int:
    """
    Create enrollment subject rows from the curriculum.

    Best effort: failures are logged and never undo the completed payment.
    Returns the number of subjects created.
    """
    try:
        enrollment = await repository.get_enrollment(db, enrollment_id)
        if enrollment is None or enrollment.status != EnrollmentStatus.ENROLLED:
            return 0

        if await repository.count_enrollment_subjects(db, enrollment_id) > 0:
            logger.info(f"Enrollment {enrollment_id} already has subjects, skipping")
            return 0

        subject_ids = await repository.list_curriculum_subject_ids(
            db,
            enrollment.program_id,
            enrollment.semester_id,
            enrollment.student.year_level,
        )
        if not subject_ids:
            logger.warning(
                f"No curriculum subjects for program={enrollment.program_id}, "
                f"semester={enrollment.semester_id}, year={enrollment.student.year_level}"
            )
            return 0

        await repository.create_enrollment_subjects(db, enrollment_id, subject_ids)
        await db.commit()
        logger.info(f"Enrolled {len(subject_ids)} subjects for enrollment {enrollment_id}")
        return len(subject_ids)
    except Exception as e:
        await db.rollback()
        logger.exception(f"Subject enrollment failed for enrollment {enrollment_id}: {e}")
        return 0


async def _send_receipt(db: AsyncSession, payment_id: int) -> None:
    try:
        payment = await repository.get_payment(db, payment_id)
        if payment is None:
            return
        account = await repository.get_account(db, payment.account_id)
        student = await repository.get_student(db, account.student_id) if account else None
        if student is None or not student.email:
            return
        await send_payment_receipt(
            to_email=student.email,
            student_name=student.full_name,
            payment_id=payment_id,
            amount=payment.amount,
            description=payment.payment_type.value.replace("_", " ").title(),
            reference_no=payment.reference_no,
        )
    except Exception as e:
        logger.exception(f"Receipt email failed for payment {payment_id}: {e}")


async def _close_payment(
    db: AsyncSession,
    payment_id: int,
    to_status: PaymentStatus,
    transaction_status: TransactionStatus,
    gateway_status: str,
    gateway_payload: dict[str, Any] | None = None,
) -> bool:
    """Move a Pending payment to a non-completed terminal state."""
    try:
        moved = await repository.transition_payment_status(
            db, payment_id, PaymentStatus.PENDING, to_status
        )
        if moved:
            values: dict[str, Any] = {
                "status": transaction_status,
                "gateway_status": gateway_status,
            }
            if gateway_payload is not None:
                values["webhook_data"] = gateway_payload
            await repository.update_transaction(db, payment_id, **values)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return moved


async def cancel_payment(db: AsyncSession, payment_id: int) -> CompletionResult:
    """
    Cancel a Pending payment.

    Raises:
        PaymentNotFoundError: Unknown payment
        PaymentStateError: Payment already reached a terminal state
    """
    payment = await repository.get_payment(db, payment_id)
    if payment is None:
        raise PaymentNotFoundError(payment_id)

    current_status = payment.status
    cancelled = await _close_payment(
        db, payment_id, PaymentStatus.CANCELLED, TransactionStatus.CANCELLED, "cancelled"
    )
    if not cancelled:
        refreshed = await repository.get_payment(db, payment_id)
        if refreshed is not None:
            current_status = refreshed.status
        raise PaymentStateError(payment_id, current_status.value, "cancel")

    logger.info(f"Payment {payment_id} cancelled")
    return CompletionResult(payment_id, PaymentStatus.CANCELLED, already_processed=False)


async def fail_payment(
    db: AsyncSession,
    payment_id: int,
    gateway_status: str = "failed",
    gateway_payload: dict[str, Any] | None = None,
) -> CompletionResult:
    """
    Mark a Pending payment as Failed.

    Repeated failure reports for a payment no longer Pending are no-ops.
    """
    payment = await repository.get_payment(db, payment_id)
    if payment is None:
        raise PaymentNotFoundError(payment_id)

    failed = await _close_payment(
        db,
        payment_id,
        PaymentStatus.FAILED,
        TransactionStatus.FAILED,
        gateway_status,
        gateway_payload,
    )
    if not failed:
        current = await repository.get_payment(db, payment_id)
        status = current.status if current is not None else payment.status
        logger.info(f"Payment {payment_id} not failed: status is {status.value}")
        return CompletionResult(payment_id, status, already_processed=True)

    logger.info(f"Payment {payment_id} marked failed ({gateway_status})")
    return CompletionResult(payment_id, PaymentStatus.FAILED, already_processed=False)


async def expire_payment(db: AsyncSession, payment_id: int) -> bool:
    """Cancel a Pending payment whose checkout session has expired."""
    expired = await _close_payment(
        db, payment_id, PaymentStatus.CANCELLED, TransactionStatus.EXPIRED, "expired"
    )
    if expired:
        logger.info(f"Payment {payment_id} expired with its checkout session")
    return expired
