"""
Ledger Views

Read-only queries over the billing ledger: balances, payment history,
payment status, per-enrollment billing details and account diagnostics.
"""

import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from tuitionpay.modules.billing import repository
from tuitionpay.modules.billing.errors import (
    AccountNotFoundError,
    EnrollmentNotFoundError,
    PaymentNotFoundError,
)
from tuitionpay.modules.billing.models import FeeType, InstallmentStatus
from tuitionpay.modules.billing.schemas import (
    AccountDiagnosticResponse,
    BalanceResponse,
    BillingDetailsResponse,
    BillingSummary,
    FeeItem,
    InstallmentItem,
    InstallmentSummary,
    PaymentHistoryResponse,
    PaymentResponse,
    PaymentStatusResponse,
    TransactionResponse,
)
from tuitionpay.modules.shared import AMOUNT_TOLERANCE, round2

logger = logging.getLogger(__name__)

RECENT_PAYMENTS_LIMIT = 5


async def get_balance(db: AsyncSession, student_id: int) -> BalanceResponse:
    account = await repository.get_account_by_student(db, student_id)
    if account is None:
        raise AccountNotFoundError(student_id)

    pending = await repository.list_pending_installments_for_student(db, student_id)
    recent, _ = await repository.list_payments_for_account(
        db, account.id, limit=RECENT_PAYMENTS_LIMIT
    )

    return BalanceResponse(
        student_id=student_id,
        account_id=account.id,
        total_balance=account.total_balance,
        last_updated=account.last_updated,
        pending_installments=[InstallmentItem.model_validate(i) for i in pending],
        recent_payments=[PaymentResponse.model_validate(p) for p in recent],
    )


async def get_payment_history(
    db: AsyncSession, student_id: int, limit: int = 20, offset: int = 0
) -> PaymentHistoryResponse:
    account = await repository.get_account_by_student(db, student_id)
    if account is None:
        raise AccountNotFoundError(student_id)

    payments, total = await repository.list_payments_for_account(db, account.id, limit, offset)
    return PaymentHistoryResponse(
        student_id=student_id,
        account_id=account.id,
        payments=[PaymentResponse.model_validate(p) for p in payments],
        total=total,
        limit=limit,
        offset=offset,
    )


async def get_payment_status(db: AsyncSession, payment_id: int) -> PaymentStatusResponse:
    payment = await repository.get_payment(db, payment_id)
    if payment is None:
        raise PaymentNotFoundError(payment_id)

    transaction = await repository.get_transaction_by_payment(db, payment_id)
    return PaymentStatusResponse(
        payment=PaymentResponse.model_validate(payment),
        transaction=TransactionResponse.model_validate(transaction) if transaction else None,
    )


async def get_billing_details(db: AsyncSession, enrollment_id: int) -> BillingDetailsResponse:
    """Fees, installments and payment progress for one enrollment."""
    enrollment = await repository.get_enrollment(db, enrollment_id)
    if enrollment is None:
        raise EnrollmentNotFoundError(enrollment_id)

    fees = await repository.list_fees(db, enrollment_id)
    installments = await repository.list_installments(db, enrollment_id)

    total_amount = sum((f.amount for f in fees), Decimal("0")) + sum(
        (i.amount for i in installments), Decimal("0")
    )
    total_paid = sum((f.amount for f in fees if f.is_paid), Decimal("0")) + sum(
        (i.amount for i in installments if i.status == InstallmentStatus.PAID), Decimal("0")
    )
    total_balance = total_amount - total_paid
    progress = round2(total_paid / total_amount * 100) if total_amount > 0 else Decimal("0.00")

    installment_summary = None
    if installments:
        pending = [i for i in installments if i.status == InstallmentStatus.PENDING]
        installment_summary = InstallmentSummary(
            total_installments=len(installments),
            paid_installments=len(installments) - len(pending),
            pending_installments=len(pending),
            next_due=InstallmentItem.model_validate(pending[0]) if pending else None,
        )

    downpayment_status = None
    downpayment = next((f for f in fees if f.fee_type == FeeType.DOWNPAYMENT), None)
    if downpayment is not None:
        downpayment_status = "paid" if downpayment.is_paid else "unpaid"

    scheme = enrollment.scheme
    return BillingDetailsResponse(
        enrollment_id=enrollment_id,
        scheme_id=scheme.id if scheme else None,
        scheme_name=scheme.scheme_name if scheme else None,
        scheme_type=scheme.scheme_type if scheme else None,
        fees=[FeeItem.model_validate(f) for f in fees],
        installments=[InstallmentItem.model_validate(i) for i in installments],
        summary=BillingSummary(
            total_amount=round2(total_amount),
            total_paid=round2(total_paid),
            total_balance=round2(total_balance),
            payment_progress_percentage=progress,
            is_fully_paid=bool(fees or installments) and total_balance <= 0,
        ),
        installment_summary=installment_summary,
        downpayment_status=downpayment_status,
    )


async def get_account_diagnostic(db: AsyncSession, student_id: int) -> AccountDiagnosticResponse:
    """
    Compare the stored balance with billed minus completed payments.

    Fee and installment payments do not reduce the stored balance, so a
    mismatch here is expected for students paying by plan and points to
    real drift only for balance-paying students.
    """
    account = await repository.get_account_by_student(db, student_id)
    if account is None:
        raise AccountNotFoundError(student_id)

    total_billed = round2(await repository.sum_billed_for_student(db, student_id))
    total_paid = round2(await repository.sum_completed_payments(db, account.id))
    expected = max(Decimal("0.00"), total_billed - total_paid)
    actual = round2(account.total_balance)
    difference = round2(actual - expected)
    has_mismatch = abs(difference) > AMOUNT_TOLERANCE

    if has_mismatch:
        logger.warning(
            f"Balance mismatch for student {student_id}: stored {actual}, expected {expected}"
        )

    return AccountDiagnosticResponse(
        student_id=student_id,
        account_id=account.id,
        actual_balance=actual,
        total_billed=total_billed,
        total_paid=total_paid,
        expected_balance=expected,
        difference=difference,
        has_mismatch=has_mismatch,
    )
