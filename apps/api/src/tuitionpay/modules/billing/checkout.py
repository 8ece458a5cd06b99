"""
Checkout Session Manager

Decides what the student owes next, records a Pending payment for it and
opens a hosted checkout session with the payment gateway.

When live payments are not configured, a mock checkout URL is issued
instead so the flow can be exercised end to end.
"""

import logging
import secrets
import time
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from tuitionpay.core.config import settings
from tuitionpay.core.paymongo import PayMongoClient, PayMongoError
from tuitionpay.modules.billing import repository
from tuitionpay.modules.billing.errors import (
    AccountNotFoundError,
    BillingNotGeneratedError,
    EnrollmentNotFoundError,
    InvalidAmountError,
    InvalidSchemeTypeError,
    NoOutstandingBalanceError,
    NoPendingInstallmentsError,
    NoUnpaidFeesError,
    PaymentGatewayError,
    SchemeNotFoundError,
)
from tuitionpay.modules.billing.generator import fee_description
from tuitionpay.modules.billing.models import Account, FeeType, PaymentType
from tuitionpay.modules.billing.schemas import CheckoutResponse
from tuitionpay.modules.enrollments.models import Enrollment, SchemeType, TuitionScheme
from tuitionpay.modules.shared import round2

logger = logging.getLogger(__name__)

# Metadata category tells webhook consumers which flow opened the session
CATEGORY_ENROLLMENT = "enrollment"
CATEGORY_TUITION = "tuition"


def _epoch_millis() -> int:
    return int(time.time() * 1000)


def success_url(payment_id: int) -> str:
    return f"{settings.base_url}/api/v1/billing/payment/success?payment_id={payment_id}"


def cancel_url(payment_id: int) -> str:
    return f"{settings.base_url}/api/v1/billing/payment/cancel?payment_id={payment_id}"


async def create_checkout(
    db: AsyncSession,
    gateway: PayMongoClient | None,
    enrollment_id: int,
    created_by: int | None = None,
) -> CheckoutResponse:
    """
    Open a checkout for the next amount due on an enrollment.

    - full_payment scheme: every unpaid fee
    - installment scheme: the downpayment until it is paid, then the
      earliest pending installment

    Raises:
        EnrollmentNotFoundError, SchemeNotFoundError, AccountNotFoundError,
        BillingNotGeneratedError, NoUnpaidFeesError, NoPendingInstallmentsError,
        InvalidAmountError, PaymentGatewayError
    """
    enrollment = await repository.get_enrollment(db, enrollment_id)
    if enrollment is None:
        raise EnrollmentNotFoundError(enrollment_id)

    scheme = enrollment.scheme
    if scheme is None:
        raise SchemeNotFoundError(enrollment_id)

    account = await repository.get_account_by_student(db, enrollment.student_id)
    if account is None:
        raise AccountNotFoundError(enrollment.student_id)

    installment_number = None

    if scheme.scheme_type == SchemeType.FULL_PAYMENT:
        unpaid_fees = await repository.list_fees(db, enrollment_id, unpaid_only=True)
        if not unpaid_fees:
            raise NoUnpaidFeesError(enrollment_id)
        amount = sum((fee.amount for fee in unpaid_fees), Decimal("0"))
        payment_type = PaymentType.FULL_PAYMENT
        description = fee_description(FeeType.TUITION, scheme.scheme_name)

    elif scheme.scheme_type == SchemeType.INSTALLMENT:
        downpayment_fee = await repository.get_fee(db, enrollment_id, FeeType.DOWNPAYMENT)
        if downpayment_fee is None:
            raise BillingNotGeneratedError(enrollment_id)

        if not downpayment_fee.is_paid:
            amount = downpayment_fee.amount
            payment_type = PaymentType.DOWNPAYMENT
            description = fee_description(FeeType.DOWNPAYMENT, scheme.scheme_name)
        else:
            installment = await repository.get_earliest_pending_installment(db, enrollment_id)
            if installment is None:
                raise NoPendingInstallmentsError(enrollment_id)
            total_installments = len(await repository.list_installments(db, enrollment_id))
            amount = installment.amount
            payment_type = PaymentType.INSTALLMENT
            installment_number = installment.installment_number
            description = (
                f"Installment {installment_number}/{total_installments} - {scheme.scheme_name}"
            )

    else:
        raise InvalidSchemeTypeError(str(scheme.scheme_type))

    amount = round2(amount)
    if amount <= 0:
        raise InvalidAmountError()

    return await _open_checkout(
        db,
        gateway,
        account=account,
        enrollment=enrollment,
        scheme=scheme,
        amount=amount,
        payment_type=payment_type,
        description=description,
        category=CATEGORY_ENROLLMENT,
        created_by=created_by,
        installment_number=installment_number,
    )


async def create_balance_checkout(
    db: AsyncSession,
    gateway: PayMongoClient | None,
    student_id: int,
    created_by: int | None = None,
    custom_amount: Decimal | None = None,
) -> CheckoutResponse:
    """
    Open a checkout against the student's outstanding account balance.

    The payable balance is capped at what the student's unpaid fees and
    pending installments still add up to. A positive custom_amount pays
    part of it, never more.
    """
    account = await repository.get_account_by_student(db, student_id)
    if account is None:
        raise AccountNotFoundError(student_id)

    outstanding = await repository.sum_outstanding_for_student(db, student_id)
    balance = round2(min(account.total_balance, outstanding))
    if balance <= 0:
        raise NoOutstandingBalanceError(student_id)

    amount = balance
    if custom_amount is not None and custom_amount > 0:
        amount = min(round2(custom_amount), balance)

    if amount <= 0:
        raise InvalidAmountError()

    return await _open_checkout(
        db,
        gateway,
        account=account,
        enrollment=None,
        scheme=None,
        amount=amount,
        payment_type=PaymentType.BALANCE,
        description="Tuition Balance Payment",
        category=CATEGORY_TUITION,
        created_by=created_by,
    )


async def _open_checkout(
    db: AsyncSession,
    gateway: PayMongoClient | None,
    *,
    account: Account,
    enrollment: Enrollment | None,
    scheme: TuitionScheme | None,
    amount: Decimal,
    payment_type: PaymentType,
    description: str,
    category: str,
    created_by: int | None,
    installment_number: int | None = None,
) -> CheckoutResponse:
    """Persist the Pending payment, then create and record the gateway session."""
    key_scope = enrollment.id if enrollment is not None else f"account{account.id}"
    # Random suffix keeps keys unique within one millisecond
    idempotency_key = (
        f"{key_scope}-{payment_type.value}-{_epoch_millis()}-{secrets.token_hex(4)}"
    )

    account_id = account.id
    student_id = account.student_id
    enrollment_id = enrollment.id if enrollment is not None else None
    scheme_id = scheme.id if scheme is not None else None
    scheme_name = scheme.scheme_name if scheme is not None else None

    try:
        payment = await repository.create_payment(
            db,
            account_id=account_id,
            enrollment_id=enrollment_id,
            amount=amount,
            payment_type=payment_type,
            idempotency_key=idempotency_key,
            for_semester_id=enrollment.semester_id if enrollment is not None else None,
            created_by=created_by,
        )
        payment_id = payment.id
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    metadata: dict[str, Any] = {
        "payment_id": payment_id,
        "enrollment_id": enrollment_id or "",
        "student_id": student_id,
        "account_id": account_id,
        "payment_type": payment_type.value,
        "payment_category": category,
        "scheme_id": scheme_id or "",
        "idempotency_key": idempotency_key,
    }

    if gateway is None:
        is_mock = True
        checkout_id = f"mock_checkout_{payment_id}_{_epoch_millis()}"
        checkout_url = f"{settings.base_url}/payment/mock-checkout?payment_id={payment_id}"
        logger.info(f"Live payments disabled, issuing mock checkout for payment {payment_id}")
    else:
        is_mock = False
        try:
            session = await gateway.create_checkout_session(
                amount=amount,
                name=description,
                description=description,
                success_url=success_url(payment_id),
                cancel_url=cancel_url(payment_id),
                metadata=metadata,
                currency=settings.payment_currency,
            )
        except PayMongoError as e:
            logger.error(f"Checkout session failed for payment {payment_id}: {e.message}")
            raise PaymentGatewayError(
                f"Failed to create checkout session: {e.message}", details=e.details
            ) from e
        checkout_id = session.id
        checkout_url = session.checkout_url

    expires_at = datetime.now(UTC) + timedelta(hours=settings.checkout_expiry_hours)

    try:
        await repository.create_transaction(
            db,
            payment_id=payment_id,
            checkout_id=checkout_id,
            checkout_url=checkout_url,
            amount=amount,
            currency=settings.payment_currency,
            expires_at=expires_at,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        f"Checkout created: payment={payment_id}, type={payment_type.value}, amount={amount}, "
        f"mock={is_mock}"
    )

    return CheckoutResponse(
        payment_id=payment_id,
        checkout_url=checkout_url,
        checkout_id=checkout_id,
        amount=amount,
        payment_type=payment_type,
        description=description,
        scheme_id=scheme_id,
        scheme_name=scheme_name,
        installment_number=installment_number,
        is_mock=is_mock,
        expires_at=expires_at,
    )
