"""
Billing Generator

Turns an enrollment's tuition scheme into its billing plan:
- full_payment: a single Tuition fee for the discounted total
- installment: a Downpayment fee plus N monthly installments

The account upsert, fee rows and installment rows are written in one
transaction. A second generation for the same enrollment is rejected.
"""

import calendar
import logging
from datetime import UTC, date, datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tuitionpay.core.email import format_peso
from tuitionpay.modules.billing import repository
from tuitionpay.modules.billing.errors import (
    BillingAlreadyGeneratedError,
    EnrollmentNotFoundError,
    InvalidBillingAmountError,
    InvalidSchemeTypeError,
    SchemeNotFoundError,
)
from tuitionpay.modules.billing.models import AccountTransactionType, FeeType
from tuitionpay.modules.billing.schemas import BillingPlanResponse, InstallmentItem
from tuitionpay.modules.enrollments.models import Enrollment, SchemeType, TuitionScheme
from tuitionpay.modules.shared import AMOUNT_TOLERANCE, round2

logger = logging.getLogger(__name__)

DEFAULT_INSTALLMENT_MONTHS = 4


def add_months(start: date, months: int) -> date:
    """Same day `months` later, clamped to the last day of a shorter month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def build_installment_schedule(
    monthly_payment: Decimal, months: int, start: date
) -> list[tuple[int, Decimal, date]]:
    """Installments 1..months, the first due one month after `start`."""
    return [(number, monthly_payment, add_months(start, number)) for number in range(1, months + 1)]


def fee_description(fee_type: FeeType, scheme_name: str) -> str:
    if fee_type == FeeType.DOWNPAYMENT:
        return f"Downpayment - {scheme_name}"
    return f"Full Payment - {scheme_name}"


async def generate_billing(
    db: AsyncSession,
    enrollment_id: int,
    created_by: int | None = None,
) -> BillingPlanResponse:
    """
    Generate the billing plan for an enrollment.

    Raises:
        EnrollmentNotFoundError: Unknown enrollment
        SchemeNotFoundError: Enrollment has no tuition scheme
        InvalidSchemeTypeError: Scheme type is not billable
        InvalidBillingAmountError: Discounted total (or downpayment) is not positive
        BillingAlreadyGeneratedError: Fees or installments already exist
    """
    enrollment = await repository.get_enrollment(db, enrollment_id)
    if enrollment is None:
        raise EnrollmentNotFoundError(enrollment_id)

    scheme = enrollment.scheme
    if scheme is None:
        raise SchemeNotFoundError(enrollment_id)

    if scheme.scheme_type not in (SchemeType.FULL_PAYMENT, SchemeType.INSTALLMENT):
        raise InvalidSchemeTypeError(str(scheme.scheme_type))

    if await repository.has_billing(db, enrollment_id):
        raise BillingAlreadyGeneratedError(enrollment_id)

    discount = round2(scheme.discount or 0)
    total_amount = round2(scheme.amount - discount)
    if total_amount <= 0:
        raise InvalidBillingAmountError(
            f"Billing total for {scheme.scheme_name} must be greater than zero (got {total_amount})."
        )

    try:
        existing = await repository.get_account_by_student(
            db, enrollment.student_id, for_update=True
        )
        balance_before = existing.total_balance if existing else Decimal("0.00")

        account_id = await repository.upsert_account_balance(
            db, enrollment.student_id, total_amount
        )
        await repository.add_account_transaction(
            db,
            account_id=account_id,
            transaction_type=AccountTransactionType.CHARGE,
            amount=total_amount,
            balance_before=balance_before,
            balance_after=total_amount,
            description=f"Billing generated - {scheme.scheme_name}",
            created_by=created_by,
        )

        if scheme.scheme_type == SchemeType.FULL_PAYMENT:
            plan = await _generate_full_payment(
                db, enrollment, scheme, account_id, total_amount, discount, created_by
            )
        else:
            plan = await _generate_installment_plan(
                db, enrollment, scheme, account_id, total_amount, discount, created_by
            )

        await db.commit()
    except IntegrityError as e:
        # A concurrent generation won the unique constraints
        await db.rollback()
        logger.warning(f"Concurrent billing generation rejected for enrollment {enrollment_id}")
        raise BillingAlreadyGeneratedError(enrollment_id) from e
    except Exception:
        await db.rollback()
        raise

    logger.info(
        f"Billing generated: enrollment={enrollment_id}, type={scheme.scheme_type.value}, "
        f"total={total_amount}"
    )
    return plan


async def _generate_full_payment(
    db: AsyncSession,
    enrollment: Enrollment,
    scheme: TuitionScheme,
    account_id: int,
    total_amount: Decimal,
    discount: Decimal,
    created_by: int | None,
) -> BillingPlanResponse:
    fee = await repository.create_fee(
        db,
        enrollment.id,
        FeeType.TUITION,
        fee_description(FeeType.TUITION, scheme.scheme_name),
        total_amount,
    )

    return BillingPlanResponse(
        billing_type=SchemeType.FULL_PAYMENT,
        enrollment_id=enrollment.id,
        account_id=account_id,
        scheme_id=scheme.id,
        scheme_name=scheme.scheme_name,
        total_amount=total_amount,
        discount=discount,
        fee_id=fee.id,
        description=f"Full payment of {format_peso(total_amount)}",
        account_balance=total_amount,
        initial_payment_required=total_amount,
        generated_at=datetime.now(UTC),
        generated_by=created_by,
    )


async def _generate_installment_plan(
    db: AsyncSession,
    enrollment: Enrollment,
    scheme: TuitionScheme,
    account_id: int,
    total_amount: Decimal,
    discount: Decimal,
    created_by: int | None,
) -> BillingPlanResponse:
    downpayment = round2(scheme.downpayment or 0)
    if downpayment <= 0:
        raise InvalidBillingAmountError(
            f"Installment scheme {scheme.scheme_name} requires a positive downpayment."
        )

    months = scheme.months or DEFAULT_INSTALLMENT_MONTHS
    if scheme.monthly_payment is not None:
        monthly_payment = round2(scheme.monthly_payment)
    else:
        monthly_payment = round2((total_amount - downpayment) / months)

    scheduled_total = downpayment + monthly_payment * months
    if abs(scheduled_total - total_amount) > AMOUNT_TOLERANCE:
        logger.warning(
            f"Installment plan mismatch for enrollment {enrollment.id}: "
            f"downpayment {downpayment} + {months} x {monthly_payment} = {scheduled_total}, "
            f"expected {total_amount}"
        )

    downpayment_fee = await repository.create_fee(
        db,
        enrollment.id,
        FeeType.DOWNPAYMENT,
        fee_description(FeeType.DOWNPAYMENT, scheme.scheme_name),
        downpayment,
    )

    schedule = build_installment_schedule(monthly_payment, months, datetime.now(UTC).date())
    installments = await repository.create_installments(db, enrollment.id, schedule)

    return BillingPlanResponse(
        billing_type=SchemeType.INSTALLMENT,
        enrollment_id=enrollment.id,
        account_id=account_id,
        scheme_id=scheme.id,
        scheme_name=scheme.scheme_name,
        total_amount=total_amount,
        discount=discount,
        downpayment_fee_id=downpayment_fee.id,
        downpayment=downpayment,
        monthly_payment=monthly_payment,
        number_of_months=months,
        installments=[InstallmentItem.model_validate(item) for item in installments],
        description=(
            f"Downpayment of {format_peso(downpayment)} + {months} monthly payments of "
            f"{format_peso(monthly_payment)}"
        ),
        account_balance=total_amount,
        initial_payment_required=downpayment,
        generated_at=datetime.now(UTC),
        generated_by=created_by,
    )
