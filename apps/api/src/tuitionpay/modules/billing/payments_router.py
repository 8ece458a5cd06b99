"""
Payments Router

Student-facing payment endpoints: balances, history, status, balance
checkout, cancellation and offline mock completion.

Endpoints:
- GET /payments/balance/{student_id} - Account balance and what is due
- POST /payments/create-checkout - Pay the outstanding balance (or part of it)
- POST /payments/mock-complete/{payment_id} - Settle a payment without the gateway
- GET /payments/history/{student_id} - Paginated payment history
- GET /payments/status/{payment_id} - Payment and checkout status
- POST /payments/cancel/{payment_id} - Cancel a Pending payment
"""

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tuitionpay.core.config import settings
from tuitionpay.core.database import get_db
from tuitionpay.core.paymongo import PayMongoClient, get_payment_gateway
from tuitionpay.core.rate_limit import enforce_rate_limit
from tuitionpay.modules.billing import checkout, completion, ledger
from tuitionpay.modules.billing.errors import BillingServiceError, MockPaymentsDisabledError
from tuitionpay.modules.billing.models import PaymentStatus
from tuitionpay.modules.billing.router import (
    CHECKOUT_RATE_LIMIT,
    CHECKOUT_RATE_WINDOW_SECONDS,
    http_error,
    internal_error,
)
from tuitionpay.modules.billing.schemas import (
    BalanceCheckoutRequest,
    BalanceResponse,
    CheckoutResponse,
    MockCompleteRequest,
    PaymentActionResponse,
    PaymentHistoryResponse,
    PaymentStatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/balance/{student_id}", response_model=BalanceResponse, summary="Get Account Balance")
async def get_balance(
    student_id: int,
    db: AsyncSession = Depends(get_db),
) -> BalanceResponse:
    try:
        return await ledger.get_balance(db, student_id)
    except BillingServiceError as e:
        raise http_error(e) from e


@router.post(
    "/create-checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Balance Checkout",
    description="""
Open a checkout against the student's outstanding balance. When
`custom_amount` is given, the smaller of it and the balance is charged.
""",
)
async def create_balance_checkout(
    data: BalanceCheckoutRequest,
    db: AsyncSession = Depends(get_db),
    gateway: PayMongoClient | None = Depends(get_payment_gateway),
) -> CheckoutResponse:
    await enforce_rate_limit(
        f"checkout:student:{data.student_id}",
        CHECKOUT_RATE_LIMIT,
        CHECKOUT_RATE_WINDOW_SECONDS,
    )

    try:
        return await checkout.create_balance_checkout(
            db, gateway, data.student_id, data.created_by, data.custom_amount
        )
    except BillingServiceError as e:
        logger.error(f"Balance checkout failed for student {data.student_id}: {e.message}")
        raise http_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error creating balance checkout: {e}")
        raise internal_error() from e


@router.post(
    "/mock-complete/{payment_id}",
    response_model=PaymentActionResponse,
    summary="Mock Payment Completion",
    description="""
Settle or fail a payment without the gateway. Only available while live
payments are disabled; returns 403 otherwise.
""",
)
async def mock_complete(
    payment_id: int,
    data: MockCompleteRequest,
    db: AsyncSession = Depends(get_db),
) -> PaymentActionResponse:
    try:
        if settings.gateway_enabled:
            raise MockPaymentsDisabledError()

        if not data.success:
            result = await completion.fail_payment(db, payment_id, gateway_status="mock_failed")
            return PaymentActionResponse(
                success=not result.already_processed,
                payment_id=payment_id,
                status=result.status,
                already_processed=result.already_processed,
                message="Payment marked as failed"
                if not result.already_processed
                else f"Payment is already {result.status.value}",
            )

        reference_no = f"MOCK_{payment_id}_{int(time.time() * 1000)}"
        result = await completion.complete_payment(
            db,
            payment_id,
            method=data.payment_method,
            reference_no=reference_no,
            gateway_status="mock_paid",
            completed_by=data.completed_by,
        )
        return PaymentActionResponse(
            success=True,
            payment_id=payment_id,
            status=PaymentStatus.COMPLETED,
            already_processed=result.already_processed,
            message="Payment already processed"
            if result.already_processed
            else "Payment completed successfully",
        )
    except BillingServiceError as e:
        logger.warning(f"Mock completion rejected for payment {payment_id}: {e.message}")
        raise http_error(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error in mock completion: {e}")
        raise internal_error() from e


@router.get(
    "/history/{student_id}",
    response_model=PaymentHistoryResponse,
    summary="Get Payment History",
)
async def get_payment_history(
    student_id: int,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> PaymentHistoryResponse:
    try:
        return await ledger.get_payment_history(db, student_id, limit, offset)
    except BillingServiceError as e:
        raise http_error(e) from e


@router.get(
    "/status/{payment_id}",
    response_model=PaymentStatusResponse,
    summary="Get Payment Status",
)
async def get_payment_status(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
) -> PaymentStatusResponse:
    try:
        return await ledger.get_payment_status(db, payment_id)
    except BillingServiceError as e:
        raise http_error(e) from e


@router.post(
    "/cancel/{payment_id}",
    response_model=PaymentActionResponse,
    summary="Cancel Pending Payment",
)
async def cancel_payment(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
) -> PaymentActionResponse:
    try:
        result = await completion.cancel_payment(db, payment_id)
        return PaymentActionResponse(
            success=True,
            payment_id=payment_id,
            status=result.status,
            message="Payment cancelled",
        )
    except BillingServiceError as e:
        logger.warning(f"Cancel rejected for payment {payment_id}: {e.message}")
        raise http_error(e) from e
