"""
Billing Router

API endpoints for billing generation, enrollment checkout and the
gateway callbacks that complete payments.

Endpoints:
- POST /billing/generate-billing - Generate fees/installments for an enrollment
- POST /billing/create-checkout - Open a checkout for the next amount due
- GET /billing/payment/success - Gateway success redirect (completes payment)
- GET /billing/payment/cancel - Gateway cancel redirect (cancels payment)
- POST /billing/webhook/paymongo - Signed PayMongo webhook
- GET /billing/billing/{enrollment_id} - Billing details for an enrollment
- GET /billing/diagnostic/account/{student_id} - Balance consistency check

Security:
- Webhooks are rejected with 401 unless the HMAC signature over the raw
  body matches (when a webhook secret is configured)
- Checkout creation is rate limited per enrollment
"""

import json
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from tuitionpay.core.config import settings
from tuitionpay.core.database import get_db
from tuitionpay.core.paymongo import PayMongoClient, get_payment_gateway
from tuitionpay.core.rate_limit import enforce_rate_limit
from tuitionpay.modules.billing import checkout, completion, generator, ledger, repository
from tuitionpay.modules.billing.errors import BillingServiceError, InvalidSignatureError
from tuitionpay.modules.billing.schemas import (
    AccountDiagnosticResponse,
    BillingDetailsResponse,
    BillingPlanResponse,
    CheckoutResponse,
    CreateCheckoutRequest,
    GenerateBillingRequest,
    WebhookAckResponse,
)
from tuitionpay.modules.billing.webhook import (
    SIGNATURE_HEADER,
    handle_webhook_event,
    verify_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter()

CHECKOUT_RATE_LIMIT = 5
CHECKOUT_RATE_WINDOW_SECONDS = 60


def http_error(e: BillingServiceError) -> HTTPException:
    """Translate a service error into the API's error body."""
    return HTTPException(
        status_code=e.status_code,
        detail={
            "error": e.error_code,
            "message": e.message,
        },
    )


def internal_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


def frontend_payment_redirect(**params: str | int) -> RedirectResponse:
    query = urlencode(params)
    return RedirectResponse(
        url=f"{settings.frontend_url}/student/payment?{query}",
        status_code=status.HTTP_303_SEE_OTHER,
    )


@router.post(
    "/generate-billing",
    response_model=BillingPlanResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate Billing Plan",
    description="""
Generate the billing plan for an enrollment from its tuition scheme.

- **full_payment** schemes get one Tuition fee for the discounted total
- **installment** schemes get a Downpayment fee and N monthly installments

The student's account balance is set to the discounted total. Generating
twice for the same enrollment is rejected.
""",
)
async def generate_billing(
    data: GenerateBillingRequest,
    db: AsyncSession = Depends(get_db),
) -> BillingPlanResponse:
    try:
        return await generator.generate_billing(db, data.enrollment_id, data.created_by)
    except BillingServiceError as e:
        logger.warning(f"Billing generation rejected for enrollment {data.enrollment_id}: {e.message}")
        raise http_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error generating billing: {e}")
        raise internal_error() from e


@router.post(
    "/create-checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Enrollment Checkout",
    description="""
Open a hosted checkout for the next amount due on an enrollment: all unpaid
fees for full-payment schemes, otherwise the downpayment and then the
earliest pending installment.

A Pending payment is recorded before the gateway is called. If the gateway
fails the payment stays Pending and a 500 is returned.
""",
)
async def create_checkout(
    data: CreateCheckoutRequest,
    db: AsyncSession = Depends(get_db),
    gateway: PayMongoClient | None = Depends(get_payment_gateway),
) -> CheckoutResponse:
    await enforce_rate_limit(
        f"checkout:enrollment:{data.enrollment_id}",
        CHECKOUT_RATE_LIMIT,
        CHECKOUT_RATE_WINDOW_SECONDS,
    )

    try:
        return await checkout.create_checkout(db, gateway, data.enrollment_id, data.created_by)
    except BillingServiceError as e:
        logger.error(f"Checkout failed for enrollment {data.enrollment_id}: {e.message}")
        raise http_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error creating checkout: {e}")
        raise internal_error() from e


@router.get(
    "/payment/success",
    summary="Gateway Success Redirect",
    response_class=RedirectResponse,
)
async def payment_success(
    payment_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
) -> RedirectResponse:
    """Complete the payment (idempotently) and send the browser to the frontend."""
    try:
        transaction = await repository.get_transaction_by_payment(db, payment_id)
        result = await completion.complete_payment(
            db,
            payment_id,
            reference_no=transaction.checkout_id if transaction else None,
            gateway_status="redirect_success",
        )
        logger.info(
            f"Success redirect for payment {payment_id} "
            f"(already_processed={result.already_processed})"
        )
        return frontend_payment_redirect(status="success", payment_id=payment_id)
    except BillingServiceError as e:
        logger.warning(f"Success redirect for payment {payment_id} failed: {e.message}")
        return frontend_payment_redirect(status="error", message=e.message)
    except Exception as e:
        logger.exception(f"Unexpected error on success redirect for payment {payment_id}: {e}")
        return frontend_payment_redirect(status="error", message="Payment processing failed")


@router.get(
    "/payment/cancel",
    summary="Gateway Cancel Redirect",
    response_class=RedirectResponse,
)
async def payment_cancel(
    payment_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
) -> RedirectResponse:
    """Cancel a still-Pending payment and send the browser to the frontend."""
    try:
        await completion.cancel_payment(db, payment_id)
        return frontend_payment_redirect(status="cancelled", payment_id=payment_id)
    except BillingServiceError as e:
        logger.warning(f"Cancel redirect for payment {payment_id} failed: {e.message}")
        return frontend_payment_redirect(status="error", message=e.message)
    except Exception as e:
        logger.exception(f"Unexpected error on cancel redirect for payment {payment_id}: {e}")
        return frontend_payment_redirect(status="error", message="Payment cancellation failed")


@router.post(
    "/webhook/paymongo",
    response_model=WebhookAckResponse,
    summary="PayMongo Webhook",
    responses={
        401: {"description": "Signature missing or invalid"},
        404: {"description": "Payment referenced by the event does not exist"},
    },
)
async def paymongo_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> WebhookAckResponse:
    """
    Receive PayMongo events.

    The signature is checked against the raw request bytes before the body
    is parsed.
    """
    raw_body = await request.body()

    if settings.webhook_verification_enabled:
        signature_header = request.headers.get(SIGNATURE_HEADER)
        if not verify_signature(raw_body, signature_header, settings.paymongo_webhook_secret or ""):
            logger.warning("Rejected PayMongo webhook with invalid signature")
            raise http_error(InvalidSignatureError())
    else:
        logger.warning("PayMongo webhook secret not configured, skipping signature verification")

    try:
        event = json.loads(raw_body or b"{}")
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "INVALID_PAYLOAD", "message": "Webhook body is not valid JSON."},
        ) from e

    if not isinstance(event, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "INVALID_PAYLOAD", "message": "Webhook body must be a JSON object."},
        )

    try:
        return await handle_webhook_event(db, event)
    except BillingServiceError as e:
        logger.error(f"Webhook processing failed: {e.message}")
        raise http_error(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error processing webhook: {e}")
        raise internal_error() from e


@router.get(
    "/billing/{enrollment_id}",
    response_model=BillingDetailsResponse,
    summary="Get Billing Details",
)
async def get_billing_details(
    enrollment_id: int,
    db: AsyncSession = Depends(get_db),
) -> BillingDetailsResponse:
    try:
        return await ledger.get_billing_details(db, enrollment_id)
    except BillingServiceError as e:
        raise http_error(e) from e


@router.get(
    "/diagnostic/account/{student_id}",
    response_model=AccountDiagnosticResponse,
    summary="Account Balance Diagnostic",
)
async def account_diagnostic(
    student_id: int,
    db: AsyncSession = Depends(get_db),
) -> AccountDiagnosticResponse:
    try:
        return await ledger.get_account_diagnostic(db, student_id)
    except BillingServiceError as e:
        raise http_error(e) from e
