"""
PayMongo Webhook Handling

Signature verification over the raw request bytes and dispatch of the
payment events the ledger cares about.

The signature header is a comma-separated list of key=value parts, for
example ``t=1700000000,te=<hex>,li=,s=<hex>``. The ``s`` part holds the
HMAC-SHA256 hex digest of the raw body keyed with the webhook secret.
"""

import hashlib
import hmac
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from tuitionpay.modules.billing import repository
from tuitionpay.modules.billing.completion import complete_payment, fail_payment
from tuitionpay.modules.billing.errors import PaymentNotFoundError, PaymentStateError
from tuitionpay.modules.billing.schemas import WebhookAckResponse

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "paymongo-signature"
SIGNATURE_PART = "s"

EVENT_CHECKOUT_PAID = "checkout_session.payment.paid"
EVENT_PAYMENT_PAID = "payment.paid"
EVENT_PAYMENT_FAILED = "payment.failed"

DEFAULT_PAYMENT_METHOD = "paymongo"


def parse_signature_header(header: str) -> dict[str, str]:
    parts: dict[str, str] = {}
    for chunk in header.split(","):
        key, sep, value = chunk.strip().partition("=")
        if sep and key:
            parts[key] = value
    return parts


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature_header: str | None, secret: str) -> bool:
    """Return True only when the header's ``s`` part matches the body's HMAC."""
    if not signature_header or not secret:
        return False

    signature = parse_signature_header(signature_header).get(SIGNATURE_PART)
    if not signature:
        return False

    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected, signature)


def _event_parts(event: dict[str, Any]) -> tuple[str | None, dict[str, Any]]:
    """Return (event type, event resource) from a PayMongo event envelope."""
    attributes = (event.get("data") or {}).get("attributes") or {}
    return attributes.get("type"), attributes.get("data") or {}


def _payment_id_from(resource: dict[str, Any]) -> int | None:
    metadata = (resource.get("attributes") or {}).get("metadata") or {}
    raw = metadata.get("payment_id")
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _source_type(payment_resource: dict[str, Any]) -> str | None:
    source = (payment_resource.get("attributes") or {}).get("source") or {}
    return source.get("type")


def _checkout_payment_method(resource: dict[str, Any]) -> str:
    payments = (resource.get("attributes") or {}).get("payments") or []
    if payments and isinstance(payments[0], dict):
        return _source_type(payments[0]) or DEFAULT_PAYMENT_METHOD
    return DEFAULT_PAYMENT_METHOD


async def handle_webhook_event(db: AsyncSession, event: dict[str, Any]) -> WebhookAckResponse:
    """
    Apply a verified webhook event.

    Raises:
        PaymentNotFoundError: metadata references an unknown payment
    """
    event_type, resource = _event_parts(event)

    if event_type not in (EVENT_CHECKOUT_PAID, EVENT_PAYMENT_PAID, EVENT_PAYMENT_FAILED):
        logger.info(f"Ignoring webhook event type: {event_type}")
        return WebhookAckResponse(event_type=event_type, status="ignored")

    payment_id = _payment_id_from(resource)
    if payment_id is None:
        logger.warning(f"Webhook {event_type} carried no payment_id metadata")
        return WebhookAckResponse(event_type=event_type, status="ignored")

    payment = await repository.get_payment(db, payment_id)
    if payment is None:
        raise PaymentNotFoundError(payment_id)

    if event_type == EVENT_PAYMENT_FAILED:
        result = await fail_payment(db, payment_id, gateway_status="failed", gateway_payload=event)
        status = "already_processed" if result.already_processed else "failed"
        return WebhookAckResponse(event_type=event_type, status=status, payment_id=payment_id)

    if event_type == EVENT_CHECKOUT_PAID:
        method = _checkout_payment_method(resource)
    else:
        method = _source_type(resource) or DEFAULT_PAYMENT_METHOD

    try:
        result = await complete_payment(
            db,
            payment_id,
            payment,
            method=method,
            reference_no=resource.get("id"),
            gateway_status="paid",
            gateway_payload=event,
        )
    except PaymentStateError as e:
        # Acknowledge so the gateway stops redelivering
        logger.warning(f"Webhook for payment {payment_id} skipped: {e.message}")
        return WebhookAckResponse(event_type=event_type, status="skipped", payment_id=payment_id)

    status = "already_processed" if result.already_processed else "completed"
    return WebhookAckResponse(event_type=event_type, status=status, payment_id=payment_id)
