"""
PayMongo API Client

Thin async wrapper over the PayMongo REST API for hosted checkout sessions.
Amounts are passed in pesos and converted to centavos here.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx

from tuitionpay.core.config import settings

logger = logging.getLogger(__name__)

CENTAVOS_PER_PESO = 100
DEFAULT_PAYMENT_METHOD_TYPES = ["gcash", "paymaya", "card", "grab_pay"]


class PayMongoError(Exception):
    """Raised when PayMongo rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


@dataclass
class CheckoutSession:
    id: str
    checkout_url: str
    raw: dict[str, Any]


def to_centavos(amount: Decimal) -> int:
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return int(value * CENTAVOS_PER_PESO)


def _error_detail(response: httpx.Response) -> str:
    try:
        errors = response.json().get("errors") or []
    except ValueError:
        return response.text
    if errors and isinstance(errors[0], dict):
        return errors[0].get("detail") or str(errors[0])
    return response.text


class PayMongoClient:
    """
    Async client for PayMongo checkout sessions.

    Authentication is HTTP Basic with the secret key as username and an
    empty password.
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paymongo.com/v1",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._secret_key = secret_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            auth=(self._secret_key, ""),
            timeout=self._timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )

    async def create_checkout_session(
        self,
        *,
        amount: Decimal,
        name: str,
        description: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, Any],
        currency: str = "PHP",
        payment_method_types: list[str] | None = None,
    ) -> CheckoutSession:
        payload = {
            "data": {
                "attributes": {
                    "send_email_receipt": True,
                    "show_description": True,
                    "show_line_items": True,
                    "line_items": [
                        {
                            "currency": currency,
                            "amount": to_centavos(amount),
                            "description": description,
                            "name": name,
                            "quantity": 1,
                        }
                    ],
                    "payment_method_types": payment_method_types or DEFAULT_PAYMENT_METHOD_TYPES,
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                    "description": description,
                    "metadata": {key: str(value) for key, value in metadata.items()},
                }
            }
        }

        try:
            async with self._client() as client:
                resp = await client.post("/checkout_sessions", json=payload)
        except httpx.RequestError as e:
            logger.error(f"PayMongo request failed: {e}")
            raise PayMongoError(f"Could not reach PayMongo: {e}") from e

        if resp.status_code >= 400:
            detail = _error_detail(resp)
            logger.error(f"PayMongo checkout creation failed ({resp.status_code}): {detail}")
            raise PayMongoError(
                f"PayMongo checkout creation failed: {detail}",
                status_code=resp.status_code,
                details=detail,
            )

        data = resp.json().get("data") or {}
        checkout_url = (data.get("attributes") or {}).get("checkout_url")
        if not data.get("id") or not checkout_url:
            raise PayMongoError("PayMongo response missing checkout session id or URL", details=data)

        logger.info(f"PayMongo checkout session created: {data['id']}")
        return CheckoutSession(id=data["id"], checkout_url=checkout_url, raw=data)


def get_payment_gateway() -> PayMongoClient | None:
    """
    FastAPI dependency for the checkout gateway.

    Returns None when live payments are not configured, which puts
    checkout creation into mock mode.
    """
    if not settings.gateway_enabled:
        return None
    return PayMongoClient(
        secret_key=settings.paymongo_secret_key or "",
        base_url=settings.paymongo_api_base_url,
        timeout=settings.paymongo_timeout_seconds,
    )
