"""
Tests for the PayMongo checkout client.

Requests are served by httpx.MockTransport so nothing leaves the process.
"""

import json
from decimal import Decimal

import httpx
import pytest

from tuitionpay.core.paymongo import PayMongoClient, PayMongoError, to_centavos


def _client(handler) -> PayMongoClient:
    return PayMongoClient(
        secret_key="sk_test_abc",
        base_url="https://api.paymongo.test/v1",
        transport=httpx.MockTransport(handler),
    )


async def _create(client: PayMongoClient):
    return await client.create_checkout_session(
        amount=Decimal("24000.50"),
        name="Full Payment",
        description="Full Payment - BSIT Full Payment",
        success_url="http://localhost:8000/api/v1/billing/payment/success?payment_id=1",
        cancel_url="http://localhost:8000/api/v1/billing/payment/cancel?payment_id=1",
        metadata={"payment_id": 1, "enrollment_id": 9},
    )


class TestToCentavos:
    def test_whole_pesos(self):
        assert to_centavos(Decimal("6000")) == 600000

    def test_rounds_half_up(self):
        assert to_centavos(Decimal("10.005")) == 1001


class TestCreateCheckoutSession:
    """Tests for checkout session creation."""

    @pytest.mark.asyncio
    async def test_success(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["request"] = request
            return httpx.Response(
                200,
                json={
                    "data": {
                        "id": "cs_live_1",
                        "attributes": {"checkout_url": "https://checkout.paymongo.com/cs_live_1"},
                    }
                },
            )

        session = await _create(_client(handler))

        assert session.id == "cs_live_1"
        assert session.checkout_url == "https://checkout.paymongo.com/cs_live_1"

        request = captured["request"]
        assert request.method == "POST"
        assert request.url.path == "/v1/checkout_sessions"
        assert request.headers["authorization"].startswith("Basic ")

        attributes = json.loads(request.content)["data"]["attributes"]
        assert attributes["line_items"][0]["amount"] == 2400050
        assert attributes["line_items"][0]["currency"] == "PHP"
        assert attributes["metadata"] == {"payment_id": "1", "enrollment_id": "9"}
        assert "gcash" in attributes["payment_method_types"]

    @pytest.mark.asyncio
    async def test_error_response_carries_detail(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400,
                json={"errors": [{"code": "parameter_invalid", "detail": "amount is too low"}]},
            )

        with pytest.raises(PayMongoError) as exc_info:
            await _create(_client(handler))

        assert exc_info.value.status_code == 400
        assert exc_info.value.details == "amount is too low"

    @pytest.mark.asyncio
    async def test_network_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(PayMongoError) as exc_info:
            await _create(_client(handler))

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_missing_checkout_url(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": {"id": "cs_1", "attributes": {}}})

        with pytest.raises(PayMongoError):
            await _create(_client(handler))
