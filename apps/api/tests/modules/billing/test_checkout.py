"""
Tests for checkout session creation.

These tests cover:
- Amount selection per scheme (full payment, downpayment, next installment)
- Mock checkout when live payments are disabled
- Gateway calls, metadata and failure handling
- Balance checkouts
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from tuitionpay.core.paymongo import PayMongoError
from tuitionpay.modules.billing import repository
from tuitionpay.modules.billing.checkout import create_balance_checkout, create_checkout
from tuitionpay.modules.billing.completion import complete_payment
from tuitionpay.modules.billing.errors import (
    AccountNotFoundError,
    NoOutstandingBalanceError,
    NoPendingInstallmentsError,
    NoUnpaidFeesError,
    PaymentGatewayError,
)
from tuitionpay.modules.billing.generator import generate_billing
from tuitionpay.modules.billing.models import (
    InstallmentStatus,
    PaymentStatus,
    PaymentType,
    TransactionStatus,
)


class TestCreateCheckoutAmounts:
    """Tests for choosing what the next checkout charges."""

    @pytest.mark.asyncio
    async def test_full_payment_charges_all_unpaid_fees(
        self, db, full_payment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)

        response = await create_checkout(db, None, enrollment.id)

        assert response.payment_type == PaymentType.FULL_PAYMENT
        assert response.amount == Decimal("24000.00")
        assert response.description == "Full Payment - BSIT Full Payment"
        assert response.scheme_name == "BSIT Full Payment"

        payment = await repository.get_payment(db, response.payment_id)
        assert payment.status == PaymentStatus.PENDING
        assert payment.enrollment_id == enrollment.id
        assert payment.idempotency_key.startswith(f"{enrollment.id}-full_payment-")

    @pytest.mark.asyncio
    async def test_installment_scheme_charges_downpayment_first(
        self, db, installment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(installment_scheme)
        await generate_billing(db, enrollment.id)

        response = await create_checkout(db, None, enrollment.id)

        assert response.payment_type == PaymentType.DOWNPAYMENT
        assert response.amount == Decimal("6000.00")
        assert response.description == "Downpayment - BSIT Installment"
        assert response.installment_number is None

    @pytest.mark.asyncio
    async def test_after_downpayment_charges_earliest_pending_installment(
        self, db, installment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(installment_scheme)
        await generate_billing(db, enrollment.id)
        downpayment = await create_checkout(db, None, enrollment.id)
        await complete_payment(db, downpayment.payment_id)

        response = await create_checkout(db, None, enrollment.id)

        assert response.payment_type == PaymentType.INSTALLMENT
        assert response.installment_number == 1
        assert response.amount == Decimal("6000.00")
        assert response.description == "Installment 1/4 - BSIT Installment"

    @pytest.mark.asyncio
    async def test_fully_paid_full_payment_has_nothing_due(
        self, db, full_payment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)
        first = await create_checkout(db, None, enrollment.id)
        await complete_payment(db, first.payment_id)

        with pytest.raises(NoUnpaidFeesError):
            await create_checkout(db, None, enrollment.id)

    @pytest.mark.asyncio
    async def test_all_installments_paid_has_nothing_due(
        self, db, installment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(installment_scheme)
        await generate_billing(db, enrollment.id)
        for _ in range(5):
            checkout = await create_checkout(db, None, enrollment.id)
            await complete_payment(db, checkout.payment_id)

        installments = await repository.list_installments(db, enrollment.id)
        assert all(i.status == InstallmentStatus.PAID for i in installments)

        with pytest.raises(NoPendingInstallmentsError):
            await create_checkout(db, None, enrollment.id)

    @pytest.mark.asyncio
    async def test_without_billing_account(self, db, full_payment_scheme, make_enrollment):
        enrollment = await make_enrollment(full_payment_scheme)

        with pytest.raises(AccountNotFoundError) as exc_info:
            await create_checkout(db, None, enrollment.id)

        assert exc_info.value.status_code == 404


class TestMockCheckout:
    @pytest.mark.asyncio
    async def test_mock_checkout_urls_and_transaction(
        self, db, full_payment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)

        response = await create_checkout(db, None, enrollment.id)

        assert response.is_mock is True
        assert response.checkout_url.endswith(
            f"/payment/mock-checkout?payment_id={response.payment_id}"
        )
        assert response.checkout_id.startswith(f"mock_checkout_{response.payment_id}_")

        transaction = await repository.get_transaction_by_payment(db, response.payment_id)
        assert transaction.checkout_id == response.checkout_id
        assert transaction.status == TransactionStatus.PENDING
        assert transaction.currency == "PHP"

        expected_expiry = datetime.now(UTC) + timedelta(hours=24)
        assert abs((response.expires_at - expected_expiry).total_seconds()) < 60


class TestGatewayCheckout:
    """Tests for checkouts created through the payment gateway."""

    @pytest.mark.asyncio
    async def test_gateway_receives_amount_urls_and_metadata(
        self, db, student, full_payment_scheme, make_enrollment, mock_gateway
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)

        response = await create_checkout(db, mock_gateway, enrollment.id, created_by=3)

        assert response.is_mock is False
        assert response.checkout_id == "cs_test_123"
        assert response.checkout_url == "https://checkout.paymongo.com/cs_test_123"

        kwargs = mock_gateway.create_checkout_session.call_args.kwargs
        assert kwargs["amount"] == Decimal("24000.00")
        assert kwargs["success_url"].endswith(
            f"/api/v1/billing/payment/success?payment_id={response.payment_id}"
        )
        assert kwargs["cancel_url"].endswith(
            f"/api/v1/billing/payment/cancel?payment_id={response.payment_id}"
        )
        metadata = kwargs["metadata"]
        assert metadata["payment_id"] == response.payment_id
        assert metadata["enrollment_id"] == enrollment.id
        assert metadata["student_id"] == student.id
        assert metadata["payment_type"] == "full_payment"
        assert metadata["payment_category"] == "enrollment"
        assert metadata["idempotency_key"].startswith(f"{enrollment.id}-full_payment-")

    @pytest.mark.asyncio
    async def test_gateway_failure_leaves_payment_pending(
        self, db, full_payment_scheme, make_enrollment, mock_gateway
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)
        account_id = (await repository.get_account_by_student(db, enrollment.student_id)).id
        mock_gateway.create_checkout_session.side_effect = PayMongoError(
            "PayMongo checkout creation failed: amount is invalid",
            status_code=400,
            details="amount is invalid",
        )

        with pytest.raises(PaymentGatewayError) as exc_info:
            await create_checkout(db, mock_gateway, enrollment.id)

        assert exc_info.value.status_code == 500
        assert exc_info.value.details == "amount is invalid"

        payments, total = await repository.list_payments_for_account(db, account_id)
        assert total == 1
        assert payments[0].status == PaymentStatus.PENDING
        assert await repository.get_transaction_by_payment(db, payments[0].id) is None


class TestBalanceCheckout:
    """Tests for outstanding-balance checkouts."""

    @pytest.mark.asyncio
    async def test_charges_full_balance_by_default(
        self, db, student, full_payment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)

        response = await create_balance_checkout(db, None, student.id)

        assert response.payment_type == PaymentType.BALANCE
        assert response.amount == Decimal("24000.00")
        payment = await repository.get_payment(db, response.payment_id)
        assert payment.enrollment_id is None

    @pytest.mark.asyncio
    async def test_custom_amount_is_capped_at_balance(
        self, db, student, full_payment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)

        partial = await create_balance_checkout(
            db, None, student.id, custom_amount=Decimal("5000.00")
        )
        capped = await create_balance_checkout(
            db, None, student.id, custom_amount=Decimal("99999.00")
        )

        assert partial.amount == Decimal("5000.00")
        assert capped.amount == Decimal("24000.00")

    @pytest.mark.asyncio
    async def test_zero_balance_is_rejected(
        self, db, student, full_payment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)
        checkout = await create_balance_checkout(db, None, student.id)
        await complete_payment(db, checkout.payment_id)

        with pytest.raises(NoOutstandingBalanceError):
            await create_balance_checkout(db, None, student.id)

    @pytest.mark.asyncio
    async def test_settled_fees_leave_nothing_to_charge(
        self, db, student, full_payment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)
        checkout = await create_checkout(db, None, enrollment.id)
        await complete_payment(db, checkout.payment_id)

        with pytest.raises(NoOutstandingBalanceError):
            await create_balance_checkout(db, None, student.id)

    @pytest.mark.asyncio
    async def test_capped_at_remaining_installments(
        self, db, student, installment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(installment_scheme)
        await generate_billing(db, enrollment.id)
        downpayment = await create_checkout(db, None, enrollment.id)
        await complete_payment(db, downpayment.payment_id)

        pending = await repository.list_installments(
            db, enrollment.id, status=InstallmentStatus.PENDING
        )
        response = await create_balance_checkout(
            db, None, student.id, custom_amount=Decimal("99999.00")
        )

        assert response.amount == sum((item.amount for item in pending), Decimal("0.00"))

    @pytest.mark.asyncio
    async def test_unknown_student(self, db):
        with pytest.raises(AccountNotFoundError):
            await create_balance_checkout(db, None, 4242)
