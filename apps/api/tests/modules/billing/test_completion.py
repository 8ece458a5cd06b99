"""
Tests for payment completion.

These tests cover:
- Exactly-once ledger effects under repeated and concurrent completion
- Settlement per payment type (fees, downpayment, FIFO installments, balance)
- Enrollment status and subject auto-enrollment
- Cancellation and failure transitions
"""

from decimal import Decimal
from unittest.mock import patch

import pytest

from tuitionpay.modules.billing import repository
from tuitionpay.modules.billing.checkout import create_balance_checkout, create_checkout
from tuitionpay.modules.billing.completion import (
    cancel_payment,
    complete_payment,
    enroll_subjects,
    fail_payment,
)
from tuitionpay.modules.billing.errors import PaymentNotFoundError, PaymentStateError
from tuitionpay.modules.billing.generator import generate_billing
from tuitionpay.modules.billing.models import (
    AccountTransactionType,
    InstallmentStatus,
    PaymentStatus,
    PaymentType,
    TransactionStatus,
    can_transition,
)
from tuitionpay.modules.enrollments.models import EnrollmentPaymentStatus, EnrollmentStatus


async def _account_id(db, student_id: int) -> int:
    account = await repository.get_account_by_student(db, student_id)
    return account.id


class TestPaymentStateMachine:
    def test_pending_can_reach_every_terminal_state(self):
        for target in (PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            assert can_transition(PaymentStatus.PENDING, target) is True

    def test_terminal_states_are_final(self):
        for terminal in (PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            for target in PaymentStatus:
                assert can_transition(terminal, target) is False

    @pytest.mark.asyncio
    async def test_repository_rejects_forbidden_transition(
        self, db, full_payment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)
        checkout = await create_checkout(db, None, enrollment.id)
        payment_id = checkout.payment_id
        await complete_payment(db, payment_id)

        with pytest.raises(PaymentStateError) as exc_info:
            await repository.transition_payment_status(
                db, payment_id, PaymentStatus.COMPLETED, PaymentStatus.CANCELLED
            )

        assert exc_info.value.current_status == PaymentStatus.COMPLETED.value
        payment = await repository.get_payment(db, payment_id)
        assert payment.status == PaymentStatus.COMPLETED


class TestCompletePaymentIdempotency:
    """Tests for exactly-once completion."""

    @pytest.mark.asyncio
    async def test_second_completion_is_a_no_op(
        self, db, student, full_payment_scheme, make_enrollment, mock_receipt_email
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)
        checkout = await create_checkout(db, None, enrollment.id)
        account_id = await _account_id(db, student.id)

        first = await complete_payment(db, checkout.payment_id)
        second = await complete_payment(db, checkout.payment_id)

        assert first.already_processed is False
        assert first.status == PaymentStatus.COMPLETED
        assert second.already_processed is True

        entries = await repository.list_account_transactions(
            db, account_id, payment_id=checkout.payment_id
        )
        assert len(entries) == 1
        assert entries[0].transaction_type == AccountTransactionType.PAYMENT
        assert mock_receipt_email.await_count == 1

    @pytest.mark.asyncio
    async def test_stale_copy_in_another_session_does_not_apply_twice(
        self, db, session_maker, student, installment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(installment_scheme)
        enrollment_id = enrollment.id
        await generate_billing(db, enrollment_id)
        downpayment = await create_checkout(db, None, enrollment_id)
        await complete_payment(db, downpayment.payment_id)
        installment = await create_checkout(db, None, enrollment_id)
        payment_id = installment.payment_id
        account_id = await _account_id(db, student.id)

        async with session_maker() as other:
            stale = await repository.get_payment(other, payment_id)
            assert stale.status == PaymentStatus.PENDING

            await complete_payment(db, payment_id)

            # The other session still believes the payment is Pending
            result = await complete_payment(other, payment_id, stale)

        assert result.already_processed is True
        entries = await repository.list_account_transactions(db, account_id, payment_id=payment_id)
        assert len(entries) == 1

        installments = await repository.list_installments(db, enrollment_id)
        assert [i.status for i in installments] == [
            InstallmentStatus.PAID,
            InstallmentStatus.PENDING,
            InstallmentStatus.PENDING,
            InstallmentStatus.PENDING,
        ]

    @pytest.mark.asyncio
    async def test_unknown_payment(self, db):
        with pytest.raises(PaymentNotFoundError):
            await complete_payment(db, 12345)


class TestSettlementByPaymentType:
    """Tests for ledger effects of each payment type."""

    @pytest.mark.asyncio
    async def test_full_payment_settles_fees_and_keeps_balance(
        self, db, student, full_payment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        enrollment_id = enrollment.id
        await generate_billing(db, enrollment_id)
        checkout = await create_checkout(db, None, enrollment_id)

        result = await complete_payment(db, checkout.payment_id, method="gcash")

        assert result.balance_before == Decimal("24000.00")
        assert result.balance_after == Decimal("24000.00")

        fees = await repository.list_fees(db, enrollment_id)
        assert all(fee.is_paid for fee in fees)
        assert all(fee.paid_at is not None for fee in fees)

        account = await repository.get_account_by_student(db, student.id)
        assert account.total_balance == Decimal("24000.00")

        payment = await repository.get_payment(db, checkout.payment_id)
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.method == "gcash"
        assert payment.payment_date is not None

        transaction = await repository.get_transaction_by_payment(db, checkout.payment_id)
        assert transaction.status == TransactionStatus.PAID
        assert transaction.paid_at is not None

    @pytest.mark.asyncio
    async def test_installments_settle_in_due_order(
        self, db, installment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(installment_scheme)
        enrollment_id = enrollment.id
        await generate_billing(db, enrollment_id)
        downpayment = await create_checkout(db, None, enrollment_id)
        await complete_payment(db, downpayment.payment_id)

        settled = []
        for _ in range(2):
            checkout = await create_checkout(db, None, enrollment_id)
            result = await complete_payment(db, checkout.payment_id)
            settled.append(result.installment_number)

        assert settled == [1, 2]
        installments = await repository.list_installments(db, enrollment_id)
        paid = [i for i in installments if i.status == InstallmentStatus.PAID]
        assert [i.installment_number for i in paid] == [1, 2]
        assert all(i.payment_id is not None for i in paid)

    @pytest.mark.asyncio
    async def test_balance_payment_reduces_balance(
        self, db, student, full_payment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)
        checkout = await create_balance_checkout(
            db, None, student.id, custom_amount=Decimal("4000.00")
        )

        result = await complete_payment(db, checkout.payment_id)

        assert result.balance_before == Decimal("24000.00")
        assert result.balance_after == Decimal("20000.00")
        account = await repository.get_account_by_student(db, student.id)
        assert account.total_balance == Decimal("20000.00")

        entries = await repository.list_account_transactions(
            db, account.id, payment_id=checkout.payment_id
        )
        assert entries[0].balance_before == Decimal("24000.00")
        assert entries[0].balance_after == Decimal("20000.00")

    @pytest.mark.asyncio
    async def test_balance_never_goes_negative(
        self, db, student, full_payment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)
        first = await create_balance_checkout(db, None, student.id)
        second = await create_balance_checkout(db, None, student.id)

        await complete_payment(db, first.payment_id)
        result = await complete_payment(db, second.payment_id)

        assert result.balance_before == Decimal("0.00")
        assert result.balance_after == Decimal("0.00")
        account = await repository.get_account_by_student(db, student.id)
        assert account.total_balance == Decimal("0.00")


class TestEnrollmentEffects:
    """Tests for enrollment status and subject enrollment after payment."""

    @pytest.mark.asyncio
    async def test_downpayment_enrolls_with_partial_status(
        self, db, installment_scheme, make_enrollment, curriculum
    ):
        enrollment = await make_enrollment(installment_scheme)
        enrollment_id = enrollment.id
        await generate_billing(db, enrollment_id)
        checkout = await create_checkout(db, None, enrollment_id)

        await complete_payment(db, checkout.payment_id)

        refreshed = await repository.get_enrollment(db, enrollment_id)
        assert refreshed.status == EnrollmentStatus.ENROLLED
        assert refreshed.payment_status == EnrollmentPaymentStatus.PARTIAL
        assert await repository.count_enrollment_subjects(db, enrollment_id) == 3

    @pytest.mark.asyncio
    async def test_full_payment_marks_enrollment_paid(
        self, db, full_payment_scheme, make_enrollment, curriculum
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        enrollment_id = enrollment.id
        await generate_billing(db, enrollment_id)
        checkout = await create_checkout(db, None, enrollment_id)

        await complete_payment(db, checkout.payment_id)

        refreshed = await repository.get_enrollment(db, enrollment_id)
        assert refreshed.status == EnrollmentStatus.ENROLLED
        assert refreshed.payment_status == EnrollmentPaymentStatus.PAID

    @pytest.mark.asyncio
    async def test_installment_payment_does_not_duplicate_subjects(
        self, db, installment_scheme, make_enrollment, curriculum
    ):
        enrollment = await make_enrollment(installment_scheme)
        enrollment_id = enrollment.id
        await generate_billing(db, enrollment_id)
        for _ in range(2):
            checkout = await create_checkout(db, None, enrollment_id)
            await complete_payment(db, checkout.payment_id)

        assert await repository.count_enrollment_subjects(db, enrollment_id) == 3
        assert await enroll_subjects(db, enrollment_id) == 0

    @pytest.mark.asyncio
    async def test_subject_failure_keeps_payment_completed(
        self, db, full_payment_scheme, make_enrollment, curriculum
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        enrollment_id = enrollment.id
        await generate_billing(db, enrollment_id)
        checkout = await create_checkout(db, None, enrollment_id)
        payment_id = checkout.payment_id

        with patch(
            "tuitionpay.modules.billing.completion.repository.create_enrollment_subjects",
            side_effect=RuntimeError("subjects table locked"),
        ):
            result = await complete_payment(db, payment_id)

        assert result.status == PaymentStatus.COMPLETED
        payment = await repository.get_payment(db, payment_id)
        assert payment.status == PaymentStatus.COMPLETED
        assert await repository.count_enrollment_subjects(db, enrollment_id) == 0


class TestCancelAndFail:
    """Tests for moving Pending payments to Cancelled or Failed."""

    @pytest.mark.asyncio
    async def test_cancel_pending_payment(self, db, full_payment_scheme, make_enrollment):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)
        checkout = await create_checkout(db, None, enrollment.id)

        result = await cancel_payment(db, checkout.payment_id)

        assert result.status == PaymentStatus.CANCELLED
        transaction = await repository.get_transaction_by_payment(db, checkout.payment_id)
        assert transaction.status == TransactionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_completed_payment_is_rejected(
        self, db, full_payment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)
        checkout = await create_checkout(db, None, enrollment.id)
        payment_id = checkout.payment_id
        await complete_payment(db, payment_id)

        with pytest.raises(PaymentStateError) as exc_info:
            await cancel_payment(db, payment_id)

        assert exc_info.value.current_status == PaymentStatus.COMPLETED.value
        payment = await repository.get_payment(db, payment_id)
        assert payment.status == PaymentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancelled_payment_cannot_complete(
        self, db, student, full_payment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        enrollment_id, student_id = enrollment.id, student.id
        await generate_billing(db, enrollment_id)
        checkout = await create_checkout(db, None, enrollment_id)
        payment_id = checkout.payment_id
        await cancel_payment(db, payment_id)

        with pytest.raises(PaymentStateError):
            await complete_payment(db, payment_id)

        fees = await repository.list_fees(db, enrollment_id)
        assert not any(fee.is_paid for fee in fees)
        account_id = await _account_id(db, student_id)
        assert await repository.list_account_transactions(db, account_id, payment_id) == []

    @pytest.mark.asyncio
    async def test_fail_is_idempotent(self, db, full_payment_scheme, make_enrollment):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)
        checkout = await create_checkout(db, None, enrollment.id)

        first = await fail_payment(db, checkout.payment_id)
        second = await fail_payment(db, checkout.payment_id)

        assert first.status == PaymentStatus.FAILED
        assert first.already_processed is False
        assert second.status == PaymentStatus.FAILED
        assert second.already_processed is True

    @pytest.mark.asyncio
    async def test_fail_does_not_touch_completed_payment(
        self, db, full_payment_scheme, make_enrollment
    ):
        enrollment = await make_enrollment(full_payment_scheme)
        await generate_billing(db, enrollment.id)
        checkout = await create_checkout(db, None, enrollment.id)
        await complete_payment(db, checkout.payment_id)

        result = await fail_payment(db, checkout.payment_id)

        assert result.status == PaymentStatus.COMPLETED
        assert result.already_processed is True


class TestPaymentLifecycle:
    @pytest.mark.asyncio
    async def test_downpayment_then_installment_flow(
        self, db, student, installment_scheme, make_enrollment, curriculum
    ):
        enrollment = await make_enrollment(installment_scheme)
        enrollment_id, student_id = enrollment.id, student.id

        plan = await generate_billing(db, enrollment_id)
        assert plan.initial_payment_required == Decimal("6000.00")

        downpayment = await create_checkout(db, None, enrollment_id)
        assert downpayment.payment_type == PaymentType.DOWNPAYMENT
        await complete_payment(db, downpayment.payment_id, method="gcash")

        next_checkout = await create_checkout(db, None, enrollment_id)
        assert next_checkout.payment_type == PaymentType.INSTALLMENT
        assert next_checkout.installment_number == 1

        account_id = await _account_id(db, student_id)
        entries = await repository.list_account_transactions(db, account_id)
        assert [e.transaction_type for e in entries] == [
            AccountTransactionType.CHARGE,
            AccountTransactionType.PAYMENT,
        ]
