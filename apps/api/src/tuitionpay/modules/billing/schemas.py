"""
Billing Schemas

Pydantic schemas for request validation and response serialization.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from tuitionpay.modules.billing.models import (
    FeeType,
    InstallmentStatus,
    PaymentStatus,
    PaymentType,
    TransactionStatus,
)
from tuitionpay.modules.enrollments.models import SchemeType

# ============================================
# Requests
# ============================================


class GenerateBillingRequest(BaseModel):
    enrollment_id: int = Field(..., gt=0)
    created_by: int | None = None


class CreateCheckoutRequest(BaseModel):
    enrollment_id: int = Field(..., gt=0)
    created_by: int | None = None


class BalanceCheckoutRequest(BaseModel):
    """Pay some or all of a student's outstanding balance."""

    student_id: int = Field(..., gt=0)
    created_by: int | None = None
    custom_amount: Decimal | None = Field(None, gt=0, decimal_places=2)


class MockCompleteRequest(BaseModel):
    success: bool = True
    payment_method: str = Field("mock", min_length=1, max_length=50)
    completed_by: int | None = None


# ============================================
# Billing plan
# ============================================


class InstallmentItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    installment_number: int
    amount: Decimal
    due_date: date
    status: InstallmentStatus
    paid_at: datetime | None = None


class FeeItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    fee_type: FeeType
    description: str
    amount: Decimal
    is_paid: bool
    paid_at: datetime | None = None


class BillingPlanResponse(BaseModel):
    success: bool = True
    billing_type: SchemeType
    enrollment_id: int
    account_id: int
    scheme_id: int
    scheme_name: str
    total_amount: Decimal
    discount: Decimal
    fee_id: int | None = None
    downpayment_fee_id: int | None = None
    downpayment: Decimal | None = None
    monthly_payment: Decimal | None = None
    number_of_months: int | None = None
    installments: list[InstallmentItem] = []
    description: str
    account_balance: Decimal
    initial_payment_required: Decimal
    generated_at: datetime
    generated_by: int | None = None


class BillingSummary(BaseModel):
    total_amount: Decimal
    total_paid: Decimal
    total_balance: Decimal
    payment_progress_percentage: Decimal
    is_fully_paid: bool


class InstallmentSummary(BaseModel):
    total_installments: int
    paid_installments: int
    pending_installments: int
    next_due: InstallmentItem | None = None


class BillingDetailsResponse(BaseModel):
    enrollment_id: int
    scheme_id: int | None
    scheme_name: str | None
    scheme_type: SchemeType | None
    fees: list[FeeItem]
    installments: list[InstallmentItem]
    summary: BillingSummary
    installment_summary: InstallmentSummary | None = None
    downpayment_status: str | None = None


# ============================================
# Checkout
# ============================================


class CheckoutResponse(BaseModel):
    success: bool = True
    payment_id: int
    checkout_url: str
    checkout_id: str
    amount: Decimal
    payment_type: PaymentType
    description: str
    scheme_id: int | None = None
    scheme_name: str | None = None
    installment_number: int | None = None
    is_mock: bool
    expires_at: datetime


# ============================================
# Payments
# ============================================


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    checkout_id: str
    checkout_url: str
    amount: Decimal
    currency: str
    status: TransactionStatus
    gateway_status: str | None = None
    payment_method: str | None = None
    paid_at: datetime | None = None
    expires_at: datetime


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    enrollment_id: int | None
    amount: Decimal
    status: PaymentStatus
    payment_type: PaymentType
    method: str
    reference_no: str | None = None
    payment_date: datetime | None = None
    created_at: datetime


class PaymentStatusResponse(BaseModel):
    payment: PaymentResponse
    transaction: TransactionResponse | None = None


class PaymentActionResponse(BaseModel):
    """Result of completing, failing or cancelling a payment."""

    success: bool
    payment_id: int
    status: PaymentStatus
    already_processed: bool = False
    message: str


class PaymentHistoryResponse(BaseModel):
    student_id: int
    account_id: int
    payments: list[PaymentResponse]
    total: int
    limit: int
    offset: int


class BalanceResponse(BaseModel):
    student_id: int
    account_id: int
    total_balance: Decimal
    last_updated: datetime
    pending_installments: list[InstallmentItem]
    recent_payments: list[PaymentResponse]


class AccountDiagnosticResponse(BaseModel):
    student_id: int
    account_id: int
    actual_balance: Decimal
    total_billed: Decimal
    total_paid: Decimal
    expected_balance: Decimal
    difference: Decimal
    has_mismatch: bool


class WebhookAckResponse(BaseModel):
    received: bool = True
    event_type: str | None = None
    status: str
    payment_id: int | None = None
