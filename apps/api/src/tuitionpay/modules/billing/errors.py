"""
Billing Service Errors

Every error carries a machine-readable code and the HTTP status the
routers answer with.
"""

from typing import Any


class BillingServiceError(Exception):
    """Base exception for billing service errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


# Validation (400)


class InvalidBillingAmountError(BillingServiceError):
    def __init__(self, message: str = "Billing amount must be greater than zero."):
        super().__init__(message=message, error_code="INVALID_BILLING_AMOUNT", status_code=400)


class InvalidAmountError(BillingServiceError):
    def __init__(self, message: str = "Payment amount must be greater than zero."):
        super().__init__(message=message, error_code="INVALID_AMOUNT", status_code=400)


class InvalidSchemeTypeError(BillingServiceError):
    def __init__(self, scheme_type: str):
        super().__init__(
            message=f"Unsupported tuition scheme type: {scheme_type}",
            error_code="INVALID_SCHEME_TYPE",
            status_code=400,
        )


# Not found (404)


class NotFoundError(BillingServiceError):
    def __init__(self, message: str, error_code: str):
        super().__init__(message=message, error_code=error_code, status_code=404)


class EnrollmentNotFoundError(NotFoundError):
    def __init__(self, enrollment_id: int):
        super().__init__(f"Enrollment {enrollment_id} not found.", "ENROLLMENT_NOT_FOUND")


class SchemeNotFoundError(NotFoundError):
    def __init__(self, enrollment_id: int):
        super().__init__(
            f"Enrollment {enrollment_id} has no tuition scheme assigned.", "SCHEME_NOT_FOUND"
        )


class AccountNotFoundError(NotFoundError):
    def __init__(self, student_id: int):
        super().__init__(
            f"No billing account for student {student_id}. Generate billing first.",
            "ACCOUNT_NOT_FOUND",
        )


class PaymentNotFoundError(NotFoundError):
    def __init__(self, payment_id: int | str):
        super().__init__(f"Payment {payment_id} not found.", "PAYMENT_NOT_FOUND")


# Conflict (400)


class ConflictError(BillingServiceError):
    def __init__(self, message: str, error_code: str):
        super().__init__(message=message, error_code=error_code, status_code=400)


class BillingAlreadyGeneratedError(ConflictError):
    def __init__(self, enrollment_id: int):
        super().__init__(
            f"Billing has already been generated for enrollment {enrollment_id}.",
            "BILLING_ALREADY_GENERATED",
        )


class BillingNotGeneratedError(ConflictError):
    def __init__(self, enrollment_id: int):
        super().__init__(
            f"Billing has not been generated for enrollment {enrollment_id}.",
            "BILLING_NOT_GENERATED",
        )


class NoUnpaidFeesError(ConflictError):
    def __init__(self, enrollment_id: int):
        super().__init__(
            f"Enrollment {enrollment_id} has no unpaid fees.", "NO_UNPAID_FEES"
        )


class NoPendingInstallmentsError(ConflictError):
    def __init__(self, enrollment_id: int):
        super().__init__(
            f"Enrollment {enrollment_id} has no pending installments.", "NO_PENDING_INSTALLMENTS"
        )


class NoOutstandingBalanceError(ConflictError):
    def __init__(self, student_id: int):
        super().__init__(
            f"Student {student_id} has no outstanding balance.", "NO_OUTSTANDING_BALANCE"
        )


class PaymentStateError(ConflictError):
    """Raised when a payment is not in a state that allows the requested transition."""

    def __init__(self, payment_id: int, current_status: str, action: str):
        self.current_status = current_status
        super().__init__(
            f"Cannot {action} payment {payment_id}: status is {current_status}.",
            "INVALID_PAYMENT_STATE",
        )


# Gateway / webhook


class PaymentGatewayError(BillingServiceError):
    """The gateway refused or failed; the payment is left Pending."""

    def __init__(self, message: str, details: Any = None):
        self.details = details
        super().__init__(message=message, error_code="PAYMENT_GATEWAY_ERROR", status_code=500)


class InvalidSignatureError(BillingServiceError):
    def __init__(self, message: str = "Invalid webhook signature."):
        super().__init__(message=message, error_code="INVALID_SIGNATURE", status_code=401)


class MockPaymentsDisabledError(BillingServiceError):
    def __init__(self):
        super().__init__(
            message="Mock payment completion is only available when live payments are disabled.",
            error_code="MOCK_PAYMENTS_DISABLED",
            status_code=403,
        )
