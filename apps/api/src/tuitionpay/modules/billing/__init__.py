"""
Billing Module

Handles the enrollment billing and payment reconciliation workflow:
1. Billing generation: tuition scheme -> fees and installment plan
2. Checkout creation: Pending payment + PayMongo hosted checkout session
3. Payment completion: webhook, success redirect or mock completion,
   applied to the ledger at most once
4. Webhook signature verification (HMAC-SHA256 over the raw body)

API Endpoints:
- /billing/* - generation, enrollment checkout, gateway callbacks, details
- /payments/* - balances, history, status, balance checkout, cancellation

Background Jobs (via APScheduler):
- send_installment_reminders: weekly, reminds installments due within 7 days
- expire_stale_checkouts: hourly, cancels Pending payments past checkout expiry
"""

from .jobs import register_billing_jobs
from .payments_router import router as payments_router
from .router import router

__all__ = ["router", "payments_router", "register_billing_jobs"]
