from fastapi import APIRouter

from tuitionpay.modules.billing import payments_router, router as billing_router

api_router = APIRouter()

api_router.include_router(billing_router, prefix="/billing", tags=["Billing"])

api_router.include_router(payments_router, prefix="/payments", tags=["Payments"])
