"""
Seed Tuition Schemes

Creates the default full-payment and installment tuition schemes.
Existing schemes with the same name are left untouched.

Usage:
    cd apps/api
    python scripts/seed_tuition_schemes.py
"""

import asyncio
from decimal import Decimal

from sqlalchemy import select

from tuitionpay.core.database import async_session_maker, engine
from tuitionpay.modules.enrollments.models import SchemeType, TuitionScheme

DEFAULT_SCHEMES = [
    {
        "scheme_name": "Regular Full Payment",
        "scheme_type": SchemeType.FULL_PAYMENT,
        "amount": Decimal("25000.00"),
        "discount": Decimal("1250.00"),
    },
    {
        "scheme_name": "Regular Installment",
        "scheme_type": SchemeType.INSTALLMENT,
        "amount": Decimal("26000.00"),
        "discount": Decimal("0.00"),
        "downpayment": Decimal("5000.00"),
        "monthly_payment": Decimal("5250.00"),
        "months": 4,
    },
]


async def seed_tuition_schemes() -> None:
    """Create the default tuition schemes if they don't exist."""
    async with async_session_maker() as db:
        for data in DEFAULT_SCHEMES:
            result = await db.execute(
                select(TuitionScheme).where(TuitionScheme.scheme_name == data["scheme_name"])
            )
            existing = result.scalar_one_or_none()

            if existing:
                print(f"Scheme already exists: {existing.scheme_name} (ID: {existing.id})")
                continue

            scheme = TuitionScheme(**data)
            db.add(scheme)
            await db.flush()
            print(f"Created scheme: {scheme.scheme_name} (ID: {scheme.id})")

        await db.commit()

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_tuition_schemes())
