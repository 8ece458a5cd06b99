"""
Shared model base and money helpers used across modules.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import DateTime, Integer, func
from sqlalchemy.orm import Mapped, mapped_column

from tuitionpay.core.database import Base

CENT = Decimal("0.01")
# Amount comparisons tolerate one centavo of rounding drift
AMOUNT_TOLERANCE = Decimal("0.01")


def round2(value: Decimal | int | float | str) -> Decimal:
    """Round a money value to two places, half-up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class BaseModel(Base):
    """Abstract base with an integer primary key and audit timestamps."""

    __abstract__ = True
    # Load server-generated timestamps on flush so async code never lazy-loads them
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
