"""
Fixtures for billing tests.

Service tests run against a throwaway SQLite database so conditional
updates, unique constraints and transactions behave like the real store.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tuitionpay.core.database import Base, get_db
from tuitionpay.core.paymongo import CheckoutSession, PayMongoClient, get_payment_gateway
from tuitionpay.main import app
from tuitionpay.modules.billing import models as billing_models  # noqa: F401
from tuitionpay.modules.enrollments.models import (
    CourseSubject,
    Enrollment,
    SchemeType,
    Student,
    TuitionScheme,
)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest.fixture(autouse=True)
def mock_receipt_email():
    """Completion sends a best-effort receipt; keep it off the network."""
    with patch(
        "tuitionpay.modules.billing.completion.send_payment_receipt",
        new_callable=AsyncMock,
        return_value=True,
    ) as mocked:
        yield mocked


@pytest.fixture
def mock_gateway():
    gateway = AsyncMock(spec=PayMongoClient)
    gateway.create_checkout_session.return_value = CheckoutSession(
        id="cs_test_123",
        checkout_url="https://checkout.paymongo.com/cs_test_123",
        raw={},
    )
    return gateway


@pytest.fixture
async def student(db) -> Student:
    student = Student(
        first_name="Maria",
        last_name="Santos",
        email="maria.santos@example.com",
        year_level=1,
    )
    db.add(student)
    await db.commit()
    return student


@pytest.fixture
async def full_payment_scheme(db) -> TuitionScheme:
    scheme = TuitionScheme(
        scheme_name="BSIT Full Payment",
        scheme_type=SchemeType.FULL_PAYMENT,
        amount=Decimal("25000.00"),
        discount=Decimal("1000.00"),
    )
    db.add(scheme)
    await db.commit()
    return scheme


@pytest.fixture
async def installment_scheme(db) -> TuitionScheme:
    scheme = TuitionScheme(
        scheme_name="BSIT Installment",
        scheme_type=SchemeType.INSTALLMENT,
        amount=Decimal("30000.00"),
        discount=Decimal("0.00"),
        downpayment=Decimal("6000.00"),
        monthly_payment=Decimal("6000.00"),
        months=4,
    )
    db.add(scheme)
    await db.commit()
    return scheme


@pytest.fixture
def make_enrollment(db, student) -> Callable[[TuitionScheme | None], Awaitable[Enrollment]]:
    async def _make(scheme: TuitionScheme | None) -> Enrollment:
        enrollment = Enrollment(
            student_id=student.id,
            program_id=1,
            semester_id=1,
            scheme_id=scheme.id if scheme else None,
        )
        db.add(enrollment)
        await db.commit()
        return enrollment

    return _make


@pytest.fixture
async def curriculum(db) -> list[CourseSubject]:
    subjects = [
        CourseSubject(program_id=1, semester_id=1, year_level=1, subject_id=subject_id)
        for subject_id in (101, 102, 103)
    ]
    db.add_all(subjects)
    await db.commit()
    return subjects


@pytest.fixture
async def client(session_maker) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app with the test database and no live gateway."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: None

    with (
        patch("tuitionpay.modules.billing.router.enforce_rate_limit", new_callable=AsyncMock),
        patch(
            "tuitionpay.modules.billing.payments_router.enforce_rate_limit",
            new_callable=AsyncMock,
        ),
    ):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac

    app.dependency_overrides.clear()
