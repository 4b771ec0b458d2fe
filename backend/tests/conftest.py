"""
Pytest fixtures for test database, client, actors and the payment gateway.

Runs against an in-memory SQLite database (aiosqlite, one shared connection)
so the suite needs neither PostgreSQL nor Redis. Set TEST_DATABASE_URL to run
against a real database instead.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("PAYMENT_GATEWAY", "offline")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "")
os.environ.setdefault("STORE_RETRY_BACKOFF", "0")

from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from booking_core.main import app
from booking_core.core.exceptions import GatewayUnavailableError
from booking_core.core.security import create_access_token
from booking_core.db.base import Base
from booking_core.db.session import get_db
from booking_core.domain.actors import Actor
from booking_core.domain.enums import ActorModel, BookingStatus, PaymentMethod
from booking_core.domain.vehicles import VehicleCategory
from booking_core.models.booking import Booking
from booking_core.services.booking_service import create_booking
from booking_core.services.gateway_factory import get_gateway
from booking_core.services.interfaces.gateway import GatewayRefund, ReconciliationGateway
from booking_core.services.payment_ledger import Split
from booking_core.services.state_machine import request_transition

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

if TEST_DATABASE_URL.startswith("sqlite"):
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)
TestSessionLocal = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

RIDER = Actor(id="rider-1", model=ActorModel.USER)
OTHER_RIDER = Actor(id="rider-2", model=ActorModel.USER)
DRIVER = Actor(id="driver-1", model=ActorModel.DRIVER)
OTHER_DRIVER = Actor(id="driver-2", model=ActorModel.DRIVER)
ADMIN = Actor(id="admin-1", model=ActorModel.ADMIN)

ROLE_FOR_MODEL = {ActorModel.USER: "user", ActorModel.DRIVER: "driver", ActorModel.ADMIN: "admin"}


def headers_for(actor: Actor) -> dict:
    token = create_access_token(data={"sub": actor.id, "role": ROLE_FOR_MODEL[actor.model]})
    return {"Authorization": f"Bearer {token}"}


class FakeGateway(ReconciliationGateway):
    """Records refund calls; flip `fail` to simulate a provider outage."""

    def __init__(self, webhook_secret: str = ""):
        super().__init__(webhook_secret)
        self.fail = False
        self.calls = []

    async def create_refund(self, payment_reference, amount, reason, idempotency_key):
        self.calls.append(
            {"payment_reference": payment_reference, "amount": amount, "idempotency_key": idempotency_key}
        )
        if self.fail:
            raise GatewayUnavailableError("Payment provider timed out")
        return GatewayRefund(reference=f"rfnd_{len(self.calls)}", status="pending")


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables, yield session, then drop tables for isolation."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, gateway: FakeGateway) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the DB and gateway dependencies overridden."""

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def rider_headers() -> dict:
    return headers_for(RIDER)


@pytest.fixture
def driver_headers() -> dict:
    return headers_for(DRIVER)


@pytest.fixture
def admin_headers() -> dict:
    return headers_for(ADMIN)


@pytest.fixture
def make_booking(db_session: AsyncSession):
    """Factory for committed bookings owned by RIDER and assigned to DRIVER."""

    async def _make(
        category: VehicleCategory = VehicleCategory.CAR,
        total: str = "238",
        method: PaymentMethod = PaymentMethod.RAZORPAY,
        is_partial: Optional[bool] = None,
        split: Optional[tuple[str, str]] = None,
    ) -> Booking:
        booking = await create_booking(
            db_session,
            RIDER,
            driver_id=DRIVER.id,
            vehicle_category=category,
            rate_per_km=Decimal("14"),
            total_amount=Decimal(total),
            distance=Decimal("17"),
            payment_method=method,
            is_partial_payment=is_partial,
            split=Split(online=Decimal(split[0]), cash=Decimal(split[1])) if split else None,
        )
        await db_session.commit()
        return booking

    return _make


@pytest.fixture
def advance(db_session: AsyncSession):
    """Drive a booking through statuses as the assigned driver, committing each step."""

    async def _advance(booking: Booking, *statuses: BookingStatus) -> Booking:
        for target in statuses:
            booking = await request_transition(db_session, booking.id, target, DRIVER, booking.version)
            await db_session.commit()
        return booking

    return _advance
