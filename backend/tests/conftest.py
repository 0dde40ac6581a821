"""
Pytest fixtures for test database, client, authentication and Stripe payloads.

Each test gets a fresh schema. By default that is a SQLite file under the
test's tmp_path (through aiosqlite) so the suite runs anywhere; point
TEST_DATABASE_URL at a PostgreSQL database to run it against the
production engine.

The HTTP client opens a new session per request, like the real app, so
concurrent requests exercise the store's own atomicity rather than sharing
one session.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./gatepass_app.db")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("CREDENTIAL_SECRET", "test-credential-secret")
os.environ.setdefault("CHECKIN_LOOKUP_TIMEOUT", "10")

import hashlib
import hmac
import json
import time
from datetime import datetime, timezone, timedelta
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from gatepass.main import app
from gatepass.core.config import get_settings
from gatepass.db.base import Base
from gatepass.db.session import get_db
from gatepass.core.security import create_access_token
from gatepass.models import User, Event, Vehicle, Registration
from gatepass.services.credential_service import mint_credential


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'gatepass_test.db'}"
    test_engine = create_async_engine(url, echo=False, poolclass=NullPool)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose requests each get their own test-database session."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def count_registrations(session_factory) -> Callable:
    """Count registrations from a fresh session, optionally for one payment session."""

    async def _count(payment_session_id: str | None = None) -> int:
        async with session_factory() as session:
            query = select(func.count()).select_from(Registration)
            if payment_session_id is not None:
                query = query.where(Registration.payment_session_id == payment_session_id)
            return (await session.execute(query)).scalar()

    return _count


async def _add(session: AsyncSession, obj):
    session.add(obj)
    await session.commit()
    await session.refresh(obj)
    return obj


@pytest_asyncio.fixture
async def vendor(db_session: AsyncSession) -> User:
    return await _add(db_session, User(email="vendor@example.com", name="Val Vendor", role="user"))


@pytest_asyncio.fixture
async def other_vendor(db_session: AsyncSession) -> User:
    return await _add(db_session, User(email="other@example.com", name="Olly Other", role="user"))


@pytest_asyncio.fixture
async def operator(db_session: AsyncSession) -> User:
    return await _add(db_session, User(email="gate@example.com", name="Gina Gate", role="admin"))


@pytest_asyncio.fixture
async def test_event(db_session: AsyncSession) -> Event:
    return await _add(db_session, Event(
        name="Cars & Coffee Austin",
        description="Monthly pop-up",
        date=datetime.now(timezone.utc) + timedelta(days=14),
        location="Domain Northside",
        address="11701 Domain Blvd, Austin, TX",
        capacity=2,
    ))


@pytest_asyncio.fixture
async def test_vehicle(db_session: AsyncSession, vendor: User) -> Vehicle:
    return await _add(db_session, Vehicle(
        user_id=vendor.id,
        title="Clean 911 Carrera",
        make="Porsche",
        model="911",
        year=1989,
        status="approved",
    ))


@pytest_asyncio.fixture
async def other_vehicle(db_session: AsyncSession, other_vendor: User) -> Vehicle:
    return await _add(db_session, Vehicle(
        user_id=other_vendor.id,
        title="Miata NA",
        make="Mazda",
        model="MX-5",
        year=1991,
        status="approved",
    ))


def _bearer(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': str(user.id)})}"}


@pytest.fixture
def vendor_headers(vendor: User) -> dict:
    return _bearer(vendor)


@pytest.fixture
def other_vendor_headers(other_vendor: User) -> dict:
    return _bearer(other_vendor)


@pytest.fixture
def operator_headers(operator: User) -> dict:
    return _bearer(operator)


@pytest.fixture
def stripe_signature() -> Callable[[bytes], str]:
    """Build a stripe-signature header the way Stripe does (t=..., v1=HMAC-SHA256)."""

    def _sign(payload: bytes, secret: str | None = None, timestamp: int | None = None) -> str:
        secret = secret or get_settings().STRIPE_WEBHOOK_SECRET
        timestamp = timestamp or int(time.time())
        signed = f"{timestamp}.{payload.decode()}".encode()
        digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    return _sign


@pytest.fixture
def completion_payload() -> Callable[..., bytes]:
    """Serialized checkout.session.completed event."""

    def _payload(
        session_id: str,
        user_id,
        event_id,
        vehicle_id,
        event_type: str = "checkout.session.completed",
        payment_status: str = "paid",
        event_id_prefix: str = "evt",
        metadata: dict | None = None,
    ) -> bytes:
        if metadata is None:
            metadata = {"userId": str(user_id), "eventId": str(event_id), "vehicleId": str(vehicle_id)}
        body = {
            "id": f"{event_id_prefix}_{session_id}_{time.time_ns()}",
            "object": "event",
            "type": event_type,
            "data": {
                "object": {
                    "id": session_id,
                    "object": "checkout.session",
                    "payment_status": payment_status,
                    "metadata": metadata,
                }
            },
        }
        return json.dumps(body).encode()

    return _payload


@pytest_asyncio.fixture
async def paid_registration(db_session: AsyncSession, vendor, test_event, test_vehicle) -> Registration:
    """A registration as the webhook would have created it."""
    return await _add(db_session, Registration(
        event_id=test_event.id,
        vehicle_id=test_vehicle.id,
        user_id=vendor.id,
        payment_status="completed",
        payment_session_id="cs_test_fixture",
        credential=mint_credential(vendor.id, test_event.id, test_vehicle.id, 1_700_000_000_000),
        checked_in=False,
    ))
