"""
tests/conftest.py
Shared fixtures: a throwaway SQLite database per test, fakeredis, a mocked
mailer, and user/admin/agency accounts with ready-made bearer tokens.
"""

import os

# Must be set before any app module reads settings
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ["RESEND_API_KEY"] = ""

import uuid
from typing import Union
from unittest.mock import MagicMock

import fakeredis.aioredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import shared.models.models  # noqa: F401  (registers tables on Base.metadata)
from config.database import Base, get_db
from config.redis_client import get_redis
from main import app
from services.notification.dispatcher import NotificationDispatcher, Outbox, get_dispatcher
from services.notification.email import EmailService
from shared.models.models import Agency, User, UserRole
from shared.utils.security import create_access_token, hash_password

TEST_PASSWORD = "password123"
_PASSWORD_HASH = hash_password(TEST_PASSWORD)


# ── Database ───────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ── Collaborators ──────────────────────────────────────────────────────────────

@pytest.fixture
def mailer():
    return MagicMock(spec=EmailService)


@pytest.fixture
def dispatcher(mailer):
    return NotificationDispatcher(mailer)


@pytest.fixture
def outbox(dispatcher):
    return Outbox(dispatcher)


@pytest_asyncio.fixture
async def fake_redis():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def client(session_factory, fake_redis, dispatcher):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Accounts ───────────────────────────────────────────────────────────────────

async def make_user(db: AsyncSession, **overrides) -> User:
    suffix = uuid.uuid4().hex[:8]
    fields = dict(
        name="Test User",
        email=f"user_{suffix}@example.com",
        password_hash=_PASSWORD_HASH,
        role=UserRole.USER,
        barrels_remaining=12,
        is_active=True,
        is_blocked=False,
    )
    fields.update(overrides)
    user = User(**fields)
    db.add(user)
    await db.commit()
    return user


async def make_agency(db: AsyncSession, **overrides) -> Agency:
    suffix = uuid.uuid4().hex[:8]
    fields = dict(
        name=f"Agency {suffix}",
        email=f"agency_{suffix}@example.com",
        password_hash=_PASSWORD_HASH,
        phone="9876543210",
        address="12 Depot Road",
        city="Pune",
        license_number=f"LIC-{suffix}",
        is_verified=True,
        is_active=True,
    )
    fields.update(overrides)
    agency = Agency(**fields)
    db.add(agency)
    await db.commit()
    return agency


@pytest_asyncio.fixture
async def agency(db):
    return await make_agency(db, name="Bharat Gas Depot")


@pytest_asyncio.fixture
async def other_agency(db):
    return await make_agency(db, name="Indane Depot")


@pytest_asyncio.fixture
async def unverified_agency(db):
    return await make_agency(db, is_verified=False)


@pytest_asyncio.fixture
async def user(db, agency):
    """Regular user whose default vendor is `agency`."""
    return await make_user(db, name="Asha Rao", default_vendor_id=agency.id)


@pytest_asyncio.fixture
async def other_user(db):
    return await make_user(db, name="Ravi Kumar")


@pytest_asyncio.fixture
async def admin(db):
    return await make_user(db, name="Admin", role=UserRole.ADMIN)


def auth_headers(principal: Union[User, Agency]) -> dict:
    role = "AGENCY" if isinstance(principal, Agency) else principal.role.value
    token, _ = create_access_token(
        subject_id=str(principal.id), role=role, email=principal.email
    )
    return {"Authorization": f"Bearer {token}"}
