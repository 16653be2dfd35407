from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["AUDIT_CLEAR_ENABLED"] = "true"
os.environ["RATE_LIMIT_ENABLED"] = "false"

import uuid
from collections.abc import AsyncIterator
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from portal.core.db import get_db
from portal.core.rbac import AdminRole
from portal.core.security import create_access_token, hash_password
from portal.main import app
from portal.middleware.security import AccountLockoutManager
from portal.models.admin import AdminProfile
from portal.models.base import Base
from portal.services.session_timeout import SessionTimeoutTracker, session_tracker

ADMIN_PASSWORD = "CorrectHorse-42!"


class FakeClock:
    """Manually advanced naive-UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(clock: FakeClock) -> SessionTimeoutTracker:
    return SessionTimeoutTracker(timeout_minutes=30, warning_minutes=5, clock=clock)


@pytest.fixture
async def session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    test_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", poolclass=StaticPool, connect_args={"check_same_thread": False}
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(test_engine, expire_on_commit=False)

    await test_engine.dispose()


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def app_client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncClient]:
    async def override_get_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    session_tracker.clear()
    AccountLockoutManager.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    session_tracker.clear()


async def create_admin(
    session: AsyncSession,
    email: str,
    role: AdminRole = AdminRole.SUPER_ADMIN,
    is_active: bool = True,
    first_name: str = "Test",
    last_name: str = "Admin",
) -> AdminProfile:
    admin = AdminProfile(
        id=str(uuid.uuid4()),
        email=email,
        hashed_password=hash_password(ADMIN_PASSWORD),
        first_name=first_name,
        last_name=last_name,
        role=role,
        is_active=is_active,
    )
    session.add(admin)
    await session.commit()
    await session.refresh(admin)
    return admin


def auth_headers(admin: AdminProfile) -> dict[str, str]:
    token = create_access_token({"sub": admin.id})
    return {"Authorization": f"Bearer {token}", "User-Agent": "pytest-admin-console"}
