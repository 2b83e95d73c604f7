from __future__ import annotations

import os
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from waitlist import models  # noqa: F401
from waitlist.db.connection import Base
from waitlist.db.heartbeat import SchedulerHeartbeat  # noqa: F401

TEST_ENV = {
    "DATABASE_URL": "postgresql+asyncpg://waitlist:pw@localhost:5432/waitlist",
    "APP_PUBLIC_BASE_URL": "https://waitlist.example.com",
    "ADMIN_EMAILS": "admin@example.com",
    "WEB_ACCESS_TOKEN_SECRET": "test-secret",
}

# waitlist.api.main reads settings at import time, before fixtures run.
for _key, _value in TEST_ENV.items():
    os.environ.setdefault(_key, _value)


@pytest.fixture(autouse=True)
def _default_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    for key in ("SENDGRID_API_KEY", "HUBSPOT_ACCESS_TOKEN", "SIGNUP_WEBHOOK_SECRET", "DIGEST_RECIPIENTS"):
        monkeypatch.delenv(key, raising=False)
    from waitlist.config import get_settings

    get_settings.cache_clear()


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def requires_test_db() -> bool:
    url = os.getenv("TEST_DATABASE_URL")
    return bool(url and url.startswith("postgresql+asyncpg://"))


@pytest.fixture(scope="session")
def test_database_url() -> str:
    if not requires_test_db():
        pytest.skip("TEST_DATABASE_URL not set for postgres integration tests")
    url = os.getenv("TEST_DATABASE_URL")
    assert url is not None
    return url


@pytest.fixture
async def pg_sessionmaker(test_database_url: str) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(test_database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
