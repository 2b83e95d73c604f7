from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from waitlist.antifraud.counters import InMemoryCounterStore
from waitlist.antifraud.rate_limit import ReferralRateLimiter
from waitlist.antifraud.throttle import IPThrottleLedger, ThrottleConfig
from waitlist.api.deps import (
    get_crm_sync,
    get_ip_ledger,
    get_notification_sink,
    get_rate_limiter,
    get_record_store,
)
from waitlist.api.main import app
from waitlist.channels.base import CRMSync, NotificationSink
from waitlist.db.store import InMemoryRecordStore
from waitlist.security.web_auth import issue_admin_token


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def notifier() -> AsyncMock:
    sink = AsyncMock(spec=NotificationSink)
    sink.send.return_value = True
    return sink


@pytest.fixture
def crm() -> AsyncMock:
    sync = AsyncMock(spec=CRMSync)
    sync.upsert_contact.return_value = True
    return sync


@pytest.fixture
def counters() -> InMemoryCounterStore:
    return InMemoryCounterStore()


@pytest.fixture
def client(
    store: InMemoryRecordStore,
    counters: InMemoryCounterStore,
    notifier: AsyncMock,
    crm: AsyncMock,
) -> Iterator[TestClient]:
    ledger = IPThrottleLedger(counters, config=ThrottleConfig(max_attempts_per_hour=3))
    limiter = ReferralRateLimiter(counters, max_submissions=5)
    app.dependency_overrides[get_record_store] = lambda: store
    app.dependency_overrides[get_ip_ledger] = lambda: ledger
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_notification_sink] = lambda: notifier
    app.dependency_overrides[get_crm_sync] = lambda: crm
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_headers(email: str = "admin@example.com") -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_admin_token(email)}"}
