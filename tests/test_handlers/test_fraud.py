from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from tests.conftest import FakeClock
from waitlist.db.store import InMemoryRecordStore
from waitlist.errors import StoreError
from waitlist.handlers.fraud import (
    count_flagged_since,
    get_fraud_stats,
    list_fraud_records,
    record_fraud_attempt,
)


async def _flag(
    store: InMemoryRecordStore, clock: FakeClock, ip: str | None, email: str, referred_from: str = "u1"
) -> None:
    await record_fraud_attempt(
        store,
        ip_address=ip,
        user_email=email,
        referred_from=referred_from,
        reason="suspicious email pattern detected",
        now=clock.now,
    )


@pytest.mark.asyncio
async def test_record_normalizes_fields(clock: FakeClock) -> None:
    store = InMemoryRecordStore()
    record = await record_fraud_attempt(
        store,
        ip_address=None,
        user_email=" Fake@Example.com",
        referred_from="u1",
        reason="bot user agent detected",
        now=clock.now,
    )
    assert record is not None
    assert record.ip_address == "unknown"
    assert record.user_email == "fake@example.com"
    assert record.fraud_flag is True


@pytest.mark.asyncio
async def test_record_failure_returns_none(clock: FakeClock) -> None:
    store = AsyncMock()
    store.insert.side_effect = StoreError("down")
    record = await record_fraud_attempt(
        store, ip_address="1.2.3.4", user_email="a@example.com", referred_from=None, reason="x", now=clock.now
    )
    assert record is None


@pytest.mark.asyncio
async def test_list_filters_and_orders(clock: FakeClock) -> None:
    store = InMemoryRecordStore()
    await _flag(store, clock, "1.1.1.1", "a@example.com")
    clock.advance(minutes=1)
    await _flag(store, clock, "2.2.2.2", "b@example.com")
    clock.advance(minutes=1)
    await _flag(store, clock, "1.1.1.1", "c@example.com", referred_from="u2")

    by_ip = await list_fraud_records(store, ip_address="1.1.1.1")
    assert [item.user_email for item in by_ip] == ["c@example.com", "a@example.com"]
    by_referrer = await list_fraud_records(store, referred_from="u2")
    assert [item.user_email for item in by_referrer] == ["c@example.com"]
    paged = await list_fraud_records(store, limit=1, offset=1)
    assert [item.user_email for item in paged] == ["b@example.com"]


@pytest.mark.asyncio
async def test_stats_count_today_and_uniques(clock: FakeClock) -> None:
    store = InMemoryRecordStore()
    clock.advance(days=-1)
    await _flag(store, clock, "1.1.1.1", "a@example.com")
    clock.advance(days=1)
    await _flag(store, clock, "1.1.1.1", "b@example.com")
    await _flag(store, clock, "2.2.2.2", "b@example.com")

    stats = await get_fraud_stats(store, now=clock.now)
    assert (stats.total_records, stats.today_records, stats.unique_ips, stats.unique_emails) == (3, 2, 2, 2)

    flagged, unique_ips = await count_flagged_since(store, since=clock.now - timedelta(hours=1))
    assert (flagged, unique_ips) == (2, 2)
