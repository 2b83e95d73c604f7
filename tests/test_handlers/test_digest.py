from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from tests.conftest import FakeClock
from tests.factories import make_referral, make_user
from waitlist.channels.base import NotificationSink
from waitlist.db.store import InMemoryRecordStore
from waitlist.handlers.digest import build_weekly_digest, send_weekly_digest
from waitlist.handlers.fraud import record_fraud_attempt


@pytest.fixture
async def populated(clock: FakeClock) -> InMemoryRecordStore:
    store = InMemoryRecordStore()
    await make_user(store, "old", created_at=clock.now - timedelta(days=30), referral_count=2)
    await make_user(store, "star", created_at=clock.now - timedelta(days=2), referral_count=7)
    await make_user(store, "quiet", created_at=clock.now - timedelta(days=1))
    for email, status in [("a@example.com", "verified"), ("b@example.com", "pending"), ("c@example.com", "verified")]:
        await make_referral(store, referrer_id="star", referred_email=email, created_at=clock.now, status=status)
    await record_fraud_attempt(
        store, ip_address="1.1.1.1", user_email="x@example.com", referred_from="star", reason="r",
        now=clock.now - timedelta(days=10),
    )
    await record_fraud_attempt(
        store, ip_address="2.2.2.2", user_email="y@example.com", referred_from="star", reason="r", now=clock.now
    )
    return store


@pytest.mark.asyncio
async def test_digest_summarizes_week(populated: InMemoryRecordStore, clock: FakeClock) -> None:
    digest = await build_weekly_digest(populated, now=clock.now, top_n=5)

    assert [item.referral_code for item in digest.top_referrers] == ["code-star", "code-old"]
    assert digest.top_referrers[0].count == 7
    assert digest.growth.total_users == 3
    assert digest.growth.weekly_growth == 2
    assert digest.growth.total_referrals == 3
    assert digest.growth.verified_referrals == 2
    assert digest.growth.conversion_rate == 66.67
    assert (digest.flagged.total_flagged, digest.flagged.weekly_flagged, digest.flagged.unique_ips) == (2, 1, 1)


@pytest.mark.asyncio
async def test_send_continues_past_failures(populated: InMemoryRecordStore, clock: FakeClock) -> None:
    digest = await build_weekly_digest(populated, now=clock.now)
    sink = AsyncMock(spec=NotificationSink)
    sink.send.side_effect = [True, RuntimeError("smtp"), False]

    delivery = await send_weekly_digest(sink, ["a@x.io", "b@x.io", "c@x.io"], digest)

    assert delivery.sent == ["a@x.io"]
    assert delivery.failed == ["b@x.io", "c@x.io"]
    first_message = sink.send.call_args_list[0][0][0]
    assert first_message.to == "a@x.io"
    assert "code-star" in first_message.text
    assert first_message.html is not None and "Top referrers" in first_message.html
