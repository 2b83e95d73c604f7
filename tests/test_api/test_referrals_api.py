from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from tests.factories import make_referral, make_user
from waitlist.antifraud.throttle import ATTEMPTS_EXCEEDED
from waitlist.api.deps import get_referral_service
from waitlist.api.main import app
from waitlist.config import get_settings
from waitlist.db.store import InMemoryRecordStore
from waitlist.handlers.referrals import ReferralOutcome, ReferralService

CREATED = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
IP_HEADERS = {"x-forwarded-for": "203.0.113.7, 10.0.0.1", "user-agent": "Mozilla/5.0"}


@pytest.fixture
async def referrer(store: InMemoryRecordStore) -> dict[str, object]:
    return await make_user(store, "u1", created_at=CREATED, position=1)


def test_create_referral(client: TestClient, store: InMemoryRecordStore, crm: AsyncMock) -> None:
    response = client.post(
        "/referrals", json={"referrer_id": "u1", "referred_email": "Friend@Example.com"}, headers=IP_HEADERS
    )

    assert response.status_code == 201
    body = response.json()
    assert body["referred_email"] == "friend@example.com"
    assert body["status"] == "pending"
    [row] = store.rows("referrals")
    assert row["referred_ip"] == "203.0.113.7"
    assert row["referred_user_agent"] == "Mozilla/5.0"
    crm.upsert_contact.assert_awaited_once()


def test_invalid_referral_is_flagged(client: TestClient, store: InMemoryRecordStore) -> None:
    response = client.post(
        "/referrals", json={"referrer_id": "u1", "referred_email": "not-an-email"}, headers=IP_HEADERS
    )

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["code"] == "invalid"
    assert "invalid email format" in detail["reasons"]
    [record] = store.rows("fraud_records")
    assert record["ip_address"] == "203.0.113.7"
    assert record["referred_from"] == "u1"
    assert store.rows("referrals") == []


def test_duplicate_referral_conflicts(client: TestClient) -> None:
    body = {"referrer_id": "u1", "referred_email": "friend@example.com"}
    assert client.post("/referrals", json=body, headers=IP_HEADERS).status_code == 201

    response = client.post("/referrals", json=body, headers=IP_HEADERS)
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "duplicate"


def test_ip_throttle_returns_429(client: TestClient, store: InMemoryRecordStore) -> None:
    for index in range(3):
        response = client.post(
            "/referrals",
            json={"referrer_id": "u1", "referred_email": f"friend{index}@example.com"},
            headers=IP_HEADERS,
        )
        assert response.status_code == 201

    response = client.post(
        "/referrals", json={"referrer_id": "u1", "referred_email": "late@example.com"}, headers=IP_HEADERS
    )

    assert response.status_code == 429
    detail = response.json()["detail"]
    assert detail["throttled"] is True
    assert detail["error"] == ATTEMPTS_EXCEEDED
    assert detail["remaining_attempts"] == 0
    assert len(store.rows("fraud_records")) == 1


def test_throttle_status_reports_remaining(client: TestClient) -> None:
    client.post("/referrals", json={"referrer_id": "u1", "referred_email": "a@example.com"}, headers=IP_HEADERS)

    response = client.get("/referrals/throttle", headers={"x-real-ip": "203.0.113.7"})

    assert response.status_code == 200
    assert response.json() == {
        "throttled": False,
        "reason": None,
        "remaining_attempts": 2,
        "remaining_verifications": 1,
    }


@pytest.fixture
def webhook_headers(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    monkeypatch.setenv("SIGNUP_WEBHOOK_SECRET", "hook-secret")
    get_settings.cache_clear()
    return {"x-webhook-secret": "hook-secret"}


def test_signup_verifies_pending_referral(
    client: TestClient,
    store: InMemoryRecordStore,
    referrer: dict[str, object],
    notifier: AsyncMock,
    webhook_headers: dict[str, str],
) -> None:
    client.post("/referrals", json={"referrer_id": "u1", "referred_email": "friend@example.com"}, headers=IP_HEADERS)

    response = client.post(
        "/referrals/signup",
        json={"email": "Friend@example.com", "user_id": "u2", "email_verified": True},
        headers=webhook_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["verified"] is True
    assert body["referrer_code"] == "code-u1"
    [user] = [row for row in store.rows("users") if row["id"] == "u1"]
    assert user["referral_count"] == 1
    notifier.send.assert_awaited_once()


def test_signup_without_pending_referral(client: TestClient, webhook_headers: dict[str, str]) -> None:
    response = client.post(
        "/referrals/signup", json={"email": "nobody@example.com", "user_id": "u9"}, headers=webhook_headers
    )

    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["error"] == "no pending referral"


def test_signup_rejects_wrong_or_missing_secret(
    client: TestClient, store: InMemoryRecordStore, referrer: dict[str, object], webhook_headers: dict[str, str]
) -> None:
    client.post("/referrals", json={"referrer_id": "u1", "referred_email": "friend@example.com"}, headers=IP_HEADERS)
    event = {"email": "friend@example.com", "user_id": "anyone", "email_verified": True}

    assert client.post("/referrals/signup", json=event).status_code == 401
    assert (
        client.post("/referrals/signup", json=event, headers={"x-webhook-secret": "wrong"}).status_code == 401
    )
    [user] = [row for row in store.rows("users") if row["id"] == "u1"]
    assert user["referral_count"] == 0
    assert store.rows("referrals")[0]["status"] == "pending"


def test_signup_disabled_without_configured_secret(
    client: TestClient, store: InMemoryRecordStore, referrer: dict[str, object]
) -> None:
    client.post("/referrals", json={"referrer_id": "u1", "referred_email": "friend@example.com"}, headers=IP_HEADERS)
    event = {"email": "friend@example.com", "user_id": "anyone", "email_verified": True}

    response = client.post("/referrals/signup", json=event, headers={"x-webhook-secret": ""})

    assert response.status_code == 503
    [user] = [row for row in store.rows("users") if row["id"] == "u1"]
    assert user["referral_count"] == 0
    assert store.rows("referrals")[0]["status"] == "pending"


def test_failed_outcome_without_code_is_server_error(client: TestClient) -> None:
    service = AsyncMock(spec=ReferralService)
    service.submit_referral.return_value = ReferralOutcome(success=False, error="unexpected")
    app.dependency_overrides[get_referral_service] = lambda: service

    response = client.post("/referrals", json={"referrer_id": "u1", "referred_email": "a@example.com"})

    assert response.status_code == 500
    assert response.json() == {"detail": "unexpected"}


async def test_user_referrals_and_stats(client: TestClient, store: InMemoryRecordStore) -> None:
    await make_referral(store, referrer_id="u1", referred_email="a@example.com", created_at=CREATED)
    await make_referral(
        store, referrer_id="u1", referred_email="b@example.com", created_at=CREATED, status="verified"
    )
    await make_referral(store, referrer_id="u2", referred_email="c@example.com", created_at=CREATED)

    listed = client.get("/referrals/users/u1")
    stats = client.get("/referrals/users/u1/stats")

    assert {item["referred_email"] for item in listed.json()} == {"a@example.com", "b@example.com"}
    assert stats.json() == {
        "total_referrals": 2,
        "verified_referrals": 1,
        "pending_referrals": 1,
        "conversion_rate": 50.0,
    }


async def test_leaderboard_ranks_by_referral_count(client: TestClient, store: InMemoryRecordStore) -> None:
    await make_user(store, "low", created_at=CREATED, referral_count=1)
    await make_user(store, "high", created_at=CREATED, referral_count=4)

    response = client.get("/leaderboard", params={"limit": 1})

    assert response.status_code == 200
    assert response.json() == [
        {"id": "high", "username": "high", "referral_code": "code-high", "total_referrals": 4, "rank": 1}
    ]
    assert client.get("/leaderboard", params={"limit": 0}).status_code == 422
