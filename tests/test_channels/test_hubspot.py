from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from waitlist.channels.base import NullCRMSync
from waitlist.channels.hubspot import HUBSPOT_CONTACTS_URL, HubSpotCRMSync, to_hubspot_properties


def _client() -> AsyncMock:
    client = AsyncMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return client


def _sync() -> HubSpotCRMSync:
    return HubSpotCRMSync(access_token="pat-test", http_timeout_seconds=5.0)


def test_properties_are_stringified() -> None:
    stamp = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)
    properties = to_hubspot_properties(
        "a@example.com", {"referral_count": 3, "last_referral_at": stamp, "vip": True, "skip": None}
    )
    assert properties == {
        "email": "a@example.com",
        "referral_count": "3",
        "last_referral_at": "2026-03-01T09:30:00+00:00",
        "vip": "true",
    }


@pytest.mark.asyncio
async def test_existing_contact_is_patched() -> None:
    client = _client()
    client.patch.return_value = MagicMock(status_code=200)

    with patch("waitlist.channels.hubspot.httpx.AsyncClient", return_value=client):
        assert await _sync().upsert_contact("a@example.com", {"referral_count": 1}) is True

    assert client.patch.call_args[0][0] == f"{HUBSPOT_CONTACTS_URL}/a%40example.com"
    assert client.patch.call_args[1]["params"] == {"idProperty": "email"}
    client.post.assert_not_called()


@pytest.mark.asyncio
async def test_missing_contact_is_created() -> None:
    client = _client()
    client.patch.return_value = MagicMock(status_code=404)
    client.post.return_value = MagicMock(status_code=201)

    with patch("waitlist.channels.hubspot.httpx.AsyncClient", return_value=client):
        assert await _sync().upsert_contact("new@example.com", {}) is True

    assert client.post.call_args[0][0] == HUBSPOT_CONTACTS_URL
    assert client.post.call_args[1]["json"] == {"properties": {"email": "new@example.com"}}


@pytest.mark.asyncio
async def test_errors_return_false() -> None:
    client = _client()
    client.patch.return_value = MagicMock(status_code=401, text="unauthorized")
    with patch("waitlist.channels.hubspot.httpx.AsyncClient", return_value=client):
        assert await _sync().upsert_contact("a@example.com", {}) is False

    client = _client()
    client.patch.side_effect = httpx.ReadTimeout("slow")
    with patch("waitlist.channels.hubspot.httpx.AsyncClient", return_value=client):
        assert await _sync().upsert_contact("a@example.com", {}) is False


@pytest.mark.asyncio
async def test_null_sync_is_a_no_op() -> None:
    assert await NullCRMSync().upsert_contact("a@example.com", {"x": 1}) is True
