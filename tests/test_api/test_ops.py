from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from tests.test_api.conftest import auth_headers
from waitlist.api.main import app
from waitlist.db.connection import get_db
from waitlist.db.heartbeat import SchedulerHeartbeat
from waitlist.ops import events as ops_events
from waitlist.ops.events import OpsEventBuffer


def _mock_session(heartbeat: SchedulerHeartbeat | None = None) -> AsyncMock:
    session = AsyncMock()
    session.get.return_value = heartbeat
    return session


def _override_db(session: AsyncMock) -> None:
    async def _db() -> AsyncIterator[AsyncMock]:
        yield session

    app.dependency_overrides[get_db] = _db


@pytest.fixture
def buffer(monkeypatch: pytest.MonkeyPatch) -> OpsEventBuffer:
    fresh = OpsEventBuffer()
    monkeypatch.setattr(ops_events, "ops_event_buffer", fresh)
    return fresh


def _services(response_json: dict[str, Any]) -> dict[str, str]:
    return {item["name"]: item["status"] for item in response_json["services"]}


def test_ops_status_requires_admin(client: TestClient) -> None:
    assert client.get("/ops/status").status_code == 401
    assert client.get("/ops/status", headers=auth_headers("viewer@example.com")).status_code == 403


def test_ops_status_with_fresh_heartbeat(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    async def _db_ok() -> bool:
        return True

    monkeypatch.setattr("waitlist.api.routes.ops.check_db_health", _db_ok)
    heartbeat = SchedulerHeartbeat(last_run_at=datetime.now(UTC), status="ok", detail="assigned=0")
    _override_db(_mock_session(heartbeat))

    response = client.get("/ops/status", headers=auth_headers())

    assert response.status_code == 200
    assert _services(response.json()) == {
        "api": "ok",
        "database": "ok",
        "email": "degraded",
        "crm": "degraded",
        "scheduler": "ok",
    }


def test_ops_status_flags_stale_heartbeat(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    async def _db_ok() -> bool:
        return True

    monkeypatch.setattr("waitlist.api.routes.ops.check_db_health", _db_ok)
    heartbeat = SchedulerHeartbeat(last_run_at=datetime.now(UTC) - timedelta(hours=2), status="ok")
    _override_db(_mock_session(heartbeat))

    response = client.get("/ops/status", headers=auth_headers())

    assert _services(response.json())["scheduler"] == "degraded"


def test_ops_status_when_database_down(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    async def _db_down() -> bool:
        return False

    monkeypatch.setattr("waitlist.api.routes.ops.check_db_health", _db_down)
    session = _mock_session()
    _override_db(session)

    services = _services(client.get("/ops/status", headers=auth_headers()).json())

    assert services["database"] == "error"
    assert services["scheduler"] == "unknown"
    session.get.assert_not_awaited()


def test_ops_events_filters_by_type(client: TestClient, buffer: OpsEventBuffer) -> None:
    logger = logging.getLogger("waitlist.handlers.waves")
    handler = ops_events.OpsEventHandler()
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    try:
        logger.info("Wave created", extra={"event_type": "wave.created"})
        logger.info("Referral created", extra={"event_type": "referral.created"})
    finally:
        logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)
        logger.propagate = True

    response = client.get("/ops/events", params={"type": "wave."}, headers=auth_headers())

    assert response.status_code == 200
    assert {item["event_type"] for item in response.json()} == {"wave.created"}
