from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from tests.conftest import FakeClock
from tests.factories import make_user
from waitlist.channels.base import NotificationSink
from waitlist.config import Settings
from waitlist.db.store import InMemoryRecordStore
from waitlist.errors import StoreError
from waitlist.handlers.waves import WaveService
from waitlist.models.wave import WaveCreate
from waitlist.scheduler.main import CYCLE_LOCK, CycleResult, digest_due, run_cycle, scheduler_loop

CREATED = datetime(2026, 2, 1, tzinfo=UTC)


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def sink() -> AsyncMock:
    mock = AsyncMock(spec=NotificationSink)
    mock.send.return_value = True
    return mock


@pytest.fixture
def waves(store: InMemoryRecordStore, clock: FakeClock) -> WaveService:
    return WaveService(store=store, clock=clock, store_read_retries=0)


def _settings(**overrides: object) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_digest_due() -> None:
    now = datetime(2026, 3, 9, tzinfo=UTC)
    week = timedelta(days=7)
    assert digest_due(None, now, week)
    assert digest_due(now - week, now, week)
    assert not digest_due(now - timedelta(days=6), now, week)


def test_cycle_detail_is_truncated() -> None:
    result = CycleResult(assigned_users=2, errors=["x" * 400])
    assert result.detail().startswith("assigned=2 digest=skipped errors=")
    assert len(result.detail()) == 256


@pytest.mark.asyncio
async def test_run_cycle_assigns_and_sends_due_digest(
    store: InMemoryRecordStore, waves: WaveService, sink: AsyncMock, clock: FakeClock
) -> None:
    await waves.create_wave(WaveCreate(name="Early", start_position=1, end_position=5))
    await make_user(store, "late", created_at=CREATED, position=2, referral_count=1)

    result = await run_cycle(
        store=store, waves=waves, sink=sink, settings=_settings(), last_digest_at=None, clock=clock
    )

    assert result.assigned_users == 1
    assert result.digest_sent is True
    assert result.errors == []
    sink.send.assert_awaited_once()
    assert sink.send.await_args.args[0].to == "admin@example.com"


@pytest.mark.asyncio
async def test_run_cycle_skips_digest_inside_interval(
    store: InMemoryRecordStore, waves: WaveService, sink: AsyncMock, clock: FakeClock
) -> None:
    result = await run_cycle(
        store=store,
        waves=waves,
        sink=sink,
        settings=_settings(),
        last_digest_at=clock.now - timedelta(days=1),
        clock=clock,
    )

    assert result.digest_sent is False
    sink.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_run_cycle_keeps_going_after_assignment_failure(
    store: InMemoryRecordStore, waves: WaveService, sink: AsyncMock, clock: FakeClock
) -> None:
    with patch.object(waves, "assign_users_to_waves", AsyncMock(side_effect=StoreError("down"))):
        result = await run_cycle(
            store=store, waves=waves, sink=sink, settings=_settings(), last_digest_at=None, clock=clock
        )

    assert result.errors == ["assign: down"]
    assert result.digest_sent is True


@pytest.mark.asyncio
async def test_run_cycle_records_undelivered_digest(
    store: InMemoryRecordStore, waves: WaveService, sink: AsyncMock, clock: FakeClock
) -> None:
    sink.send.return_value = False

    result = await run_cycle(
        store=store,
        waves=waves,
        sink=sink,
        settings=_settings(digest_recipients="a@example.com,b@example.com"),
        last_digest_at=None,
        clock=clock,
    )

    assert result.digest_sent is False
    assert result.errors == ["digest undelivered: 2"]


@pytest.mark.asyncio
async def test_run_cycle_skips_when_already_running(
    store: InMemoryRecordStore, waves: WaveService, sink: AsyncMock, clock: FakeClock
) -> None:
    async with CYCLE_LOCK:
        result = await run_cycle(
            store=store, waves=waves, sink=sink, settings=_settings(), last_digest_at=None, clock=clock
        )

    assert result.errors == ["cycle already running"]
    sink.send.assert_not_awaited()


class _SessionFactory:
    def __init__(self) -> None:
        self.session = AsyncMock()

    def __call__(self) -> _SessionFactory:
        return self

    async def __aenter__(self) -> AsyncMock:
        return self.session

    async def __aexit__(self, *exc: object) -> None:
        return None


@pytest.mark.asyncio
async def test_scheduler_loop_writes_heartbeat_with_digest_time(
    store: InMemoryRecordStore, waves: WaveService, sink: AsyncMock, clock: FakeClock
) -> None:
    factory = _SessionFactory()
    with (
        patch("waitlist.scheduler.main.get_heartbeat", AsyncMock(return_value=None)),
        patch("waitlist.scheduler.main.upsert_heartbeat", AsyncMock()) as upsert,
        patch("waitlist.scheduler.main.asyncio.sleep", AsyncMock(side_effect=asyncio.CancelledError)),
    ):
        with pytest.raises(asyncio.CancelledError):
            await scheduler_loop(
                session_factory=factory,  # type: ignore[arg-type]
                store=store,
                waves=waves,
                sink=sink,
                settings=_settings(),
                clock=clock,
            )

    upsert.assert_awaited_once()
    kwargs = upsert.await_args.kwargs
    assert kwargs["status"] == "ok"
    assert kwargs["digest_sent_at"] == clock.now
    assert kwargs["detail"] == "assigned=0 digest=sent"
