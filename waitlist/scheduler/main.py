from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from waitlist.channels.base import NotificationSink
from waitlist.clock import Clock, utc_now
from waitlist.config import Settings
from waitlist.db.heartbeat import get_heartbeat, upsert_heartbeat
from waitlist.db.store import RecordStore
from waitlist.errors import StoreError
from waitlist.handlers.digest import build_weekly_digest, send_weekly_digest
from waitlist.handlers.waves import WaveService

logger = logging.getLogger(__name__)

CYCLE_LOCK = asyncio.Lock()


@dataclass(slots=True)
class CycleResult:
    assigned_users: int = 0
    digest_sent: bool = False
    errors: list[str] = field(default_factory=list)

    def detail(self) -> str:
        text = f"assigned={self.assigned_users} digest={'sent' if self.digest_sent else 'skipped'}"
        if self.errors:
            text += f" errors={self.errors}"
        return text[:256]


def digest_due(last_digest_at: datetime | None, now: datetime, interval: timedelta) -> bool:
    return last_digest_at is None or now - last_digest_at >= interval


async def run_cycle(
    *,
    store: RecordStore,
    waves: WaveService,
    sink: NotificationSink,
    settings: Settings,
    last_digest_at: datetime | None,
    clock: Clock = utc_now,
) -> CycleResult:
    """One scheduler pass. Each step is isolated so a failure in one still lets the other run."""
    result = CycleResult()
    if CYCLE_LOCK.locked():
        result.errors.append("cycle already running")
        return result

    async with CYCLE_LOCK:
        try:
            result.assigned_users = await waves.assign_users_to_waves()
        except StoreError as exc:
            logger.exception("Wave assignment failed", extra={"event_type": "scheduler.assign.failed"})
            result.errors.append(f"assign: {exc}")

        now = clock()
        recipients = settings.digest_recipient_list()
        if recipients and digest_due(last_digest_at, now, timedelta(days=settings.digest_interval_days)):
            try:
                digest = await build_weekly_digest(
                    store,
                    now=now,
                    top_n=settings.digest_top_referrers,
                    timeout=settings.store_timeout_seconds,
                    retries=settings.store_read_retries,
                )
            except StoreError as exc:
                logger.exception("Weekly digest build failed", extra={"event_type": "scheduler.digest.failed"})
                result.errors.append(f"digest: {exc}")
            else:
                delivery = await send_weekly_digest(sink, recipients, digest)
                result.digest_sent = bool(delivery.sent)
                if delivery.failed:
                    result.errors.append(f"digest undelivered: {len(delivery.failed)}")
    return result


async def scheduler_loop(
    *,
    session_factory: async_sessionmaker[AsyncSession],
    store: RecordStore,
    waves: WaveService,
    sink: NotificationSink,
    settings: Settings,
    clock: Clock = utc_now,
) -> None:
    interval_seconds = settings.scheduler_interval_minutes * 60
    while True:
        async with session_factory() as session:
            heartbeat = await get_heartbeat(session)
        last_digest_at = heartbeat.last_digest_at if heartbeat is not None else None

        result = await run_cycle(
            store=store,
            waves=waves,
            sink=sink,
            settings=settings,
            last_digest_at=last_digest_at,
            clock=clock,
        )
        async with session_factory() as session:
            await upsert_heartbeat(
                session,
                status="error" if result.errors else "ok",
                detail=result.detail(),
                digest_sent_at=clock() if result.digest_sent else None,
                now=clock(),
            )
        logger.info(
            "Scheduler cycle finished: %s",
            result.detail(),
            extra={"event_type": "scheduler.cycle.finished"},
        )
        await asyncio.sleep(interval_seconds)
