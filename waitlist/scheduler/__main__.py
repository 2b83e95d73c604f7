from __future__ import annotations

import asyncio
import logging

from waitlist.channels.factory import build_notification_sink
from waitlist.config import get_settings
from waitlist.db.connection import dispose_engine, get_sessionmaker
from waitlist.db.store import SqlRecordStore
from waitlist.handlers.waves import WaveService
from waitlist.ops.events import configure_ops_event_logging
from waitlist.scheduler.main import scheduler_loop

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


async def _run() -> None:
    settings = get_settings()
    session_factory = get_sessionmaker()
    store = SqlRecordStore(session_factory)
    try:
        await scheduler_loop(
            session_factory=session_factory,
            store=store,
            waves=WaveService(
                store=store,
                store_timeout_seconds=settings.store_timeout_seconds,
                store_read_retries=settings.store_read_retries,
            ),
            sink=build_notification_sink(settings),
            settings=settings,
        )
    finally:
        await dispose_engine()


def main() -> None:
    settings = get_settings()
    configure_ops_event_logging(max_size=settings.ops_event_buffer_size)
    logger.info(
        "Starting waitlist scheduler (every %.1f minutes, digest every %d days)",
        settings.scheduler_interval_minutes,
        settings.digest_interval_days,
    )
    asyncio.run(_run())


main()
