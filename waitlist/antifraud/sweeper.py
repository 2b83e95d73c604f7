from __future__ import annotations

import asyncio
import logging

from waitlist.antifraud.rate_limit import ReferralRateLimiter
from waitlist.antifraud.throttle import IPThrottleLedger

logger = logging.getLogger(__name__)


async def sweep_counters(ip_ledger: IPThrottleLedger, rate_limiter: ReferralRateLimiter) -> int:
    """Drop expired timestamps and empty keys; returns how many keys are still live."""
    live = await ip_ledger.sweep() + await rate_limiter.sweep()
    logger.debug("Counter sweep finished, %d live keys", live)
    return live


async def run_counter_sweeper(
    ip_ledger: IPThrottleLedger,
    rate_limiter: ReferralRateLimiter,
    *,
    interval_seconds: float,
) -> None:
    """Sweep forever in the process that owns the counters, until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await sweep_counters(ip_ledger, rate_limiter)
        except Exception:
            logger.exception("Counter sweep failed", extra={"event_type": "antifraud.sweep.failed"})
