from __future__ import annotations

import logging
from datetime import timedelta

from waitlist.antifraud.counters import CounterStore
from waitlist.clock import Clock, utc_now

logger = logging.getLogger(__name__)

DEFAULT_MAX_SUBMISSIONS = 15
DEFAULT_WINDOW = timedelta(hours=1)

_SUBMISSION_PREFIX = "referrer:submission:"


class ReferralRateLimiter:
    """Caps how many referrals one referrer may register per sliding window."""

    def __init__(
        self,
        counters: CounterStore,
        *,
        max_submissions: int = DEFAULT_MAX_SUBMISSIONS,
        window: timedelta = DEFAULT_WINDOW,
        clock: Clock = utc_now,
    ) -> None:
        self._counters = counters
        self.max_submissions = max_submissions
        self.window = window
        self._clock = clock

    async def _recent(self, referrer_id: str) -> int:
        try:
            return await self._counters.count_since(
                _SUBMISSION_PREFIX + referrer_id, self._clock() - self.window
            )
        except Exception:
            logger.exception("Rate limiter lookup failed for %s; treating as unused", referrer_id)
            return 0

    async def can_submit(self, referrer_id: str) -> bool:
        return await self._recent(referrer_id) < self.max_submissions

    async def remaining(self, referrer_id: str) -> int:
        return max(0, self.max_submissions - await self._recent(referrer_id))

    async def record_submission(self, referrer_id: str) -> None:
        try:
            await self._counters.record(_SUBMISSION_PREFIX + referrer_id, self._clock())
        except Exception:
            logger.exception("Failed to record referral submission for %s", referrer_id)

    async def sweep(self) -> int:
        since = self._clock() - self.window
        live = 0
        for key in await self._counters.keys(_SUBMISSION_PREFIX):
            if await self._counters.count_since(key, since):
                live += 1
        return live
