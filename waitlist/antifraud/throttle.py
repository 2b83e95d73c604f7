from __future__ import annotations

import logging
from datetime import timedelta

from pydantic import BaseModel

from waitlist.antifraud.counters import CounterStore
from waitlist.clock import Clock, utc_now

logger = logging.getLogger(__name__)

ATTEMPT_WINDOW = timedelta(hours=1)
VERIFICATION_WINDOW = timedelta(hours=24)

ATTEMPTS_EXCEEDED = "Too many attempts from this IP address. Please try again later."
VERIFICATIONS_EXCEEDED = "Daily verification limit reached for this IP address."

_ATTEMPT_PREFIX = "ip:attempt:"
_VERIFICATION_PREFIX = "ip:verification:"


class ThrottleConfig(BaseModel):
    max_attempts_per_hour: int = 10
    max_verifications_per_day: int = 1


class ThrottleResult(BaseModel):
    throttled: bool
    reason: str | None = None
    remaining_attempts: int
    remaining_verifications: int


class IPThrottleLedger:
    """Per-IP attempt and verification counters over sliding windows.

    Checking never records; callers check, decide, then call
    ``record_attempt`` explicitly. Counter failures are logged and treated
    as zero usage, so a broken backend fails open.
    """

    def __init__(
        self,
        counters: CounterStore,
        *,
        config: ThrottleConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._counters = counters
        self.config = config or ThrottleConfig()
        self._clock = clock

    async def _usage(self, ip: str) -> tuple[int, int]:
        now = self._clock()
        try:
            attempts = await self._counters.count_since(_ATTEMPT_PREFIX + ip, now - ATTEMPT_WINDOW)
            verifications = await self._counters.count_since(
                _VERIFICATION_PREFIX + ip, now - VERIFICATION_WINDOW
            )
        except Exception:
            logger.exception("IP ledger lookup failed for %s; treating as unused", ip)
            return 0, 0
        return attempts, verifications

    async def check_throttle(self, ip: str, config: ThrottleConfig | None = None) -> ThrottleResult:
        limits = config or self.config
        attempts, verifications = await self._usage(ip)

        reason: str | None = None
        if attempts >= limits.max_attempts_per_hour:
            reason = ATTEMPTS_EXCEEDED
        elif verifications >= limits.max_verifications_per_day:
            reason = VERIFICATIONS_EXCEEDED

        return ThrottleResult(
            throttled=reason is not None,
            reason=reason,
            remaining_attempts=max(0, limits.max_attempts_per_hour - attempts),
            remaining_verifications=max(0, limits.max_verifications_per_day - verifications),
        )

    async def record_attempt(self, ip: str, is_verification: bool = False) -> None:
        """Record an attempt; a verification also counts toward the hourly attempts."""
        now = self._clock()
        try:
            await self._counters.record(_ATTEMPT_PREFIX + ip, now)
            if is_verification:
                await self._counters.record(_VERIFICATION_PREFIX + ip, now)
        except Exception:
            logger.exception("Failed to record IP attempt for %s", ip)

    async def sweep(self) -> int:
        """Prune every tracked IP and return how many entries are still live."""
        now = self._clock()
        live = 0
        for prefix, window in ((_ATTEMPT_PREFIX, ATTEMPT_WINDOW), (_VERIFICATION_PREFIX, VERIFICATION_WINDOW)):
            for key in await self._counters.keys(prefix):
                if await self._counters.count_since(key, now - window):
                    live += 1
        return live
