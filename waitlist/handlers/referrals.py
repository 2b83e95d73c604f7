"""Referral orchestration: creation with anti-fraud checks, and signup verification.

Creation runs validation, IP throttling and per-referrer rate limiting before
any write. Verification promotes a pending referral with a single conditional
update and bumps the referrer's counter in the same transaction, so duplicate
deliveries of the same signup event count once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Literal, TypeVar
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from waitlist.antifraud.rate_limit import ReferralRateLimiter
from waitlist.antifraud.throttle import IPThrottleLedger
from waitlist.antifraud.validator import validate_referral
from waitlist.channels.base import CRMSync, NotificationSink
from waitlist.clock import Clock, utc_now
from waitlist.db.store import RecordStore, Row, guarded, read_with_retry
from waitlist.email.templates import build_referral_verified_email
from waitlist.errors import (
    DuplicateReferralError,
    NotificationError,
    ReferralValidationError,
    StoreConflictError,
    StoreError,
    ThrottledError,
)
from waitlist.handlers.fraud import record_fraud_attempt
from waitlist.models.referral import ReferralRead, ReferralRequest, ReferralStats, ReferralStatus
from waitlist.models.user import LeaderboardEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_EXCEEDED = "rate limit exceeded"
CREATE_FAILED = "Failed to create referral"

OutcomeCode = Literal["invalid", "throttled", "duplicate", "unavailable"]


class ReferralOutcome(BaseModel):
    success: bool
    referral: ReferralRead | None = None
    error: str | None = None
    code: OutcomeCode | None = None
    reasons: list[str] = Field(default_factory=list)
    throttled: bool = False
    remaining_attempts: int | None = None
    remaining_verifications: int | None = None


class SignupValidation(BaseModel):
    success: bool
    verified: bool = False
    referral_id: UUID | None = None
    referrer_id: str | None = None
    referrer_code: str | None = None
    error: str | None = None


class ReferralService:
    def __init__(
        self,
        *,
        store: RecordStore,
        ip_ledger: IPThrottleLedger,
        rate_limiter: ReferralRateLimiter,
        notifier: NotificationSink,
        crm: CRMSync,
        app_public_base_url: str = "",
        clock: Clock = utc_now,
        store_timeout_seconds: float = 5.0,
        store_read_retries: int = 2,
        notify_timeout_seconds: float = 10.0,
    ) -> None:
        self._store = store
        self._ip_ledger = ip_ledger
        self._rate_limiter = rate_limiter
        self._notifier = notifier
        self._crm = crm
        self._app_public_base_url = app_public_base_url
        self._clock = clock
        self._timeout = store_timeout_seconds
        self._retries = store_read_retries
        self._notify_timeout = notify_timeout_seconds

    async def _read(self, call: Callable[[], Awaitable[T]], op: str) -> T:
        return await read_with_retry(call, timeout=self._timeout, retries=self._retries, op=op)

    async def _write(self, awaitable: Awaitable[T], op: str) -> T:
        return await guarded(awaitable, timeout=self._timeout, op=op)

    async def _best_effort(self, awaitable: Awaitable[bool], op: str) -> bool:
        try:
            ok = await asyncio.wait_for(awaitable, timeout=self._notify_timeout)
            if not ok:
                raise NotificationError(f"{op} was rejected")
            return True
        except NotificationError:
            logger.warning("Best-effort %s failed", op, extra={"event_type": "notification.failed"})
            return False
        except Exception:
            logger.exception("Best-effort %s raised", op, extra={"event_type": "notification.failed"})
            return False

    # --- creation -----------------------------------------------------------------

    async def create_referral(self, request: ReferralRequest) -> ReferralRead:
        validation = validate_referral(request)
        if not validation.is_valid:
            raise ReferralValidationError(list(validation.reasons))

        if request.user_ip:
            throttle = await self._ip_ledger.check_throttle(request.user_ip)
            if throttle.throttled:
                raise ThrottledError(
                    throttle.reason or RATE_LIMIT_EXCEEDED,
                    remaining_attempts=throttle.remaining_attempts,
                    remaining_verifications=throttle.remaining_verifications,
                )
            await self._ip_ledger.record_attempt(request.user_ip)

        if not await self._rate_limiter.can_submit(request.referrer_id):
            raise ThrottledError(RATE_LIMIT_EXCEEDED, remaining_attempts=0)

        existing = await self._read(
            lambda: self._store.find_one(
                "referrals",
                {"referrer_id": request.referrer_id, "referred_email": request.referred_email},
            ),
            "find_referral_pair",
        )
        if existing is not None:
            raise DuplicateReferralError(request.referrer_id, request.referred_email)

        now = self._clock()
        try:
            row = await self._write(
                self._store.insert(
                    "referrals",
                    {
                        "id": uuid4(),
                        "referrer_id": request.referrer_id,
                        "referred_email": request.referred_email,
                        "referred_ip": request.user_ip,
                        "referred_user_agent": request.user_agent,
                        "status": ReferralStatus.PENDING.value,
                        "created_at": now,
                        "updated_at": now,
                    },
                ),
                "insert_referral",
            )
        except StoreConflictError as exc:
            raise DuplicateReferralError(request.referrer_id, request.referred_email) from exc

        await self._rate_limiter.record_submission(request.referrer_id)
        referral = ReferralRead.model_validate(row)
        logger.info(
            "Referral %s created by %s",
            referral.id,
            referral.referrer_id,
            extra={"event_type": "referral.created"},
        )
        await self._best_effort(
            self._crm.upsert_contact(
                referral.referred_email,
                {"referral_status": referral.status.value, "referred_by_id": referral.referrer_id},
            ),
            "crm sync for referred contact",
        )
        return referral

    async def submit_referral(self, request: ReferralRequest) -> ReferralOutcome:
        """Boundary wrapper: never raises, flags rejected attempts as fraud."""
        try:
            referral = await self.create_referral(request)
        except ReferralValidationError as exc:
            await self._flag(request, str(exc))
            return ReferralOutcome(success=False, error=str(exc), code="invalid", reasons=exc.reasons)
        except ThrottledError as exc:
            if exc.reason != RATE_LIMIT_EXCEEDED:
                await self._flag(request, exc.reason)
            return ReferralOutcome(
                success=False,
                error=exc.reason,
                code="throttled",
                throttled=True,
                remaining_attempts=exc.remaining_attempts,
                remaining_verifications=exc.remaining_verifications,
            )
        except DuplicateReferralError as exc:
            return ReferralOutcome(success=False, error=str(exc), code="duplicate")
        except StoreError:
            logger.exception("Store failure creating referral for %s", request.referrer_id)
            return ReferralOutcome(success=False, error=CREATE_FAILED, code="unavailable")
        return ReferralOutcome(success=True, referral=referral)

    async def _flag(self, request: ReferralRequest, reason: str) -> None:
        await record_fraud_attempt(
            self._store,
            ip_address=request.user_ip,
            user_email=request.referred_email,
            referred_from=request.referrer_id,
            reason=reason,
            now=self._clock(),
            timeout=self._timeout,
        )

    # --- verification -------------------------------------------------------------

    async def _promote(self, referral: Row, referred_user_id: str, now: datetime) -> Row | None:
        async with self._store.transaction():
            updated = await self._store.update_if_status(
                "referrals",
                referral["id"],
                ReferralStatus.PENDING.value,
                ReferralStatus.VERIFIED.value,
                {"referred_user_id": referred_user_id, "updated_at": now},
            )
            if updated is not None:
                await self._store.increment(
                    "users",
                    {"id": referral["referrer_id"]},
                    "referral_count",
                    1,
                    {"last_referral_at": now, "updated_at": now},
                )
            return updated

    async def _attach_user(self, referral: Row, referred_user_id: str, now: datetime) -> Row | None:
        rows = await self._store.update_where(
            "referrals",
            {"id": referral["id"], "status": ReferralStatus.PENDING.value},
            {"referred_user_id": referred_user_id, "updated_at": now},
        )
        return rows[0] if rows else None

    async def validate_on_signup(
        self,
        referred_email: str,
        referred_user_id: str,
        is_email_verified: bool,
    ) -> SignupValidation:
        """Match a fresh signup to its earliest pending referral.

        Runs on every auth state change, so it never raises: store failures
        and lost races come back as ``success=False``.
        """
        email = referred_email.strip().lower()
        try:
            pending = await self._read(
                lambda: self._store.find_many(
                    "referrals",
                    {"referred_email": email, "status": ReferralStatus.PENDING.value},
                    order_by=("created_at", "id"),
                    limit=1,
                ),
                "find_pending_referral",
            )
            if not pending:
                return SignupValidation(success=False, error="no pending referral")
            referral = pending[0]

            now = self._clock()
            if is_email_verified:
                updated = await self._write(self._promote(referral, referred_user_id, now), "verify_referral")
            else:
                updated = await self._write(
                    self._attach_user(referral, referred_user_id, now), "attach_referred_user"
                )
            if updated is None:
                return SignupValidation(
                    success=False, referral_id=referral["id"], error="referral already processed"
                )

            referrer = await self._read(
                lambda: self._store.find_one("users", {"id": referral["referrer_id"]}),
                "find_referrer",
            )
            if referrer is not None:
                await self._write(
                    self._store.update_where(
                        "users",
                        {"id": referred_user_id, "referred_by": None},
                        {"referred_by": referrer["referral_code"], "updated_at": now},
                    ),
                    "associate_referrer",
                )
        except StoreError:
            logger.exception("Store failure validating referral on signup for user %s", referred_user_id)
            return SignupValidation(success=False, error="store unavailable")

        logger.info(
            "Referral %s matched signup %s (verified=%s)",
            referral["id"],
            referred_user_id,
            is_email_verified,
            extra={"event_type": "referral.verified" if is_email_verified else "referral.attached"},
        )
        if is_email_verified and referrer is not None:
            await self._notify_referrer(referrer)

        return SignupValidation(
            success=True,
            verified=is_email_verified,
            referral_id=referral["id"],
            referrer_id=referral["referrer_id"],
            referrer_code=referrer["referral_code"] if referrer is not None else None,
        )

    async def _notify_referrer(self, referrer: Row) -> None:
        message = build_referral_verified_email(
            to=referrer["email"],
            username=referrer.get("username"),
            referral_count=referrer["referral_count"],
            dashboard_url=f"{self._app_public_base_url}/dashboard",
        )
        await self._best_effort(self._notifier.send(message), "referral verified email")
        await self._best_effort(
            self._crm.upsert_contact(
                referrer["email"],
                {
                    "referral_code": referrer["referral_code"],
                    "referral_count": referrer["referral_count"],
                    "last_referral_at": referrer.get("last_referral_at"),
                },
            ),
            "crm sync for referrer stats",
        )

    async def cancel_referral(self, referral_id: UUID) -> ReferralRead | None:
        """Cancel a pending referral. Returns None if it is missing or already terminal."""
        now = self._clock()
        row = await self._write(
            self._store.update_if_status(
                "referrals",
                referral_id,
                ReferralStatus.PENDING.value,
                ReferralStatus.CANCELLED.value,
                {"updated_at": now},
            ),
            "cancel_referral",
        )
        if row is None:
            return None
        logger.info("Referral %s cancelled", referral_id, extra={"event_type": "referral.cancelled"})
        return ReferralRead.model_validate(row)

    # --- reads --------------------------------------------------------------------

    async def list_user_referrals(self, user_id: str) -> list[ReferralRead]:
        rows = await self._read(
            lambda: self._store.find_many("referrals", {"referrer_id": user_id}, order_by=("-created_at",)),
            "list_user_referrals",
        )
        return [ReferralRead.model_validate(row) for row in rows]

    async def count_verified_referrals(self, user_id: str) -> int:
        return await self._read(
            lambda: self._store.count(
                "referrals", {"referrer_id": user_id, "status": ReferralStatus.VERIFIED.value}
            ),
            "count_verified_referrals",
        )

    async def get_referral_stats(self, user_id: str) -> ReferralStats:
        referrals = await self.list_user_referrals(user_id)
        total = len(referrals)
        verified = sum(1 for item in referrals if item.status is ReferralStatus.VERIFIED)
        pending = sum(1 for item in referrals if item.status is ReferralStatus.PENDING)
        conversion = round(verified / total * 100, 2) if total else 0.0
        return ReferralStats(
            total_referrals=total,
            verified_referrals=verified,
            pending_referrals=pending,
            conversion_rate=conversion,
        )

    async def get_leaderboard(self, limit: int = 10) -> list[LeaderboardEntry]:
        rows: list[dict[str, Any]] = await self._read(
            lambda: self._store.find_many(
                "users", order_by=("-referral_count", "created_at"), limit=limit
            ),
            "leaderboard",
        )
        return [
            LeaderboardEntry(
                id=row["id"],
                username=row.get("username"),
                referral_code=row["referral_code"],
                total_referrals=row["referral_count"],
                rank=index,
            )
            for index, row in enumerate(rows, start=1)
        ]
