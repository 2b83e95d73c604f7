from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import TypeVar

from pydantic import BaseModel

from waitlist.channels.base import NotificationSink
from waitlist.db.store import AtLeast, RecordStore, read_with_retry
from waitlist.email.templates import build_weekly_digest_email
from waitlist.handlers.fraud import count_flagged_since
from waitlist.models.referral import ReferralStatus

logger = logging.getLogger(__name__)

DIGEST_PERIOD = timedelta(days=7)

T = TypeVar("T")


class TopReferrer(BaseModel):
    email: str
    username: str | None = None
    referral_code: str
    count: int


class GrowthSummary(BaseModel):
    total_users: int
    weekly_growth: int
    total_referrals: int
    verified_referrals: int
    conversion_rate: float


class FraudSummary(BaseModel):
    total_flagged: int
    weekly_flagged: int
    unique_ips: int


class WeeklyDigest(BaseModel):
    generated_at: datetime
    top_referrers: list[TopReferrer]
    growth: GrowthSummary
    flagged: FraudSummary


class DigestDelivery(BaseModel):
    sent: list[str]
    failed: list[str]


async def build_weekly_digest(
    store: RecordStore,
    *,
    now: datetime,
    top_n: int = 5,
    timeout: float = 5.0,
    retries: int = 2,
) -> WeeklyDigest:
    week_ago = now - DIGEST_PERIOD

    async def read(call: Callable[[], Awaitable[T]], op: str) -> T:
        return await read_with_retry(call, timeout=timeout, retries=retries, op=op)

    leaders = await read(
        lambda: store.find_many("users", order_by=("-referral_count", "created_at"), limit=top_n),
        "digest_top_referrers",
    )
    total_users = await read(lambda: store.count("users"), "digest_total_users")
    weekly_users = await read(
        lambda: store.count("users", {"created_at": AtLeast(week_ago)}), "digest_weekly_users"
    )
    total_referrals = await read(lambda: store.count("referrals"), "digest_total_referrals")
    verified = await read(
        lambda: store.count("referrals", {"status": ReferralStatus.VERIFIED.value}),
        "digest_verified_referrals",
    )
    total_flagged = await read(lambda: store.count("fraud_records"), "digest_total_flagged")
    weekly_flagged, unique_ips = await count_flagged_since(
        store, since=week_ago, timeout=timeout, retries=retries
    )

    return WeeklyDigest(
        generated_at=now,
        top_referrers=[
            TopReferrer(
                email=row["email"],
                username=row["username"],
                referral_code=row["referral_code"],
                count=row["referral_count"],
            )
            for row in leaders
            if row["referral_count"] > 0
        ],
        growth=GrowthSummary(
            total_users=total_users,
            weekly_growth=weekly_users,
            total_referrals=total_referrals,
            verified_referrals=verified,
            conversion_rate=round(verified / total_referrals * 100, 2) if total_referrals else 0.0,
        ),
        flagged=FraudSummary(
            total_flagged=total_flagged,
            weekly_flagged=weekly_flagged,
            unique_ips=unique_ips,
        ),
    )


async def send_weekly_digest(
    sink: NotificationSink, recipients: list[str], digest: WeeklyDigest
) -> DigestDelivery:
    """Send the digest to each recipient; one failed send does not stop the rest."""
    sent: list[str] = []
    failed: list[str] = []
    for recipient in recipients:
        message = build_weekly_digest_email(to=recipient, digest=digest)
        try:
            ok = await sink.send(message)
        except Exception:
            logger.exception("Weekly digest send to %s raised", recipient)
            ok = False
        (sent if ok else failed).append(recipient)

    logger.info(
        "Weekly digest delivered to %d of %d recipients",
        len(sent),
        len(recipients),
        extra={"event_type": "digest.sent"},
    )
    return DigestDelivery(sent=sent, failed=failed)
