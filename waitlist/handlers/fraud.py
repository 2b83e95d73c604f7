from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import uuid4

from waitlist.db.store import AtLeast, RecordStore, guarded, read_with_retry
from waitlist.errors import StoreError
from waitlist.models.fraud import FraudRecordRead, FraudStats

logger = logging.getLogger(__name__)

UNKNOWN_IP = "unknown"
STATS_SAMPLE_LIMIT = 1000


async def record_fraud_attempt(
    store: RecordStore,
    *,
    ip_address: str | None,
    user_email: str,
    referred_from: str | None,
    reason: str,
    now: datetime,
    timeout: float = 5.0,
) -> FraudRecordRead | None:
    """Persist a flagged attempt. Best-effort: failures are logged and return None."""
    row = {
        "id": uuid4(),
        "ip_address": ip_address or UNKNOWN_IP,
        "user_email": user_email.strip().lower(),
        "referred_from": referred_from,
        "reason": reason[:512],
        "fraud_flag": True,
        "created_at": now,
    }
    try:
        created = await guarded(store.insert("fraud_records", row), timeout=timeout, op="insert_fraud_record")
    except StoreError:
        logger.exception("Failed to record fraud attempt for ip=%s", row["ip_address"])
        return None
    logger.info(
        "Fraud attempt recorded for ip=%s email=%s",
        row["ip_address"],
        row["user_email"],
        extra={"event_type": "fraud.attempt.recorded", "ops_payload": {"reason": reason}},
    )
    return FraudRecordRead.model_validate(created)


async def list_fraud_records(
    store: RecordStore,
    *,
    ip_address: str | None = None,
    user_email: str | None = None,
    referred_from: str | None = None,
    since: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
    timeout: float = 5.0,
    retries: int = 2,
) -> list[FraudRecordRead]:
    filters: dict[str, Any] = {}
    if ip_address:
        filters["ip_address"] = ip_address
    if user_email:
        filters["user_email"] = user_email.strip().lower()
    if referred_from:
        filters["referred_from"] = referred_from
    if since is not None:
        filters["created_at"] = AtLeast(since)
    rows = await read_with_retry(
        lambda: store.find_many(
            "fraud_records", filters, order_by=("-created_at",), limit=limit, offset=offset
        ),
        timeout=timeout,
        retries=retries,
        op="list_fraud_records",
    )
    return [FraudRecordRead.model_validate(row) for row in rows]


async def get_fraud_stats(
    store: RecordStore,
    *,
    now: datetime,
    timeout: float = 5.0,
    retries: int = 2,
) -> FraudStats:
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    total = await read_with_retry(
        lambda: store.count("fraud_records"), timeout=timeout, retries=retries, op="count_fraud"
    )
    today = await read_with_retry(
        lambda: store.count("fraud_records", {"created_at": AtLeast(start_of_day)}),
        timeout=timeout,
        retries=retries,
        op="count_fraud_today",
    )
    sample = await read_with_retry(
        lambda: store.find_many("fraud_records", order_by=("-created_at",), limit=STATS_SAMPLE_LIMIT),
        timeout=timeout,
        retries=retries,
        op="sample_fraud",
    )
    return FraudStats(
        total_records=total,
        today_records=today,
        unique_ips=len({row["ip_address"] for row in sample}),
        unique_emails=len({row["user_email"] for row in sample}),
    )


async def count_flagged_since(
    store: RecordStore, *, since: datetime, timeout: float = 5.0, retries: int = 2
) -> tuple[int, int]:
    """Return (flagged attempts since ``since``, distinct IPs among them)."""
    rows = await read_with_retry(
        lambda: store.find_many("fraud_records", {"created_at": AtLeast(since)}),
        timeout=timeout,
        retries=retries,
        op="flagged_since",
    )
    return len(rows), len({row["ip_address"] for row in rows})

