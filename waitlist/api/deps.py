"""Process-wide collaborators for the API, overridable through ``app.dependency_overrides``."""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from waitlist.antifraud.counters import CounterStore, InMemoryCounterStore
from waitlist.antifraud.rate_limit import ReferralRateLimiter
from waitlist.antifraud.throttle import IPThrottleLedger, ThrottleConfig
from waitlist.channels.base import CRMSync, NotificationSink
from waitlist.channels.factory import build_crm_sync, build_notification_sink
from waitlist.config import Settings, get_settings
from waitlist.db.connection import get_sessionmaker
from waitlist.db.store import RecordStore, SqlRecordStore
from waitlist.handlers.referrals import ReferralService
from waitlist.handlers.waves import WaveService


@lru_cache(maxsize=1)
def get_record_store() -> RecordStore:
    return SqlRecordStore(get_sessionmaker())


@lru_cache(maxsize=1)
def get_counter_store() -> CounterStore:
    return InMemoryCounterStore()


@lru_cache(maxsize=1)
def get_notification_sink() -> NotificationSink:
    return build_notification_sink(get_settings())


@lru_cache(maxsize=1)
def get_crm_sync() -> CRMSync:
    return build_crm_sync(get_settings())


@lru_cache(maxsize=1)
def get_ip_ledger() -> IPThrottleLedger:
    settings = get_settings()
    return IPThrottleLedger(
        get_counter_store(),
        config=ThrottleConfig(
            max_attempts_per_hour=settings.max_attempts_per_hour,
            max_verifications_per_day=settings.max_verifications_per_day,
        ),
    )


@lru_cache(maxsize=1)
def get_rate_limiter() -> ReferralRateLimiter:
    settings = get_settings()
    return ReferralRateLimiter(
        get_counter_store(),
        max_submissions=settings.max_referrals_per_window,
        window=timedelta(minutes=settings.referral_window_minutes),
    )


def get_referral_service(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[RecordStore, Depends(get_record_store)],
    ip_ledger: Annotated[IPThrottleLedger, Depends(get_ip_ledger)],
    rate_limiter: Annotated[ReferralRateLimiter, Depends(get_rate_limiter)],
    notifier: Annotated[NotificationSink, Depends(get_notification_sink)],
    crm: Annotated[CRMSync, Depends(get_crm_sync)],
) -> ReferralService:
    return ReferralService(
        store=store,
        ip_ledger=ip_ledger,
        rate_limiter=rate_limiter,
        notifier=notifier,
        crm=crm,
        app_public_base_url=settings.app_public_base_url,
        store_timeout_seconds=settings.store_timeout_seconds,
        store_read_retries=settings.store_read_retries,
        notify_timeout_seconds=settings.email_http_timeout_seconds,
    )


def get_wave_service(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[RecordStore, Depends(get_record_store)],
) -> WaveService:
    return WaveService(
        store=store,
        store_timeout_seconds=settings.store_timeout_seconds,
        store_read_retries=settings.store_read_retries,
    )
