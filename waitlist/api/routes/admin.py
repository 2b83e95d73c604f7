from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from waitlist.api.authn import require_admin
from waitlist.api.deps import get_notification_sink, get_record_store, get_referral_service, get_wave_service
from waitlist.channels.base import NotificationSink
from waitlist.clock import utc_now
from waitlist.config import Settings, get_settings
from waitlist.db.store import RecordStore
from waitlist.handlers.digest import DigestDelivery, WeeklyDigest, build_weekly_digest, send_weekly_digest
from waitlist.handlers.fraud import get_fraud_stats, list_fraud_records
from waitlist.handlers.referrals import ReferralService
from waitlist.handlers.waves import WaveService
from waitlist.models.fraud import FraudRecordRead, FraudStats
from waitlist.models.referral import ReferralRead
from waitlist.models.wave import WaveCreate, WaveRead, WaveUpdate, WaveWithStats

logger = logging.getLogger(__name__)
router = APIRouter(dependencies=[Depends(require_admin)])


class AssignmentResult(BaseModel):
    updated_users: int


class DigestRequest(BaseModel):
    recipients: list[str] | None = None
    send_email: bool = True


class DigestResponse(BaseModel):
    digest: WeeklyDigest
    delivery: DigestDelivery | None = None


# --- waves -------------------------------------------------------------------------


@router.get("/waves", response_model=list[WaveWithStats])
async def list_waves(service: Annotated[WaveService, Depends(get_wave_service)]) -> list[WaveWithStats]:
    return await service.list_waves_with_stats()


@router.post("/waves", response_model=WaveRead, status_code=status.HTTP_201_CREATED)
async def create_wave(
    body: WaveCreate, service: Annotated[WaveService, Depends(get_wave_service)]
) -> WaveRead:
    return await service.create_wave(body)


@router.get("/waves/{wave_id}", response_model=WaveWithStats)
async def get_wave(wave_id: UUID, service: Annotated[WaveService, Depends(get_wave_service)]) -> WaveWithStats:
    wave = await service.get_wave(wave_id)
    stats = await service.get_wave_stats(wave_id)
    return WaveWithStats(**wave.model_dump(), **stats.model_dump())


@router.patch("/waves/{wave_id}", response_model=WaveRead)
async def update_wave(
    wave_id: UUID, body: WaveUpdate, service: Annotated[WaveService, Depends(get_wave_service)]
) -> WaveRead:
    return await service.update_wave(wave_id, body)


@router.delete("/waves/{wave_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_wave(wave_id: UUID, service: Annotated[WaveService, Depends(get_wave_service)]) -> None:
    await service.delete_wave(wave_id)


@router.post("/waves/{wave_id}/activate", response_model=WaveRead)
async def activate_wave(
    wave_id: UUID, service: Annotated[WaveService, Depends(get_wave_service)]
) -> WaveRead:
    return await service.activate_wave(wave_id)


@router.post("/waves/{wave_id}/deactivate", response_model=WaveRead)
async def deactivate_wave(
    wave_id: UUID, service: Annotated[WaveService, Depends(get_wave_service)]
) -> WaveRead:
    return await service.deactivate_wave(wave_id)


@router.post("/waves/assign", response_model=AssignmentResult)
async def assign_users(service: Annotated[WaveService, Depends(get_wave_service)]) -> AssignmentResult:
    return AssignmentResult(updated_users=await service.assign_users_to_waves())


# --- referrals ---------------------------------------------------------------------


@router.post("/referrals/{referral_id}/cancel", response_model=ReferralRead)
async def cancel_referral(
    referral_id: UUID, service: Annotated[ReferralService, Depends(get_referral_service)]
) -> ReferralRead:
    referral = await service.cancel_referral(referral_id)
    if referral is None:
        raise HTTPException(status_code=409, detail="referral is not pending")
    return referral


# --- fraud -------------------------------------------------------------------------


@router.get("/fraud", response_model=list[FraudRecordRead])
async def fraud_records(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[RecordStore, Depends(get_record_store)],
    ip_address: str | None = Query(default=None),
    email: str | None = Query(default=None),
    referred_from: str | None = Query(default=None),
    since: datetime | None = Query(default=None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> list[FraudRecordRead]:
    return await list_fraud_records(
        store,
        ip_address=ip_address,
        user_email=email,
        referred_from=referred_from,
        since=since,
        limit=limit,
        offset=offset,
        timeout=settings.store_timeout_seconds,
        retries=settings.store_read_retries,
    )


@router.get("/fraud/stats", response_model=FraudStats)
async def fraud_stats(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[RecordStore, Depends(get_record_store)],
) -> FraudStats:
    return await get_fraud_stats(
        store, now=utc_now(), timeout=settings.store_timeout_seconds, retries=settings.store_read_retries
    )


# --- digest ------------------------------------------------------------------------


@router.get("/digest/weekly", response_model=WeeklyDigest)
async def preview_weekly_digest(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[RecordStore, Depends(get_record_store)],
) -> WeeklyDigest:
    return await build_weekly_digest(
        store,
        now=utc_now(),
        top_n=settings.digest_top_referrers,
        timeout=settings.store_timeout_seconds,
        retries=settings.store_read_retries,
    )


@router.post("/digest/weekly", response_model=DigestResponse)
async def send_digest(
    body: DigestRequest,
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[RecordStore, Depends(get_record_store)],
    sink: Annotated[NotificationSink, Depends(get_notification_sink)],
) -> DigestResponse:
    digest = await build_weekly_digest(
        store,
        now=utc_now(),
        top_n=settings.digest_top_referrers,
        timeout=settings.store_timeout_seconds,
        retries=settings.store_read_retries,
    )
    if not body.send_email:
        return DigestResponse(digest=digest)

    recipients = body.recipients or settings.digest_recipient_list()
    if not recipients:
        raise HTTPException(status_code=400, detail="no digest recipients configured")
    delivery = await send_weekly_digest(sink, recipients, digest)
    return DigestResponse(digest=digest, delivery=delivery)
