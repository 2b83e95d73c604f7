from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel, Field

from waitlist.antifraud.throttle import IPThrottleLedger, ThrottleResult
from waitlist.api.deps import get_ip_ledger, get_referral_service
from waitlist.config import Settings, get_settings
from waitlist.handlers.referrals import OutcomeCode, ReferralService, SignupValidation
from waitlist.models.referral import ReferralRead, ReferralRequest, ReferralStats

logger = logging.getLogger(__name__)
router = APIRouter()

_OUTCOME_STATUS: dict[OutcomeCode, int] = {
    "invalid": status.HTTP_400_BAD_REQUEST,
    "throttled": status.HTTP_429_TOO_MANY_REQUESTS,
    "duplicate": status.HTTP_409_CONFLICT,
    "unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
}


class ReferralCreateBody(BaseModel):
    referrer_id: str = Field(min_length=1, max_length=64)
    referred_email: str = Field(min_length=1, max_length=320)


class SignupEvent(BaseModel):
    email: str
    user_id: str = Field(min_length=1, max_length=64)
    email_verified: bool = False


def client_ip(request: Request) -> str | None:
    """First proxy hop from the forwarding headers, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()
    return request.client.host if request.client else None


@router.post("", response_model=ReferralRead, status_code=status.HTTP_201_CREATED)
async def create_referral(
    body: ReferralCreateBody,
    request: Request,
    service: Annotated[ReferralService, Depends(get_referral_service)],
    user_agent: Annotated[str | None, Header()] = None,
) -> ReferralRead:
    outcome = await service.submit_referral(
        ReferralRequest(
            referrer_id=body.referrer_id,
            referred_email=body.referred_email,
            user_ip=client_ip(request),
            user_agent=user_agent,
        )
    )
    if outcome.success and outcome.referral is not None:
        return outcome.referral
    if outcome.code is None:
        logger.error("Referral submission failed without an outcome code: %s", outcome.error)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=outcome.error)
    raise HTTPException(
        status_code=_OUTCOME_STATUS[outcome.code],
        detail=outcome.model_dump(mode="json", exclude={"success", "referral"}),
    )


@router.get("/throttle", response_model=ThrottleResult)
async def throttle_status(
    request: Request,
    ip_ledger: Annotated[IPThrottleLedger, Depends(get_ip_ledger)],
) -> ThrottleResult:
    ip = client_ip(request)
    if ip is None:
        raise HTTPException(status_code=400, detail="client address unavailable")
    return await ip_ledger.check_throttle(ip)


@router.post("/signup", response_model=SignupValidation)
async def signup_webhook(
    event: SignupEvent,
    settings: Annotated[Settings, Depends(get_settings)],
    service: Annotated[ReferralService, Depends(get_referral_service)],
    x_webhook_secret: Annotated[str | None, Header()] = None,
) -> SignupValidation:
    """Called by the identity provider on every auth state change.

    Fails closed: without a configured shared secret the webhook is disabled.
    """
    secret = settings.signup_webhook_secret
    if not secret:
        logger.error("Signup webhook rejected: SIGNUP_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=503, detail="signup webhook not configured")
    if not hmac.compare_digest(x_webhook_secret or "", secret):
        raise HTTPException(status_code=401, detail="invalid webhook secret")
    return await service.validate_on_signup(event.email, event.user_id, event.email_verified)


@router.get("/users/{user_id}", response_model=list[ReferralRead])
async def user_referrals(
    user_id: str,
    service: Annotated[ReferralService, Depends(get_referral_service)],
) -> list[ReferralRead]:
    return await service.list_user_referrals(user_id)


@router.get("/users/{user_id}/stats", response_model=ReferralStats)
async def user_referral_stats(
    user_id: str,
    service: Annotated[ReferralService, Depends(get_referral_service)],
) -> ReferralStats:
    return await service.get_referral_stats(user_id)
