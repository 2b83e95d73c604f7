from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from waitlist.api.deps import get_referral_service
from waitlist.handlers.referrals import ReferralService
from waitlist.models.user import LeaderboardEntry

router = APIRouter()


@router.get("", response_model=list[LeaderboardEntry])
async def leaderboard(
    service: Annotated[ReferralService, Depends(get_referral_service)],
    limit: int = Query(10, ge=1, le=100),
) -> list[LeaderboardEntry]:
    return await service.get_leaderboard(limit)
