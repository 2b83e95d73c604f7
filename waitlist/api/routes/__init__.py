from fastapi import APIRouter

from waitlist.api.routes.admin import router as admin_router
from waitlist.api.routes.leaderboard import router as leaderboard_router
from waitlist.api.routes.ops import router as ops_router
from waitlist.api.routes.referrals import router as referrals_router

api_router = APIRouter()
api_router.include_router(referrals_router, prefix="/referrals", tags=["referrals"])
api_router.include_router(leaderboard_router, prefix="/leaderboard", tags=["leaderboard"])
api_router.include_router(admin_router, prefix="/admin", tags=["admin"])
api_router.include_router(ops_router, prefix="/ops", tags=["ops"])
