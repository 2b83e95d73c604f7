from waitlist.models.fraud import FraudRecord, FraudRecordRead, FraudStats
from waitlist.models.referral import (
    Referral,
    ReferralRead,
    ReferralRequest,
    ReferralStats,
    ReferralStatus,
)
from waitlist.models.user import LeaderboardEntry, User
from waitlist.models.wave import Wave, WaveCreate, WaveRead, WaveStats, WaveUpdate, WaveWithStats

__all__ = [
    "FraudRecord",
    "FraudRecordRead",
    "FraudStats",
    "LeaderboardEntry",
    "Referral",
    "ReferralRead",
    "ReferralRequest",
    "ReferralStats",
    "ReferralStatus",
    "User",
    "Wave",
    "WaveCreate",
    "WaveRead",
    "WaveStats",
    "WaveUpdate",
    "WaveWithStats",
]
