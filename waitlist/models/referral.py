from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import CheckConstraint, DateTime, Index, String, text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from waitlist.db.connection import Base


class ReferralStatus(StrEnum):
    PENDING = "pending"
    VERIFIED = "verified"
    CANCELLED = "cancelled"


class Referral(Base):
    __tablename__ = "referrals"
    __table_args__ = (
        Index(
            "uq_referrals_active_pair",
            "referrer_id",
            "referred_email",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
        ),
        Index("ix_referrals_email_status_created", "referred_email", "status", "created_at"),
        CheckConstraint("status IN ('pending', 'verified', 'cancelled')", name="ck_referrals_status"),
    )

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    referrer_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    referred_email: Mapped[str] = mapped_column(String(320), nullable=False)
    referred_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    referred_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    referred_user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default=ReferralStatus.PENDING.value, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )


class ReferralRequest(BaseModel):
    """Typed input for a referral creation attempt.

    The email is normalized here but deliberately not validated: malformed
    addresses must reach the validator so the rejection carries its reason.
    """

    referrer_id: str
    referred_email: str
    user_ip: str | None = None
    user_agent: str | None = None

    @field_validator("referred_email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class ReferralRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    referrer_id: str
    referred_email: str
    referred_user_id: str | None = None
    referred_ip: str | None = None
    status: ReferralStatus
    created_at: datetime
    updated_at: datetime


class ReferralStats(BaseModel):
    total_referrals: int
    verified_referrals: int
    pending_referrals: int
    conversion_rate: float
