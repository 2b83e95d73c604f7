from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from waitlist.db.connection import Base


class User(Base):
    """Local mirror of an identity-provider account plus its waitlist state."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True, nullable=False)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    referral_code: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    referred_by: Mapped[str | None] = mapped_column(String(32), nullable=True)
    referral_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_referral_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    waitlist_position: Mapped[int | None] = mapped_column(Integer, index=True, nullable=True)
    wave_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("waves.id"), index=True, nullable=True
    )
    access_granted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )


class LeaderboardEntry(BaseModel):
    id: str
    username: str | None
    referral_code: str
    total_referrals: int
    rank: int
