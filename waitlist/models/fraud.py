from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from waitlist.db.connection import Base


class FraudRecord(Base):
    __tablename__ = "fraud_records"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    ip_address: Mapped[str] = mapped_column(String(45), index=True, nullable=False)
    user_email: Mapped[str] = mapped_column(String(320), index=True, nullable=False)
    referred_from: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    fraud_flag: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), index=True, nullable=False
    )


class FraudRecordRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ip_address: str
    user_email: str
    referred_from: str | None = None
    reason: str | None = None
    fraud_flag: bool
    created_at: datetime


class FraudStats(BaseModel):
    total_records: int
    today_records: int
    unique_ips: int
    unique_emails: int
