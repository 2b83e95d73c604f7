from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from waitlist.db.connection import Base


class Wave(Base):
    __tablename__ = "waves"
    __table_args__ = (CheckConstraint("start_position <= end_position", name="ck_waves_position_range"),)

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_position: Mapped[int] = mapped_column(Integer, nullable=False)
    end_position: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )


class WaveCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    description: str | None = None
    start_position: int = Field(ge=1)
    end_position: int = Field(ge=1)

    @model_validator(mode="after")
    def check_range(self) -> WaveCreate:
        if self.start_position > self.end_position:
            raise ValueError("start_position must be less than or equal to end_position")
        return self


class WaveUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = None
    start_position: int | None = Field(default=None, ge=1)
    end_position: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def reject_null_required(self) -> WaveUpdate:
        nulls = [
            name
            for name in ("name", "start_position", "end_position")
            if name in self.model_fields_set and getattr(self, name) is None
        ]
        if nulls:
            raise ValueError(f"{', '.join(nulls)} cannot be null")
        return self


class WaveRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None = None
    start_position: int
    end_position: int
    is_active: bool
    activated_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class WaveStats(BaseModel):
    total_users: int
    active_users: int
    pending_users: int


class WaveWithStats(WaveRead, WaveStats):
    pass
