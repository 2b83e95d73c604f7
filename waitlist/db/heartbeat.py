from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, String
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from waitlist.db.connection import Base

SCHEDULER_COMPONENT = "scheduler"
DETAIL_MAX_LENGTH = 256


class SchedulerHeartbeat(Base):
    """Last run of a background component, one row per component name."""

    __tablename__ = "scheduler_heartbeat"

    component: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_digest_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="ok")
    detail: Mapped[str | None] = mapped_column(String(DETAIL_MAX_LENGTH), nullable=True)


async def upsert_heartbeat(
    session: AsyncSession,
    *,
    status: str = "ok",
    detail: str | None = None,
    digest_sent_at: datetime | None = None,
    now: datetime | None = None,
    component: str = SCHEDULER_COMPONENT,
) -> None:
    """Stamp a run. ``last_digest_at`` only moves forward when a digest went out."""
    changes: dict[str, object] = {
        "last_run_at": now or datetime.now(UTC),
        "status": status,
        "detail": detail[:DETAIL_MAX_LENGTH] if detail else None,
    }
    if digest_sent_at is not None:
        changes["last_digest_at"] = digest_sent_at

    stmt = pg_insert(SchedulerHeartbeat).values(component=component, **changes)
    stmt = stmt.on_conflict_do_update(index_elements=[SchedulerHeartbeat.component], set_=changes)
    await session.execute(stmt)
    await session.commit()


async def get_heartbeat(
    session: AsyncSession, component: str = SCHEDULER_COMPONENT
) -> SchedulerHeartbeat | None:
    return await session.get(SchedulerHeartbeat, component)
