from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from waitlist.api.authn import require_admin
from waitlist.config import Settings, get_settings
from waitlist.db.connection import check_db_health, get_db
from waitlist.db.heartbeat import get_heartbeat
from waitlist.ops import events as ops_events
from waitlist.ops.events import EventLevel

router = APIRouter(dependencies=[Depends(require_admin)])

ServiceState = Literal["ok", "degraded", "error", "unknown"]


class ServiceStatus(BaseModel):
    name: str
    status: ServiceState
    detail: str | None = None


class OpsStatusResponse(BaseModel):
    generated_at: datetime
    services: list[ServiceStatus]
    event_counts: dict[str, int] = Field(default_factory=dict)


class OpsEventResponse(BaseModel):
    timestamp: str
    level: EventLevel
    component: str
    event_type: str
    message: str
    request_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


async def _scheduler_status(session: AsyncSession, settings: Settings) -> ServiceStatus:
    heartbeat = await get_heartbeat(session)
    if heartbeat is None:
        return ServiceStatus(name="scheduler", status="unknown", detail="no heartbeat recorded yet")
    if heartbeat.status == "error":
        return ServiceStatus(name="scheduler", status="error", detail=heartbeat.detail or "last run failed")

    age = datetime.now(UTC) - heartbeat.last_run_at
    stale_after = timedelta(minutes=settings.scheduler_interval_minutes * 3)
    if age > stale_after:
        minutes = age.total_seconds() / 60
        return ServiceStatus(
            name="scheduler",
            status="degraded",
            detail=f"last heartbeat {minutes:.0f}m ago (expected every {settings.scheduler_interval_minutes:.0f}m)",
        )
    return ServiceStatus(name="scheduler", status="ok", detail=heartbeat.detail)


@router.get("/status", response_model=OpsStatusResponse)
async def ops_status(
    settings: Annotated[Settings, Depends(get_settings)],
    session: Annotated[AsyncSession, Depends(get_db)],
) -> OpsStatusResponse:
    db_ok = await check_db_health()
    services = [
        ServiceStatus(name="api", status="ok"),
        ServiceStatus(name="database", status="ok" if db_ok else "error"),
        ServiceStatus(
            name="email",
            status="ok" if settings.sendgrid_api_key else "degraded",
            detail="sendgrid enabled" if settings.sendgrid_api_key else "logging fallback",
        ),
        ServiceStatus(
            name="crm",
            status="ok" if settings.hubspot_access_token else "degraded",
            detail="hubspot enabled" if settings.hubspot_access_token else "sync disabled",
        ),
        await _scheduler_status(session, settings) if db_ok else ServiceStatus(name="scheduler", status="unknown"),
    ]
    return OpsStatusResponse(
        generated_at=datetime.now(UTC),
        services=services,
        event_counts=ops_events.ops_event_buffer.level_counts(),
    )


@router.get("/events", response_model=list[OpsEventResponse])
async def ops_event_feed(
    limit: int = Query(100, ge=1, le=500),
    level: EventLevel | None = Query(default=None),
    event_type: str | None = Query(default=None, alias="type"),
) -> list[OpsEventResponse]:
    recent = ops_events.ops_event_buffer.recent(limit=limit, level=level, event_type=event_type)
    return [OpsEventResponse(**item) for item in recent]
