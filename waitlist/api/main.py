from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from waitlist.antifraud.sweeper import run_counter_sweeper
from waitlist.api.deps import get_ip_ledger, get_rate_limiter
from waitlist.api.middleware.request_context import RequestContextMiddleware
from waitlist.api.routes import api_router
from waitlist.config import get_settings
from waitlist.db.connection import check_db_health, dispose_engine
from waitlist.errors import InvalidWaveRangeError, StoreError, WaveActiveError, WaveNotFoundError
from waitlist.ops.events import configure_ops_event_logging

logger = logging.getLogger(__name__)

settings = get_settings()
configure_ops_event_logging(max_size=settings.ops_event_buffer_size)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    sweeper = asyncio.create_task(
        run_counter_sweeper(
            get_ip_ledger(),
            get_rate_limiter(),
            interval_seconds=settings.counter_sweep_interval_seconds,
        )
    )
    app.state.counter_sweeper = sweeper
    try:
        yield
    finally:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
        await dispose_engine()


app = FastAPI(title="Waitlist Referrals", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origin_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router)


@app.exception_handler(WaveNotFoundError)
async def wave_not_found(_: Request, exc: WaveNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(WaveActiveError)
async def wave_active(_: Request, exc: WaveActiveError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(InvalidWaveRangeError)
async def invalid_wave_range(_: Request, exc: InvalidWaveRangeError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def store_unavailable(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "data store unavailable"})


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/health/db")
async def health_db() -> dict[str, str]:
    if await check_db_health():
        return {"status": "ok"}
    raise HTTPException(status_code=503, detail="database unavailable")
