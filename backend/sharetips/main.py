"""
backend/sharetips/main.py

Purpose:
    FastAPI application bootstrap for the settlement engine: MongoDB
    connection, scheduler lifecycle for the periodic jobs, operational
    endpoints (health, metrics, admin job control).

Dependencies:
    - sharetips.database
    - sharetips.workers
    - apscheduler
"""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pymongo.errors import (
    ConnectionFailure,
    OperationFailure,
    ServerSelectionTimeoutError,
)
from starlette.responses import Response

import sharetips.database as _db
from sharetips import __version__
from sharetips.config import settings
from sharetips.database import close_db, connect_db
from sharetips.middleware.logging import StructuredLoggingMiddleware, setup_logging
from sharetips.workers._runner import job_runner
from sharetips.workers._state import get_synced_at

logger = logging.getLogger("sharetips")
scheduler = AsyncIOScheduler()


def job_specs() -> list[dict]:
    """Every periodic job with its interval and whether it runs automatically."""
    from sharetips.workers import score_sync, settlement, subscription_expiration, ticket_locker

    return [
        {
            "id": "ticket_locker",
            "func": ticket_locker.run,
            "trigger_kwargs": {"seconds": settings.TICKET_LOCK_INTERVAL_SECONDS},
            "enabled": True,
        },
        {
            "id": "score_sync",
            "func": score_sync.run,
            "trigger_kwargs": {"minutes": settings.SCORE_SYNC_INTERVAL_MINUTES},
            "enabled": settings.SCORE_SYNC_ENABLED,
        },
        {
            "id": "settlement",
            "func": settlement.run,
            "trigger_kwargs": {"minutes": settings.SETTLEMENT_INTERVAL_MINUTES},
            "enabled": True,
        },
        {
            "id": "subscription_expiration",
            "func": subscription_expiration.run,
            "trigger_kwargs": {"minutes": settings.SUBSCRIPTION_EXPIRATION_INTERVAL_MINUTES},
            "enabled": True,
        },
    ]


def _register_jobs() -> int:
    added = 0
    for spec in job_specs():
        if not spec["enabled"]:
            continue
        if scheduler.get_job(spec["id"]):
            continue
        scheduler.add_job(
            job_runner.scheduled(spec["id"], spec["func"]),
            "interval",
            id=spec["id"],
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **spec["trigger_kwargs"],
        )
        added += 1
    return added


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await connect_db()

    from sharetips.providers.odds_api import score_provider
    from sharetips.services.email_service import email_service

    await score_provider.load_usage()

    added = _register_jobs()
    if not settings.SCORE_SYNC_ENABLED:
        logger.warning(
            "Score sync is DISABLED (SCORE_SYNC_ENABLED=false): settlement only uses "
            "scores already stored. Use POST /admin/jobs/score_sync/run to sync by hand."
        )
    if not email_service.enabled:
        logger.info("EMAIL_API_KEY not set: expiration emails are disabled")
    scheduler.start()
    logger.info("Background scheduler started with %d job(s)", added)

    yield

    if scheduler.running:
        scheduler.shutdown(wait=False)
    await job_runner.drain(settings.SHUTDOWN_GRACE_SECONDS)
    await score_provider.aclose()
    await email_service.aclose()
    await close_db()
    logger.info("Settlement engine stopped")


app = FastAPI(
    title="ShareTips Settlement Engine",
    description="Ticket locking, score sync, settlement and subscription expiration",
    version=__version__,
    lifespan=lifespan,
)

# Structured logging
app.add_middleware(StructuredLoggingMiddleware)

# Routers
from sharetips.routers.admin import router as admin_router

app.include_router(admin_router)


async def db_unavailable_handler(request: Request, exc: Exception):
    logger.error(
        "Database unavailable (%s) on %s %s", type(exc).__name__, request.method, request.url.path,
    )
    return JSONResponse(status_code=503, content={"detail": "Database unavailable, retry shortly."})


app.add_exception_handler(ServerSelectionTimeoutError, db_unavailable_handler)
app.add_exception_handler(ConnectionFailure, db_unavailable_handler)


@app.exception_handler(OperationFailure)
async def db_operation_handler(request: Request, exc: OperationFailure):
    logger.error(
        "Mongo operation failed on %s %s (code=%s): %s",
        request.method, request.url.path, exc.code, exc,
    )
    return JSONResponse(status_code=500, content={"detail": "Internal error."})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal error."})


@app.get("/health")
async def health():
    """Health check -- verifies DB connection, provider and scheduler status."""
    from sharetips.providers.odds_api import score_provider

    try:
        result = await _db.db.command("ping")
        db_ok = result.get("ok") == 1.0
    except Exception:
        db_ok = False

    synced = {}
    if db_ok:
        for league in settings.sport_keys:
            synced_at = await get_synced_at(f"score_sync:{league}")
            synced[league] = synced_at.isoformat() if synced_at else None

    return {
        "status": "healthy" if db_ok and scheduler.running else "degraded",
        "db": "connected" if db_ok else "disconnected",
        "scheduler_running": bool(scheduler.running),
        "score_provider": {
            "circuit_open": score_provider.circuit_open,
            "circuit_state": score_provider.circuit_state,
            **score_provider.api_usage,
            "last_synced": synced,
        },
    }


@app.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
