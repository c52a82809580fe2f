"""FastAPI application entrypoint: lifespan, routers, middleware."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy import text

from fieldwatch.config import get_settings
from fieldwatch.database import async_session_factory, engine
from fieldwatch.middleware.logging import RequestLoggingMiddleware, configure_structured_logging
from fieldwatch.routes import alerts, diagnoses, measurements, sensors, sweeps, weather, ws
from fieldwatch.services.runtime import Runtime

logger = structlog.get_logger("fieldwatch")


async def _check_database() -> dict[str, Any]:
    try:
        async with engine.connect() as connection:
            await connection.execute(text("SELECT 1"))
        return {"ok": True, "message": "ok"}
    except Exception as exc:
        return {"ok": False, "message": str(exc)}


async def _check_redis(app: FastAPI) -> dict[str, Any]:
    redis = getattr(app.state, "redis", None)
    if redis is None:
        return {"ok": False, "message": "not connected"}
    try:
        await redis.ping()
        return {"ok": True, "message": "ok"}
    except Exception as exc:
        return {"ok": False, "message": str(exc)}


async def _run_readiness_checks(app: FastAPI) -> dict[str, dict[str, Any]]:
    scheduler = getattr(app.state, "scheduler", None)
    sweeps_enabled = get_settings().sweeps_enabled
    return {
        "database": await _check_database(),
        "redis": await _check_redis(app),
        "sweeps": {
            "ok": (not sweeps_enabled) or (scheduler is not None and scheduler.running),
            "message": "disabled" if not sweeps_enabled else "running" if scheduler is not None else "not started",
        },
    }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup / shutdown lifecycle.

    Startup:
      1. Initialize structured logging
      2. Verify the database connection
      3. Connect to Redis
      4. Build the shared runtime (keyed lock, notifiers, thresholds)
      5. Start the offline / trend sweep scheduler

    Shutdown:
      1. Stop the scheduler (sweeps finish the current sensor or are cancelled)
      2. Close Redis connection pool
      3. Dispose SQLAlchemy engine
    """
    settings = get_settings()
    configure_structured_logging(settings)
    logger.info("fieldwatch_starting", log_level=settings.log_level, sweeps_enabled=settings.sweeps_enabled)

    redis: Redis | None = None
    scheduler = None
    try:
        async with engine.connect() as connection:
            await connection.execute(text("SELECT 1"))

        redis = Redis.from_url(settings.redis_url, decode_responses=True)
        await redis.ping()
        app.state.redis = redis

        runtime = Runtime.from_settings(settings, redis)
        app.state.runtime = runtime

        if settings.sweeps_enabled:
            scheduler = runtime.scheduler(async_session_factory)
            scheduler.start()
        app.state.scheduler = scheduler
    except Exception as exc:
        logger.exception("startup_failure", error=str(exc))
        raise

    yield

    logger.info("fieldwatch_shutting_down")
    if scheduler is not None:
        await scheduler.stop()
    if redis is not None:
        await redis.aclose()
    await engine.dispose()


app = FastAPI(
    title="FieldWatch API",
    description=(
        "Field sensor monitoring: ingests sensor readings, evaluates them "
        "against thresholds, raises deduplicated alerts, detects offline "
        "sensors and rising trends, and notifies farmers over their channels."
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── Middleware ──────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


# ── Health check ────────────────────────────────────────────────────────────
@app.get("/health", tags=["system"])
async def health_check() -> dict[str, str]:
    """Basic health check: verifies the API process is alive."""
    return {
        "status": "ok",
        "service": "fieldwatch",
        "version": "0.1.0",
    }


@app.get("/health/ready", tags=["system"])
async def readiness_check() -> JSONResponse:
    """Readiness: database, Redis and the sweep scheduler."""
    checks = await _run_readiness_checks(app)
    ready = all(check["ok"] for check in checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ok" if ready else "degraded", "checks": checks},
    )


# ── Router registration ────────────────────────────────────────────────────
app.include_router(measurements.router, prefix="/api/v1")
app.include_router(sensors.router, prefix="/api/v1")
app.include_router(alerts.router, prefix="/api/v1")
app.include_router(sweeps.router, prefix="/api/v1")
app.include_router(weather.router, prefix="/api/v1")
app.include_router(diagnoses.router, prefix="/api/v1")
app.include_router(ws.router)
