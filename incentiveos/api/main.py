"""IncentiveOS HTTP app.

Calculation runs, pattern maintenance, reconciliation and disputes live under
``/v1/tenants/{tenant_id}``; domain viability is global.
"""

import logging

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from incentiveos.api.calculations import router as calculations_router
from incentiveos.api.disputes import router as disputes_router
from incentiveos.api.domains import router as domains_router
from incentiveos.api.patterns import router as patterns_router
from incentiveos.api.reconciliation import router as reconciliation_router
from incentiveos.config.settings import get_settings

APP_VERSION = "0.1.0"

settings = get_settings()

_LOG_NAME_TO_LEVEL: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# --- Structured logging ---
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer() if settings.ENVIRONMENT == "dev"
        else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        _LOG_NAME_TO_LEVEL[settings.LOG_LEVEL.value],
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)
logging.basicConfig(level=_LOG_NAME_TO_LEVEL[settings.LOG_LEVEL.value])

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

# --- App ---
app = FastAPI(
    title="IncentiveOS API",
    description="Deterministic incentive calculation with a learning flywheel.",
    version=APP_VERSION,
)

# --- CORS middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.ENVIRONMENT == "dev" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Routers ---
# Global
app.include_router(domains_router)

# Tenant-scoped (all under /v1/tenants/{tenant_id}/...)
app.include_router(calculations_router)
app.include_router(disputes_router)
app.include_router(patterns_router)
app.include_router(reconciliation_router)


# --- Health and version ---


@app.get("/health")
async def health_check() -> dict:
    """Report API and database reachability; always 200, "degraded" when the database is down."""
    checks: dict[str, bool] = {"api": True}

    try:
        from incentiveos.db.session import async_session_factory
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception:
        logger.warning("health_check_database_unreachable")
        checks["database"] = False

    all_ok = all(checks.values())

    return {
        "status": "ok" if all_ok else "degraded",
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
        "checks": checks,
    }


@app.get("/api/version")
async def get_version() -> dict[str, str]:
    """Application name, version and environment."""
    return {
        "name": "IncentiveOS",
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
    }
