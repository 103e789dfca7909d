"""
SafeCircle HTTP service.

Serve locally (STORE_BACKEND=memory needs no database):
    uvicorn backend.app.main:app --reload --port 8000

All routes except /, /health* and the public safe-zone listing expect
the caller id in the X-User-ID header.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check
from backend.app.core.cache import close_redis
from backend.app.core.database import close_db, init_db

# ── Safety engine ──
from backend.app.api.deps import get_service, get_sweeper, set_sweeper
from backend.app.safety.service import SafetyService
from backend.app.safety.sweeper import MissedCheckInSweeper

# ── API routers ──
from backend.app.api.v1.alerts import router as alert_router
from backend.app.api.v1.check_ins import router as check_in_router
from backend.app.api.v1.contacts import router as contact_router
from backend.app.api.v1.reports import router as report_router
from backend.app.api.v1.safe_zones import router as safe_zone_router
from backend.app.api.v1.profile import router as profile_router

# ── Logging ──
setup_logging()
logger = get_logger(__name__)


# ── Lifespan ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the store and start the sweeper; undo both on shutdown."""
    logger.info(
        "Starting %s v%s [%s] store=%s",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        settings.STORE_BACKEND,
    )
    if settings.STORE_BACKEND.lower() == "sql" and settings.DATABASE_CREATE_TABLES:
        await init_db()

    service = get_service()
    sweeper = None
    if settings.CHECK_IN_SWEEP_ENABLED:
        sweeper = MissedCheckInSweeper(service, settings.CHECK_IN_SWEEP_INTERVAL_SECONDS)
        await sweeper.start()
        set_sweeper(sweeper)

    yield

    # Shutdown: stop background work before closing connections
    if sweeper is not None:
        await sweeper.stop()
        set_sweeper(None)
    await service.store.close()
    await close_redis()
    await close_db()
    logger.info("Shutting down %s", settings.APP_NAME)


# ── App ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Personal-safety coordination backend. "
        "One-tap SOS alerts with best-effort location, "
        "trusted-contact notification fan-out, "
        "timed destination check-ins with missed check-in escalation, "
        "anonymous-capable community incident reports, and "
        "a directory of verified safe zones."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware (last added runs first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Errors and routes ──
register_error_handlers(app)

app.include_router(alert_router)
app.include_router(check_in_router)
app.include_router(contact_router)
app.include_router(report_router)
app.include_router(safe_zone_router)
app.include_router(profile_router)


# ── Service info and probes ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "emergency-alerts",
            "check-ins",
            "trusted-contacts",
            "incident-reports",
            "safe-zones",
            "profile",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check(service: SafetyService = Depends(get_service)):
    """Store, cache and sweeper status; always 200."""
    report = await run_health_check(service.store, get_sweeper())
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Process is up; touches no dependency."""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness(service: SafetyService = Depends(get_service)):
    """503 while the record store is unreachable."""
    report = await run_health_check(service.store, get_sweeper())
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
