"""
FastAPI application entry point.

Run with:
    python -m backend.app.main          (HOST, PORT, WORKERS, RELOAD from settings)

Or directly through uvicorn:
    uvicorn backend.app.main:app --reload --port 3002
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check
from backend.app.core.database import close_db, get_engine, get_session_factory, init_db

# ── SOS core ──
from backend.app.sos.directory import SqlUserDirectory
from backend.app.sos.fanout import FanOutEngine
from backend.app.sos.lifecycle import AlertLifecycleManager
from backend.app.sos.notifier import build_notifier
from backend.app.sos.store import SqlAlertStore

# ── API routers ──
from backend.app.api.v1.sos import router as sos_router
from backend.app.api.v1.users import router as users_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the SOS core once and share it across requests."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    await init_db()
    session_factory = get_session_factory()
    notifier = build_notifier(settings)
    fanout = FanOutEngine(
        notifier,
        timeout_seconds=settings.SMS_TIMEOUT_SECONDS,
        max_concurrency=settings.FANOUT_MAX_CONCURRENCY,
    )
    directory = SqlUserDirectory(session_factory)
    app.state.user_directory = directory
    app.state.alert_manager = AlertLifecycleManager(
        SqlAlertStore(session_factory), directory, fanout,
    )
    app.state.db_engine = get_engine()

    yield

    logger.info("Shutting down %s", settings.APP_NAME)
    await notifier.close()
    await close_db()


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Personal-safety SOS backend. Records GPS-tagged emergency alerts, "
        "broadcasts them by SMS to every other active user, notifies a "
        "user's saved emergency contacts on demand, and tracks contact "
        "responses and alert resolution."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (order matters — outermost first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(sos_router)
app.include_router(users_router)


# ── Root & health endpoints ──

async def _health_report():
    manager = getattr(app.state, "alert_manager", None)
    return await run_health_check(
        engine=getattr(app.state, "db_engine", None),
        sms_configured=manager.sms_configured if manager else False,
    )


@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "sos-alerts",
            "sms-fan-out",
            "emergency-contacts",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Deep health probe — checks all subsystems."""
    report = await _health_report()
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness():
    """Kubernetes readiness probe — can we serve traffic?"""
    report = await _health_report()
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()


def serve() -> None:
    """Run the API under uvicorn with the configured server settings."""
    reload = settings.RELOAD and settings.is_development
    uvicorn.run(
        "backend.app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=reload,
        # uvicorn ignores workers when reloading
        workers=1 if reload else settings.WORKERS,
        log_config=None,  # keep setup_logging() handlers
    )


if __name__ == "__main__":
    serve()
