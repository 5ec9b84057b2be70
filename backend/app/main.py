"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.database import close_db, get_session_factory, init_db
from backend.app.core.errors import register_error_handlers
from backend.app.core.health import HealthStatus, run_health_check
from backend.app.core.logging_config import get_logger, setup_logging
from backend.app.core.middleware import RequestLoggingMiddleware

# ── API routers ──
from backend.app.api.v1.night_safety import router as night_safety_router
from backend.app.safety.confirmations import SqlAlchemyConfirmationStore

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and the confirmation store unless one was injected."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    if getattr(app.state, "confirmation_store", None) is None:
        await init_db()
        app.state.confirmation_store = SqlAlchemyConfirmationStore(get_session_factory())
    yield
    await close_db()
    logger.info("Shutting down %s", settings.APP_NAME)


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Night-time safety scoring for citizen reports: priority scoring, "
        "density heatmaps, danger-zone aggregation, route segment risk "
        "ranking, danger-aware route synthesis and once-per-user report "
        "confirmation."
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
app.include_router(night_safety_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "priority-scoring",
            "density-heatmap",
            "danger-zones",
            "segment-risk",
            "route-planning",
            "report-confirmation",
        ],
        "docs": "/docs",
    }


@app.get("/health/live", tags=["health"])
async def liveness():
    """Liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness():
    """Readiness probe — database reachable and scoring self-test passing."""
    report = await run_health_check()
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
