"""
FastAPI application entry point.

Run with:
    uvicorn welfare_notify.main:app --port 8000

Startup builds the shared services and, unless ENABLE_SCHEDULER is false,
starts the standing schedule (daily broadcast, data refresh, emergency
monitor, custom reminders). Shutdown cancels every task and closes the
HTTP clients and the cache connection.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from welfare_notify.core.config import settings
from welfare_notify.core.errors import register_error_handlers
from welfare_notify.core.health import HealthStatus, run_health_check
from welfare_notify.core.logging_config import get_logger, setup_logging
from welfare_notify.services import Services, get_services, set_services

# ── API routers ──
from welfare_notify.api.v1.emergency import router as emergency_router
from welfare_notify.api.v1.messages import router as messages_router
from welfare_notify.api.v1.public_data import router as public_data_router
from welfare_notify.api.v1.reminders import recipients_router
from welfare_notify.api.v1.reminders import router as reminders_router
from welfare_notify.api.v1.scheduler import router as scheduler_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    services = get_services()
    if settings.ENABLE_SCHEDULER:
        services.jobs.start_all()
    else:
        logger.warning("Scheduler disabled; no messages will be sent automatically")
    yield
    logger.info("Shutting down %s", settings.APP_NAME)
    await services.close()
    set_services(None)


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Welfare SMS notifier for local residents. "
        "Collects KMA weather, AirKorea air quality and MOIS disaster messages, "
        "sends a daily weather SMS, custom reminders and operator notices, "
        "and delivers emergency disaster alerts within 5 minutes of detection."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(scheduler_router)
app.include_router(emergency_router)
app.include_router(public_data_router)
app.include_router(recipients_router)
app.include_router(reminders_router)
app.include_router(messages_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "public-data-acquisition",
            "emergency-monitor",
            "sms-dispatch",
            "scheduler",
            "custom-reminders",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check(services: Services = Depends(get_services)):
    """Deep health probe; 503 when a component is unhealthy."""
    report = await run_health_check(services)
    if report.status is HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    return {"status": "alive"}
