"""
FastAPI application entry point for the messaging service.

Run with:
    uvicorn backend.app.main:app --reload --port 8080
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.errors import register_error_handlers
from backend.app.core.health import HealthStatus, run_health_check
from backend.app.core.logging_config import setup_logging
from backend.app.core.middleware import RequestLoggingMiddleware

# ── Messaging ──
from backend.app.api.deps import get_broadcast_service
from backend.app.api.v1.messages import router as messages_router
from backend.app.messaging.broadcast_service import BroadcastService

setup_logging()
logger = logging.getLogger(__name__)

MODULES = [
    "recipient-resolution",
    "broadcast-messaging",
    "inbox-delivery",
    "email-delivery",
    "sms-delivery",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Starting %s v%s [%s] inbox=%s email=%s(%s) sms=%s(%s)",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        settings.INBOX_PROVIDER,
        settings.EMAIL_PROVIDER, "on" if settings.EMAIL_ENABLED else "off",
        settings.SMS_PROVIDER, "on" if settings.SMS_ENABLED else "off",
    )
    if not settings.ADMIN_EMAILS:
        logger.warning("ADMIN_EMAILS is empty; admin messaging endpoints will reject every caller")
    yield
    logger.info("Stopped %s", settings.APP_NAME)


app = FastAPI(
    title=settings.APP_NAME,
    description=(
        f"{settings.ORGANIZATION_NAME} admin messaging service. "
        "Resolves recipient categories (parents, volunteers, team members, "
        "direct emails) into a deduplicated recipient list and delivers a "
        "broadcast over in-app inbox, email and SMS with a per-channel report."
    ),
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# Last added runs outermost, so request logging wraps CORS.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.CORS_ALLOW_ALL else settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

register_error_handlers(app)
app.include_router(messages_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": MODULES,
        "docs": app.docs_url,
    }


@app.get("/health", tags=["health"])
async def health_check(service: BroadcastService = Depends(get_broadcast_service)):
    """Deep probe covering every delivery transport."""
    report = await run_health_check(service.channels())
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness(service: BroadcastService = Depends(get_broadcast_service)):
    """503 only when a component is unhealthy; disabled transports still serve."""
    report = await run_health_check(service.channels())
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
