"""FastAPI application entry point for the bullion compliance service."""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.middleware.error_handler import global_exception_handler
from src.api.middleware.logging import StructuredLoggingMiddleware
from src.api.routes.compliance import router as compliance_router
from src.api.routes.cron import router as cron_router
from src.api.routes.health import router as health_router
from src.config import settings
from src.domains.compliance.config import ComplianceConfig
from src.domains.compliance.engine import ComplianceEngine
from src.domains.compliance.errors import ComplianceError
from src.domains.compliance.fx import MetalpriceApiFeed
from src.domains.compliance.notifications import (
    LogNotificationSender,
    NotificationSender,
    WebhookNotificationSender,
)
from src.shared.logging import setup_logging

logger = structlog.get_logger()

# Track app start time for uptime calculation
APP_START_TIME: float = 0.0


def build_engine() -> ComplianceEngine:
    """Construct the engine once with its store, price feed and sender."""
    from src.db.compliance_store import SqlAlchemyComplianceStore
    from src.db.database import async_session_factory

    sender: NotificationSender
    if settings.notification_webhook_url:
        sender = WebhookNotificationSender(settings.notification_webhook_url)
    else:
        sender = LogNotificationSender()

    return ComplianceEngine(
        store=SqlAlchemyComplianceStore(async_session_factory),
        feed=MetalpriceApiFeed(settings.metalprice_api_key, settings.metalprice_api_url),
        sender=sender,
        config=ComplianceConfig.from_env(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown logic."""
    global APP_START_TIME
    APP_START_TIME = time.time()
    setup_logging(settings.log_level)

    logger.info(
        "compliance_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
    )

    # Initialize database tables
    from src.db.database import init_db

    await init_db()

    app.state.engine = build_engine()
    logger.info(
        "compliance_engine_ready",
        timezone=app.state.engine.config.calendar.timezone,
        reporting_currency=app.state.engine.config.fx.reporting_currency,
    )

    yield

    logger.info("compliance_shutting_down")


app = FastAPI(
    title="Bullion Compliance",
    description="AUSTRAC case and deadline engine for a bullion dealer",
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Structured logging middleware
app.add_middleware(StructuredLoggingMiddleware)

# Domain errors map to 4xx/503; anything else is a 500
app.add_exception_handler(ComplianceError, global_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Register routers
app.include_router(health_router)
app.include_router(compliance_router)
app.include_router(cron_router)


def get_uptime() -> int:
    """Get application uptime in seconds."""
    if APP_START_TIME == 0.0:
        return 0
    return int(time.time() - APP_START_TIME)
