# /chathub/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from chathub.config.settings import settings
from chathub.services.ai_service import ai_service
from chathub.services.cache_service import cache_service
from chathub.services.db_service import db_service
from chathub.services.notification_service import notification_service
from chathub.services.runtime_config import runtime_config
from chathub.services.usage_service import usage_service
from chathub.utils.logging import setup_logging

# Startup: logging, indexes, first runtime-config load and the periodic
# refresh job. Shutdown: stop the scheduler, let in-flight notifications
# finish, then close every outbound client.

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging()
    logger.info("Application starting up...")

    await db_service.create_indexes()
    await runtime_config.refresh()

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        runtime_config.refresh,
        "interval",
        minutes=settings.runtime_config_refresh_minutes,
        id="runtime_config_refresh",
        replace_existing=True,
    )
    scheduler.start()
    app.state.scheduler = scheduler

    logger.info("Application startup complete. Ready to accept connections.")

    yield  # Application is now running

    logger.info("Application shutting down...")

    if scheduler.running:
        scheduler.shutdown(wait=False)
    await notification_service.cleanup()
    await ai_service.cleanup()
    await usage_service.cleanup()
    await cache_service.close()
    if db_service.client:
        db_service.client.close()
