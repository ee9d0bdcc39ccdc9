# /chathub/routes/public.py

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest

from chathub.config.settings import settings
from chathub.models.api import APIResponse
from chathub.services.cache_service import cache_service
from chathub.services.db_service import db_service
from chathub.services.realtime_service import connection_registry
from chathub.services.runtime_config import runtime_config
from chathub.utils.dependencies import verify_metrics_access

# Unauthenticated endpoints: root, health probes, and the Prometheus
# endpoint, which is protected by an API key when one is configured.

router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "ChatHub Conversation Core",
        "version": "1.0.0",
        "status": "operational",
        "environment": settings.environment,
    }


@router.get("/health", summary="Basic Health Check")
async def health_check():
    """Basic health check for load balancers."""
    return {"status": "healthy", "timestamp": datetime.utcnow()}


@router.get("/health/ready", summary="Readiness Probe")
async def readiness_check():
    """Readiness probe: MongoDB must answer; Redis is optional."""
    if not await db_service.health_check():
        raise HTTPException(status_code=503, detail="Service not ready: database unreachable")
    return {"status": "ready"}


@router.get("/health/live", summary="Liveness Probe")
async def liveness_check():
    return {"status": "alive"}


@router.get("/health/detailed", response_model=APIResponse, tags=["Admin"])
async def comprehensive_health_check(request: Request):
    """Detailed status of backing services, live connections and runtime config."""
    health_status = {"status": "healthy", "services": {}}

    if await db_service.health_check():
        health_status["services"]["database"] = "connected"
    else:
        health_status["services"]["database"] = "error"
        health_status["status"] = "degraded"

    try:
        health_status["services"]["cache"] = "connected" if await cache_service.ping() else "not_configured"
    except Exception:
        health_status["services"]["cache"] = "error"
        health_status["status"] = "degraded"

    health_status["services"]["notifications"] = "configured" if settings.telegram_bot_url else "not_configured"
    health_status["connections"] = len(connection_registry)
    health_status["runtime_config"] = runtime_config.snapshot()

    return APIResponse(
        success=True,
        message="Comprehensive health status retrieved.",
        data=health_status,
        version=settings.api_version,
    )


@router.get("/metrics", tags=["Monitoring"])
async def metrics(request: Request, _: bool = Depends(verify_metrics_access)):
    """Secured Prometheus metrics endpoint."""
    return PlainTextResponse(generate_latest(), media_type="text/plain")
