# feedsync/routers/health.py
# Health check endpoints for monitoring and load balancers
# Provides liveness and readiness probes

import logging
import time
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from feedsync.routers.deps import get_app_state
from feedsync.state import AppState

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


class HealthStatus(BaseModel):
    """Health check response model."""
    status: str  # "healthy", "degraded", "unhealthy"
    timestamp: float
    version: str = "1.0.0"
    checks: Dict[str, Dict[str, Any]] = {}


class ComponentHealth(BaseModel):
    """Individual component health."""
    status: str
    latency_ms: float = 0.0
    message: str = ""


async def check_storage_health(state: AppState) -> ComponentHealth:
    """Ping the persisted key-value store."""
    start = time.time()
    try:
        ok = await state.store.ping()
    except Exception as e:
        logger.error(f"Storage health check failed: {e}")
        return ComponentHealth(
            status="unhealthy",
            latency_ms=(time.time() - start) * 1000,
            message=f"Storage error: {type(e).__name__}"
        )
    latency_ms = (time.time() - start) * 1000
    if not ok:
        return ComponentHealth(status="unhealthy", latency_ms=latency_ms, message="Storage ping failed")
    return ComponentHealth(
        status="healthy",
        latency_ms=latency_ms,
        message=f"backend={state.settings.STORAGE_BACKEND}"
    )


def check_timers(state: AppState) -> ComponentHealth:
    """The stable timestamp must keep polling, otherwise feeds freeze on an old boundary."""
    if state.stable_timestamp.running:
        return ComponentHealth(status="healthy", message=state.stable_timestamp.value.isoformat())
    return ComponentHealth(status="degraded", message="stable timestamp poller not running")


@router.get("/health", response_model=HealthStatus)
async def health_check(response: Response, state: AppState = Depends(get_app_state)):
    """
    Full health check endpoint.
    Returns status of all components.
    """
    checks = {}
    for name, result in (
        ("storage", await check_storage_health(state)),
        ("timers", check_timers(state)),
    ):
        checks[name] = {
            "status": result.status,
            "latency_ms": round(result.latency_ms, 2),
            "message": result.message
        }

    statuses = [c["status"] for c in checks.values()]
    if "unhealthy" in statuses:
        overall_status = "unhealthy"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif "degraded" in statuses:
        overall_status = "degraded"
        response.status_code = status.HTTP_200_OK
    else:
        overall_status = "healthy"
        response.status_code = status.HTTP_200_OK

    return HealthStatus(status=overall_status, timestamp=time.time(), checks=checks)


@router.get("/health/live")
async def liveness_probe():
    """
    Liveness probe.
    Returns 200 if the application is running.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_probe(response: Response, state: AppState = Depends(get_app_state)):
    """
    Readiness probe.
    Returns 200 only if the cache store answers.
    """
    storage = await check_storage_health(state)
    if storage.status == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "reason": storage.message}
    return {"status": "ready"}
