"""
Router registration and health endpoints.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from login_guard.api.admin_routes import admin_router
from login_guard.api.auth_routes import auth_router
from login_guard.services.counter_store import get_store_info

health_router = APIRouter(tags=["Health"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@health_router.get("/health")
async def health_check():
    """Basic health check endpoint for load balancers"""
    return {"status": "healthy", "timestamp": _now()}


@health_router.get("/health/live")
async def liveness_check():
    """Liveness check - the process is up."""
    return {"status": "alive", "timestamp": _now()}


@health_router.get("/health/ready")
async def readiness_check(request: Request):
    """
    Readiness check - verifies the counter store is reachable.
    Use for Kubernetes readiness probes.
    """
    store_info = await get_store_info(request.app.state.counter_store)
    ready = store_info["healthy"]
    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "not_ready",
            "checks": {"counter_store": store_info},
            "timestamp": _now(),
        },
    )


def include_routers(app: FastAPI) -> None:
    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(admin_router)
