"""
Login Guard - Main API Server
FastAPI application protecting a login endpoint against brute force and abuse.

Features:
- Per-identity failed-login lockout with progressive delay
- Per-client token-bucket admission control on every request
- Shared counters in Redis (in-memory fallback for single-instance development)
- Admin unlock and login statistics endpoints
"""
import os
from dotenv import load_dotenv

# Load environment variables from .env file BEFORE other imports
load_dotenv()

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.loader import Settings, get_settings
from login_guard.api import include_routers
from login_guard.middleware.rate_limiter import AdmissionControlMiddleware, REMAINING_HEADER, RETRY_AFTER_HEADER
from login_guard.middleware.request_id_middleware import RequestIdMiddleware
from login_guard.services.admission_controller import AdmissionController
from login_guard.services.counter_store import CounterStore, get_store, set_store
from login_guard.services.credential_verifier import CredentialVerifier, StaticCredentialVerifier
from login_guard.services.login_attempt_gate import LoginAttemptGate
from login_guard.services.throttled_login import StoreFailurePolicy, ThrottledLoginOrchestrator
from login_guard.utils.error_handler import register_exception_handlers
from login_guard.utils.structured_logger import get_logger, setup_structured_logging

logger = get_logger(__name__)


def get_cors_origins() -> list:
    """Get allowed CORS origins from environment (none by default)."""
    env_origins = os.getenv("CORS_ORIGINS", "")
    return [origin.strip() for origin in env_origins.split(",") if origin.strip()]


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[CounterStore] = None,
    verifier: Optional[CredentialVerifier] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> FastAPI:
    """Build the application with its gate, orchestrator and admission controller.

    Tests pass an in-memory store, a stub verifier and a no-op sleep.
    """
    settings = settings or get_settings()
    setup_structured_logging(
        level=settings.log_level,
        json_output=settings.log_json,
        mask_identities=settings.log_mask_identities,
    )

    if not settings.store_failure_policy_explicit:
        logger.warning(
            "LOGIN_STORE_FAILURE_POLICY not set, defaulting to fail-closed "
            "(logins are refused while the counter store is unreachable)"
        )

    if store is None:
        store = get_store()
    else:
        set_store(store)

    gate = LoginAttemptGate.from_settings(store, settings)
    orchestrator = ThrottledLoginOrchestrator(
        gate,
        verifier or StaticCredentialVerifier(settings.credentials),
        store_failure_policy=StoreFailurePolicy(settings.store_failure_policy),
        sleep=sleep,
    )
    controller = AdmissionController.from_settings(store, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler"""
        logger.info(
            "Starting Login Guard",
            extra={
                "max_attempts": settings.max_attempts,
                "lock_duration_minutes": settings.lock_duration_minutes,
                "bucket_capacity": settings.bucket_capacity,
                "store_failure_policy": settings.store_failure_policy,
            },
        )
        yield
        logger.info("Shutting down...")
        await store.close()

    app = FastAPI(
        title="Login Guard",
        description="Login throttling and request admission control",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.counter_store = store
    app.state.login_gate = gate
    app.state.login_orchestrator = orchestrator
    app.state.admission_controller = controller

    # ==================== Middleware Setup ====================
    # NOTE: FastAPI middleware runs in REVERSE order of addition.
    # Last added = first to process requests. Order matters!

    # 1. Admission control - token bucket per client address
    app.add_middleware(
        AdmissionControlMiddleware,
        controller=controller,
        trust_forwarded_for=settings.trust_forwarded_for,
    )

    # 2. CORS - only when origins are configured
    cors_origins = get_cors_origins()
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Request-ID", "X-Response-Time", REMAINING_HEADER, RETRY_AFTER_HEADER],
        )

    # 3. Request ID - MUST be added LAST so it runs FIRST
    app.add_middleware(RequestIdMiddleware)

    register_exception_handlers(app)

    @app.get("/")
    async def root():
        """Root endpoint - API info"""
        return {
            "name": "Login Guard",
            "version": "1.0.0",
            "status": "running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    include_routers(app)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler"""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error"},
        )

    return app


app = create_app()


# ==================== Run Server ====================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8080))
    host = os.getenv("HOST", "127.0.0.1")

    logger.info(f"Starting server on {host}:{port}")

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info"
    )
