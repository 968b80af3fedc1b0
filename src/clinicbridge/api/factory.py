"""FastAPI application factory with role-based route mounting."""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Literal

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from clinicbridge.bridge import Bridge, build_bridge
from clinicbridge.config import BridgeSettings
from clinicbridge.errors import BridgeError, UpstreamUnavailable
from clinicbridge.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from clinicbridge.observability.logging import get_logger
from clinicbridge.observability.redaction import safe_log_context

from .routers import public, worker
from .routes import automations, messages, patients, realtime, webhooks

AppRole = Literal["public", "worker"]

logger = get_logger(__name__)


def _error_body(message: str) -> dict:
    return {"success": False, "error": message}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the bridge (unless injected) and run the realtime fan-out.

    Missing configuration raises ConfigurationError here, so the process
    fails at startup instead of per request.
    """
    bridge: Bridge | None = getattr(app.state, "bridge", None)
    if bridge is None:
        settings = BridgeSettings.from_env()
        bridge = build_bridge(settings)
        app.state.bridge = bridge
    logger.info("bridge starting", extra={"extra_fields": bridge.settings.describe()})

    if bridge.realtime is not None:
        try:
            bridge.realtime.start()
        except UpstreamUnavailable:
            # API keeps serving; /api/realtime/status reports the error
            logger.error("realtime fan-out unavailable at startup")

    try:
        yield
    finally:
        if bridge.realtime is not None:
            bridge.realtime.stop()
        logger.info("bridge stopped")


def create_app(role: AppRole | None = None, bridge: Bridge | None = None) -> FastAPI:
    """Create FastAPI app with routes based on APP_ROLE.

    Args:
        role: Explicit role override. If None, uses the bridge settings or
              the APP_ROLE env var, defaulting to "public".
        bridge: Pre-built bridge (tests). If None, built from the
                environment at startup.

    Returns:
        Configured FastAPI application.
    """
    if role is None:
        role = bridge.settings.app_role if bridge else os.environ.get("APP_ROLE", "public")  # type: ignore[assignment]

    app = FastAPI(
        title="Clinic Bridge",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    if bridge is not None:
        app.state.bridge = bridge

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    @app.exception_handler(BridgeError)
    async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "request failed",
            extra={
                "extra_fields": safe_log_context(
                    path=request.url.path,
                    error_type=type(exc).__name__,
                    status=exc.status_code,
                )
            },
        )
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()]
        message = "invalid request: " + ", ".join(f for f in fields if f) if fields else "invalid request"
        return JSONResponse(status_code=400, content=_error_body(message))

    # Mount public routes (always)
    app.include_router(public.router)
    app.include_router(webhooks.router)
    app.include_router(messages.router)
    app.include_router(patients.router)
    app.include_router(automations.router)
    app.include_router(realtime.router)

    # Mount worker routes only for worker role
    if role == "worker":
        app.include_router(worker.router)

    return app
