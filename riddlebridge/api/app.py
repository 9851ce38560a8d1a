"""
RiddleBridge - FastAPI Application Factory

Creates and configures the bridge API with:
- Bridge routes under /api/bridge
- Correlation-id logging middleware and CORS
- Error handlers mapping the bridge error taxonomy to JSON
- Health and readiness checks
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from neo4j.exceptions import ServiceUnavailable, SessionExpired, TransientError
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.exceptions import HTTPException as StarletteHTTPException

from riddlebridge import __version__
from riddlebridge.api.container import BridgeApp
from riddlebridge.config import Settings, get_settings
from riddlebridge.errors import BridgeError
from riddlebridge.monitoring import LoggingContextMiddleware, configure_logging, get_logger

logger = get_logger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 30.0

HTTP_ERROR_CODES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    503: "SERVICE_UNAVAILABLE",
}


def _sentry_before_send(event: Any, hint: dict[str, Any]) -> Any:
    """Filter out health check endpoint errors from Sentry."""
    request_data = event.get("request")
    url = request_data.get("url", "") if isinstance(request_data, dict) else ""
    if "/health" in url or "/ready" in url:
        return None
    return event


def init_sentry(settings: Settings) -> bool:
    if not settings.sentry_dsn:
        return False
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        environment=settings.app_env,
        release=f"riddlebridge@{__version__}",
        send_default_pii=False,
        before_send=_sentry_before_send,
    )
    return True


def error_body(code: str, message: str, **extra: Any) -> dict[str, Any]:
    return {"success": False, "error": {"code": code, "message": message, **extra}}


def create_app(
    settings: Settings | None = None,
    bridge_app: BridgeApp | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to use (defaults to environment settings)
        bridge_app: Pre-built container, e.g. with in-memory components

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    bridge = bridge_app or BridgeApp(settings)

    configure_logging(
        level=settings.log_level,
        json_output=settings.is_production,
        sanitize_logs=True,
    )
    if init_sentry(settings):
        logger.info("sentry_initialized", environment=settings.app_env)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        try:
            await bridge.initialize()
            yield
        finally:
            try:
                await asyncio.wait_for(bridge.shutdown(), timeout=SHUTDOWN_TIMEOUT_SECONDS)
            except TimeoutError:
                logger.error("riddlebridge_shutdown_timeout", timeout_seconds=SHUTDOWN_TIMEOUT_SECONDS)

    docs_url = None if settings.is_production else "/docs"
    app = FastAPI(
        title="RiddleBridge",
        description="Cross-chain bridge transaction pipeline",
        version=__version__,
        docs_url=docs_url,
        redoc_url=None,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.bridge = bridge

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
    )
    app.add_middleware(LoggingContextMiddleware)

    # Exception handlers
    @app.exception_handler(BridgeError)
    async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
        logger.info(
            "bridge_request_rejected",
            path=str(request.url.path),
            code=exc.code,
            transaction_id=exc.transaction_id,
        )
        return JSONResponse(
            status_code=exc.status_code, content={"success": False, "error": exc.to_dict()}
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # Submitted values are not echoed back
        details = [
            {"loc": list(error.get("loc", [])), "msg": error.get("msg", "Validation failed")}
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content=error_body("VALIDATION_ERROR", "Invalid request body", details=details),
        )

    @app.exception_handler(ServiceUnavailable)
    @app.exception_handler(SessionExpired)
    @app.exception_handler(TransientError)
    async def database_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("database_unavailable", path=str(request.url.path), error=str(exc))
        return JSONResponse(
            status_code=503,
            content=error_body("DATABASE_UNAVAILABLE", "Database temporarily unavailable"),
            headers={"Retry-After": "5"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_exception", path=str(request.url.path), error=str(exc))
        return JSONResponse(
            status_code=500,
            content=error_body("INTERNAL_ERROR", "Internal server error"),
        )

    from riddlebridge.api.routes import bridge as bridge_routes

    app.include_router(bridge_routes.router, prefix="/api/bridge", tags=["bridge"])

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "healthy" if bridge.is_ready else "starting"}

    @app.get("/ready", include_in_schema=False)
    async def ready() -> JSONResponse:
        if not bridge.is_ready:
            return JSONResponse(status_code=503, content={"status": "not_ready"})
        details = await bridge.health()
        database = details.get("database")
        if database is not None and database.get("status") != "healthy":
            return JSONResponse(
                status_code=503,
                content={"status": "degraded", "reason": "database_unreachable"},
                headers={"Retry-After": "5"},
            )
        return JSONResponse(content={"status": "ready", "chains": details["chains"]})

    logger.info("fastapi_app_created", version=__version__, docs_url=docs_url)
    return app


def run() -> None:
    """Run the API with uvicorn (console entry point)."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "riddlebridge.api.app:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
