from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from callgate.app.api.trigger_call import router as trigger_call_router
from callgate.app.core.config import settings
from callgate.app.core.http_client import init_http_client
from callgate.app.core.logging import get_log_context, get_logger, setup_logging
from callgate.app.exceptions import (
    AuthFormatInvalidError,
    AuthMismatchError,
    ConfigMissingError,
    GatewayException,
    MethodNotAllowedError,
    UpstreamError,
)
from callgate.app.middleware.cors import PermissiveCORSMiddleware, cors_headers
from callgate.app.middleware.rate_limit import (
    InMemoryRateLimiter,
    RateLimitSweeper,
    get_rate_limiter,
    reset_rate_limiter,
)
from callgate.app.middleware.request_id import RequestIdMiddleware, get_request_id
from callgate.app.providers.base import CallProvider
from callgate.app.providers.factory import get_call_provider


def error_response(status_code: int, message: str, headers: dict | None = None, **extra: Any) -> JSONResponse:
    """Build the uniform failure envelope."""
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra},
        headers=headers,
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[dict, None]:
        """Open the shared HTTP client and run the rate-limit sweeper."""
        async with init_http_client() as http_client:
            if not settings.access_password_hash:
                logger.error("ACCESS_PASSWORD_HASH is not set; every call will be rejected")
            missing = settings.missing_provider_settings()
            if missing:
                logger.error(f"Voice provider not configured: missing {', '.join(missing)}")

            limiter = get_rate_limiter()
            sweeper = RateLimitSweeper(
                limiter,
                interval=settings.rate_limit_sweep_interval_seconds,
                idle_seconds=settings.rate_limit_idle_seconds,
            )
            await sweeper.start()

            logger.info(
                "Application startup complete",
                extra={
                    "provider": "mock" if settings.mock_provider else "elevenlabs",
                    "rate_limit": f"{settings.rate_limit_max_requests}/{settings.rate_limit_window_seconds}s",
                    "debug_mode": settings.debug,
                },
            )

            try:
                yield {"http_client": http_client}
            finally:
                await sweeper.stop()
                await limiter.close()
                reset_rate_limiter()
                logger.info("Application shutdown complete")

    app = FastAPI(
        title="Demo Call Gateway",
        description="Places AI voice demo calls after rate limiting and password checks",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(RequestIdMiddleware)
    # CORS outermost so preflights are answered before anything else runs
    app.add_middleware(PermissiveCORSMiddleware)

    app.include_router(trigger_call_router)

    @app.get("/health")
    async def health(provider: CallProvider = Depends(get_call_provider)) -> dict[str, Any]:
        """Report whether the gateway is configured well enough to place calls.

        Names of missing settings are reported, their values never are.
        """
        health_status: dict[str, Any] = {"status": "ok", "components": {}}

        missing = settings.missing_provider_settings()
        if not settings.access_password_hash:
            missing = ["ACCESS_PASSWORD_HASH", *missing]
        if missing:
            health_status["status"] = "degraded"
        health_status["components"]["provider"] = {
            "status": "ok" if provider.is_configured() else "error",
            "name": provider.name,
            "missing": missing,
        }

        backend = get_rate_limiter().backend
        limiter_status: dict[str, Any] = {
            "status": "ok",
            "type": "memory" if isinstance(backend, InMemoryRateLimiter) else "redis",
            "limit": backend.max_requests,
            "window_seconds": backend.window_seconds,
        }
        if isinstance(backend, InMemoryRateLimiter):
            limiter_status["tracked_keys"] = len(backend)
        health_status["components"]["rate_limiter"] = limiter_status

        return health_status

    @app.exception_handler(GatewayException)
    async def gateway_exception_handler(request: Request, exc: GatewayException) -> JSONResponse:
        """Render any pipeline failure as the JSON error envelope."""
        context = get_log_context(
            request_id=get_request_id(request),
            client_key=getattr(request.state, "client_key", None),
            status_code=exc.status_code,
        )
        if isinstance(exc, ConfigMissingError):
            logger.error(f"Missing configuration: {', '.join(exc.missing)}", extra=context)
        elif isinstance(exc, (AuthFormatInvalidError, AuthMismatchError)):
            logger.warning(f"Credential rejected: {exc.message}", extra=context)
        elif isinstance(exc, UpstreamError):
            logger.info(f"Call failed upstream: {exc.message}", extra=context)
        else:
            logger.info(f"Request rejected: {exc.message}", extra=context)

        return error_response(exc.status_code, exc.message, headers=exc.headers, **exc.extra)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Routing errors (404, 405) get the same envelope as everything else."""
        if exc.status_code == 405:
            error = MethodNotAllowedError()
            return error_response(error.status_code, error.message, headers=exc.headers)
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return error_response(exc.status_code, message, headers=exc.headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        The traceback is logged server-side and never returned. This response
        bypasses the middleware stack, so CORS headers are added here.
        """
        request_id = get_request_id(request)
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            },
        )
        return error_response(500, "Server error", headers=cors_headers())

    return app


# Create the application instance
app = create_app()
