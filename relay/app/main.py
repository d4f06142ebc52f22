import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from relay.app.api.chat import router as chat_router
from relay.app.core.config import settings
from relay.app.core.http_client import init_http_client
from relay.app.core.logging import get_logger, setup_logging
from relay.app.exceptions import RelayError
from relay.app.middleware.cors import CORS_HEADERS, CORSHeadersMiddleware
from relay.app.middleware.rate_limit import get_client_id
from relay.app.middleware.request_size import RequestSizeLimitMiddleware
from relay.app.services.error_normalizer import normalize_error


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[dict, None]:
        """Share one pooled HTTP client across all provider calls."""
        async with init_http_client() as http_client:
            logger.info(
                "Application startup complete",
                extra={
                    "anthropic_base_url": settings.anthropic_base_url,
                    "credential_configured": bool(settings.anthropic_api_key),
                    "rate_limit_requests": settings.rate_limit_requests,
                    "rate_limit_window_ms": settings.rate_limit_window_ms,
                    "debug_mode": settings.debug,
                },
            )
            yield {"http_client": http_client}

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Plugin Relay",
        description="Stateless relay between a design plugin and the Claude API",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Order matters: last added = first executed
    app.add_middleware(RequestSizeLimitMiddleware, max_body_size=settings.max_request_body_size)
    # CORS outermost so preflights and 413s carry the headers too
    app.add_middleware(CORSHeadersMiddleware)

    app.include_router(chat_router)

    @app.get("/health")
    @app.get("/ping", include_in_schema=False)
    async def health() -> dict[str, Any]:
        """Liveness probe; touches no external dependency."""
        return {"status": "ok", "timestamp": int(time.time() * 1000)}

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        """Handle relay errors raised outside the chat pipeline."""
        return normalize_error(exc, client_id=get_client_id(request)).to_response()

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Render routing errors (404, 405) in the relay's error shape."""
        return normalize_error(exc, client_id=get_client_id(request)).to_response()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Last-resort handler for unhandled exceptions.

        Runs outside the middleware stack, so the CORS headers are added
        here explicitly. Exception details only go to the log.
        """
        response = normalize_error(exc, client_id=get_client_id(request))
        return response.to_response(extra_headers=CORS_HEADERS)

    return app


# Create the application instance
app = create_app()
