"""FastAPI application for the webhook delivery engine.

This module provides:
- Application factory with lifespan management of the webhook service
- /health endpoint
- Error handling for engine exceptions
- CORS configuration
"""

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.config import VERSION, WebhookSettings
from src.errors import (
    ConfigurationError,
    DuplicateIdempotencyKeyError,
    EndpointValidationError,
    RecordNotFoundError,
    UnknownEventError,
    UrlSecurityError,
    WebhookError,
)
from src.observability.instrumentation import log_subscriber
from src.observability.logging import configure_logging
from src.storage.sqlite import SQLiteWebhookStore
from src.webhooks.service import WebhookService

logger = structlog.get_logger(__name__)

ERROR_STATUS_CODES: dict[type[WebhookError], int] = {
    UrlSecurityError: 400,
    EndpointValidationError: 400,
    UnknownEventError: 400,
    ConfigurationError: 400,
    RecordNotFoundError: 404,
    DuplicateIdempotencyKeyError: 409,
}


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error message")
    detail: dict[str, Any] | str | None = Field(
        default=None, description="Detailed error information"
    )


def status_code_for(exc: WebhookError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


# ============================================================================
# Application Setup
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Builds a SQLite-backed service unless one was supplied to
    ``create_app``, and runs its delivery workers while the app is up.
    """
    logger.info("application_starting")

    store = None
    service: WebhookService | None = getattr(app.state, "webhook_service", None)
    if service is None:
        settings: WebhookSettings = app.state.settings
        store = SQLiteWebhookStore(settings.DB_PATH)
        await store.initialize()
        service = WebhookService(store, settings=settings)
        service.instrumentation.subscribe(log_subscriber)
        app.state.webhook_service = service

    service.start()
    await service.retry_due()

    yield

    logger.info("application_shutting_down")
    await service.stop()
    if store is not None:
        await store.close()
        app.state.webhook_service = None


def create_app(
    service: WebhookService | None = None,
    *,
    settings: WebhookSettings | None = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Webhook service to serve; built at startup from
            ``settings`` when not provided.
        settings: Engine settings (from environment if not provided).
        cors_origins: Allowed CORS origins.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or (service.settings if service else WebhookSettings.from_env())
    configure_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)

    app = FastAPI(
        title="Webhook Delivery API",
        version=VERSION,
        description="Manage webhook endpoints, deliveries and the development inbox.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.webhook_service = service

    origins = cors_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException  # noqa: ARG001
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
            ).model_dump(),
        )

    @app.exception_handler(WebhookError)
    async def webhook_error_handler(
        request: Request, exc: WebhookError  # noqa: ARG001
    ) -> JSONResponse:
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error("webhook_error", **exc.to_dict())
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(error=exc.message, detail=exc.details or None).model_dump(),
        )

    register_routes(app)

    return app


def register_routes(app: FastAPI) -> None:
    """Register all routes on the application.

    Args:
        app: FastAPI application.
    """
    from src.api.webhooks import router as webhooks_router

    app.include_router(webhooks_router)

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, Any]:
        """Basic liveness check with delivery queue status."""
        service: WebhookService | None = app.state.webhook_service
        result: dict[str, Any] = {
            "status": "ok" if service is not None else "starting",
            "version": VERSION,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        if service is not None:
            result["inbox_enabled"] = service.settings.ENABLE_INBOX
            queue_running = getattr(service.queue, "is_running", None)
            if queue_running is not None:
                result["queue"] = {"running": queue_running, "scheduled": len(service.queue)}
        return result


# Default application instance for ASGI servers
app = create_app()
