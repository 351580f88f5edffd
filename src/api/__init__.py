"""FastAPI routes for the webhook delivery engine.

This module contains:
- Endpoint management and delivery history endpoints
- Development inbox endpoints
- Health check endpoint
- Request/response models
"""

from src.api.routes import ErrorResponse, app, create_app
from src.api.webhooks import (
    DeliveryResponse,
    EndpointCreateRequest,
    EndpointResponse,
    EndpointStatsResponse,
    EndpointUpdateRequest,
    InboxEntryResponse,
    ReplayResponse,
    get_webhook_service,
)

__all__ = [
    # Request models
    "EndpointCreateRequest",
    "EndpointUpdateRequest",
    # Response models
    "DeliveryResponse",
    "EndpointResponse",
    "EndpointStatsResponse",
    "ErrorResponse",
    "InboxEntryResponse",
    "ReplayResponse",
    # Dependencies
    "get_webhook_service",
    # App factory and instance
    "app",
    "create_app",
]
