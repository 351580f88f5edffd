"""Webhook management API endpoints.

Provides REST API for managing webhook endpoints, viewing delivery
history and working with the development inbox.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from src.webhooks.models import (
    Delivery,
    DeliveryStatus,
    Endpoint,
    EndpointStats,
    InboxEntry,
)
from src.webhooks.service import WebhookService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def get_webhook_service(request: Request) -> WebhookService:
    """Return the service attached to the running application."""
    service = getattr(request.app.state, "webhook_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Webhook service not initialized")
    return service


# ============================================================================
# Request Models
# ============================================================================


class EndpointCreateRequest(BaseModel):
    """Request to register a new endpoint."""

    url: str = Field(..., description="Endpoint URL")
    events: list[str] = Field(
        default_factory=list,
        description="Full event names to subscribe to, e.g. 'order.completed'",
    )
    description: str = Field(default="", description="Human-readable description")
    metadata: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = Field(default=True)


class EndpointUpdateRequest(BaseModel):
    """Request to update an endpoint. The secret cannot be changed."""

    url: str | None = Field(default=None, description="New URL")
    events: list[str] | None = Field(default=None, description="New subscriptions")
    description: str | None = Field(default=None, description="New description")
    metadata: dict[str, Any] | None = Field(default=None)
    enabled: bool | None = Field(default=None, description="Enable/disable endpoint")


# ============================================================================
# Response Models
# ============================================================================


class EndpointResponse(BaseModel):
    """Endpoint details response."""

    id: str
    url: str
    secret: str
    events: list[str]
    enabled: bool
    description: str
    metadata: dict[str, Any]
    created_at: str
    updated_at: str

    @classmethod
    def from_endpoint(cls, endpoint: Endpoint) -> "EndpointResponse":
        return cls(
            id=endpoint.id,
            url=endpoint.url,
            secret=endpoint.secret,
            events=endpoint.events,
            enabled=endpoint.enabled,
            description=endpoint.description,
            metadata=endpoint.metadata,
            created_at=endpoint.created_at.isoformat(),
            updated_at=endpoint.updated_at.isoformat(),
        )


class EndpointStatsResponse(BaseModel):
    """Delivery counts for an endpoint."""

    endpoint_id: str
    total_deliveries: int
    successful_deliveries: int
    failed_deliveries: int
    pending_deliveries: int
    success_rate: float

    @classmethod
    def from_stats(cls, stats: EndpointStats) -> "EndpointStatsResponse":
        return cls(**stats.model_dump(), success_rate=stats.success_rate)


class DeliveryResponse(BaseModel):
    """Delivery details response."""

    id: str
    event_id: str
    endpoint_id: str
    status: DeliveryStatus
    attempt_count: int
    last_attempt_at: str | None
    next_retry_at: str | None
    response_code: int | None
    response_body: str | None
    error_message: str | None
    created_at: str
    updated_at: str

    @classmethod
    def from_delivery(cls, delivery: Delivery) -> "DeliveryResponse":
        """Create response from Delivery model."""
        return cls(
            id=delivery.id,
            event_id=delivery.event_id,
            endpoint_id=delivery.endpoint_id,
            status=delivery.status,
            attempt_count=delivery.attempt_count,
            last_attempt_at=delivery.last_attempt_at.isoformat() if delivery.last_attempt_at else None,
            next_retry_at=delivery.next_retry_at.isoformat() if delivery.next_retry_at else None,
            response_code=delivery.response_code,
            response_body=delivery.response_body,
            error_message=delivery.error_message,
            created_at=delivery.created_at.isoformat(),
            updated_at=delivery.updated_at.isoformat(),
        )


class InboxEntryResponse(BaseModel):
    """Captured request response."""

    id: str
    delivery_id: str | None
    url: str
    event_type: str | None
    payload: Any
    headers: dict[str, str]
    replayed_at: str | None
    replay_response_code: int | None
    created_at: str

    @classmethod
    def from_entry(cls, entry: InboxEntry) -> "InboxEntryResponse":
        return cls(
            id=entry.id,
            delivery_id=entry.delivery_id,
            url=entry.url,
            event_type=entry.event_type,
            payload=entry.payload,
            headers=entry.headers,
            replayed_at=entry.replayed_at.isoformat() if entry.replayed_at else None,
            replay_response_code=entry.replay_response_code,
            created_at=entry.created_at.isoformat(),
        )


class ReplayResponse(BaseModel):
    """Result of replaying a captured request."""

    success: bool
    entry: InboxEntryResponse


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "/endpoints",
    response_model=EndpointResponse,
    responses={
        201: {"description": "Endpoint registered"},
        400: {"description": "Unsafe URL or invalid events"},
    },
    status_code=201,
)
async def create_endpoint(
    request: EndpointCreateRequest,
    service: WebhookService = Depends(get_webhook_service),
) -> EndpointResponse:
    """Register a new webhook endpoint.

    The URL is checked against SSRF rules. A signing secret is generated
    and returned once here and with every later read.
    """
    endpoint = await service.register_endpoint(
        request.url,
        request.events,
        description=request.description,
        metadata=request.metadata,
        enabled=request.enabled,
    )
    return EndpointResponse.from_endpoint(endpoint)


@router.get("/endpoints", response_model=list[EndpointResponse])
async def list_endpoints(
    enabled_only: bool = False,
    service: WebhookService = Depends(get_webhook_service),
) -> list[EndpointResponse]:
    """List registered endpoints."""
    endpoints = await service.list_endpoints(enabled_only=enabled_only)
    return [EndpointResponse.from_endpoint(e) for e in endpoints]


@router.get(
    "/endpoints/{endpoint_id}",
    response_model=EndpointResponse,
    responses={404: {"description": "Endpoint not found"}},
)
async def get_endpoint(
    endpoint_id: str,
    service: WebhookService = Depends(get_webhook_service),
) -> EndpointResponse:
    """Get endpoint details by ID."""
    endpoint = await service.get_endpoint(endpoint_id)
    if not endpoint:
        raise HTTPException(status_code=404, detail=f"Endpoint {endpoint_id} not found")
    return EndpointResponse.from_endpoint(endpoint)


@router.patch(
    "/endpoints/{endpoint_id}",
    response_model=EndpointResponse,
    responses={
        400: {"description": "Unsafe URL or invalid events"},
        404: {"description": "Endpoint not found"},
    },
)
async def update_endpoint(
    endpoint_id: str,
    request: EndpointUpdateRequest,
    service: WebhookService = Depends(get_webhook_service),
) -> EndpointResponse:
    """Update an endpoint. A new URL is validated again."""
    endpoint = await service.update_endpoint(
        endpoint_id,
        url=request.url,
        events=request.events,
        description=request.description,
        metadata=request.metadata,
        enabled=request.enabled,
    )
    return EndpointResponse.from_endpoint(endpoint)


@router.delete(
    "/endpoints/{endpoint_id}",
    responses={
        204: {"description": "Endpoint deleted"},
        404: {"description": "Endpoint not found"},
    },
    status_code=204,
)
async def delete_endpoint(
    endpoint_id: str,
    service: WebhookService = Depends(get_webhook_service),
) -> None:
    """Delete an endpoint and its deliveries."""
    deleted = await service.delete_endpoint(endpoint_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Endpoint {endpoint_id} not found")


@router.get(
    "/endpoints/{endpoint_id}/stats",
    response_model=EndpointStatsResponse,
    responses={404: {"description": "Endpoint not found"}},
)
async def get_endpoint_stats(
    endpoint_id: str,
    service: WebhookService = Depends(get_webhook_service),
) -> EndpointStatsResponse:
    """Delivery counts and success rate for an endpoint."""
    stats = await service.endpoint_stats(endpoint_id)
    return EndpointStatsResponse.from_stats(stats)


@router.get(
    "/endpoints/{endpoint_id}/deliveries",
    response_model=list[DeliveryResponse],
    responses={404: {"description": "Endpoint not found"}},
)
async def list_endpoint_deliveries(
    endpoint_id: str,
    limit: int = 50,
    status: DeliveryStatus | None = None,
    service: WebhookService = Depends(get_webhook_service),
) -> list[DeliveryResponse]:
    """List deliveries for an endpoint, newest first."""
    if not await service.get_endpoint(endpoint_id):
        raise HTTPException(status_code=404, detail=f"Endpoint {endpoint_id} not found")

    deliveries = await service.list_deliveries(endpoint_id=endpoint_id, status=status, limit=limit)
    return [DeliveryResponse.from_delivery(d) for d in deliveries]


@router.get(
    "/deliveries/{delivery_id}",
    response_model=DeliveryResponse,
    responses={404: {"description": "Delivery not found"}},
)
async def get_delivery(
    delivery_id: str,
    service: WebhookService = Depends(get_webhook_service),
) -> DeliveryResponse:
    """Get delivery details by ID."""
    delivery = await service.get_delivery(delivery_id)
    if not delivery:
        raise HTTPException(status_code=404, detail=f"Delivery {delivery_id} not found")
    return DeliveryResponse.from_delivery(delivery)


# ============================================================================
# Inbox
# ============================================================================


@router.get("/inbox", response_model=list[InboxEntryResponse])
async def list_inbox(
    event_type: str | None = None,
    limit: int = 100,
    service: WebhookService = Depends(get_webhook_service),
) -> list[InboxEntryResponse]:
    """List captured requests, newest first."""
    entries = await service.inbox.list_entries(event_type=event_type, limit=limit)
    return [InboxEntryResponse.from_entry(e) for e in entries]


@router.delete("/inbox")
async def clear_inbox(
    service: WebhookService = Depends(get_webhook_service),
) -> dict[str, int]:
    """Delete every captured request."""
    removed = await service.inbox.clear()
    return {"cleared": removed}


@router.post(
    "/inbox/{entry_id}/replay",
    response_model=ReplayResponse,
    responses={
        400: {"description": "Destination URL is no longer safe"},
        404: {"description": "Inbox entry not found"},
    },
)
async def replay_inbox_entry(
    entry_id: str,
    service: WebhookService = Depends(get_webhook_service),
) -> ReplayResponse:
    """Send a captured request to its destination."""
    success = await service.inbox.replay(entry_id)
    entry = await service.inbox.get(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Inbox entry {entry_id} not found")

    logger.info("inbox_entry_replayed", entry_id=entry_id, success=success)
    return ReplayResponse(success=success, entry=InboxEntryResponse.from_entry(entry))
