"""Tests for webhook API endpoints."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from src.api.routes import create_app
from src.webhooks.models import InboxEntry
from src.webhooks.service import WebhookService

# ============================================================================
# Fixtures
# ============================================================================


class Order:
    webhook_kind = "order"

    def __init__(self, id):
        self.id = id

    def default_webhook_payload(self):
        return {"id": self.id}


@pytest.fixture
def service(store, queue, settings, validator):
    """Service backed by the in-memory store and a recording queue."""
    svc = WebhookService(store, queue=queue, settings=settings, validator=validator)
    svc.registry.register("order", "completed")
    return svc


@pytest.fixture
def client(service):
    """Test client without lifespan, so the supplied service is used as is."""
    return TestClient(create_app(service=service))


@pytest.fixture
def sample_endpoint(client):
    """Register an endpoint through the API."""
    response = client.post(
        "/webhooks/endpoints",
        json={
            "url": "https://api.example.com/hooks",
            "events": ["order.completed"],
            "description": "Orders",
        },
    )
    assert response.status_code == 201
    return response.json()


# ============================================================================
# Create Endpoint Tests
# ============================================================================


class TestCreateEndpoint:
    """Tests for POST /webhooks/endpoints."""

    def test_create(self, sample_endpoint):
        """Test registering a new endpoint."""
        assert sample_endpoint["id"].startswith("whe_")
        assert len(sample_endpoint["secret"]) == 64
        assert sample_endpoint["events"] == ["order.completed"]
        assert sample_endpoint["enabled"] is True
        assert sample_endpoint["description"] == "Orders"

    @pytest.mark.parametrize(
        "url",
        ["http://localhost/hook", "http://169.254.169.254/latest", "file:///etc/passwd"],
    )
    def test_unsafe_url(self, client, url):
        """Test SSRF targets are rejected with 400."""
        response = client.post("/webhooks/endpoints", json={"url": url, "events": ["order.completed"]})

        assert response.status_code == 400
        assert response.json()["detail"] == {"url": url}

    def test_empty_events(self, client):
        """Test an endpoint without subscriptions is rejected."""
        response = client.post("/webhooks/endpoints", json={"url": "https://api.example.com/hooks"})

        assert response.status_code == 400
        assert response.json()["error"] == "Events can't be blank"

    def test_missing_url(self, client):
        response = client.post("/webhooks/endpoints", json={"events": ["order.completed"]})

        assert response.status_code == 422


# ============================================================================
# Read/Update/Delete Endpoint Tests
# ============================================================================


class TestEndpointCrud:
    """Tests for reading, updating and deleting endpoints."""

    def test_list(self, client, sample_endpoint):
        client.patch(
            f"/webhooks/endpoints/{sample_endpoint['id']}",
            json={"enabled": False},
        )

        assert len(client.get("/webhooks/endpoints").json()) == 1
        assert client.get("/webhooks/endpoints", params={"enabled_only": True}).json() == []

    def test_get(self, client, sample_endpoint):
        response = client.get(f"/webhooks/endpoints/{sample_endpoint['id']}")

        assert response.status_code == 200
        assert response.json()["secret"] == sample_endpoint["secret"]

    def test_get_missing(self, client):
        response = client.get("/webhooks/endpoints/whe_missing")

        assert response.status_code == 404
        assert response.json()["error"] == "Endpoint whe_missing not found"

    def test_update(self, client, sample_endpoint):
        response = client.patch(
            f"/webhooks/endpoints/{sample_endpoint['id']}",
            json={"events": ["order.completed", "order.cancelled"], "description": "All orders"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["events"] == ["order.completed", "order.cancelled"]
        assert body["description"] == "All orders"
        assert body["url"] == sample_endpoint["url"]

    def test_update_unsafe_url(self, client, sample_endpoint):
        response = client.patch(
            f"/webhooks/endpoints/{sample_endpoint['id']}",
            json={"url": "http://10.1.2.3/hook"},
        )

        assert response.status_code == 400

    def test_update_missing(self, client):
        response = client.patch("/webhooks/endpoints/whe_missing", json={"description": "x"})

        assert response.status_code == 404

    def test_delete(self, client, sample_endpoint):
        response = client.delete(f"/webhooks/endpoints/{sample_endpoint['id']}")

        assert response.status_code == 204
        assert client.get(f"/webhooks/endpoints/{sample_endpoint['id']}").status_code == 404
        assert client.delete(f"/webhooks/endpoints/{sample_endpoint['id']}").status_code == 404


# ============================================================================
# Delivery Tests
# ============================================================================


class TestDeliveries:
    """Tests for delivery history endpoints."""

    def test_list_endpoint_deliveries(self, client, service, sample_endpoint):
        event = asyncio.run(service.trigger("completed", Order(7)))

        response = client.get(f"/webhooks/endpoints/{sample_endpoint['id']}/deliveries")

        assert response.status_code == 200
        deliveries = response.json()
        assert len(deliveries) == 1
        assert deliveries[0]["event_id"] == event.id
        assert deliveries[0]["status"] == "pending"
        assert deliveries[0]["attempt_count"] == 0

        filtered = client.get(
            f"/webhooks/endpoints/{sample_endpoint['id']}/deliveries",
            params={"status": "success"},
        )
        assert filtered.json() == []

    def test_deliveries_missing_endpoint(self, client):
        assert client.get("/webhooks/endpoints/whe_missing/deliveries").status_code == 404

    def test_get_delivery(self, client, service, queue, sample_endpoint):
        asyncio.run(service.trigger("completed", Order(7)))

        response = client.get(f"/webhooks/deliveries/{queue.ids[0]}")

        assert response.status_code == 200
        assert response.json()["endpoint_id"] == sample_endpoint["id"]

    def test_get_delivery_missing(self, client):
        assert client.get("/webhooks/deliveries/dlv_missing").status_code == 404

    def test_stats(self, client, service, sample_endpoint):
        asyncio.run(service.trigger("completed", Order(7)))

        response = client.get(f"/webhooks/endpoints/{sample_endpoint['id']}/stats")

        assert response.status_code == 200
        assert response.json() == {
            "endpoint_id": sample_endpoint["id"],
            "total_deliveries": 1,
            "successful_deliveries": 0,
            "failed_deliveries": 0,
            "pending_deliveries": 1,
            "success_rate": 0.0,
        }

    def test_stats_missing(self, client):
        assert client.get("/webhooks/endpoints/whe_missing/stats").status_code == 404


# ============================================================================
# Inbox Tests
# ============================================================================


class TestInbox:
    """Tests for the development inbox endpoints."""

    @pytest.fixture
    def entry(self, store):
        entry = InboxEntry(
            url="https://api.example.com/hooks",
            payload={"id": 7},
            headers={"X-Webhook-Event": "completed", "X-Webhook-Signature": "sha256=abc"},
        )
        return asyncio.run(store.save_inbox_entry(entry))

    def test_list(self, client, entry):
        response = client.get("/webhooks/inbox")

        assert response.status_code == 200
        entries = response.json()
        assert [e["id"] for e in entries] == [entry.id]
        assert entries[0]["event_type"] == "completed"
        assert client.get("/webhooks/inbox", params={"event_type": "cancelled"}).json() == []

    def test_clear(self, client, entry):  # noqa: ARG002
        response = client.delete("/webhooks/inbox")

        assert response.json() == {"cleared": 1}
        assert client.get("/webhooks/inbox").json() == []

    def test_replay(self, client, entry):
        with patch("httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=httpx.Response(200, text="ok"))
            mock_client.return_value.__aenter__.return_value.post = post
            response = client.post(f"/webhooks/inbox/{entry.id}/replay")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["entry"]["replay_response_code"] == 200
        assert body["entry"]["replayed_at"] is not None
        assert post.call_args.kwargs["headers"]["X-Webhook-Signature"] == "sha256=abc"

    def test_replay_unsafe_destination(self, client, store):
        entry = asyncio.run(
            store.save_inbox_entry(InboxEntry(url="http://localhost:3000/hooks", payload={}))
        )

        with patch("httpx.AsyncClient") as mock_client:
            response = client.post(f"/webhooks/inbox/{entry.id}/replay")

        assert response.status_code == 400
        assert response.json()["error"].startswith("URL validation failed")
        mock_client.assert_not_called()

    def test_replay_missing(self, client):
        assert client.post("/webhooks/inbox/inb_missing/replay").status_code == 404
