"""Tests for receiver-side signature verification."""

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from src.webhooks.receiver import require_webhook_signature, verify_webhook_request
from src.webhooks.signing import SIGNATURE_HEADER, sign

SECRET = "receiver_secret"
BODY = b'{"id":1,"status":"completed"}'


class TestVerifyWebhookRequest:
    """Tests for the plain verification helper."""

    def test_valid(self):
        headers = {SIGNATURE_HEADER: sign(BODY, SECRET)}
        assert verify_webhook_request(BODY, headers, SECRET) is True

    def test_header_case_insensitive(self):
        headers = {"x-webhook-signature": sign(BODY, SECRET)}
        assert verify_webhook_request(BODY, headers, SECRET) is True

    def test_missing_header(self):
        assert verify_webhook_request(BODY, {}, SECRET) is False

    def test_missing_secret(self):
        headers = {SIGNATURE_HEADER: sign(BODY, SECRET)}
        assert verify_webhook_request(BODY, headers, None) is False

    def test_modified_body(self):
        headers = {SIGNATURE_HEADER: sign(BODY, SECRET)}
        assert verify_webhook_request(BODY + b" ", headers, SECRET) is False


@pytest.fixture
def client():
    app = FastAPI()

    async def lookup(request):
        return SECRET

    @app.post("/hooks")
    async def receive(body: bytes = Depends(require_webhook_signature(lookup))) -> dict:
        return {"received": len(body)}

    @app.post("/sync-hooks")
    async def receive_sync(
        body: bytes = Depends(require_webhook_signature(lambda request: SECRET)),
    ) -> dict:
        return {"received": len(body)}

    return TestClient(app)


class TestRequireWebhookSignature:
    """Tests for the FastAPI dependency."""

    def test_accepts_valid_signature(self, client):
        response = client.post(
            "/hooks",
            content=BODY,
            headers={SIGNATURE_HEADER: sign(BODY, SECRET), "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json() == {"received": len(BODY)}

    def test_rejects_bad_signature(self, client):
        response = client.post(
            "/hooks",
            content=BODY,
            headers={SIGNATURE_HEADER: sign(BODY, "wrong")},
        )

        assert response.status_code == 401

    def test_rejects_missing_signature(self, client):
        response = client.post("/hooks", content=BODY)

        assert response.status_code == 401

    def test_sync_lookup(self, client):
        response = client.post(
            "/sync-hooks",
            content=BODY,
            headers={SIGNATURE_HEADER: sign(BODY, SECRET)},
        )

        assert response.status_code == 200
