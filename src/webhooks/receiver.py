"""Signature verification for applications receiving webhooks.

Receivers must verify against the raw request body, before any JSON
parsing, since the signature covers the exact bytes sent.

Example:
    from fastapi import Depends, FastAPI

    app = FastAPI()
    verified = require_webhook_signature(lambda request: SECRET)

    @app.post("/hooks")
    async def receive(body: bytes = Depends(verified)) -> dict:
        return {"received": True}
"""

import inspect
from collections.abc import Awaitable, Callable, Mapping

import structlog
from fastapi import HTTPException, Request, status

from src.webhooks.signing import SIGNATURE_HEADER, verify

logger = structlog.get_logger(__name__)

SecretLookup = Callable[[Request], str | None | Awaitable[str | None]]


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def verify_webhook_request(
    body: bytes | str,
    headers: Mapping[str, str],
    secret: str | None,
) -> bool:
    """Check the signature header of a received webhook.

    Args:
        body: Raw request body.
        headers: Request headers, matched case-insensitively.
        secret: Endpoint signing secret shared with the sender.

    Returns:
        True only if the signature header is present and matches.
    """
    signature = _header(headers, SIGNATURE_HEADER)
    if not signature or not secret:
        return False
    return verify(body, signature, secret)


def require_webhook_signature(secret_lookup: SecretLookup) -> Callable[[Request], Awaitable[bytes]]:
    """Build a FastAPI dependency that rejects unsigned requests.

    Args:
        secret_lookup: Returns the signing secret for a request, sync or
            async. Returning None rejects the request.

    Returns:
        Dependency yielding the verified raw body; raises HTTP 401 when the
        signature is missing or does not match.
    """

    async def dependency(request: Request) -> bytes:
        body = await request.body()
        secret = secret_lookup(request)
        if inspect.isawaitable(secret):
            secret = await secret

        if not verify_webhook_request(body, request.headers, secret):
            logger.warning(
                "webhook_request_rejected",
                path=request.url.path,
                has_signature=SIGNATURE_HEADER.lower() in request.headers,
            )
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid webhook signature",
            )
        return body

    return dependency
