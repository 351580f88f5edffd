"""Webhook request signing.

Provides HMAC-SHA256 signatures over the exact bytes sent on the wire
and constant-time verification for receivers.
"""

import hashlib
import hmac
import json
from collections.abc import Mapping
from typing import Any

import structlog

from src.errors import SignatureError

logger = structlog.get_logger(__name__)

# Wire contract header names
SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
DELIVERY_ID_HEADER = "X-Webhook-Delivery-Id"
ATTEMPT_HEADER = "X-Webhook-Attempt"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
IDEMPOTENCY_KEY_HEADER = "X-Webhook-Idempotency-Key"

SIGNATURE_PREFIX = "sha256="

Payload = bytes | str | Mapping[str, Any] | list[Any]


def canonical_json(payload: Any) -> bytes:
    """Serialize a payload to the canonical bytes that are signed and sent.

    Args:
        payload: JSON-serializable payload.

    Returns:
        UTF-8 encoded JSON with sorted keys and no insignificant whitespace.
    """
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    ).encode("utf-8")


def _to_bytes(payload: Payload) -> bytes:
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return canonical_json(payload)


def sign(payload: Payload | None, secret: str | bytes | None) -> str:
    """Generate the HMAC-SHA256 signature for a payload.

    Args:
        payload: Body bytes, a string (UTF-8 encoded) or a structure that
            is first serialized with ``canonical_json``.
        secret: Endpoint signing secret.

    Returns:
        Signature in format "sha256=<hex_digest>".

    Raises:
        SignatureError: If payload or secret is None.
    """
    if payload is None:
        raise SignatureError("Payload cannot be None")
    if secret is None:
        raise SignatureError("Secret cannot be None")

    key = secret.encode("utf-8") if isinstance(secret, str) else secret
    digest = hmac.new(key, _to_bytes(payload), hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def secure_compare(a: str | bytes, b: str | bytes) -> bool:
    """Compare two values in constant time.

    Inputs of different length compare unequal immediately. Otherwise
    every byte is visited regardless of where the first difference is.
    """
    left = a.encode("utf-8") if isinstance(a, str) else a
    right = b.encode("utf-8") if isinstance(b, str) else b

    if len(left) != len(right):
        return False

    result = 0
    for x, y in zip(left, right, strict=True):
        result |= x ^ y
    return result == 0


def verify(
    payload: Payload | None,
    signature: str | None,
    secret: str | bytes | None,
) -> bool:
    """Verify a webhook signature against the received body.

    Args:
        payload: Exact received body bytes (or string).
        signature: Value of the signature header.
        secret: Endpoint signing secret.

    Returns:
        True if signature is valid, False otherwise.

    Raises:
        SignatureError: If any input is None.
    """
    if payload is None:
        raise SignatureError("Payload cannot be None")
    if signature is None:
        raise SignatureError("Signature cannot be None")

    expected = sign(payload, secret)
    is_valid = secure_compare(expected, signature)

    if not is_valid:
        logger.warning("webhook_signature_invalid")

    return is_valid
