"""HMAC-SHA256 request signing.

Signed requests carry two headers:

- ``X-Connect-Timestamp``: Unix seconds
- ``X-Connect-Signature``: hex HMAC-SHA256 of ``token:timestamp:raw_body``
  keyed with the store's signing material

The same functions are used by the server to verify and by clients (and the
operator CLI) to produce signatures.
"""
from __future__ import annotations

import hashlib
import hmac

TIMESTAMP_HEADER = "X-Connect-Timestamp"
SIGNATURE_HEADER = "X-Connect-Signature"


def _as_bytes(body: bytes | str) -> bytes:
    return body.encode() if isinstance(body, str) else body


def signing_payload(store_token: str, timestamp: int, body: bytes | str) -> bytes:
    """Canonical bytes that get signed: ``token:timestamp:body``."""
    return f"{store_token}:{timestamp}:".encode() + _as_bytes(body)


def compute_signature(
    signing_key: str,
    store_token: str,
    timestamp: int,
    body: bytes | str,
) -> str:
    """Return the hex HMAC-SHA256 signature for a request."""
    mac = hmac.new(
        signing_key.encode(),
        signing_payload(store_token, timestamp, body),
        hashlib.sha256,
    )
    return mac.hexdigest()


def verify_signature(
    signing_key: str,
    store_token: str,
    timestamp: int,
    body: bytes | str,
    signature: str,
) -> bool:
    """Constant-time comparison of ``signature`` against the expected value."""
    expected = compute_signature(signing_key, store_token, timestamp, body)
    return hmac.compare_digest(expected.encode(), signature.strip().lower().encode())


def signed_headers(
    signing_key: str,
    store_token: str,
    timestamp: int,
    body: bytes | str,
) -> dict[str, str]:
    """Headers a client sends with a signed request."""
    return {
        TIMESTAMP_HEADER: str(timestamp),
        SIGNATURE_HEADER: compute_signature(signing_key, store_token, timestamp, body),
    }
