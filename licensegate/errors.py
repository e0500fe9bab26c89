"""Failure taxonomy for the entitlement service.

Every failure carries a stable machine-readable ``reason`` plus a
human-readable ``message``.  Payloads never include signing material or
license keys.
"""
from __future__ import annotations


class EntitlementError(Exception):
    """Base class for failures that map to an API error response."""

    reason: str = "entitlement_error"
    status_code: int = 400
    default_message: str = "Request could not be processed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> dict[str, object]:
        return {"success": False, "error": self.reason, "message": self.message}


class MissingCredentials(EntitlementError):
    """Timestamp or signature header absent."""

    reason = "missing_auth_headers"
    status_code = 401
    default_message = "Missing required authentication headers."


class MissingStoreToken(MissingCredentials):
    reason = "missing_store_token"
    status_code = 400
    default_message = "Store token is required."


class TimestampOutOfWindow(EntitlementError):
    """Request timestamp is stale, future-skewed, or unparseable."""

    reason = "timestamp_expired"
    status_code = 401
    default_message = "Request timestamp is too old or too far in the future."


class InvalidSignature(EntitlementError):
    reason = "invalid_signature"
    status_code = 401
    default_message = "Request signature is invalid."


class RateLimited(EntitlementError):
    """Per-store request ceiling hit for the current window."""

    reason = "rate_limited"
    status_code = 429
    default_message = "Too many requests. Please try again later."

    def __init__(self, retry_after: int, message: str | None = None):
        self.retry_after = retry_after
        super().__init__(message)

    def to_payload(self) -> dict[str, object]:
        payload = super().to_payload()
        payload["retry_after"] = self.retry_after
        return payload


class StoreNotFound(EntitlementError):
    reason = "store_not_found"
    status_code = 404
    default_message = "Store not connected to LicenseGate."


class StoreDisconnected(EntitlementError):
    reason = "store_disconnected"
    status_code = 403
    default_message = "Store has been disconnected from LicenseGate."


class LimitReached(EntitlementError):
    reason = "license_limit_reached"
    status_code = 403
    default_message = "You've reached your plan limit. Upgrade to continue creating licenses."


class PersistenceFailure(EntitlementError):
    """The ledger could not read or write its storage; no change was applied."""

    reason = "persistence_failure"
    status_code = 503
    default_message = "License ledger is temporarily unavailable."


class AuditWriteFailure(EntitlementError):
    """An audit event could not be written. Recorded, never raised to callers."""

    reason = "audit_write_failed"
    status_code = 500
    default_message = "Audit event could not be recorded."
