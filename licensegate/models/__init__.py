"""Pydantic request/response models for the LicenseGate API."""
from __future__ import annotations

from licensegate.models.requests import ReleaseRequest, ReserveRequest, SyncRequest
from licensegate.models.responses import HealthResponse

__all__ = [
    "ReserveRequest",
    "ReleaseRequest",
    "SyncRequest",
    "HealthResponse",
]
