"""Request models for the store-facing entitlement API."""
from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class StoreRequest(BaseModel):
    """Every signed request names its store in the body."""
    store_token: str = Field(..., min_length=1, max_length=64)


class ReserveRequest(StoreRequest):
    """Ask for one license slot before creating a license."""
    license_key_hash: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="SHA256 of the license key about to be created",
    )
    product_id: str = Field(default="", max_length=100)

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_id_as_string(cls, value: object) -> object:
        # Clients send numeric product ids.
        if isinstance(value, int):
            return str(value)
        return value


class ReleaseRequest(StoreRequest):
    """Return one slot after a license is deleted."""
    license_key_hash: str = Field(..., min_length=1, max_length=64)


class SyncRequest(StoreRequest):
    """Report the client's local count for reconciliation."""
    reported_count: int = Field(..., ge=0)
