"""
Store credential derivation.

Everything is derived deterministically from the customer's license key, so
the raw key never needs to be stored:

    store_token     = sha256(license_key + ":connect")
    client_secret   = sha256(license_key + ":secret")
    secret_material = sha256(client_secret)

``secret_material`` is both the value handed to the client as its signing
key and the value the ledger stores to verify signatures.  Leaking the
stored value does not reveal ``client_secret`` or the license key.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass, field


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


def derive_store_token(license_key: str) -> str:
    """Stable public identifier for the store connected with ``license_key``."""
    return _sha256_hex(f"{license_key}:connect")


def derive_client_secret(license_key: str) -> str:
    return _sha256_hex(f"{license_key}:secret")


def derive_secret_material(license_key: str) -> str:
    """Signing key shared by client and server (hash of the client secret)."""
    return _sha256_hex(derive_client_secret(license_key))


def hash_license_key(license_key: str) -> str:
    """SHA256 of a license key, as clients report it on reserve/release."""
    return _sha256_hex(license_key)


@dataclass(frozen=True)
class StoreCredentials:
    """Credentials for one store. ``signing_key`` is kept out of reprs."""
    store_token: str
    signing_key: str = field(repr=False)


def issue_credentials(license_key: str) -> StoreCredentials:
    """Derive the token and signing key for ``license_key``."""
    if not license_key:
        raise ValueError("license_key is required")
    return StoreCredentials(
        store_token=derive_store_token(license_key),
        signing_key=derive_secret_material(license_key),
    )
