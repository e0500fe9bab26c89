"""
LicenseGate Authentication Module

Store credential derivation, request signing, and operator tokens.
"""
from licensegate.auth.credentials import (
    StoreCredentials,
    hash_license_key,
    issue_credentials,
)
from licensegate.auth.signatures import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    compute_signature,
    signed_headers,
    verify_signature,
)
from licensegate.auth.tokens import (
    AccessCodeError,
    generate_access_code,
    validate_access_code,
)

__all__ = [
    "StoreCredentials",
    "hash_license_key",
    "issue_credentials",
    "SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "compute_signature",
    "signed_headers",
    "verify_signature",
    "AccessCodeError",
    "generate_access_code",
    "validate_access_code",
]
