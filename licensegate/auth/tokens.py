"""
Operator Token Generation and Validation

Signed JWTs for the admin API. Tokens are self-contained and don't require
database storage; they expire on their own.
"""
from __future__ import annotations

import hashlib
import jwt
from datetime import datetime, timedelta, timezone

from typing_extensions import Required, TypedDict

from licensegate.config import settings


class AccessCodeError(Exception):
    """Raised when operator token validation fails."""
    pass


class TokenClaims(TypedDict, total=False):
    """Decoded JWT payload returned by validate_access_code.

    ``type``, ``iat``, and ``exp`` are always present.
    ``sub`` names the operator. ``role`` is ``"admin"`` for admin tokens.
    """

    type: Required[str]
    iat: Required[int]
    exp: Required[int]
    sub: str
    role: str


def _get_secret() -> str:
    """Get the token signing secret, raising if not configured."""
    if not settings.access_token_secret:
        raise AccessCodeError(
            "LICENSEGATE_ACCESS_TOKEN_SECRET not configured. "
            "Generate one with: openssl rand -hex 32"
        )
    return settings.access_token_secret


def hash_token(token: str) -> str:
    """SHA256 of a token, for logging without exposing the token."""
    return hashlib.sha256(token.encode()).hexdigest()


def generate_access_code(
    operator: str | None = None,
    duration_hours: int | None = None,
    duration_days: int | None = None,
    duration_minutes: int | None = None,
    is_admin: bool = True,
) -> str:
    """
    Generate a signed operator token (JWT) with the specified duration.

    Args:
        operator: Name recorded in the ``sub`` claim
        duration_hours: Token validity in hours
        duration_days: Token validity in days
        duration_minutes: Token validity in minutes (for testing)
        is_admin: If True, adds the admin role to the token

    Returns:
        Signed JWT token string

    Raises:
        AccessCodeError: If no duration specified or secret not configured
    """
    secret = _get_secret()

    total_hours: float = 0.0
    if duration_hours:
        total_hours += duration_hours
    if duration_days:
        total_hours += duration_days * 24
    if duration_minutes:
        total_hours += duration_minutes / 60

    if total_hours <= 0:
        raise AccessCodeError(
            "Must specify at least one of: duration_hours, duration_days, duration_minutes"
        )

    now = datetime.now(timezone.utc)
    expiration = now + timedelta(hours=total_hours)

    payload: dict[str, object] = {
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int(expiration.timestamp()),
    }
    if operator:
        payload["sub"] = operator
    if is_admin:
        payload["role"] = "admin"

    return jwt.encode(
        payload,
        secret,
        algorithm=settings.access_token_algorithm,
    )


def validate_access_code(token: str) -> TokenClaims:
    """
    Validate an operator token and return its claims.

    Raises:
        AccessCodeError: If token is invalid, expired, or malformed
    """
    secret = _get_secret()

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[settings.access_token_algorithm],
        )
    except jwt.ExpiredSignatureError:
        raise AccessCodeError("Access code has expired")
    except jwt.InvalidTokenError as e:
        raise AccessCodeError(f"Invalid access code: {e}")

    raw_type = payload.get("type")
    if not isinstance(raw_type, str) or raw_type != "access":
        raise AccessCodeError("Invalid token type")

    raw_iat = payload.get("iat", 0)
    raw_exp = payload.get("exp", 0)
    if not isinstance(raw_iat, int) or not isinstance(raw_exp, int):
        raise AccessCodeError("Malformed token: iat/exp must be integers")

    claims = TokenClaims(type=raw_type, iat=raw_iat, exp=raw_exp)

    raw_sub = payload.get("sub")
    if raw_sub is not None:
        if not isinstance(raw_sub, str):
            raise AccessCodeError("Malformed token: sub must be a string")
        claims["sub"] = raw_sub

    raw_role = payload.get("role")
    if raw_role is not None:
        if not isinstance(raw_role, str):
            raise AccessCodeError("Malformed token: role must be a string")
        claims["role"] = raw_role

    return claims


def get_token_expiration(token: str) -> datetime:
    """Expiration time of a token that has already been validated."""
    claims = validate_access_code(token)
    return datetime.fromtimestamp(claims["exp"], tz=timezone.utc)
