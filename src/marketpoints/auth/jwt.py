"""
JWT access token handling.

Tokens are issued by the marketplace identity service. Each carries the
subject id in ``sub`` and the account kind in ``subject_type``
(``user``, ``advertiser`` or ``admin``). HMAC algorithms use the shared
``jwt_secret``; RSA/EC algorithms read PEM keys from disk.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import jwt

from marketpoints.config import get_settings

SUBJECT_ADMIN = "admin"
TOKEN_SUBJECT_TYPES = frozenset({"user", "advertiser", SUBJECT_ADMIN})

_private_key: str | None = None
_public_key: str | None = None


def _load_keys() -> tuple[str, str]:
    """Return (signing key, verification key) for the configured algorithm."""
    global _private_key, _public_key  # noqa: PLW0603
    settings = get_settings()
    if settings.jwt_algorithm.startswith("HS"):
        return settings.jwt_secret, settings.jwt_secret
    if _private_key is None or _public_key is None:
        _private_key = Path(settings.jwt_private_key_path).read_text()
        _public_key = Path(settings.jwt_public_key_path).read_text()
    return _private_key, _public_key


def reset_keys() -> None:
    """Reset cached keys (useful for testing)."""
    global _private_key, _public_key  # noqa: PLW0603
    _private_key = None
    _public_key = None


def create_access_token(subject_id: int, subject_type: str) -> str:
    """
    Create a short-lived access token.

    Used by operator tooling and tests; production tokens come from the
    identity service with the same claims.

    Args:
        subject_id: Database id of the user, advertiser or admin.
        subject_type: One of "user", "advertiser", "admin".

    Returns:
        Encoded JWT string.
    """
    if subject_type not in TOKEN_SUBJECT_TYPES:
        msg = f"Unknown subject type '{subject_type}'"
        raise ValueError(msg)
    signing_key, _ = _load_keys()
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(subject_id),
        "subject_type": subject_type,
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt_access_token_expire_minutes),
        "iss": settings.jwt_issuer,
        "type": "access",
    }
    return jwt.encode(payload, signing_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str, expected_type: str = "access") -> dict[str, Any]:
    """
    Verify and decode a JWT token.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, of the wrong
            type, or carries an unknown subject type.
    """
    _, verify_key = _load_keys()
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            verify_key,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if payload.get("type") != expected_type:
        msg = f"Expected token type '{expected_type}', got '{payload.get('type')}'"
        raise jwt.InvalidTokenError(msg)
    if payload.get("subject_type") not in TOKEN_SUBJECT_TYPES:
        msg = "Token has no valid subject_type"
        raise jwt.InvalidTokenError(msg)
    if not str(payload.get("sub", "")).isdigit():
        msg = "Token subject must be a numeric id"
        raise jwt.InvalidTokenError(msg)

    return payload
