"""
Security utilities: password hashing, JWT creation and verification.

Secrets are never logged. Access tokens carry the tenant the session was
opened for; download tokens are scoped to a single storage key.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import UTC, datetime, timedelta

import bcrypt
from jose import jwt

from hmsnova.config.settings import get_settings


# ── Password ──────────────────────────────────────────────────────────── #


def _normalize(plain: str) -> bytes:
    # bcrypt truncates at 72 bytes; pre-hash so long passphrases stay significant
    return hashlib.sha256(plain.encode("utf-8")).hexdigest().encode("utf-8")


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_normalize(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """
    Verify a plaintext password against a stored hash.

    Returns False (never raises) on a malformed hash.
    """
    try:
        return bcrypt.checkpw(_normalize(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


# ── JWT ───────────────────────────────────────────────────────────────── #


def _now_utc() -> datetime:
    return datetime.now(UTC)


def _encode(payload: dict[str, object]) -> str:
    settings = get_settings()
    return jwt.encode(
        payload,
        settings.jwt_secret_key.get_secret_value(),
        algorithm=settings.jwt_algorithm,
    )


def create_access_token(
    subject: str,
    role: str,
    extra_claims: dict[str, object] | None = None,
) -> str:
    """
    Create a signed JWT access token.

    Args:
        subject: The user ID (``sub`` claim).
        role: The membership role at issue time. Informational only;
            authorization always re-reads the live membership.
        extra_claims: Optional additional claims merged into the payload
            (``tenant_id`` in practice).

    Returns:
        Signed compact JWT string.
    """
    settings = get_settings()
    now = _now_utc()
    payload: dict[str, object] = {
        "sub": subject,
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt_access_token_expire_minutes),
        "type": "access",
        "jti": secrets.token_hex(16),
    }
    if extra_claims:
        payload.update(extra_claims)
    return _encode(payload)


def create_refresh_token(subject: str, tenant_id: str) -> str:
    """Create a signed JWT refresh token bound to one tenant (no role claim)."""
    settings = get_settings()
    now = _now_utc()
    return _encode(
        {
            "sub": subject,
            "tenant_id": tenant_id,
            "iat": now,
            "exp": now + timedelta(days=settings.jwt_refresh_token_expire_days),
            "type": "refresh",
            "jti": secrets.token_hex(16),
        }
    )


def create_download_token(key: str, ttl_seconds: int) -> str:
    """Create a short-lived token that grants a GET on one storage key."""
    now = _now_utc()
    return _encode(
        {
            "sub": key,
            "iat": now,
            "exp": now + timedelta(seconds=ttl_seconds),
            "type": "download",
        }
    )


def decode_token(token: str) -> dict[str, object]:
    """
    Decode and validate a JWT.

    Raises:
        JWTError: If the token is invalid, expired, or tampered with.
    """
    settings = get_settings()
    return jwt.decode(  # type: ignore[return-value]
        token,
        settings.jwt_secret_key.get_secret_value(),
        algorithms=[settings.jwt_algorithm],
    )


__all__ = [
    "create_access_token",
    "create_download_token",
    "create_refresh_token",
    "decode_token",
    "hash_password",
    "verify_password",
]
