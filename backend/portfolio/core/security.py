"""
Security utilities: password hashing, JWT creation and verification.

Secrets are never logged.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import UTC, datetime, timedelta

import bcrypt
from jose import jwt

from portfolio.config.settings import Settings, get_settings


# ── Password ──────────────────────────────────────────────────────────── #


def _normalize(plain: str) -> bytes:
    # bcrypt truncates at 72 bytes; pre-hashing keeps long passphrases intact
    return hashlib.sha256(plain.encode("utf-8")).hexdigest().encode("utf-8")


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_normalize(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """
    Verify a plaintext password against a stored hash.

    Returns False (never raises) on a malformed stored hash.
    """
    try:
        return bcrypt.checkpw(_normalize(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


# ── JWT ───────────────────────────────────────────────────────────────── #


def _now_utc() -> datetime:
    return datetime.now(UTC)


def _encode(payload: dict[str, object], settings: Settings) -> str:
    return jwt.encode(
        payload,
        settings.jwt_secret_key.get_secret_value(),
        algorithm=settings.jwt_algorithm,
    )


def create_access_token(
    subject: str,
    role: str,
    expires_delta: timedelta | None = None,
    settings: Settings | None = None,
) -> str:
    """
    Create a signed JWT access token.

    Args:
        subject: The user ID (``sub`` claim).
        role: The user's legacy role label, informational only.
        expires_delta: Override of the configured access token TTL.

    Returns:
        Signed compact JWT string.
    """
    cfg = settings or get_settings()
    now = _now_utc()
    ttl = expires_delta or timedelta(minutes=cfg.jwt_access_token_expire_minutes)
    payload: dict[str, object] = {
        "sub": subject,
        "role": role,
        "iat": now,
        "exp": now + ttl,
        "type": "access",
        "jti": secrets.token_hex(16),
    }
    return _encode(payload, cfg)


def create_refresh_token(subject: str, settings: Settings | None = None) -> str:
    """Create a signed JWT refresh token (no role claim)."""
    cfg = settings or get_settings()
    now = _now_utc()
    payload: dict[str, object] = {
        "sub": subject,
        "iat": now,
        "exp": now + timedelta(days=cfg.jwt_refresh_token_expire_days),
        "type": "refresh",
        "jti": secrets.token_hex(16),
    }
    return _encode(payload, cfg)


def decode_token(token: str, settings: Settings | None = None) -> dict[str, object]:
    """
    Decode and validate a JWT.

    Raises:
        JWTError: If the token is invalid, expired, or tampered with.
    """
    cfg = settings or get_settings()
    return jwt.decode(  # type: ignore[return-value]
        token,
        cfg.jwt_secret_key.get_secret_value(),
        algorithms=[cfg.jwt_algorithm],
    )


__all__ = [
    "create_access_token",
    "create_refresh_token",
    "decode_token",
    "hash_password",
    "verify_password",
]
