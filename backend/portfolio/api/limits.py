"""Process-wide slowapi limiter; per-route limits are read from settings on each request."""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

from portfolio.config.settings import get_settings


def auth_limit() -> str:
    return get_settings().rate_limit_auth


def upload_limit() -> str:
    return get_settings().rate_limit_upload


def create_limiter() -> Limiter:
    settings = get_settings()
    return Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit_default],
        enabled=settings.rate_limit_enabled,
    )


limiter = create_limiter()
