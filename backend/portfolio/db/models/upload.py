"""
Upload model: one stored binary object in the bucket.

``expires_at`` is NULL for permanently public objects and set for objects
served through presigned URLs. Once it has passed, ``url`` is stale until
the refresh scheduler (or an explicit re-presign) replaces it.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import BigInteger, Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from portfolio.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, as_utc, utcnow


class Upload(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "uploads"

    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    content_type: Mapped[str] = mapped_column(String(150), nullable=False)
    s3_key: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    s3_bucket: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def is_expired(self, now: datetime | None = None) -> bool:
        expires_at = as_utc(self.expires_at)
        if expires_at is None:
            return False
        return (now or utcnow()) >= expires_at

    def is_expiring_soon(self, window: timedelta, now: datetime | None = None) -> bool:
        """True while the URL is still valid but expires within ``window``."""
        expires_at = as_utc(self.expires_at)
        if expires_at is None:
            return False
        current = now or utcnow()
        return current < expires_at <= current + window

    def __repr__(self) -> str:
        return f"<Upload {self.s3_key}>"
