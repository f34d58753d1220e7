"""Resource model: discoverable metadata wrapped around exactly one Upload."""

from __future__ import annotations

from enum import StrEnum

from sqlalchemy import BigInteger, Boolean, ForeignKey, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portfolio.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from portfolio.db.models.upload import Upload


class ResourceType(StrEnum):
    IMAGE = "image"
    DOCUMENT = "document"
    VIDEO = "video"
    AUDIO = "audio"
    OTHER = "other"


class Resource(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """
    Digital asset metadata.

    view_count and download_count only ever grow; they are bumped with
    single ``UPDATE ... SET n = n + 1`` statements, never read-modify-write.
    """

    __tablename__ = "resources"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[ResourceType] = mapped_column(
        SAEnum(
            ResourceType,
            name="resource_type",
            native_enum=False,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        index=True,
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="", index=True)
    tags: Mapped[str] = mapped_column(Text, nullable=False, default="")
    alt: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    view_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    download_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    upload_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("uploads.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    upload: Mapped[Upload] = relationship(Upload, lazy="selectin")

    @property
    def tag_list(self) -> list[str]:
        return [tag.strip() for tag in self.tags.split(",") if tag.strip()]

    def __repr__(self) -> str:
        return f"<Resource {self.name} [{self.type}]>"
