from __future__ import annotations
"""ImageVariant ORM model — one candidate image competing to become an asset's approved image."""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from atelier.database import Base


class AssetType(str, enum.Enum):
    """Kinds of asset that own variants."""
    CHARACTER = "character"
    LOCATION = "location"
    PROP = "prop"
    SCENE = "scene"


class ShotType(str, enum.Enum):
    """Character sub-types."""
    PORTRAIT = "portrait"
    THREE_QUARTER = "three_quarter"
    FULL_BODY = "full_body"


class VariantStatus(str, enum.Enum):
    """Variant lifecycle statuses."""
    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"
    SELECTED = "selected"


def utcnow() -> datetime:
    """Naive UTC timestamp, matching DATETIME columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ImageVariant(Base):
    """A generated image candidate keyed by (asset_type, asset_id, sub_type)."""

    __tablename__ = "image_variants"
    __table_args__ = (
        Index("ix_image_variants_key", "asset_type", "asset_id", "sub_type"),
        {
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: uuid.uuid4().hex[:36],
    )
    asset_type: Mapped[str] = mapped_column(String(20), nullable=False)
    asset_id: Mapped[str] = mapped_column(String(36), nullable=False)
    sub_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    model: Mapped[str] = mapped_column(String(100), nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False, default="")
    image_url: Mapped[str] = mapped_column(String(1024), nullable=False, default="")
    storage_path: Mapped[str] = mapped_column(String(1024), nullable=False, default="")

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=VariantStatus.GENERATING.value, index=True
    )
    is_selected: Mapped[bool] = mapped_column(default=False)
    generation_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    parent_variant_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    job_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    reference_images: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Written by the application so ordering by updated_at is deterministic
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<ImageVariant {self.id} {self.asset_type}:{self.asset_id}"
            f"/{self.sub_type or '-'} {self.model} {self.status}>"
        )
