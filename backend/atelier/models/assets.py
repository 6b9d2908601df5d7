from __future__ import annotations
"""Asset ORM models — characters, locations, props and scenes.

These records are owned by the screenplay layer. The variant pipeline reads
their prompt inputs and writes only the approval slice declared by
``ApprovalSlice``.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from atelier.database import Base


class ImageStatus(str, enum.Enum):
    """Approval status of an asset's image."""
    PENDING = "pending"
    GENERATING = "generating"
    READY = "ready"
    APPROVED = "approved"
    FAILED = "failed"


class ApprovalSlice:
    """Columns the variant pipeline is allowed to write on an asset."""

    approved_image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    approved_image_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    image_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ImageStatus.PENDING.value
    )
    selected_model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


def _new_id() -> str:
    return uuid.uuid4().hex[:36]


class Character(ApprovalSlice, Base):
    """A character; the portrait shot fills the approval slice."""

    __tablename__ = "characters"
    __table_args__ = {
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    visual_dna: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Approved images of non-portrait shots: {"full_body": {"url": ..., "path": ...}}
    shot_images: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True, default=dict)

    created_at: Mapped[Optional[datetime]] = mapped_column(
        nullable=True, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        nullable=True, server_default=func.now(), onupdate=func.now()
    )


class Location(ApprovalSlice, Base):
    __tablename__ = "locations"
    __table_args__ = {
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[Optional[datetime]] = mapped_column(
        nullable=True, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        nullable=True, server_default=func.now(), onupdate=func.now()
    )


class Prop(ApprovalSlice, Base):
    __tablename__ = "props"
    __table_args__ = {
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[Optional[datetime]] = mapped_column(
        nullable=True, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        nullable=True, server_default=func.now(), onupdate=func.now()
    )


class Scene(ApprovalSlice, Base):
    """A storyboard scene; references Bible assets by id for reference injection."""

    __tablename__ = "scenes"
    __table_args__ = {
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    action: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    shot_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    wardrobe: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    composition: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    atmosphere: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    time_of_day: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    # Hand-written prompt; wins over the composed one when present
    prompt_visual: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Bible references
    location_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    character_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True, default=list)
    prop_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True, default=list)

    created_at: Mapped[Optional[datetime]] = mapped_column(
        nullable=True, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        nullable=True, server_default=func.now(), onupdate=func.now()
    )
