from __future__ import annotations
"""Project ORM model — the owner of every asset whose images are generated here."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from atelier.database import Base


class Project(Base):
    """A production project; only the fields prompt builders read are modelled."""

    __tablename__ = "projects"
    __table_args__ = {
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: uuid.uuid4().hex[:36],
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    visual_style: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        nullable=True, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        nullable=True, server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    characters = relationship("Character", cascade="all, delete-orphan")
    locations = relationship("Location", cascade="all, delete-orphan")
    props = relationship("Prop", cascade="all, delete-orphan")
    scenes = relationship(
        "Scene", cascade="all, delete-orphan", order_by="Scene.sequence_order"
    )
