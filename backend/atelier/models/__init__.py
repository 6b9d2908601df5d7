"""ORM model package — registers all models with Base.metadata."""

from atelier.models.project import Project
from atelier.models.assets import (
    ApprovalSlice,
    Character,
    ImageStatus,
    Location,
    Prop,
    Scene,
)
from atelier.models.variant import (
    AssetType,
    ImageVariant,
    ShotType,
    VariantStatus,
    utcnow,
)

__all__ = [
    "Project",
    "ApprovalSlice",
    "Character",
    "ImageStatus",
    "Location",
    "Prop",
    "Scene",
    "AssetType",
    "ImageVariant",
    "ShotType",
    "VariantStatus",
    "utcnow",
]
