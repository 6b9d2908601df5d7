"""Pydantic v2 schemas package."""

from atelier.schemas.variant import (
    AddVariantRequest,
    AssetKey,
    GenerateVariantsRequest,
    GenerationCallback,
    ProjectGenerateRequest,
    RefineRequest,
    SweepRequest,
    VariantListRead,
    VariantRead,
)

__all__ = [
    "AddVariantRequest",
    "AssetKey",
    "GenerateVariantsRequest",
    "GenerationCallback",
    "ProjectGenerateRequest",
    "RefineRequest",
    "SweepRequest",
    "VariantListRead",
    "VariantRead",
]
