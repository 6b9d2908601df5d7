from __future__ import annotations
"""Pydantic v2 schemas for image variants and the generation callback."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, Field

AssetTypeLiteral = Literal["character", "location", "prop", "scene"]


class AssetKey(BaseModel):
    """Identifies the variants of one asset (and character shot)."""

    asset_type: AssetTypeLiteral
    asset_id: str = Field(..., min_length=1, max_length=36)
    sub_type: Optional[str] = None


class GenerateVariantsRequest(AssetKey):
    """Fan out one asset across several models."""

    models: Optional[list[str]] = None
    prompt: Optional[str] = None


class AddVariantRequest(AssetKey):
    model: str = Field(..., min_length=1)
    prompt: Optional[str] = None


class RefineRequest(BaseModel):
    model: str = "seedream"
    prompt: str = ""


class SweepRequest(BaseModel):
    asset_type: Optional[AssetTypeLiteral] = None
    asset_id: Optional[str] = None
    sub_type: Optional[str] = None
    max_age_minutes: Optional[int] = Field(None, ge=1)


class ProjectGenerateRequest(BaseModel):
    stage: Literal["bible", "scenes"] = "bible"
    models: Optional[list[str]] = None
    skip_approved: bool = True


class VariantRead(BaseModel):
    """Schema for reading a variant."""

    id: str
    asset_type: str
    asset_id: str
    sub_type: Optional[str] = None
    model: str
    prompt: str
    image_url: str
    storage_path: str
    status: str
    is_selected: bool
    generation_order: int
    parent_variant_id: Optional[str] = None
    job_id: Optional[str] = None
    reference_images: Optional[list[str]] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class VariantListRead(BaseModel):
    variants: list[VariantRead]
    selected_variant: Optional[VariantRead] = None
    has_approved_image: bool = False


class GenerationCallback(BaseModel):
    """Result delivered by the Generation Service; camelCase or snake_case."""

    variant_id: Optional[str] = Field(None, validation_alias=AliasChoices("variant_id", "variantId"))
    job_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("job_id", "taskId", "task_id", "jobId"),
    )
    image_url: Optional[str] = Field(None, validation_alias=AliasChoices("image_url", "imageUrl"))
    status: Optional[str] = None
    error: Optional[str] = Field(
        None, validation_alias=AliasChoices("error", "error_message", "errorMessage"),
    )

    model_config = {"extra": "ignore"}

    @property
    def failure(self) -> Optional[str]:
        """Error text when the callback reports a failed job."""
        if self.error:
            return self.error
        if self.status and self.status.lower() in ("failed", "error"):
            return "Generation service reported failure"
        return None
