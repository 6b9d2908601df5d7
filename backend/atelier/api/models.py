"""Image model catalogue: what the variant pipeline can dispatch to."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from atelier.config import get_settings
from atelier.services.model_registry import MODEL_REGISTRY

router = APIRouter()


@router.get("/image")
async def list_image_models(family: str | None = None) -> dict[str, Any]:
    """Supported image models, optionally narrowed to one family alias."""
    models = MODEL_REGISTRY.to_dict_list(family)
    return {
        "models": models,
        "families": MODEL_REGISTRY.list_families(),
        "defaults": get_settings().default_models,
        "total": len(models),
    }
