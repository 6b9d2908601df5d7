"""Declarative image model registry.

Maps the internal model identifiers stored on variants to the names the
Generation Service understands, and answers the small questions the pipeline
asks about a model (quality tier, image-to-image counterpart, stuck threshold).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


# Image generation type taxonomy
GEN_TYPE_T2I = "t2i"      # Text-to-image
GEN_TYPE_I2I = "i2i"      # Image(s) + text to image

DEFAULT_SERVICE_NAME = "seedream/4.5-text-to-image"


@dataclass(frozen=True)
class ImageModel:
    """Descriptor for a single internal model identifier."""
    model: str
    family: str                     # alias users pick: seedream, nano-banana, flux
    gen_type: str                   # t2i or i2i
    service_name: str               # name sent to the Generation Service
    stuck_after_minutes: int | None = None   # None -> settings default


class ImageModelRegistry:
    """In-memory registry of all supported image models."""

    def __init__(self) -> None:
        self._models: dict[str, ImageModel] = {}
        self._families: dict[str, dict[str, ImageModel]] = {}

    def register(self, model: ImageModel) -> None:
        self._models[model.model] = model
        self._families.setdefault(model.family, {})[model.gen_type] = model

    def get(self, model: str) -> ImageModel | None:
        return self._models.get(model)

    def list_models(self, family: str | None = None) -> list[ImageModel]:
        if family:
            return list(self._families.get(family, {}).values())
        return list(self._models.values())

    def list_families(self) -> list[str]:
        return sorted(self._families.keys())

    def resolve(self, name: str, has_references: bool = False) -> str:
        """Turn an alias or an internal id into an internal id.

        Aliases resolve to the image-to-image model when references are
        present and to the text-to-image model otherwise. Internal ids and
        unknown names pass through unchanged.
        """
        family = self._families.get(name)
        if family is None:
            return name
        wanted = GEN_TYPE_I2I if has_references else GEN_TYPE_T2I
        chosen = family.get(wanted) or next(iter(family.values()))
        return chosen.model

    def to_image_to_image(self, name: str) -> str:
        """Image-to-image counterpart of an alias or internal id."""
        if name in self._families:
            return self.resolve(name, has_references=True)
        return name.replace("text-to-image", "image-to-image")

    def service_name(self, model: str) -> str:
        known = self._models.get(model)
        if known is None:
            logger.warning("Unknown model %r, falling back to %s", model, DEFAULT_SERVICE_NAME)
            return DEFAULT_SERVICE_NAME
        return known.service_name

    def stuck_threshold(self, model: str, default_minutes: int) -> int:
        known = self._models.get(model)
        if known is None or known.stuck_after_minutes is None:
            return default_minutes
        return known.stuck_after_minutes

    def to_dict_list(self, family: str | None = None) -> list[dict[str, Any]]:
        return [
            {
                "model": m.model,
                "family": m.family,
                "gen_type": m.gen_type,
                "service_name": m.service_name,
            }
            for m in self.list_models(family)
        ]


def quality_for_model(model: str) -> str:
    """Quality tier sent with every request, derived from the model name."""
    if "seedream" in model:
        return "basic"
    if "nano-banana" in model:
        return "low"
    return "medium"


def expand_models(names: list[str] | str) -> list[str]:
    """Expand the ``both`` shortcut used by scene generation."""
    if isinstance(names, str):
        names = [names]
    expanded: list[str] = []
    for name in names:
        if name == "both":
            expanded.extend(["seedream", "nano-banana"])
        else:
            expanded.append(name)
    return expanded


_SHOT_ASPECT_RATIOS = {
    "portrait": "1:1",
    "three_quarter": "4:3",
    "full_body": "9:16",
}


def default_aspect_ratio(asset_type: str, sub_type: str | None = None) -> str:
    if asset_type == "character":
        return _SHOT_ASPECT_RATIOS.get(sub_type or "portrait", "1:1")
    if asset_type in ("location", "scene"):
        return "16:9"
    return "1:1"


# ---------------------------------------------------------------------------
# Build the global registry
# ---------------------------------------------------------------------------

MODEL_REGISTRY = ImageModelRegistry()

# Seedream 4.5
MODEL_REGISTRY.register(ImageModel(
    "seedream-4.5-text-to-image", "seedream", GEN_TYPE_T2I, "seedream/4.5-text-to-image",
))
MODEL_REGISTRY.register(ImageModel(
    "seedream-4.5-image-to-image", "seedream", GEN_TYPE_I2I, "seedream/4.5-edit",
))

# Nano Banana Pro (slow queue)
MODEL_REGISTRY.register(ImageModel(
    "nano-banana-pro-text-to-image", "nano-banana", GEN_TYPE_T2I, "nano-banana-pro",
    stuck_after_minutes=10,
))
MODEL_REGISTRY.register(ImageModel(
    "nano-banana-pro-image-to-image", "nano-banana", GEN_TYPE_I2I, "nano-banana-pro",
    stuck_after_minutes=10,
))

# Flux 2 Pro
MODEL_REGISTRY.register(ImageModel(
    "flux-2-text-to-image", "flux", GEN_TYPE_T2I, "flux-2/pro-text-to-image",
))
MODEL_REGISTRY.register(ImageModel(
    "flux-2-image-to-image", "flux", GEN_TYPE_I2I, "flux-2/pro-image-to-image",
))


logger.info(
    "Model registry initialized: %d models in %d families",
    len(MODEL_REGISTRY._models),
    len(MODEL_REGISTRY._families),
)
