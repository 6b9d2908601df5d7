"""Refinement Chain Manager — derive a new variant from an existing image."""

from __future__ import annotations

import logging

from atelier.errors import InvalidVariantState, VariantNotFound
from atelier.services.asset_gateway import AssetRef
from atelier.services.model_registry import MODEL_REGISTRY
from atelier.services.orchestrator import VariantOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_REFINEMENT_PROMPT = "enhance image quality and details"


async def refine(
    orchestrator: VariantOrchestrator,
    source_variant_id: str,
    model: str,
    refinement_prompt: str,
) -> str:
    """Create a child of ``source_variant_id`` using image-to-image generation.

    The child's prompt is exactly ``refinement_prompt`` (the source prompt is
    not carried over), its model is the image-to-image form of ``model`` and
    it is ordered after every existing variant of the key.
    """
    source = await orchestrator.store.get(source_variant_id)
    if source is None:
        raise VariantNotFound(source_variant_id)
    if not source.image_url:
        raise InvalidVariantState("Source variant has no image to refine")

    prompt = refinement_prompt if refinement_prompt.strip() else DEFAULT_REFINEMENT_PROMPT
    i2i_model = MODEL_REGISTRY.to_image_to_image(model)
    ref = AssetRef.of_variant(source)

    order = await orchestrator.store.max_generation_order(ref) + 1
    child = await orchestrator.store.create(
        ref,
        model=i2i_model,
        prompt=prompt,
        generation_order=order,
        parent_variant_id=source.id,
        reference_images=[source.image_url],
    )
    logger.info("Refining %s -> %s with %s", source.id, child.id, i2i_model)

    await orchestrator.dispatch_all([child], orchestrator.options_for(child))
    return child.id
