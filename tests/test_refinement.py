"""
Tests for refinement chains (image-to-image children of existing variants).
"""
import pytest

from atelier.errors import InvalidVariantState, VariantNotFound
from atelier.services.asset_gateway import AssetRef
from atelier.services.generation_client import DispatchResult
from atelier.services.refinement import DEFAULT_REFINEMENT_PROMPT, refine

HARBOR = AssetRef("location", "loc-1")


@pytest.mark.asyncio
async def test_refine_creates_child(orchestrator, make_variant, store, gen_client, project):
    """Test the child uses the exact refinement prompt and the source image."""
    await make_variant(HARBOR, order=0)
    source = await make_variant(HARBOR, order=3)

    child_id = await refine(orchestrator, source.id, "seedream", "warmer light, add gulls")

    child = await store.get(child_id)
    assert child.prompt == "warmer light, add gulls"
    assert child.model == "seedream-4.5-image-to-image"
    assert child.parent_variant_id == source.id
    assert child.reference_images == [source.image_url]
    assert child.generation_order == 4
    assert child.status == "generating"

    prompt, model, options = gen_client.calls[-1]
    assert prompt == "warmer light, add gulls"
    assert model == "seedream-4.5-image-to-image"
    assert options.source_image_url == source.image_url
    assert options.variant_id == child_id


@pytest.mark.asyncio
async def test_refine_converts_internal_model_id(orchestrator, make_variant, store, project):
    source = await make_variant(HARBOR, model="flux-2-text-to-image")

    child_id = await refine(orchestrator, source.id, "flux-2-text-to-image", "")

    child = await store.get(child_id)
    assert child.model == "flux-2-image-to-image"
    assert child.prompt == DEFAULT_REFINEMENT_PROMPT


@pytest.mark.asyncio
async def test_refine_keeps_prompt_verbatim(orchestrator, make_variant, store, project):
    source = await make_variant(HARBOR)

    child_id = await refine(orchestrator, source.id, "seedream", "  add gulls, low tide \n")

    assert (await store.get(child_id)).prompt == "  add gulls, low tide \n"


@pytest.mark.asyncio
async def test_refine_requires_image(orchestrator, make_variant, project):
    pending = await make_variant(HARBOR, status="generating")

    with pytest.raises(InvalidVariantState, match="no image to refine"):
        await refine(orchestrator, pending.id, "seedream", "sharper")


@pytest.mark.asyncio
async def test_refine_missing_source(orchestrator, db):
    with pytest.raises(VariantNotFound):
        await refine(orchestrator, "missing", "seedream", "sharper")


@pytest.mark.asyncio
async def test_retry_of_failed_child_keeps_source(orchestrator, make_variant, store, gen_client, project):
    """Test a retried refinement still sends its parent image as the source."""
    source = await make_variant(HARBOR)
    gen_client.responses["seedream-4.5-image-to-image"] = DispatchResult(error="busy")
    child_id = await refine(orchestrator, source.id, "seedream", "sharper")
    assert (await store.get(child_id)).status == "failed"
    gen_client.responses.clear()

    retried_id = await orchestrator.retry_variant(child_id)

    retried = await store.get(retried_id)
    assert retried.parent_variant_id == source.id
    assert gen_client.calls[-1][2].source_image_url == source.image_url
