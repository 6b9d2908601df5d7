"""
Tests for the fan-out orchestrator and dual-path result ingestion.

Covers the fast path (image returned by dispatch), the callback path
(image delivered later), duplicate deliveries and the race between both.
"""
import asyncio

import pytest

from atelier.errors import InvalidVariantState, VariantError, VariantNotFound
from atelier.models import Character
from atelier.services.asset_gateway import AssetRef
from atelier.services.generation_client import DispatchResult

MARA = AssetRef("character", "char-1")
SEEDREAM = "seedream-4.5-text-to-image"
NANO = "nano-banana-pro-text-to-image"


def _prompt(has_refs):
    return "portrait of Mara"


@pytest.mark.asyncio
async def test_fan_out_fast_path_and_callback(orchestrator, gen_client, store, notifier, sleeps, project):
    """Test one model answering synchronously and one answering via callback."""
    gen_client.responses[SEEDREAM] = DispatchResult(image_url="https://results.test/a.png")
    gen_client.responses[NANO] = DispatchResult(job_id="job-nano")

    ids = await orchestrator.generate_variants(MARA, ["seedream", "nano-banana"], _prompt)

    assert len(ids) == 2
    a, b = await store.get(ids[0]), await store.get(ids[1])
    assert (a.model, a.generation_order, a.status) == (SEEDREAM, 0, "ready")
    assert a.storage_path.startswith("char-1/portrait_")
    assert (b.model, b.generation_order, b.status) == (NANO, 1, "generating")
    assert b.job_id == "job-nano"
    assert sleeps == []

    outcome = await orchestrator.ingest_callback(job_id="job-nano", image_url="https://results.test/b.png")

    assert outcome.changed and outcome.status == "ready"
    b = await store.get(ids[1])
    assert b.status == "ready"
    assert b.image_url.startswith("https://blobs.test/bible-characters-uploads/char-1/")
    assert sleeps == [2.0]
    notifier.variant.assert_any_await(MARA, ids[0], "ready")
    notifier.variant.assert_any_await(MARA, ids[1], "ready")


@pytest.mark.asyncio
async def test_dispatch_carries_options(orchestrator, gen_client, project):
    await orchestrator.generate_variants(
        AssetRef("character", "char-1", "full_body"), ["flux"], _prompt,
    )

    prompt, model, options = gen_client.calls[0]
    assert prompt == "portrait of Mara"
    assert model == "flux-2-text-to-image"
    assert options.aspect_ratio == "9:16"
    assert options.variant_id is not None
    assert options.callback_url == "http://atelier.test/api/webhooks/generation"


@pytest.mark.asyncio
async def test_generation_order_keeps_growing(orchestrator, store, project):
    first = await orchestrator.generate_variants(MARA, ["seedream", "nano-banana"], _prompt)
    second = await orchestrator.generate_variants(MARA, ["both"], _prompt)

    orders = [(await store.get(i)).generation_order for i in first + second]
    assert orders == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_references_switch_to_image_to_image(orchestrator, gen_client, project):
    """Test aliases resolve to image-to-image models when references exist."""
    seen = []

    async def _async_prompt(has_refs):
        seen.append(has_refs)
        return "short prompt" if has_refs else "long prompt"

    await orchestrator.generate_variants(
        AssetRef("scene", "scene-1"), ["seedream"], _async_prompt,
        reference_images=["https://blobs.test/loc.png"],
    )

    prompt, model, options = gen_client.calls[0]
    assert seen == [True]
    assert prompt == "short prompt"
    assert model == "seedream-4.5-image-to-image"
    assert options.reference_images == ["https://blobs.test/loc.png"]
    assert options.aspect_ratio == "16:9"


@pytest.mark.asyncio
async def test_no_models_is_an_error(orchestrator, project):
    with pytest.raises(VariantError):
        await orchestrator.generate_variants(MARA, [], _prompt)


@pytest.mark.asyncio
async def test_asset_marked_generating(orchestrator, db, project):
    await orchestrator.generate_variants(MARA, ["seedream"], _prompt)

    async with db() as session:
        character = await session.get(Character, "char-1")
    assert character.image_status == "generating"


@pytest.mark.asyncio
async def test_dispatch_error_fails_only_that_variant(orchestrator, gen_client, store, project):
    gen_client.responses[NANO] = DispatchResult(error="quota exceeded")

    ids = await orchestrator.generate_variants(MARA, ["seedream", "nano-banana"], _prompt)

    ok, failed = await store.get(ids[0]), await store.get(ids[1])
    assert ok.status == "generating"
    assert failed.status == "failed"
    assert failed.error_message == "quota exceeded"


@pytest.mark.asyncio
async def test_fast_path_persist_failure_leaves_generating(orchestrator, gen_client, store, blob_store, project):
    """Test a failed fast-path upload leaves the variant for the callback."""
    gen_client.responses[SEEDREAM] = DispatchResult(job_id="job-1", image_url="https://results.test/tiny.png")

    ids = await orchestrator.generate_variants(MARA, ["seedream"], _prompt)

    variant = await store.get(ids[0])
    assert variant.status == "generating"
    assert variant.job_id == "job-1"
    assert blob_store.uploads == {}

    await orchestrator.ingest_callback(variant_id=ids[0], image_url="https://results.test/ok.png")
    assert (await store.get(ids[0])).status == "ready"


@pytest.mark.asyncio
async def test_duplicate_callback_is_a_no_op(orchestrator, store, blob_store, project):
    ids = await orchestrator.generate_variants(MARA, ["seedream"], _prompt)

    first = await orchestrator.ingest_callback(variant_id=ids[0], image_url="https://results.test/one.png")
    stored_url = (await store.get(ids[0])).image_url
    second = await orchestrator.ingest_callback(variant_id=ids[0], image_url="https://results.test/two.png")

    assert first.changed
    assert not second.changed
    assert second.status == "ready"
    assert (await store.get(ids[0])).image_url == stored_url
    assert len(blob_store.uploads) == 1


@pytest.mark.asyncio
async def test_fast_path_and_callback_race(orchestrator, store, blob_store, project):
    """Test only one of two concurrent resolutions lands; the loser's blob is removed."""
    ids = await orchestrator.generate_variants(MARA, ["seedream"], _prompt)

    # Hold both uploads until each path has passed its status check
    arrived = 0
    both_uploading = asyncio.Event()
    upload = blob_store.upload

    async def _gated_upload(*args, **kwargs):
        nonlocal arrived
        arrived += 1
        if arrived == 2:
            both_uploading.set()
        await both_uploading.wait()
        return await upload(*args, **kwargs)

    blob_store.upload = _gated_upload

    outcomes = await asyncio.gather(
        orchestrator.resolve_variant(ids[0], image_url="https://results.test/fast.png", slow=False),
        orchestrator.resolve_variant(ids[0], image_url="https://results.test/slow.png", slow=True),
    )

    assert sum(1 for o in outcomes if o.changed) == 1
    variant = await store.get(ids[0])
    assert variant.status == "ready"
    assert list(blob_store.uploads) == [("bible-characters-uploads", variant.storage_path)]
    assert len(blob_store.deleted) == 1


@pytest.mark.asyncio
async def test_callback_error_fails_variant(orchestrator, gen_client, store, notifier, project):
    gen_client.responses[SEEDREAM] = DispatchResult(job_id="job-x")
    ids = await orchestrator.generate_variants(MARA, ["seedream"], _prompt)

    outcome = await orchestrator.ingest_callback(job_id="job-x", error="content policy violation")

    variant = await store.get(ids[0])
    assert outcome.status == "failed"
    assert variant.error_message == "content policy violation"
    assert variant.job_id is None
    notifier.variant.assert_awaited_with(MARA, ids[0], "failed")


@pytest.mark.asyncio
async def test_callback_for_unknown_variant(orchestrator, db):
    with pytest.raises(VariantNotFound):
        await orchestrator.ingest_callback(variant_id="nope", image_url="https://results.test/ok.png")


@pytest.mark.asyncio
async def test_retry_replaces_failed_variant(orchestrator, gen_client, store, project):
    gen_client.responses[NANO] = DispatchResult(error="boom")
    ids = await orchestrator.generate_variants(MARA, ["seedream", "nano-banana"], _prompt)
    gen_client.responses.pop(NANO)

    new_id = await orchestrator.retry_variant(ids[1])

    assert await store.get(ids[1]) is None
    fresh = await store.get(new_id)
    assert (fresh.model, fresh.prompt, fresh.generation_order) == (NANO, "portrait of Mara", 1)
    assert fresh.status == "generating"


@pytest.mark.asyncio
async def test_retry_rejects_non_failed(orchestrator, project):
    ids = await orchestrator.generate_variants(MARA, ["seedream"], _prompt)

    with pytest.raises(InvalidVariantState):
        await orchestrator.retry_variant(ids[0])


async def _image_status(db, asset_id="char-1"):
    async with db() as session:
        return (await session.get(Character, asset_id)).image_status


@pytest.mark.asyncio
async def test_asset_fails_when_every_variant_fails(orchestrator, gen_client, db, project):
    gen_client.responses[SEEDREAM] = DispatchResult(error="boom")
    gen_client.responses[NANO] = DispatchResult(error="boom")

    await orchestrator.generate_variants(MARA, ["seedream", "nano-banana"], _prompt)

    assert await _image_status(db) == "failed"


@pytest.mark.asyncio
async def test_asset_ready_once_last_variant_settles(orchestrator, gen_client, db, project):
    """Test the asset stays generating until the last sibling settles."""
    gen_client.responses[SEEDREAM] = DispatchResult(error="boom")
    gen_client.responses[NANO] = DispatchResult(job_id="job-nano")

    await orchestrator.generate_variants(MARA, ["seedream", "nano-banana"], _prompt)
    assert await _image_status(db) == "generating"

    await orchestrator.ingest_callback(job_id="job-nano", image_url="https://results.test/b.png")

    assert await _image_status(db) == "ready"


@pytest.mark.asyncio
async def test_retry_marks_failed_asset_generating(orchestrator, gen_client, db, project):
    gen_client.responses[SEEDREAM] = DispatchResult(error="boom")
    ids = await orchestrator.generate_variants(MARA, ["seedream"], _prompt)
    gen_client.responses.clear()

    await orchestrator.retry_variant(ids[0])

    assert await _image_status(db) == "generating"


@pytest.mark.asyncio
async def test_concurrent_retries_create_one_replacement(orchestrator, gen_client, store, project):
    gen_client.responses[SEEDREAM] = DispatchResult(error="boom")
    ids = await orchestrator.generate_variants(MARA, ["seedream"], _prompt)
    gen_client.responses.clear()

    results = await asyncio.gather(
        orchestrator.retry_variant(ids[0]),
        orchestrator.retry_variant(ids[0]),
        return_exceptions=True,
    )

    replacements = [r for r in results if isinstance(r, str)]
    assert len(replacements) == 1
    assert sum(isinstance(r, (InvalidVariantState, VariantNotFound)) for r in results) == 1
    assert [v.id for v in await store.list_variants(MARA)] == replacements
