"""
Tests for stuck-job recovery.
"""
from datetime import timedelta

import pytest

from atelier.models import Location, utcnow
from atelier.services.asset_gateway import AssetRef
from atelier.services.recovery import TIMEOUT_MESSAGE, sweep_stuck

HARBOR = AssetRef("location", "loc-1")
LANTERN = AssetRef("prop", "prop-1")
NANO = "nano-banana-pro-text-to-image"


async def _aged(make_variant, store, ref, minutes, now, model="seedream-4.5-text-to-image", status="generating"):
    variant = await make_variant(ref, model=model, status=status)
    await store.update(variant.id, created_at=now - timedelta(minutes=minutes))
    return variant.id


@pytest.mark.asyncio
async def test_sweep_fails_only_old_generating(make_variant, store):
    """Test a 6-minute-old job is reset while a 4-minute-old one is left alone."""
    now = utcnow()
    old = await _aged(make_variant, store, HARBOR, 6, now)
    young = await _aged(make_variant, store, HARBOR, 4, now)
    done = await _aged(make_variant, store, HARBOR, 30, now, status="ready")

    reset = await sweep_stuck(now=now, store=store)

    assert reset == 1
    swept = await store.get(old)
    assert swept.status == "failed"
    assert swept.error_message == TIMEOUT_MESSAGE
    assert (await store.get(young)).status == "generating"
    assert (await store.get(done)).status == "ready"


@pytest.mark.asyncio
async def test_slow_models_get_longer_threshold(make_variant, store):
    now = utcnow()
    waiting = await _aged(make_variant, store, HARBOR, 7, now, model=NANO)
    abandoned = await _aged(make_variant, store, HARBOR, 11, now, model=NANO)

    assert await sweep_stuck(now=now, store=store) == 1
    assert (await store.get(waiting)).status == "generating"
    assert (await store.get(abandoned)).status == "failed"


@pytest.mark.asyncio
async def test_fixed_age_overrides_model_thresholds(make_variant, store):
    now = utcnow()
    waiting = await _aged(make_variant, store, HARBOR, 7, now, model=NANO)

    assert await sweep_stuck(max_age_minutes=5, now=now, store=store) == 1
    assert (await store.get(waiting)).status == "failed"


@pytest.mark.asyncio
async def test_sweep_scoped_to_key(make_variant, store):
    now = utcnow()
    harbor = await _aged(make_variant, store, HARBOR, 20, now)
    lantern = await _aged(make_variant, store, LANTERN, 20, now)

    assert await sweep_stuck(asset_key=LANTERN, now=now, store=store) == 1
    assert await sweep_stuck(asset_key=LANTERN, max_age_minutes=1, now=now, store=store) == 0
    assert (await store.get(harbor)).status == "generating"
    assert (await store.get(lantern)).status == "failed"


@pytest.mark.asyncio
async def test_swept_variant_ignores_late_result(make_variant, store, orchestrator):
    """Test a result arriving after the sweep does not resurrect the variant."""
    now = utcnow()
    variant_id = await _aged(make_variant, store, HARBOR, 10, now)
    await sweep_stuck(now=now, store=store)

    outcome = await orchestrator.resolve_variant(variant_id, image_url="https://results.test/late.png")

    assert not outcome.changed
    assert (await store.get(variant_id)).status == "failed"


@pytest.mark.asyncio
async def test_sweep_settles_the_asset(orchestrator, store, db, project):
    """Test an asset whose only variant is swept ends up failed."""
    now = utcnow()
    ids = await orchestrator.generate_variants(HARBOR, ["seedream"], lambda has_refs: "foggy harbor")
    await store.update(ids[0], created_at=now - timedelta(minutes=30))

    assert await sweep_stuck(asset_key=HARBOR, now=now, store=store) == 1

    async with db() as session:
        location = await session.get(Location, "loc-1")
    assert location.image_status == "failed"
