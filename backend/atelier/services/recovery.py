from __future__ import annotations
"""Stuck-Job Recovery — fail variants that never received a result.

A variant is stuck when it is still ``generating`` after its model's stuck
threshold (STUCK_MAX_AGE_MINUTES unless the registry says otherwise). Swept
variants become ``failed`` so the user can retry them. Runs on demand, from
Celery beat and once at startup.
"""

import logging
from datetime import datetime, timedelta

from atelier.config import get_settings
from atelier.models.variant import VariantStatus, utcnow
from atelier.services.asset_gateway import AssetRef
from atelier.services.model_registry import MODEL_REGISTRY
from atelier.services.variant_store import VariantStore

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Generation timed out - automatically reset"


async def sweep_stuck(
    asset_key: AssetRef | None = None,
    max_age_minutes: int | None = None,
    now: datetime | None = None,
    store: VariantStore | None = None,
) -> int:
    """Mark stale ``generating`` variants as failed.

    Args:
        asset_key: limit the sweep to one key; ``None`` sweeps everything.
        max_age_minutes: fixed threshold; ``None`` uses per-model thresholds.
        now: reference time (naive UTC), mainly for tests.

    Returns:
        Number of variants reset.
    """
    store = store or VariantStore()
    now = now or utcnow()
    default = get_settings().STUCK_MAX_AGE_MINUTES

    def threshold_for(model: str) -> int:
        if max_age_minutes is not None:
            return max_age_minutes
        return MODEL_REGISTRY.stuck_threshold(model, default)

    if max_age_minutes is not None:
        shortest = max_age_minutes
    else:
        shortest = min(
            [default] + [MODEL_REGISTRY.stuck_threshold(m.model, default) for m in MODEL_REGISTRY.list_models()]
        )
    candidates = await store.list_stuck(now - timedelta(minutes=shortest), asset_key)

    reset = 0
    touched: set[AssetRef] = set()
    for variant in candidates:
        if variant.created_at >= now - timedelta(minutes=threshold_for(variant.model)):
            continue
        if await store.update_if_status(
            variant.id,
            VariantStatus.GENERATING.value,
            status=VariantStatus.FAILED.value,
            error_message=TIMEOUT_MESSAGE,
            updated_at=now,
        ):
            reset += 1
            touched.add(AssetRef.of_variant(variant))

    for ref in touched:
        await store.settle_asset(ref)

    if reset:
        logger.warning(
            "Stuck sweep reset %d variant(s) to failed%s",
            reset, f" for {asset_key}" if asset_key else "",
        )
    else:
        logger.debug("Stuck sweep found nothing")
    return reset
