from __future__ import annotations
"""Inbound callback from the Generation Service.

The handler only validates and locates the variant; the slow persistence
runs in a Celery task unless INGEST_CALLBACKS_INLINE is set. Deliveries for
variants that are no longer generating are acknowledged and ignored.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError

from atelier.api.deps import get_orchestrator, to_http
from atelier.config import get_settings
from atelier.errors import VariantError
from atelier.models.variant import VariantStatus
from atelier.schemas.variant import GenerationCallback
from atelier.services.orchestrator import VariantOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/generation")
async def generation_callback(
    request: Request,
    orchestrator: VariantOrchestrator = Depends(get_orchestrator),
):
    """Receive a finished (or failed) generation job."""
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if isinstance(body, list):
        body = body[0] if body else {}
    try:
        payload = GenerationCallback.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    if not payload.variant_id and not payload.job_id:
        raise HTTPException(status_code=400, detail="variant_id is required")

    variant = None
    if payload.variant_id:
        variant = await orchestrator.store.get(payload.variant_id)
    if variant is None and payload.job_id:
        variant = await orchestrator.store.find_by_job(payload.job_id)
    if variant is None:
        raise HTTPException(status_code=404, detail="Variant not found")

    if variant.status != VariantStatus.GENERATING.value:
        logger.info("Callback for variant %s ignored (already %s)", variant.id, variant.status)
        return {"variant_id": variant.id, "status": variant.status, "ignored": True}

    if get_settings().INGEST_CALLBACKS_INLINE:
        try:
            outcome = await orchestrator.resolve_variant(
                variant.id, image_url=payload.image_url, error=payload.failure,
            )
        except VariantError as exc:
            raise to_http(exc) from exc
        return {"variant_id": variant.id, "status": outcome.status, "ignored": not outcome.changed}

    from atelier.tasks.variant_tasks import ingest_generation_result

    ingest_generation_result.delay(variant.id, payload.image_url, payload.failure)
    return {"variant_id": variant.id, "status": "accepted", "ignored": False}
