from __future__ import annotations
"""Variant API endpoints — generation, selection, refinement and cleanup per asset key."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from atelier.api.deps import asset_ref, get_orchestrator, get_selection, to_http
from atelier.errors import VariantError
from atelier.models.variant import VariantStatus
from atelier.schemas.variant import (
    AddVariantRequest,
    AssetKey,
    GenerateVariantsRequest,
    RefineRequest,
    SweepRequest,
    VariantListRead,
    VariantRead,
)
from atelier.services.orchestrator import VariantOrchestrator
from atelier.services.project_pipeline import add_single_variant, generate_for_asset
from atelier.services.recovery import sweep_stuck
from atelier.services.refinement import refine
from atelier.services.selection import SelectionService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("", response_model=VariantListRead)
async def list_variants(
    asset_type: str = Query(...),
    asset_id: str = Query(...),
    sub_type: str | None = Query(None),
    selection: SelectionService = Depends(get_selection),
):
    """All variants of an asset key, in generation order."""
    ref = asset_ref(asset_type, asset_id, sub_type)
    variants = await selection.store.list_variants(ref)
    selected = next((v for v in variants if v.is_selected), None)
    return VariantListRead(
        variants=[VariantRead.model_validate(v) for v in variants],
        selected_variant=VariantRead.model_validate(selected) if selected else None,
        has_approved_image=selected is not None and bool(selected.image_url),
    )


@router.post("/generate")
async def generate_variants(
    req: GenerateVariantsRequest,
    orchestrator: VariantOrchestrator = Depends(get_orchestrator),
):
    """Create one variant per model for an asset and dispatch them."""
    ref = asset_ref(req.asset_type, req.asset_id, req.sub_type)
    try:
        variant_ids = await generate_for_asset(orchestrator, ref, req.models, req.prompt)
    except VariantError as exc:
        raise to_http(exc) from exc
    return {"variant_ids": variant_ids}


@router.post("/add")
async def add_variant(
    req: AddVariantRequest,
    orchestrator: VariantOrchestrator = Depends(get_orchestrator),
):
    ref = asset_ref(req.asset_type, req.asset_id, req.sub_type)
    try:
        variant_id = await add_single_variant(orchestrator, ref, req.model, req.prompt)
    except VariantError as exc:
        raise to_http(exc) from exc
    return {"variant_id": variant_id}


@router.post("/{variant_id}/select", response_model=VariantRead)
async def select_variant(variant_id: str, selection: SelectionService = Depends(get_selection)):
    """Make this the single selected variant of its asset."""
    try:
        return await selection.select(variant_id)
    except VariantError as exc:
        raise to_http(exc) from exc


@router.post("/{variant_id}/unselect", response_model=VariantRead)
async def unselect_variant(variant_id: str, selection: SelectionService = Depends(get_selection)):
    try:
        return await selection.unselect(variant_id)
    except VariantError as exc:
        raise to_http(exc) from exc


@router.post("/{variant_id}/refine")
async def refine_variant(
    variant_id: str,
    req: RefineRequest,
    orchestrator: VariantOrchestrator = Depends(get_orchestrator),
):
    """Derive a new variant from this one via image-to-image generation."""
    try:
        new_id = await refine(orchestrator, variant_id, req.model, req.prompt)
    except VariantError as exc:
        raise to_http(exc) from exc
    return {"variant_id": new_id, "parent_variant_id": variant_id}


@router.post("/{variant_id}/retry")
async def retry_variant(
    variant_id: str,
    orchestrator: VariantOrchestrator = Depends(get_orchestrator),
):
    try:
        new_id = await orchestrator.retry_variant(variant_id)
    except VariantError as exc:
        raise to_http(exc) from exc
    return {"variant_id": new_id, "replaced": variant_id}


@router.delete("/{variant_id}")
async def delete_variant(
    variant_id: str,
    force: bool = Query(False),
    selection: SelectionService = Depends(get_selection),
):
    """Delete a variant; ``force`` also removes a selected one and resets the asset."""
    try:
        if force:
            await selection.force_delete(variant_id)
        else:
            await selection.delete(variant_id)
    except VariantError as exc:
        raise to_http(exc) from exc
    return {"deleted": variant_id}


@router.post("/delete-failed")
async def delete_failed_variants(key: AssetKey, selection: SelectionService = Depends(get_selection)):
    ref = asset_ref(key.asset_type, key.asset_id, key.sub_type)
    return {"deleted": await selection.delete_failed(ref)}


@router.post("/delete-unselected")
async def delete_unselected_variants(key: AssetKey, selection: SelectionService = Depends(get_selection)):
    ref = asset_ref(key.asset_type, key.asset_id, key.sub_type)
    return {"deleted": await selection.delete_unselected(ref)}


@router.post("/repair-selection")
async def repair_selection(key: AssetKey, selection: SelectionService = Depends(get_selection)):
    """Collapse duplicate selections at a key onto the most recent one."""
    ref = asset_ref(key.asset_type, key.asset_id, key.sub_type)
    result = await selection.resolve_duplicate_selections(ref)
    return {"fixed_count": result.fixed_count, "kept_variant_id": result.kept_variant_id}


@router.post("/approve")
async def approve_asset(key: AssetKey, selection: SelectionService = Depends(get_selection)):
    ref = asset_ref(key.asset_type, key.asset_id, key.sub_type)
    try:
        await selection.approve(ref)
    except VariantError as exc:
        raise to_http(exc) from exc
    return {"approved": str(ref), "status": "approved"}


@router.post("/sweep")
async def sweep_stuck_variants(req: SweepRequest, selection: SelectionService = Depends(get_selection)):
    """Fail variants stuck in generating, for one key or globally."""
    ref = None
    if req.asset_type or req.asset_id:
        if not (req.asset_type and req.asset_id):
            raise HTTPException(status_code=400, detail="asset_type and asset_id go together")
        ref = asset_ref(req.asset_type, req.asset_id, req.sub_type)
    reset = await sweep_stuck(ref, req.max_age_minutes, store=selection.store)
    return {"reset": reset, "status": VariantStatus.FAILED.value if reset else "clean"}
