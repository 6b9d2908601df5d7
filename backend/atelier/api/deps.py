"""Shared FastAPI dependencies for the variant pipeline routers."""

from __future__ import annotations

from fastapi import HTTPException

from atelier.errors import VariantError
from atelier.services.asset_gateway import AssetRef
from atelier.services.orchestrator import VariantOrchestrator
from atelier.services.selection import SelectionService


def get_orchestrator() -> VariantOrchestrator:
    return VariantOrchestrator()


def get_selection() -> SelectionService:
    return SelectionService()


def to_http(exc: VariantError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=str(exc))


def asset_ref(asset_type: str, asset_id: str, sub_type: str | None = None) -> AssetRef:
    """Build an AssetRef, turning validation errors into HTTP 422."""
    try:
        return AssetRef(asset_type, asset_id, sub_type)
    except VariantError as exc:
        raise to_http(exc) from exc
