"""Domain exceptions raised before any mutation takes place.

Routers translate these into HTTP errors; services never raise them after
they have started writing.
"""

from __future__ import annotations


class VariantError(Exception):
    """Base class for variant pipeline validation failures."""

    status_code = 400


class VariantNotFound(VariantError):
    status_code = 404

    def __init__(self, variant_id: str) -> None:
        super().__init__(f"Variant not found: {variant_id}")
        self.variant_id = variant_id


class AssetNotFound(VariantError):
    status_code = 404

    def __init__(self, asset_type: str, asset_id: str) -> None:
        super().__init__(f"{asset_type.capitalize()} not found: {asset_id}")
        self.asset_type = asset_type
        self.asset_id = asset_id


class InvalidVariantState(VariantError):
    """The variant exists but its current state forbids the operation."""

    status_code = 409


class InvalidAssetRef(VariantError):
    status_code = 422
