"""Narrow gateway onto the externally owned asset records.

``AssetRef`` is the tagged reference every pipeline operation is keyed by.
The write helpers only ever touch the approval slice and take the caller's
session so they join the caller's transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.errors import AssetNotFound, InvalidAssetRef
from atelier.models.assets import Character, ImageStatus, Location, Prop, Scene
from atelier.models.variant import AssetType, ShotType, utcnow

logger = logging.getLogger(__name__)

ASSET_MODELS = {
    AssetType.CHARACTER.value: Character,
    AssetType.LOCATION.value: Location,
    AssetType.PROP.value: Prop,
    AssetType.SCENE.value: Scene,
}

_SHOT_TYPES = {s.value for s in ShotType}


@dataclass(frozen=True)
class AssetRef:
    """Reference to the owner of a set of variants.

    ``sub_type`` is only legal for characters and defaults to ``portrait``.
    """

    asset_type: str
    asset_id: str
    sub_type: str | None = None

    def __post_init__(self) -> None:
        asset_type = getattr(self.asset_type, "value", self.asset_type)
        object.__setattr__(self, "asset_type", asset_type)
        if asset_type not in ASSET_MODELS:
            raise InvalidAssetRef(f"Unknown asset type: {asset_type}")
        if not self.asset_id:
            raise InvalidAssetRef("asset_id is required")
        if asset_type == AssetType.CHARACTER.value:
            sub_type = self.sub_type or ShotType.PORTRAIT.value
            if sub_type not in _SHOT_TYPES:
                raise InvalidAssetRef(f"Unknown character shot type: {sub_type}")
            object.__setattr__(self, "sub_type", sub_type)
        elif self.sub_type is not None:
            raise InvalidAssetRef(f"{asset_type} assets do not take a sub_type")

    @classmethod
    def of_variant(cls, variant) -> AssetRef:
        return cls(variant.asset_type, variant.asset_id, variant.sub_type)

    @property
    def fills_main_slice(self) -> bool:
        """Whether a selection at this key writes the asset's approved image."""
        return self.sub_type in (None, ShotType.PORTRAIT.value)

    def __str__(self) -> str:
        suffix = f"/{self.sub_type}" if self.sub_type else ""
        return f"{self.asset_type}:{self.asset_id}{suffix}"


async def get_asset(session: AsyncSession, ref: AssetRef):
    """Load the asset record or raise ``AssetNotFound``."""
    asset = await session.get(ASSET_MODELS[ref.asset_type], ref.asset_id)
    if asset is None:
        raise AssetNotFound(ref.asset_type, ref.asset_id)
    return asset


async def apply_selection(
    session: AsyncSession, ref: AssetRef, image_url: str, storage_path: str, model: str,
) -> None:
    """Copy a selected variant's image onto the asset."""
    if ref.fills_main_slice:
        table = ASSET_MODELS[ref.asset_type]
        await session.execute(
            update(table)
            .where(table.id == ref.asset_id)
            .values(
                approved_image_url=image_url,
                approved_image_path=storage_path,
                image_status=ImageStatus.READY.value,
                selected_model=model,
            )
        )
        return
    await _set_shot_image(session, ref, {"url": image_url, "path": storage_path, "model": model})


async def clear_selection(session: AsyncSession, ref: AssetRef) -> None:
    """Reset the approved image of the asset (or character shot) to pending."""
    if ref.fills_main_slice:
        table = ASSET_MODELS[ref.asset_type]
        await session.execute(
            update(table)
            .where(table.id == ref.asset_id)
            .values(
                approved_image_url=None,
                approved_image_path=None,
                approved_at=None,
                image_status=ImageStatus.PENDING.value,
                selected_model=None,
            )
        )
        return
    await _set_shot_image(session, ref, None)


async def mark_approved(session: AsyncSession, ref: AssetRef) -> None:
    table = ASSET_MODELS[ref.asset_type]
    await session.execute(
        update(table)
        .where(table.id == ref.asset_id)
        .values(image_status=ImageStatus.APPROVED.value, approved_at=utcnow())
    )


async def mark_generating(session: AsyncSession, ref: AssetRef) -> None:
    """Flag an asset without an approved image as generating."""
    if not ref.fills_main_slice:
        return
    table = ASSET_MODELS[ref.asset_type]
    await session.execute(
        update(table)
        .where(table.id == ref.asset_id, table.approved_image_url.is_(None))
        .values(image_status=ImageStatus.GENERATING.value)
    )


async def settle_generation(session: AsyncSession, ref: AssetRef, any_ready: bool) -> str | None:
    """Leave ``generating`` for ``ready`` or ``failed`` once every variant has settled.

    Assets that already carry an approved image are left alone.
    """
    if not ref.fills_main_slice:
        return None
    status = ImageStatus.READY.value if any_ready else ImageStatus.FAILED.value
    table = ASSET_MODELS[ref.asset_type]
    result = await session.execute(
        update(table)
        .where(
            table.id == ref.asset_id,
            table.approved_image_url.is_(None),
            table.image_status == ImageStatus.GENERATING.value,
        )
        .values(image_status=status)
    )
    if result.rowcount == 0:
        return None
    logger.info("%s settled as %s", ref, status)
    return status


async def _set_shot_image(session: AsyncSession, ref: AssetRef, value: dict | None) -> None:
    character = await get_asset(session, ref)
    shots = dict(character.shot_images or {})
    if value is None:
        shots.pop(ref.sub_type, None)
    else:
        shots[ref.sub_type] = value
    await session.execute(
        update(Character).where(Character.id == ref.asset_id).values(shot_images=shots)
    )
