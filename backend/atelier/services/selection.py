from __future__ import annotations
"""Selection State Machine — at most one selected variant per asset key.

    ready ──select──▶ selected ──unselect──▶ ready
    failed ──retry (delete + recreate)──▶ generating

``select`` deselects the siblings and selects the target in one transaction
with the key's rows locked. ``resolve_duplicate_selections`` repairs a key
that still ends up with several selected rows (e.g. rows written by an older
non-transactional client).
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import or_, select, update

from atelier.errors import InvalidAssetRef, InvalidVariantState, VariantNotFound
from atelier.models.variant import ImageVariant, VariantStatus, utcnow
from atelier.services import asset_gateway
from atelier.services.asset_gateway import AssetRef
from atelier.services.blob_persistence import BlobPersistence
from atelier.services.notifications import Notifier
from atelier.services.variant_store import VariantStore, key_filter

logger = logging.getLogger(__name__)

SELECTABLE = (VariantStatus.READY.value, VariantStatus.SELECTED.value)

_is_marked_selected = or_(
    ImageVariant.is_selected.is_(True),
    ImageVariant.status == VariantStatus.SELECTED.value,
)


@dataclass
class RepairResult:
    fixed_count: int
    kept_variant_id: Optional[str]


class SelectionService:
    """Select, unselect, delete and repair variants at an asset key."""

    def __init__(
        self,
        store: VariantStore | None = None,
        persistence: BlobPersistence | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.store = store or VariantStore()
        self.persistence = persistence or BlobPersistence()
        self.notifier = notifier or Notifier(self.store.session_factory)

    async def select(self, variant_id: str) -> ImageVariant:
        """Make ``variant_id`` the single selected variant of its key.

        Copies the image onto the owning asset. Raises before mutating
        anything when the variant is missing or not ready.
        """
        async with self.store.session_factory() as session:
            async with session.begin():
                variant = await session.get(ImageVariant, variant_id, with_for_update=True)
                if variant is None:
                    raise VariantNotFound(variant_id)
                if variant.status not in SELECTABLE:
                    raise InvalidVariantState(
                        f"Variant is {variant.status}, not ready to select"
                    )
                ref = AssetRef.of_variant(variant)
                await session.execute(
                    select(ImageVariant.id).where(key_filter(ref)).with_for_update()
                )

                now = utcnow()
                await session.execute(
                    update(ImageVariant)
                    .where(key_filter(ref), ImageVariant.id != variant_id, _is_marked_selected)
                    .values(is_selected=False, status=VariantStatus.READY.value, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                await session.execute(
                    update(ImageVariant)
                    .where(ImageVariant.id == variant_id)
                    .values(is_selected=True, status=VariantStatus.SELECTED.value, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                await asset_gateway.apply_selection(
                    session, ref, variant.image_url, variant.storage_path, variant.model,
                )

        logger.info("Selected variant %s for %s", variant_id, ref)
        await self.notifier.selection(ref, variant_id)
        return await self.store.get(variant_id)

    async def unselect(self, variant_id: str) -> ImageVariant:
        async with self.store.session_factory() as session:
            async with session.begin():
                variant = await session.get(ImageVariant, variant_id, with_for_update=True)
                if variant is None:
                    raise VariantNotFound(variant_id)
                if not variant.is_selected:
                    raise InvalidVariantState("Variant is not selected")
                ref = AssetRef.of_variant(variant)
                await session.execute(
                    update(ImageVariant)
                    .where(ImageVariant.id == variant_id)
                    .values(is_selected=False, status=VariantStatus.READY.value, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                await asset_gateway.clear_selection(session, ref)

        logger.info("Unselected variant %s for %s", variant_id, ref)
        await self.notifier.selection(ref, None)
        return await self.store.get(variant_id)

    async def resolve_duplicate_selections(self, ref: AssetRef) -> RepairResult:
        """Keep the most recently updated selected variant, revert the others."""
        async with self.store.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(ImageVariant)
                    .where(key_filter(ref), _is_marked_selected)
                    .order_by(ImageVariant.updated_at.desc(), ImageVariant.id.desc())
                    .with_for_update()
                )
                selected = list(result.scalars().all())
                if not selected:
                    return RepairResult(0, None)

                kept, extras = selected[0], selected[1:]
                if extras:
                    await session.execute(
                        update(ImageVariant)
                        .where(ImageVariant.id.in_([v.id for v in extras]))
                        .values(is_selected=False, status=VariantStatus.READY.value, updated_at=utcnow())
                        .execution_options(synchronize_session=False)
                    )
                if not kept.is_selected or kept.status != VariantStatus.SELECTED.value:
                    await session.execute(
                        update(ImageVariant)
                        .where(ImageVariant.id == kept.id)
                        .values(is_selected=True, status=VariantStatus.SELECTED.value)
                        .execution_options(synchronize_session=False)
                    )
                if extras:
                    await asset_gateway.apply_selection(
                        session, ref, kept.image_url, kept.storage_path, kept.model,
                    )

        if extras:
            logger.warning(
                "Repaired %d duplicate selection(s) for %s; kept %s", len(extras), ref, kept.id,
            )
        return RepairResult(len(extras), kept.id)

    async def delete(self, variant_id: str) -> None:
        """Delete a variant that is not selected; blob removal is best-effort.

        The row is removed only while it is still unselected, so a selection
        committed after the caller looked keeps its variant and image.
        """
        variant = await self.store.get(variant_id)
        if variant is None:
            raise VariantNotFound(variant_id)
        if not await self.store.delete_if_unselected(variant_id):
            if await self.store.get(variant_id) is None:
                raise VariantNotFound(variant_id)
            raise InvalidVariantState(
                "Cannot delete the selected variant. Select a different variant first."
            )
        await self._discard(variant)

    async def force_delete(self, variant_id: str) -> None:
        """Delete even a selected variant, resetting the asset's approved image."""
        variant = await self.store.get(variant_id)
        if variant is None:
            raise VariantNotFound(variant_id)
        was_selected = variant.is_selected or variant.status == VariantStatus.SELECTED.value
        if not await self.store.delete(variant_id):
            raise VariantNotFound(variant_id)
        await self._discard(variant)
        if was_selected:
            ref = AssetRef.of_variant(variant)
            async with self.store.session_factory() as session:
                await asset_gateway.clear_selection(session, ref)
                await session.commit()
            logger.warning("Force-deleted selected variant %s; %s reset to pending", variant_id, ref)
            await self.notifier.selection(ref, None)

    async def delete_failed(self, ref: AssetRef) -> int:
        variants = await self.store.list_variants(ref)
        removed = 0
        for variant in variants:
            if variant.status != VariantStatus.FAILED.value:
                continue
            if await self.store.delete_if_status(variant.id, VariantStatus.FAILED.value):
                await self._discard(variant)
                removed += 1
        return removed

    async def delete_unselected(self, ref: AssetRef) -> int:
        variants = await self.store.list_variants(ref)
        removed = 0
        for variant in variants:
            if variant.is_selected or variant.status == VariantStatus.SELECTED.value:
                continue
            if await self.store.delete_if_unselected(variant.id):
                await self._discard(variant)
                removed += 1
        return removed

    async def approve(self, ref: AssetRef) -> None:
        """Mark the asset approved; it must have a selected variant."""
        if not ref.fills_main_slice:
            raise InvalidAssetRef("Only the primary image of an asset can be approved")
        async with self.store.session_factory() as session:
            result = await session.execute(
                select(ImageVariant.id).where(key_filter(ref), ImageVariant.is_selected.is_(True)).limit(1)
            )
            if result.scalar() is None:
                raise InvalidVariantState("Asset has no selected variant")
            await asset_gateway.mark_approved(session, ref)
            await session.commit()
        logger.info("Approved %s", ref)

    async def _discard(self, variant: ImageVariant) -> None:
        """Remove a deleted row's blob; only ever called once the row is gone."""
        await self.persistence.discard(AssetRef.of_variant(variant), variant.storage_path)
        logger.info("Deleted variant %s (%s)", variant.id, variant.status)
