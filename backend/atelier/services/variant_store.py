from __future__ import annotations
"""Variant Store — persistence of ImageVariant rows.

Every mutation is a targeted ``UPDATE ... WHERE`` so concurrent writers
(fast path, webhook, sweep) never overwrite each other's columns. Each call
opens its own short session; callers that need a transaction spanning several
statements (selection) use ``key_filter`` with their own session.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from atelier.models.variant import ImageVariant, VariantStatus, utcnow
from atelier.services import asset_gateway
from atelier.services.asset_gateway import AssetRef

logger = logging.getLogger(__name__)


def key_filter(ref: AssetRef):
    """WHERE clause matching every variant at an asset key (null-aware sub_type)."""
    sub_type_clause = (
        ImageVariant.sub_type.is_(None)
        if ref.sub_type is None
        else ImageVariant.sub_type == ref.sub_type
    )
    return and_(
        ImageVariant.asset_type == ref.asset_type,
        ImageVariant.asset_id == ref.asset_id,
        sub_type_clause,
    )


def _ready_guard(fields: dict[str, Any]):
    """Extra WHERE clauses so no row becomes ready without durable image fields."""
    if fields.get("status") != VariantStatus.READY.value:
        return []
    if "image_url" in fields or "storage_path" in fields:
        if not fields.get("image_url") or not fields.get("storage_path"):
            raise ValueError("A ready variant needs a non-empty image_url and storage_path")
        return []
    return [ImageVariant.image_url != "", ImageVariant.storage_path != ""]


class VariantStore:
    """CRUD and conditional updates over ``image_variants``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        if session_factory is None:
            from atelier.database import async_session_factory
            session_factory = async_session_factory
        self.session_factory = session_factory

    # ──────── Reads ────────

    async def get(self, variant_id: str) -> Optional[ImageVariant]:
        async with self.session_factory() as session:
            return await session.get(ImageVariant, variant_id)

    async def find_by_job(self, job_id: str) -> Optional[ImageVariant]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ImageVariant).where(ImageVariant.job_id == job_id).limit(1)
            )
            return result.scalars().first()

    async def list_variants(self, ref: AssetRef) -> list[ImageVariant]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ImageVariant)
                .where(key_filter(ref))
                .order_by(ImageVariant.generation_order, ImageVariant.created_at)
            )
            return list(result.scalars().all())

    async def max_generation_order(self, ref: AssetRef) -> int:
        """Highest generation_order at the key, -1 when there are none."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.max(ImageVariant.generation_order)).where(key_filter(ref))
            )
            value = result.scalar()
            return -1 if value is None else int(value)

    async def list_stuck(
        self, created_before: datetime, ref: AssetRef | None = None,
    ) -> list[ImageVariant]:
        query = select(ImageVariant).where(
            ImageVariant.status == VariantStatus.GENERATING.value,
            ImageVariant.created_at < created_before,
        )
        if ref is not None:
            query = query.where(key_filter(ref))
        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    # ──────── Writes ────────

    async def create(
        self,
        ref: AssetRef,
        model: str,
        prompt: str,
        generation_order: int,
        parent_variant_id: str | None = None,
        reference_images: list[str] | None = None,
    ) -> ImageVariant:
        now = utcnow()
        variant = ImageVariant(
            asset_type=ref.asset_type,
            asset_id=ref.asset_id,
            sub_type=ref.sub_type,
            model=model,
            prompt=prompt,
            image_url="",
            storage_path="",
            status=VariantStatus.GENERATING.value,
            is_selected=False,
            generation_order=generation_order,
            parent_variant_id=parent_variant_id,
            reference_images=reference_images or None,
            created_at=now,
            updated_at=now,
        )
        async with self.session_factory() as session:
            session.add(variant)
            await session.commit()
        logger.debug("Created variant %s (%s, %s)", variant.id, ref, model)
        return variant

    async def update(self, variant_id: str, **fields: Any) -> bool:
        """Unconditional targeted update. Returns whether a row changed."""
        return await self._update([ImageVariant.id == variant_id], fields)

    async def update_if_status(self, variant_id: str, expected: str, **fields: Any) -> bool:
        """Update only while the row is still in ``expected`` status."""
        return await self._update(
            [ImageVariant.id == variant_id, ImageVariant.status == expected], fields,
        )

    async def delete(self, variant_id: str) -> bool:
        return await self._delete([ImageVariant.id == variant_id])

    async def delete_if_status(self, variant_id: str, expected: str) -> bool:
        """Delete only while the row is still in ``expected`` status."""
        return await self._delete([ImageVariant.id == variant_id, ImageVariant.status == expected])

    async def delete_if_unselected(self, variant_id: str) -> bool:
        """Delete unless the row is (or has just become) the selected variant."""
        return await self._delete([
            ImageVariant.id == variant_id,
            ImageVariant.is_selected.is_(False),
            ImageVariant.status != VariantStatus.SELECTED.value,
        ])

    async def settle_asset(self, ref: AssetRef) -> Optional[str]:
        """Move the asset off ``generating`` once nothing at the key still is.

        Returns the image status written, or ``None`` while a variant is
        still generating.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(ImageVariant.status).where(key_filter(ref)).distinct()
            )
            statuses = set(result.scalars().all())
            if VariantStatus.GENERATING.value in statuses:
                return None
            any_ready = bool(statuses & {VariantStatus.READY.value, VariantStatus.SELECTED.value})
            settled = await asset_gateway.settle_generation(session, ref, any_ready)
            await session.commit()
        return settled

    async def _delete(self, where: list) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(delete(ImageVariant).where(*where))
            await session.commit()
            return result.rowcount > 0

    async def _update(self, where: list, fields: dict[str, Any]) -> bool:
        clauses = where + _ready_guard(fields)
        values = dict(fields)
        values.setdefault("updated_at", utcnow())
        async with self.session_factory() as session:
            result = await session.execute(
                update(ImageVariant).where(*clauses).values(**values)
            )
            await session.commit()
            return result.rowcount > 0
