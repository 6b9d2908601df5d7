"""Progress and status notifications for the variant pipeline.

Resolves the owning project of an asset (channels are per project) and hands
the message to the Redis publisher on a worker thread. Every method is
best-effort.
"""

from __future__ import annotations

import asyncio
import logging

from atelier.services import pubsub
from atelier.services.asset_gateway import ASSET_MODELS, AssetRef

logger = logging.getLogger(__name__)


class Notifier:
    """Publishes pipeline events to the project's WebSocket channel."""

    def __init__(self, session_factory=None) -> None:
        if session_factory is None:
            from atelier.database import async_session_factory
            session_factory = async_session_factory
        self.session_factory = session_factory

    async def _project_id(self, ref: AssetRef) -> str | None:
        async with self.session_factory() as session:
            asset = await session.get(ASSET_MODELS[ref.asset_type], ref.asset_id)
            return asset.project_id if asset is not None else None

    async def variant(self, ref: AssetRef, variant_id: str, status: str) -> None:
        try:
            project_id = await self._project_id(ref)
            if project_id:
                await asyncio.to_thread(
                    pubsub.publish_variant_update,
                    project_id, ref.asset_type, ref.asset_id, variant_id, status,
                )
        except Exception:
            logger.warning("Variant notification failed for %s", variant_id, exc_info=True)

    async def selection(self, ref: AssetRef, variant_id: str | None) -> None:
        try:
            project_id = await self._project_id(ref)
            if project_id:
                await asyncio.to_thread(
                    pubsub.publish_selection_update,
                    project_id, ref.asset_type, ref.asset_id, variant_id,
                )
        except Exception:
            logger.warning("Selection notification failed for %s", ref, exc_info=True)

    async def progress(self, project_id: str, stage: str, completed: int, total: int) -> None:
        await asyncio.to_thread(pubsub.publish_batch_progress, project_id, stage, completed, total)
