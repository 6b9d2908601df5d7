from __future__ import annotations
"""Fan-out Orchestrator — one variant per model, dispatched concurrently.

Results arrive on one of two paths:
  fast path   the dispatch call returned the image URL; persisted right away
  callback    the Generation Service POSTs the result later (webhook)

Both paths end in ``resolve_variant``, whose final write only succeeds while
the row is still ``generating``. Whoever loses the race removes the blob it
uploaded and changes nothing.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from atelier.config import get_settings
from atelier.errors import InvalidVariantState, VariantError, VariantNotFound
from atelier.models.variant import ImageVariant, VariantStatus
from atelier.services import asset_gateway
from atelier.services.asset_gateway import AssetRef
from atelier.services.batch import run_batched
from atelier.services.blob_persistence import BlobPersistence
from atelier.services.generation_client import DispatchOptions, GenerationClient
from atelier.services.model_registry import MODEL_REGISTRY, default_aspect_ratio, expand_models
from atelier.services.notifications import Notifier
from atelier.services.variant_store import VariantStore

logger = logging.getLogger(__name__)

PromptBuilder = Callable[[bool], Union[str, Awaitable[str]]]

PERSIST_FAILED_MESSAGE = "Failed to persist generated image"


@dataclass
class ResolveOutcome:
    """What a resolve attempt did to the variant."""
    variant_id: str
    status: str
    changed: bool


class VariantOrchestrator:
    """Creates, dispatches and resolves variants."""

    def __init__(
        self,
        store: VariantStore | None = None,
        client: GenerationClient | None = None,
        persistence: BlobPersistence | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.settings = get_settings()
        self.store = store or VariantStore()
        self.client = client or GenerationClient()
        self.persistence = persistence or BlobPersistence()
        self.notifier = notifier or Notifier(self.store.session_factory)

    # ──────── Fan-out ────────

    async def generate_variants(
        self,
        ref: AssetRef,
        models: list[str],
        prompt_builder: PromptBuilder,
        reference_images: list[str] | None = None,
        aspect_ratio: str | None = None,
    ) -> list[str]:
        """Create one variant per model and dispatch them all.

        Returns the created ids whatever the per-variant outcome; callers
        read each variant's status to see what happened.
        """
        has_refs = bool(reference_images)
        resolved = [MODEL_REGISTRY.resolve(m, has_refs) for m in expand_models(models)]
        if not resolved:
            raise VariantError("At least one model is required")

        prompt = prompt_builder(has_refs)
        if inspect.isawaitable(prompt):
            prompt = await prompt

        base_order = await self.store.max_generation_order(ref) + 1
        variants: list[ImageVariant] = []
        for i, model in enumerate(resolved):
            variants.append(await self.store.create(
                ref,
                model=model,
                prompt=prompt,
                generation_order=base_order + i,
                reference_images=reference_images,
            ))

        async with self.store.session_factory() as session:
            await asset_gateway.mark_generating(session, ref)
            await session.commit()

        options = DispatchOptions(
            aspect_ratio=aspect_ratio or default_aspect_ratio(ref.asset_type, ref.sub_type),
            reference_images=reference_images,
            callback_url=self.settings.WEBHOOK_URL,
        )
        await self.dispatch_all(variants, options)
        logger.info("Fan-out for %s: %d variant(s) %s", ref, len(variants), resolved)
        return [v.id for v in variants]

    async def add_variant(self, ref: AssetRef, model: str, prompt_builder: PromptBuilder,
                          reference_images: list[str] | None = None) -> str:
        """One more variant after the existing ones."""
        ids = await self.generate_variants(ref, [model], prompt_builder, reference_images)
        return ids[0]

    async def retry_variant(self, variant_id: str) -> str:
        """Replace a failed variant with a fresh one using the same model and prompt."""
        variant = await self._get(variant_id)
        if variant.status != VariantStatus.FAILED.value:
            raise InvalidVariantState(
                f"Only failed variants can be retried (variant is {variant.status})"
            )
        ref = AssetRef.of_variant(variant)
        if not await self.store.delete_if_status(variant.id, VariantStatus.FAILED.value):
            raise InvalidVariantState("Variant is no longer failed; it was retried or removed")
        fresh = await self.store.create(
            ref,
            model=variant.model,
            prompt=variant.prompt,
            generation_order=variant.generation_order,
            parent_variant_id=variant.parent_variant_id,
            reference_images=variant.reference_images,
        )
        async with self.store.session_factory() as session:
            await asset_gateway.mark_generating(session, ref)
            await session.commit()
        options = self.options_for(fresh)
        await self.dispatch_all([fresh], options)
        logger.info("Retried variant %s as %s (%s)", variant_id, fresh.id, fresh.model)
        return fresh.id

    def options_for(self, variant: ImageVariant) -> DispatchOptions:
        """Dispatch options reconstructed from a stored variant."""
        refs = variant.reference_images or None
        source = refs[0] if variant.parent_variant_id and refs else None
        return DispatchOptions(
            aspect_ratio=default_aspect_ratio(variant.asset_type, variant.sub_type),
            source_image_url=source,
            reference_images=None if source else refs,
            callback_url=self.settings.WEBHOOK_URL,
        )

    async def dispatch_all(self, variants: list[ImageVariant], options: DispatchOptions) -> None:
        tasks = [
            (lambda v=v: self.dispatch_variant(v, options))
            for v in variants
        ]
        outcomes = await run_batched(
            tasks,
            max_concurrent=len(tasks),
            per_task_timeout=self.settings.GENERATION_TIMEOUT + self.settings.DOWNLOAD_TIMEOUT,
            cooldown=0,
        )
        for variant, outcome in zip(variants, outcomes):
            if not outcome.ok:
                # Remote job may still finish; callback or sweep settles the row.
                logger.warning("Dispatch of variant %s did not settle: %s", variant.id, outcome.error)

    async def dispatch_variant(self, variant: ImageVariant, options: DispatchOptions) -> None:
        """Send one variant to the Generation Service and settle the fast path."""
        ref = AssetRef.of_variant(variant)
        per_variant = DispatchOptions(
            aspect_ratio=options.aspect_ratio,
            source_image_url=options.source_image_url,
            reference_images=options.reference_images,
            variant_id=variant.id,
            callback_url=options.callback_url,
        )
        result = await self.client.dispatch(variant.prompt, variant.model, per_variant)

        if not result.ok:
            changed = await self.store.update_if_status(
                variant.id,
                VariantStatus.GENERATING.value,
                status=VariantStatus.FAILED.value,
                error_message=result.error,
                job_id=result.job_id,
            )
            if changed:
                logger.error("Variant %s failed at dispatch: %s", variant.id, result.error)
                await self.store.settle_asset(ref)
                await self.notifier.variant(ref, variant.id, VariantStatus.FAILED.value)
            return

        if result.job_id:
            await self.store.update_if_status(
                variant.id, VariantStatus.GENERATING.value, job_id=result.job_id,
            )

        if result.image_url:
            await self.resolve_variant(variant.id, image_url=result.image_url, slow=False)

    # ──────── Result ingestion ────────

    async def resolve_variant(
        self,
        variant_id: str,
        image_url: str | None = None,
        error: str | None = None,
        slow: bool = True,
    ) -> ResolveOutcome:
        """Settle a generating variant from a result URL or an error.

        A no-op (``changed=False``) unless the variant is still generating.
        When persistence fails the variant stays generating for the callback
        or the stuck sweep to settle.
        """
        variant = await self._get(variant_id)
        if variant.status != VariantStatus.GENERATING.value:
            logger.info("Variant %s already %s; ignoring result", variant_id, variant.status)
            return ResolveOutcome(variant_id, variant.status, changed=False)

        ref = AssetRef.of_variant(variant)

        if error or not image_url:
            message = (error or "Generation service reported no image")[:500]
            changed = await self.store.update_if_status(
                variant_id,
                VariantStatus.GENERATING.value,
                status=VariantStatus.FAILED.value,
                error_message=message,
                job_id=None,
            )
            if changed:
                logger.warning("Variant %s failed: %s", variant_id, message)
                await self.store.settle_asset(ref)
                await self.notifier.variant(ref, variant_id, VariantStatus.FAILED.value)
                return ResolveOutcome(variant_id, VariantStatus.FAILED.value, changed=True)
            return await self._current(variant_id)

        if slow:
            stored = await self.persistence.persist_with_retry(image_url, ref, variant_id)
        else:
            stored = await self.persistence.persist(image_url, ref, variant_id)

        if stored is None:
            logger.warning("Variant %s left generating: %s", variant_id, PERSIST_FAILED_MESSAGE)
            return ResolveOutcome(variant_id, VariantStatus.GENERATING.value, changed=False)

        won = await self.store.update_if_status(
            variant_id,
            VariantStatus.GENERATING.value,
            status=VariantStatus.READY.value,
            image_url=stored.url,
            storage_path=stored.path,
            error_message=None,
        )
        if not won:
            logger.info("Variant %s settled concurrently; discarding %s", variant_id, stored.path)
            await self.persistence.discard(ref, stored.path)
            return await self._current(variant_id)

        logger.info("Variant %s ready (%s)", variant_id, "slow path" if slow else "fast path")
        await self.store.settle_asset(ref)
        await self.notifier.variant(ref, variant_id, VariantStatus.READY.value)
        return ResolveOutcome(variant_id, VariantStatus.READY.value, changed=True)

    async def ingest_callback(
        self,
        variant_id: str | None = None,
        job_id: str | None = None,
        image_url: str | None = None,
        error: str | None = None,
        slow: bool = True,
    ) -> ResolveOutcome:
        """Webhook entry: locate the variant by id or job handle, then resolve."""
        variant: Optional[ImageVariant] = None
        if variant_id:
            variant = await self.store.get(variant_id)
        if variant is None and job_id:
            variant = await self.store.find_by_job(job_id)
        if variant is None:
            raise VariantNotFound(variant_id or job_id or "")
        return await self.resolve_variant(variant.id, image_url=image_url, error=error, slow=slow)

    # ──────── Helpers ────────

    async def _get(self, variant_id: str) -> ImageVariant:
        variant = await self.store.get(variant_id)
        if variant is None:
            raise VariantNotFound(variant_id)
        return variant

    async def _current(self, variant_id: str) -> ResolveOutcome:
        variant = await self.store.get(variant_id)
        status = variant.status if variant is not None else "deleted"
        return ResolveOutcome(variant_id, status, changed=False)

