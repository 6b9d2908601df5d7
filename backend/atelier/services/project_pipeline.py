from __future__ import annotations
"""Batch entry points: generate one asset, generate a whole project, bulk-approve.

Project-wide generation goes through the Batch Concurrency Controller so the
Generation Service only sees BATCH_MAX_CONCURRENT assets at a time; each
asset still fans out across its models.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select

from atelier.config import get_settings
from atelier.errors import VariantError
from atelier.models.assets import Character, Location, Prop, Scene
from atelier.models.variant import VariantStatus
from atelier.services.asset_gateway import AssetRef
from atelier.services.batch import run_batched
from atelier.services.orchestrator import VariantOrchestrator
from atelier.services.prompts import build_generation_inputs
from atelier.services.selection import SelectionService

logger = logging.getLogger(__name__)

# Character names that describe something other than a person to portray
NON_CHARACTER_KEYWORDS = (
    "silhouette", "shadow", "figure", "body", "corpse", "dead", "crowd",
    "group", "extras", "voice", "narrator", "unknown", "mystery", "masked",
    "hooded",
)

STAGE_BIBLE = "bible"
STAGE_SCENES = "scenes"


def is_non_character(name: str) -> bool:
    lowered = name.lower()
    return any(keyword in lowered for keyword in NON_CHARACTER_KEYWORDS)


@dataclass
class StageReport:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    variant_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "variant_ids": self.variant_ids,
            "errors": self.errors,
        }


@dataclass
class BulkApproveReport:
    selected: list[str] = field(default_factory=list)
    already_selected: int = 0
    no_ready_variant: int = 0
    repaired: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "selected": self.selected,
            "already_selected": self.already_selected,
            "no_ready_variant": self.no_ready_variant,
            "repaired": self.repaired,
            "errors": self.errors,
        }


async def generate_for_asset(
    orchestrator: VariantOrchestrator,
    ref: AssetRef,
    models: list[str] | None = None,
    prompt: str | None = None,
) -> list[str]:
    """Fan out one asset across ``models`` (DEFAULT_MODELS when omitted)."""
    async with orchestrator.store.session_factory() as session:
        inputs = await build_generation_inputs(session, ref, prompt_override=prompt)
    return await orchestrator.generate_variants(
        ref,
        models or get_settings().default_models,
        inputs.prompt_builder,
        inputs.reference_images or None,
    )


async def add_single_variant(
    orchestrator: VariantOrchestrator, ref: AssetRef, model: str, prompt: str | None = None,
) -> str:
    async with orchestrator.store.session_factory() as session:
        inputs = await build_generation_inputs(session, ref, prompt_override=prompt)
    return await orchestrator.add_variant(
        ref, model, inputs.prompt_builder, inputs.reference_images or None,
    )


async def _project_refs(session, project_id: str, stage: str, skip_approved: bool) -> tuple[list[AssetRef], int]:
    refs: list[AssetRef] = []
    skipped = 0
    if stage == STAGE_BIBLE:
        tables = ((Character, "character"), (Location, "location"), (Prop, "prop"))
    elif stage == STAGE_SCENES:
        tables = ((Scene, "scene"),)
    else:
        raise VariantError(f"Unknown generation stage: {stage}")

    for table, asset_type in tables:
        query = select(table).where(table.project_id == project_id)
        if table is Scene:
            query = query.order_by(Scene.sequence_order)
        result = await session.execute(query)
        for asset in result.scalars().all():
            if table is Character and is_non_character(asset.name):
                logger.info("Skipping non-character entity %r", asset.name)
                skipped += 1
                continue
            if skip_approved and asset.approved_image_url:
                skipped += 1
                continue
            refs.append(AssetRef(asset_type, asset.id))
    return refs, skipped


async def generate_project(
    project_id: str,
    stage: str = STAGE_BIBLE,
    models: list[str] | None = None,
    orchestrator: VariantOrchestrator | None = None,
    skip_approved: bool = True,
) -> StageReport:
    """Generate variants for every asset of a project stage.

    ``bible`` covers characters (portrait), locations and props; ``scenes``
    covers scenes, which pick up approved Bible images as references.
    """
    orchestrator = orchestrator or VariantOrchestrator()
    settings = get_settings()

    async with orchestrator.store.session_factory() as session:
        refs, skipped = await _project_refs(session, project_id, stage, skip_approved)

    report = StageReport(total=len(refs), skipped=skipped)
    if not refs:
        logger.info("Project %s stage %s: nothing to generate", project_id, stage)
        return report

    async def _progress(completed: int, total: int) -> None:
        await orchestrator.notifier.progress(project_id, stage, completed, total)

    tasks = [
        (lambda r=r: generate_for_asset(orchestrator, r, models))
        for r in refs
    ]
    logger.info(
        "Project %s stage %s: %d asset(s), batches of %d",
        project_id, stage, len(tasks), settings.BATCH_MAX_CONCURRENT,
    )
    outcomes = await run_batched(
        tasks,
        max_concurrent=settings.BATCH_MAX_CONCURRENT,
        per_task_timeout=settings.BATCH_TASK_TIMEOUT,
        on_batch_complete=_progress,
        cooldown=settings.BATCH_COOLDOWN,
    )

    for ref, outcome in zip(refs, outcomes):
        if outcome.ok:
            report.succeeded += 1
            report.variant_ids.extend(outcome.value)
        else:
            report.failed += 1
            report.errors.append(f"{ref}: {outcome.error_message}")

    logger.info(
        "Project %s stage %s done: %d ok, %d failed, %d skipped",
        project_id, stage, report.succeeded, report.failed, report.skipped,
    )
    return report


async def bulk_approve(
    project_id: str, selection: SelectionService | None = None,
) -> BulkApproveReport:
    """Select the first ready variant for every asset that has no selection."""
    selection = selection or SelectionService()
    store = selection.store
    report = BulkApproveReport()

    refs: list[AssetRef] = []
    async with store.session_factory() as session:
        for table, asset_type in ((Character, "character"), (Location, "location"),
                                  (Prop, "prop"), (Scene, "scene")):
            result = await session.execute(select(table.id).where(table.project_id == project_id))
            refs.extend(AssetRef(asset_type, asset_id) for asset_id in result.scalars().all())

    for ref in refs:
        repair = await selection.resolve_duplicate_selections(ref)
        report.repaired += repair.fixed_count
        if repair.kept_variant_id:
            report.already_selected += 1
            continue
        variants = await store.list_variants(ref)
        candidate = next(
            (v for v in variants if v.status == VariantStatus.READY.value and v.image_url),
            None,
        )
        if candidate is None:
            report.no_ready_variant += 1
            continue
        try:
            await selection.select(candidate.id)
        except VariantError as exc:
            logger.warning("Bulk approve could not select %s for %s: %s", candidate.id, ref, exc)
            report.errors.append(f"{ref}: {exc}")
            continue
        report.selected.append(candidate.id)

    logger.info(
        "Bulk approve for project %s: %d selected, %d already selected, %d without ready variants, %d errors",
        project_id, len(report.selected), report.already_selected, report.no_ready_variant,
        len(report.errors),
    )
    return report
