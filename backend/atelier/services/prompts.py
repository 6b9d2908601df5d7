"""Default prompt strategies per asset kind, plus Bible reference injection.

Scene prompts come in two shapes. When approved Bible images are injected as
references the prompt stays short (the images carry identity); without them
the fallback prompt names the location and characters explicitly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.models.assets import Character, Location, Prop, Scene
from atelier.models.project import Project
from atelier.services.asset_gateway import AssetRef, get_asset

logger = logging.getLogger(__name__)

ANTI_COLLAGE = (
    "Single cohesive cinematic frame, no collage, no multiple panels, "
    "no split screen, no storyboard"
)

SHOT_PROMPTS = {
    "portrait": "head and shoulders portrait, facing camera, neutral background",
    "three_quarter": "three-quarter view, waist up, neutral background",
    "full_body": "full body shot, standing, head to toe, neutral background",
}


@dataclass
class GenerationInputs:
    """Everything the orchestrator needs besides the model list."""
    prompt_builder: Callable[[bool], str]
    reference_images: list[str] = field(default_factory=list)


def _join(parts: list[str | None], sep: str = ", ") -> str:
    return sep.join(p.strip() for p in parts if p and p.strip())


def character_prompt(character: Character, shot_type: str, style: str | None = None) -> str:
    identity = character.visual_dna or character.description or character.name
    return _join([identity, SHOT_PROMPTS.get(shot_type, SHOT_PROMPTS["portrait"]), style])


def location_prompt(location: Location, style: str | None = None) -> str:
    body = location.prompt or location.description or location.name
    return _join([body, "establishing shot, no people", style])


def prop_prompt(prop: Prop, style: str | None = None) -> str:
    body = prop.prompt or prop.description or prop.name
    return _join([body, "isolated object, studio lighting, plain background", style])


def compose_scene_prompt_short(scene: Scene, style: str | None = None) -> str:
    return _join(
        [
            style,
            scene.action,
            scene.shot_type,
            scene.wardrobe,
            scene.composition,
            scene.atmosphere,
            scene.time_of_day,
            ANTI_COLLAGE,
        ],
        sep=". ",
    )


def compose_scene_prompt_fallback(
    scene: Scene,
    location_name: str | None,
    character_names: list[str],
    style: str | None = None,
) -> str:
    return _join(
        [
            style,
            location_name,
            " and ".join(character_names) if character_names else None,
            scene.action,
            scene.shot_type,
            scene.time_of_day,
            ANTI_COLLAGE,
        ],
        sep=". ",
    )


async def collect_reference_images(session: AsyncSession, scene: Scene) -> list[str]:
    """Approved Bible images for a scene: location first, then characters, then props."""
    refs: list[str] = []
    if scene.location_id:
        location = await session.get(Location, scene.location_id)
        if location is not None and location.approved_image_url:
            refs.append(location.approved_image_url)
    for model, ids in ((Character, scene.character_ids), (Prop, scene.prop_ids)):
        if not ids:
            continue
        result = await session.execute(select(model).where(model.id.in_(ids)))
        by_id = {row.id: row for row in result.scalars().all()}
        for asset_id in ids:
            row = by_id.get(asset_id)
            if row is not None and row.approved_image_url:
                refs.append(row.approved_image_url)
    return refs


async def _scene_names(session: AsyncSession, scene: Scene) -> tuple[str | None, list[str]]:
    location_name = None
    if scene.location_id:
        location = await session.get(Location, scene.location_id)
        location_name = location.name if location is not None else None
    names: list[str] = []
    if scene.character_ids:
        result = await session.execute(select(Character).where(Character.id.in_(scene.character_ids)))
        by_id = {c.id: c.name for c in result.scalars().all()}
        names = [by_id[cid] for cid in scene.character_ids if cid in by_id]
    return location_name, names


async def build_generation_inputs(
    session: AsyncSession, ref: AssetRef, prompt_override: str | None = None,
) -> GenerationInputs:
    """Prompt builder and reference images for an asset.

    Raises ``AssetNotFound`` when the asset does not exist.
    """
    asset = await get_asset(session, ref)
    project = await session.get(Project, asset.project_id)
    style = project.visual_style if project is not None else None

    if prompt_override:
        return GenerationInputs(lambda _has_refs: prompt_override)

    if ref.asset_type == "character":
        prompt = character_prompt(asset, ref.sub_type, style)
        return GenerationInputs(lambda _has_refs: prompt)
    if ref.asset_type == "location":
        prompt = location_prompt(asset, style)
        return GenerationInputs(lambda _has_refs: prompt)
    if ref.asset_type == "prop":
        prompt = prop_prompt(asset, style)
        return GenerationInputs(lambda _has_refs: prompt)

    refs = await collect_reference_images(session, asset)
    if asset.prompt_visual:
        visual = _join([asset.prompt_visual, ANTI_COLLAGE], sep=". ")
        return GenerationInputs(lambda _has_refs: visual, refs)

    short = compose_scene_prompt_short(asset, style)
    location_name, character_names = await _scene_names(session, asset)
    fallback = compose_scene_prompt_fallback(asset, location_name, character_names, style)
    logger.debug("Scene %s: %d reference image(s)", asset.id, len(refs))
    return GenerationInputs(lambda has_refs: short if has_refs else fallback, refs)
