"""
Tests for default prompt strategies and Bible reference injection.
"""
import pytest
from sqlalchemy import update

from atelier.models import Character, Location, Prop, Scene
from atelier.services.asset_gateway import AssetRef
from atelier.services.prompts import (
    ANTI_COLLAGE,
    build_generation_inputs,
    collect_reference_images,
    compose_scene_prompt_fallback,
    compose_scene_prompt_short,
)

SCENE = AssetRef("scene", "scene-1")


async def _approve_bible(db):
    async with db() as session:
        await session.execute(update(Location).values(approved_image_url="https://blobs.test/loc.png"))
        await session.execute(update(Character).values(approved_image_url="https://blobs.test/char.png"))
        await session.execute(update(Prop).values(approved_image_url="https://blobs.test/prop.png"))
        await session.commit()


def test_scene_prompt_shapes():
    scene = Scene(action="Mara lifts the lantern", shot_type="wide shot", time_of_day="dawn")

    short = compose_scene_prompt_short(scene, "moody 35mm film")
    fallback = compose_scene_prompt_fallback(scene, "Harbor", ["Mara", "Tom"], "moody 35mm film")

    assert short == f"moody 35mm film. Mara lifts the lantern. wide shot. dawn. {ANTI_COLLAGE}"
    assert fallback == f"moody 35mm film. Harbor. Mara and Tom. Mara lifts the lantern. wide shot. dawn. {ANTI_COLLAGE}"


@pytest.mark.asyncio
async def test_references_in_bible_order(db, project):
    """Test location first, then characters, then props; only approved images."""
    async with db() as session:
        scene = await session.get(Scene, "scene-1")
        assert await collect_reference_images(session, scene) == []

    await _approve_bible(db)

    async with db() as session:
        scene = await session.get(Scene, "scene-1")
        refs = await collect_reference_images(session, scene)
    assert refs == [
        "https://blobs.test/loc.png",
        "https://blobs.test/char.png",
        "https://blobs.test/prop.png",
    ]


@pytest.mark.asyncio
async def test_scene_without_references_uses_fallback(db, project):
    async with db() as session:
        inputs = await build_generation_inputs(session, SCENE)

    assert inputs.reference_images == []
    prompt = inputs.prompt_builder(False)
    assert "Harbor" in prompt
    assert "Mara" in prompt


@pytest.mark.asyncio
async def test_scene_with_references_uses_short_prompt(db, project):
    await _approve_bible(db)

    async with db() as session:
        inputs = await build_generation_inputs(session, SCENE)

    assert len(inputs.reference_images) == 3
    prompt = inputs.prompt_builder(True)
    assert prompt.startswith("moody 35mm film. Mara lifts the lantern")
    assert "Harbor" not in prompt


@pytest.mark.asyncio
async def test_bible_prompts(db, project):
    async with db() as session:
        character = await build_generation_inputs(session, AssetRef("character", "char-1", "full_body"))
        location = await build_generation_inputs(session, AssetRef("location", "loc-1"))
        override = await build_generation_inputs(session, AssetRef("prop", "prop-1"), prompt_override="just this")

    assert character.prompt_builder(False).startswith("red coat, silver hair, full body shot")
    assert "establishing shot, no people" in location.prompt_builder(False)
    assert override.prompt_builder(False) == "just this"
