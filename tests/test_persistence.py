from __future__ import annotations

import pytest

from mangaforge.pipeline import ChapterRecord, InMemoryChapterRepository, YamlChapterRepository, chapter_key
from mangaforge.story_generation import Entity, EntityAngle, EntityKind, RenderedPanel


def _record() -> ChapterRecord:
    return ChapterRecord(
        story_id="lantern",
        chapter_number=3,
        title="Storm",
        narrative="Rain falls.",
        panels=[
            RenderedPanel(image_url="https://1.png", text="Run!", order=1, seed=4, refined=True),
            RenderedPanel(image_url="https://2.png", text="", order=2, description="Quiet street."),
        ],
    )


def test_chapter_key_is_zero_padded():
    assert chapter_key("lantern", 3) == "lantern/chapter-03"


@pytest.mark.asyncio
async def test_yaml_repository_round_trip(tmp_path):
    repository = YamlChapterRepository(tmp_path)

    key = await repository.create_chapter(_record())

    assert key == "lantern/chapter-03"
    assert (tmp_path / "lantern" / "chapter-03.yaml").exists()
    loaded = repository.load_chapter("lantern", 3)
    assert loaded == _record()


@pytest.mark.asyncio
async def test_yaml_repository_upserts_characters(tmp_path):
    repository = YamlChapterRepository(tmp_path)
    first = Entity(kind=EntityKind.CHARACTER, name="Aiko", description="courier", role="protagonist")
    updated = Entity(
        kind=EntityKind.CHARACTER,
        name="Aiko",
        description="courier",
        image_url="https://aiko.png",
        seed=7,
        angles=[EntityAngle("https://aiko-side.png", "side", 8)],
    )
    other = Entity(kind=EntityKind.CHARACTER, name="Ren", description="thief")

    await repository.create_character_record("lantern", first)
    await repository.create_character_record("lantern", other)
    await repository.create_character_record("lantern", updated)

    characters = repository.load_characters("lantern")
    assert [entity.name for entity in characters] == ["Ren", "Aiko"]
    assert characters[1].image_url == "https://aiko.png"
    assert characters[1].angles[0].seed == 8
    assert repository.load_characters("missing") == []


def test_record_from_dict_validates_payload():
    with pytest.raises(ValueError):
        ChapterRecord.from_dict({"story_id": "x", "panels": []})
    with pytest.raises(ValueError):
        ChapterRecord.from_dict({"story_id": "x", "chapter_number": "three", "panels": []})

    record = ChapterRecord.from_dict({"story_id": "x", "chapter_number": "2", "panels": []})
    assert record.title == "Chapter 2"


@pytest.mark.asyncio
async def test_in_memory_repository():
    repository = InMemoryChapterRepository()

    key = await repository.create_chapter(_record())

    assert [panel.order for panel in repository.chapter_panels(key)] == [1, 2]
