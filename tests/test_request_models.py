from __future__ import annotations

import pytest

from mangaforge.story_generation import (
    CharacterRole,
    ChapterRequest,
    Entity,
    EntityKind,
    ObjectCategory,
    ScenarioType,
)
from mangaforge.story_generation.models import coerce_enum


def test_request_from_mapping_normalises_entities():
    request = ChapterRequest.from_mapping(
        {
            "story_prompt": "A courier and a thief.",
            "panels": "6",
            "characters": {"Aiko": {"description": "courier", "role": "Main protagonist"}},
            "scenarios": [{"name": "Rooftop Chase", "type": "action sequence"}],
            "objects": {"Lantern": "brass lantern"},
            "color_mode": "color",
            "style_seed": "99",
        }
    )

    assert request.prompt == "A courier and a thief."
    assert request.panel_count == 6
    assert request.style_seed == 99
    assert request.color_mode == "color"

    aiko = request.user_characters[0]
    assert aiko.user_authored
    assert aiko.role is CharacterRole.PROTAGONIST
    assert request.user_scenarios[0].scenario_type is ScenarioType.ACTION
    assert request.user_objects[0].description == "brass lantern"
    assert request.user_objects[0].category is ObjectCategory.OTHER
    assert [entity.name for entity in request.user_entities()] == ["Aiko", "Rooftop Chase", "Lantern"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"prompt": "  "},
        {"panel_count": 0},
        {"chapter_number": 0},
        {"color_mode": "sepia"},
    ],
)
def test_request_validation(overrides):
    values = {"prompt": "Idea"}
    values.update(overrides)
    with pytest.raises(ValueError):
        ChapterRequest(**values)


def test_request_rejects_wrong_entity_kind():
    location = Entity(kind=EntityKind.LOCATION, name="Harbor")
    with pytest.raises(ValueError):
        ChapterRequest(prompt="Idea", user_characters=(location,))


def test_request_requires_prompt_in_mapping():
    with pytest.raises(ValueError):
        ChapterRequest.from_mapping({"genre": "horror"})


def test_entity_defaults_per_kind():
    character = Entity(kind="character", name=" Aiko ")
    location = Entity(kind=EntityKind.LOCATION, name="Harbor")

    assert character.name == "Aiko"
    assert character.role is CharacterRole.SUPPORTING
    assert location.role is None
    assert location.role_label() == "location"
    assert not character.is_anchored


def test_attach_image_only_once():
    entity = Entity(kind=EntityKind.CHARACTER, name="Aiko")
    entity.attach_image("https://a.png", 3)

    assert entity.is_anchored
    assert entity.seed == 3
    with pytest.raises(ValueError):
        entity.attach_image("https://b.png", 4)


def test_entity_round_trips_through_mapping():
    entity = Entity.from_mapping(
        {
            "name": "Aiko",
            "description": "courier",
            "imageUrl": "https://a.png",
            "seed": "12",
            "role": "protagonist",
            "angles": [{"image_url": "https://b.png", "seed": 13}, {"description": "no url"}],
            "relationships": [{"character_name": "Ren", "relationship_type": "rival"}],
        },
        kind=EntityKind.CHARACTER,
        user_authored=True,
    )

    assert entity.seed == 12
    assert entity.all_images() == ["https://a.png", "https://b.png"]
    assert entity.relationships[0].target_name == "Ren"

    again = Entity.from_mapping(entity.to_dict(), kind=EntityKind.CHARACTER, user_authored=True)
    assert again == entity


def test_coerce_enum_matches_substrings_and_defaults():
    assert coerce_enum(ObjectCategory, "Weapon", ObjectCategory.OTHER) is ObjectCategory.WEAPON
    assert coerce_enum(ObjectCategory, "a sharp weapon", ObjectCategory.OTHER) is ObjectCategory.WEAPON
    assert coerce_enum(ObjectCategory, "unknown", ObjectCategory.OTHER) is ObjectCategory.OTHER
    assert coerce_enum(ObjectCategory, None, ObjectCategory.OTHER) is ObjectCategory.OTHER


def test_load_request_file_reads_yaml_and_json(tmp_path):
    from mangaforge.pipeline import load_request_file

    yaml_path = tmp_path / "request.yaml"
    yaml_path.write_text("prompt: A haunted arcade\npanel_count: 4\ngenre: horror\n", encoding="utf-8")
    json_path = tmp_path / "request.json"
    json_path.write_text('{"prompt": "A haunted arcade", "chapter_number": 2}', encoding="utf-8")

    assert load_request_file(yaml_path).panel_count == 4
    assert load_request_file(json_path).chapter_number == 2

    with pytest.raises(ValueError):
        load_request_file(tmp_path / "request.txt")
