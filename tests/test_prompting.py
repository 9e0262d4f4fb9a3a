from __future__ import annotations

import pytest

from mangaforge.ai_generation import (
    build_angle_prompts,
    build_panel_prompt,
    build_reference_prompt,
    build_refinement_prompt,
    build_style_clause,
)
from mangaforge.story_generation import Entity, EntityKind, PanelScript


def test_style_clause_depends_on_color_mode():
    assert "screentone" in build_style_clause("shonen", "black-and-white")
    assert build_style_clause("shonen", "color").startswith("shonen style, full-colour")
    with pytest.raises(ValueError):
        build_style_clause("manga", "sepia")


def test_panel_prompt_layout():
    panel = PanelScript(
        description="Aiko leaps across the gap.",
        dialogue="Now!",
        visual_notes="low angle",
    )
    narrative = "x" * 250

    prompt = build_panel_prompt(panel, index=1, total=4, style="seinen", narrative=narrative)
    lines = prompt.splitlines()

    assert lines[0] == build_style_clause("seinen") + "."
    assert lines[1] == "Manga panel: Aiko leaps across the gap."
    assert "Visual notes: low angle" in lines
    assert "Dialogue: Now!" in lines
    assert f"Story context: {'x' * 200}..." in lines
    assert "Panel 2 of 4." in lines


def test_panel_prompt_is_identical_for_every_panel_prefix():
    first = build_panel_prompt(PanelScript(description="One."), index=0, total=2)
    second = build_panel_prompt(PanelScript(description="Two."), index=1, total=2)

    assert first.splitlines()[0] == second.splitlines()[0]


def test_panel_prompt_validates_input():
    with pytest.raises(ValueError):
        build_panel_prompt(PanelScript(description="  "), index=0, total=1)
    with pytest.raises(ValueError):
        build_panel_prompt(PanelScript(description="Scene."), index=3, total=3)


@pytest.mark.parametrize(
    ("kind", "fragment"),
    [
        (EntityKind.CHARACTER, "character design: tall swordsman, full body, reference sheet, white background"),
        (EntityKind.LOCATION, "background: tall swordsman, detailed environment"),
        (EntityKind.SCENARIO, "scene study: Kenji"),
        (EntityKind.OBJECT, "object study: Kenji"),
    ],
)
def test_reference_prompt_is_framed_by_kind(kind, fragment):
    entity = Entity(kind=kind, name="Kenji", description="tall swordsman")
    assert fragment in build_reference_prompt(entity, "manga")


def test_refinement_prompt_appends_suggestions():
    assert build_refinement_prompt("Base.", ["Add the scar.", "Keep the red scarf"]) == (
        "Base. IMPORTANT: Add the scar. Keep the red scarf."
    )
    assert build_refinement_prompt("Base.", []) == "Base."


def test_angle_prompts_are_capped_per_kind():
    character = Entity(kind=EntityKind.CHARACTER, name="Aiko", description="courier")
    lantern = Entity(kind=EntityKind.OBJECT, name="Lantern", description="brass lantern")

    assert len(build_angle_prompts(character, "manga", 10)) == 6
    assert build_angle_prompts(character, "manga", 0) == []
    assert "profile view" in build_angle_prompts(character, "manga", 4)[3]
    assert "object study" in build_angle_prompts(lantern, "manga", 1)[0]
