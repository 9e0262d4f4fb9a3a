"""
Prompt construction utilities for MangaForge image generation.
"""

from __future__ import annotations

from typing import Sequence

from mangaforge.story_generation.models import Entity, EntityKind, PanelScript

MONOCHROME = "black-and-white"
COLOR = "color"
COLOR_MODES = (MONOCHROME, COLOR)

STORY_CONTEXT_CHARS = 200
MAX_ANGLE_PROMPTS = 6

_CHARACTER_ANGLES = (
    "full body portrait, front view, standing pose, same character design.",
    "close-up portrait, three-quarter view, confident expression, identical character features.",
    "action pose, dynamic angle, showing personality, consistent character appearance.",
    "profile view, side angle, detailed character design, same character as reference.",
    "back view, mysterious angle, showing character silhouette, consistent design.",
    "seated pose, relaxed angle, character study, same character features.",
)

_SCENE_ANGLES = (
    "wide shot, establishing view, showing full scene.",
    "medium shot, dramatic angle, focusing on key elements.",
    "close-up view, intimate angle, showing details.",
    "bird's eye view, aerial perspective, showing scale.",
    "low angle view, dramatic perspective, emphasizing grandeur.",
    "side angle, different perspective, alternative composition.",
)

_OBJECT_ANGLES = (
    "front view, detailed object study, showing main features.",
    "three-quarter view, angled perspective, showing depth.",
    "side profile, clean angle, showing object silhouette.",
    "close-up detail, macro view, showing textures and materials.",
    "back view, alternative angle, showing hidden details.",
    "action shot, dynamic angle, showing object in use.",
)

_ANGLES_BY_KIND = {
    EntityKind.CHARACTER: _CHARACTER_ANGLES,
    EntityKind.LOCATION: _SCENE_ANGLES,
    EntityKind.SCENARIO: _SCENE_ANGLES,
    EntityKind.OBJECT: _OBJECT_ANGLES,
}


def build_style_clause(style: str, color_mode: str = MONOCHROME) -> str:
    """
    Return the fixed art-direction clause shared by every panel of a chapter.
    """
    style = (style or "manga").strip()
    if color_mode == COLOR:
        palette = "full-colour manga illustration, consistent colour palette"
    elif color_mode == MONOCHROME:
        palette = "black-and-white manga ink, screentone shading"
    else:
        raise ValueError(f"color_mode must be one of {COLOR_MODES}, got {color_mode!r}.")

    return (
        f"{style} style, {palette}, clean linework, consistent character proportions, "
        "coherent shading, same visual style across panels"
    )


def build_panel_prompt(
    panel: PanelScript,
    *,
    index: int,
    total: int,
    style: str = "manga",
    color_mode: str = MONOCHROME,
    narrative: str = "",
) -> str:
    """
    Build the prompt used to render a single panel.

    Parameters
    ----------
    panel:
        Planned panel whose description and dialogue are rendered.
    index:
        Zero-based position of the panel in the chapter.
    total:
        Number of panels in the chapter.
    style:
        Art style label (e.g., "manga", "shonen", "seinen").
    color_mode:
        ``"black-and-white"`` or ``"color"``.
    narrative:
        Chapter narrative; only its opening is included as story context.
    """
    if not panel.description or not panel.description.strip():
        raise ValueError("panel description must be a non-empty string.")
    if total < 1 or not 0 <= index < total:
        raise ValueError(f"panel index {index} is out of range for {total} panel(s).")

    lines = [
        build_style_clause(style, color_mode) + ".",
        f"Manga panel: {panel.description.strip()}",
    ]
    if panel.visual_notes:
        lines.append(f"Visual notes: {panel.visual_notes.strip()}")
    if panel.dialogue:
        lines.append(f"Dialogue: {panel.dialogue.strip()}")

    context = (narrative or "").strip()
    if context:
        snippet = context[:STORY_CONTEXT_CHARS]
        suffix = "..." if len(context) > STORY_CONTEXT_CHARS else ""
        lines.append(f"Story context: {snippet}{suffix}")

    lines.append(f"Panel {index + 1} of {total}.")
    lines.append(
        "Professional manga artwork, consistent character design, dramatic shading, clean linework."
    )
    return "\n".join(lines)


def build_reference_prompt(entity: Entity, style: str = "manga") -> str:
    """
    Frame a reference-image prompt for ``entity`` according to its kind.
    """
    style = (style or "manga").strip()
    details = entity.description or entity.name

    if entity.kind is EntityKind.CHARACTER:
        return f"{style} style character design: {details}, full body, reference sheet, white background"
    if entity.kind is EntityKind.LOCATION:
        return f"{style} style background: {details}, detailed environment, manga panel background"
    if entity.kind is EntityKind.SCENARIO:
        return f"{style} style scene study: {entity.name}, {details}, clean composition, manga illustration"
    return f"{style} style object study: {entity.name}, {details}, clean linework, plain background"


def build_refinement_prompt(prompt: str, suggestions: Sequence[str]) -> str:
    """
    Append the verifier's suggestions to the prompt of a panel being refined.
    """
    cleaned = [str(item).strip().rstrip(".") for item in suggestions if str(item).strip()]
    if not cleaned:
        return prompt
    return f"{prompt} IMPORTANT: {'. '.join(cleaned)}."


def build_angle_prompts(entity: Entity, style: str = "manga", count: int = MAX_ANGLE_PROMPTS) -> list[str]:
    """
    Return up to six alternate-view prompts for ``entity``.
    """
    if count <= 0:
        return []

    style = (style or "manga").strip()
    base = (
        f"{style} style: {entity.description or entity.name}. High quality, detailed artwork, "
        "professional manga illustration. Maintain consistent design, same features, "
        "colours, and proportions."
    )
    angles = _ANGLES_BY_KIND[entity.kind][: min(count, MAX_ANGLE_PROMPTS)]
    return [f"{base} {entity.name} {angle}" for angle in angles]
