"""
The chapter request supplied by the caller before generation starts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Sequence

from .models import Entity, EntityKind

COLOR_MODES = ("black-and-white", "color")


def _coerce_optional_str(value: Any) -> str | None:
    if value is None:
        return None

    text = str(value).strip()
    return text or None


def _coerce_int(value: Any, *, field_name: str, default: int) -> int:
    if value is None or value == "":
        return default

    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected an integer-compatible value for {field_name}, got {value!r}") from exc


def _normalize_entities(value: Any, kind: EntityKind) -> tuple[Entity, ...]:
    if value is None:
        return ()

    if isinstance(value, Mapping):
        # Allow {"Aiko": {"description": ...}} as well as a list of mappings.
        items: list[Any] = []
        for name, details in value.items():
            if isinstance(details, Mapping):
                items.append({"name": name, **details})
            else:
                items.append({"name": name, "description": details})
    elif isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        items = list(value)
    else:
        raise TypeError(f"user {kind.value}s must be a mapping or a sequence of mappings.")

    entities: list[Entity] = []
    for item in items:
        if isinstance(item, Entity):
            entities.append(item)
        elif isinstance(item, Mapping):
            entities.append(Entity.from_mapping(item, kind=kind, user_authored=True))
        else:
            raise TypeError(f"Unsupported {kind.value} entry: {item!r}")
    return tuple(entities)


@dataclass(frozen=True)
class ChapterRequest:
    """
    Canonical representation of a chapter generation request.

    Attributes
    ----------
    prompt:
        Free-text story premise (required).
    genre:
        Genre label forwarded to every text generation call.
    style:
        Art style label used in image prompts.
    panel_count:
        Exact number of panels the breakdown must produce.
    chapter_number:
        Chapter being generated within the story.
    story_id:
        Identifier of the story the chapter is persisted under.
    user_characters, user_scenarios, user_objects:
        Entities authored by the user; trusted and never regenerated when they
        already carry an image.
    style_seed:
        Fixed chapter-wide fallback seed. Drawn at random when omitted.
    color_mode:
        ``"black-and-white"`` (default) or ``"color"``.
    """

    prompt: str
    genre: str = "fantasy"
    style: str = "manga"
    panel_count: int = 8
    chapter_number: int = 1
    story_id: str = "story"
    user_characters: tuple[Entity, ...] = ()
    user_scenarios: tuple[Entity, ...] = ()
    user_objects: tuple[Entity, ...] = ()
    style_seed: int | None = None
    color_mode: str = "black-and-white"

    def __post_init__(self) -> None:
        if not self.prompt or not self.prompt.strip():
            raise ValueError("prompt must be a non-empty string.")
        if self.panel_count < 1:
            raise ValueError("panel_count must be at least 1.")
        if self.chapter_number < 1:
            raise ValueError("chapter_number must be at least 1.")
        if self.color_mode not in COLOR_MODES:
            raise ValueError(f"color_mode must be one of {COLOR_MODES}, got {self.color_mode!r}.")
        for expected, group in (
            (EntityKind.CHARACTER, self.user_characters),
            (EntityKind.SCENARIO, self.user_scenarios),
            (EntityKind.OBJECT, self.user_objects),
        ):
            for entity in group:
                if entity.kind is not expected:
                    raise ValueError(
                        f"'{entity.name}' is a {entity.kind.value}, expected {expected.value}."
                    )

    def user_entities(self) -> Iterator[Entity]:
        yield from self.user_characters
        yield from self.user_scenarios
        yield from self.user_objects

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ChapterRequest":
        """
        Build a request from a dict-like object (e.g., parsed JSON/YAML).
        """
        prompt = _coerce_optional_str(data.get("prompt") or data.get("story_prompt"))
        if not prompt:
            raise ValueError("Request data must include a non-empty 'prompt' field.")

        seed = data.get("style_seed")
        return cls(
            prompt=prompt,
            genre=_coerce_optional_str(data.get("genre")) or "fantasy",
            style=_coerce_optional_str(data.get("style")) or "manga",
            panel_count=_coerce_int(
                data.get("panel_count") or data.get("panels"), field_name="panel_count", default=8
            ),
            chapter_number=_coerce_int(
                data.get("chapter_number"), field_name="chapter_number", default=1
            ),
            story_id=_coerce_optional_str(data.get("story_id")) or "story",
            user_characters=_normalize_entities(data.get("characters"), EntityKind.CHARACTER),
            user_scenarios=_normalize_entities(data.get("scenarios"), EntityKind.SCENARIO),
            user_objects=_normalize_entities(data.get("objects"), EntityKind.OBJECT),
            style_seed=None if seed is None else _coerce_int(seed, field_name="style_seed", default=0),
            color_mode=_coerce_optional_str(data.get("color_mode")) or "black-and-white",
        )
