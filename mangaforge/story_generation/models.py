"""
Story entities (characters, locations, scenarios, objects) and panel records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence


class EntityKind(str, Enum):
    CHARACTER = "character"
    LOCATION = "location"
    SCENARIO = "scenario"
    OBJECT = "object"


class CharacterRole(str, Enum):
    PROTAGONIST = "protagonist"
    ANTAGONIST = "antagonist"
    SUPPORTING = "supporting"
    MINOR = "minor"
    CAMEO = "cameo"


class ScenarioType(str, Enum):
    ACTION = "action"
    DIALOGUE = "dialogue"
    ROMANCE = "romance"
    COMEDY = "comedy"
    DRAMA = "drama"
    MYSTERY = "mystery"
    OTHER = "other"


class ObjectCategory(str, Enum):
    WEAPON = "weapon"
    TOOL = "tool"
    DECORATION = "decoration"
    VEHICLE = "vehicle"
    CLOTHING = "clothing"
    FOOD = "food"
    OTHER = "other"


def _coerce_optional_str(value: Any) -> str | None:
    if value is None:
        return None

    text = str(value).strip()
    return text or None


def _coerce_optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None

    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected an integer-compatible seed, got {value!r}") from exc


def coerce_enum(enum_type: type[Enum], value: Any, default: Enum) -> Any:
    """
    Map a free-form value onto a closed enum, falling back to ``default``.

    Generators tend to answer with phrases like "Protagonist / hero"; the first
    enum member whose value appears in the text wins.
    """
    if value is None:
        return default
    if isinstance(value, enum_type):
        return value

    text = str(value).strip().lower()
    if not text:
        return default
    for member in enum_type:
        if text == member.value:
            return member
    for member in enum_type:
        if member.value in text:
            return member
    return default


@dataclass(frozen=True)
class EntityAngle:
    """Auxiliary image of an entity seen from a different angle."""

    image_url: str
    description: str = ""
    seed: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"image_url": self.image_url, "description": self.description, "seed": self.seed}


@dataclass(frozen=True)
class Relationship:
    target_name: str
    relationship_type: str
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_name": self.target_name,
            "relationship_type": self.relationship_type,
            "description": self.description,
        }


@dataclass
class Entity:
    """
    A named story element with an optional stable visual identity.

    Attributes
    ----------
    kind:
        Character, location, scenario, or object.
    name:
        Short name used for fuzzy matching against panel descriptions.
    description:
        Free-text appearance notes.
    image_url:
        Reference image. An entity that has one is *anchored* and is never
        regenerated by downstream stages.
    seed:
        Seed returned by the image service, reused to bias later renders.
    role, scenario_type, category:
        Kind-specific closed enums (characters, scenarios, objects respectively).
    angles:
        Ordered auxiliary images.
    relationships:
        Character relationships.
    user_authored:
        Supplied by the user before generation; trusted and given seed priority.
    """

    kind: EntityKind
    name: str
    description: str = ""
    image_url: str | None = None
    seed: int | None = None
    role: CharacterRole | None = None
    scenario_type: ScenarioType | None = None
    category: ObjectCategory | None = None
    angles: list[EntityAngle] = field(default_factory=list)
    relationships: list[Relationship] = field(default_factory=list)
    user_authored: bool = False

    def __post_init__(self) -> None:
        self.kind = EntityKind(self.kind)
        self.name = str(self.name).strip()
        self.description = str(self.description or "").strip()
        if self.kind is EntityKind.CHARACTER:
            self.role = coerce_enum(CharacterRole, self.role, CharacterRole.SUPPORTING)
        elif self.kind is EntityKind.SCENARIO:
            self.scenario_type = coerce_enum(ScenarioType, self.scenario_type, ScenarioType.OTHER)
        elif self.kind is EntityKind.OBJECT:
            self.category = coerce_enum(ObjectCategory, self.category, ObjectCategory.OTHER)

    @property
    def is_anchored(self) -> bool:
        return bool(self.image_url)

    @property
    def is_protagonist(self) -> bool:
        return self.kind is EntityKind.CHARACTER and self.role is CharacterRole.PROTAGONIST

    def all_images(self) -> list[str]:
        images: list[str] = []
        if self.image_url:
            images.append(self.image_url)
        images.extend(angle.image_url for angle in self.angles if angle.image_url)
        return images

    def attach_image(self, image_url: str, seed: int | None) -> None:
        if self.is_anchored:
            raise ValueError(f"Entity '{self.name}' already has an anchored image.")
        self.image_url = image_url
        self.seed = seed

    def add_angle(self, angle: EntityAngle) -> None:
        self.angles.append(angle)

    def role_label(self) -> str:
        for value in (self.role, self.scenario_type, self.category):
            if value is not None:
                return value.value
        return self.kind.value

    def prompt_line(self) -> str:
        return f"{self.name}: {self.description}" if self.description else self.name

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        *,
        kind: EntityKind | str,
        user_authored: bool = False,
    ) -> "Entity":
        """
        Build an entity from a dict-like object (e.g., parsed JSON/YAML).
        """
        name = _coerce_optional_str(data.get("name"))
        if not name:
            raise ValueError("Entity data must include a non-empty 'name' field.")

        angles = [
            EntityAngle(
                image_url=str(item["image_url"]).strip(),
                description=str(item.get("description") or "").strip(),
                seed=_coerce_optional_int(item.get("seed")),
            )
            for item in _as_sequence(data.get("angles"))
            if isinstance(item, Mapping) and _coerce_optional_str(item.get("image_url"))
        ]

        relationships = [
            Relationship(
                target_name=str(item.get("target_name") or item.get("character_name")).strip(),
                relationship_type=str(item.get("relationship_type") or "related").strip(),
                description=str(item.get("description") or "").strip(),
            )
            for item in _as_sequence(data.get("relationships"))
            if isinstance(item, Mapping)
            and _coerce_optional_str(item.get("target_name") or item.get("character_name"))
        ]

        return cls(
            kind=EntityKind(kind),
            name=name,
            description=_coerce_optional_str(data.get("description")) or "",
            image_url=_coerce_optional_str(data.get("image_url") or data.get("imageUrl")),
            seed=_coerce_optional_int(data.get("seed")),
            role=data.get("role"),
            scenario_type=data.get("type") or data.get("scenario_type"),
            category=data.get("category"),
            angles=angles,
            relationships=relationships,
            user_authored=user_authored,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "kind": self.kind.value,
            "name": self.name,
            "description": self.description,
            "image_url": self.image_url,
            "seed": self.seed,
            "user_authored": self.user_authored,
        }
        if self.role is not None:
            payload["role"] = self.role.value
        if self.scenario_type is not None:
            payload["type"] = self.scenario_type.value
        if self.category is not None:
            payload["category"] = self.category.value
        if self.angles:
            payload["angles"] = [angle.to_dict() for angle in self.angles]
        if self.relationships:
            payload["relationships"] = [item.to_dict() for item in self.relationships]
        return payload


def _as_sequence(value: Any) -> Sequence[Any]:
    if value is None:
        return ()
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return value
    raise TypeError(f"Expected a list, got {type(value).__name__}.")


@dataclass(frozen=True)
class PanelScript:
    """A planned panel before rendering."""

    description: str
    dialogue: str = ""
    visual_notes: str = ""
    reasoning: str = ""
    is_placeholder: bool = False


@dataclass(frozen=True)
class RenderedPanel:
    """
    A finished panel. ``order`` is dense 1..N across the surviving panels.
    """

    image_url: str
    text: str
    order: int
    description: str = ""
    seed: int | None = None
    reference_count: int = 0
    refined: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": self.order,
            "image_url": self.image_url,
            "text": self.text,
            "description": self.description,
            "seed": self.seed,
            "reference_count": self.reference_count,
            "refined": self.refined,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RenderedPanel":
        try:
            return cls(
                image_url=str(payload["image_url"]),
                text=str(payload.get("text") or ""),
                order=int(payload["order"]),
                description=str(payload.get("description") or ""),
                seed=_coerce_optional_int(payload.get("seed")),
                reference_count=int(payload.get("reference_count") or 0),
                refined=bool(payload.get("refined", False)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid panel entry: {payload}") from exc
