"""
Pull characters, locations, and objects out of an approved narrative.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from mangaforge.common import CompletionCallable

from .collaboration import (
    AgentContribution,
    AgentPersona,
    ChatPrompt,
    CollaborationBrief,
    CollaborationEngine,
    CollaborationSummary,
    format_contributions,
)
from .models import CharacterRole, Entity, EntityKind, ObjectCategory, coerce_enum
from .personas import EXTRACTION_PERSONAS

logger = logging.getLogger(__name__)

MAX_CHARACTERS = 5
MAX_LOCATIONS = 3
MAX_OBJECTS = 3
MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 50

ABSTRACT_TERMS = (
    "oppression",
    "oppressive",
    "authority",
    "system",
    "enforcement",
    "industrial",
    "dystopian",
)
_EXTRA_TERMS: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.LOCATION: ("poor", "artificial"),
    EntityKind.OBJECT: ("light", "dark", "energy"),
}

SYNTHESIS_SYSTEM_PROMPT = (
    "You are an expert element synthesizer who creates clean, comprehensive story element lists."
)

ELEMENT_FORMAT = """Answer with exactly these three headers, one element per line:
Characters:
- Name: appearance and personality (role: protagonist|antagonist|supporting|minor|cameo)
Locations:
- Name: what the place looks like
Objects:
- Name: what the item looks like (category: weapon|tool|decoration|vehicle|clothing|food|other)"""

_SECTION_KEYWORDS = (
    (re.compile(r"\bcharacters?\b", re.IGNORECASE), EntityKind.CHARACTER),
    (re.compile(r"\b(?:locations?|settings?)\b", re.IGNORECASE), EntityKind.LOCATION),
    (re.compile(r"\b(?:objects?|items?|props?)\b", re.IGNORECASE), EntityKind.OBJECT),
)
_ENTRY_PATTERN = re.compile(
    r"^(?P<name>[^:(]+?)\s*(?:\((?P<aside>[^)]*)\)\s*)?:\s*(?P<details>.*)$"
)
_ROLE_HINT = re.compile(r"\brole\s*[:=\-]?\s*([^,;.)]+)", re.IGNORECASE)
_CATEGORY_HINT = re.compile(r"\bcategory\s*[:=\-]?\s*([^,;.)]+)", re.IGNORECASE)
_HEADER_MAX_WORDS = 5


def _denylist_pattern(terms: Iterable[str]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(term) for term in terms)
    return re.compile(rf"^(?:the\s+)?(?:{alternatives})\b", re.IGNORECASE)


_DENYLISTS: dict[EntityKind, re.Pattern[str]] = {
    kind: _denylist_pattern(ABSTRACT_TERMS + _EXTRA_TERMS.get(kind, ()))
    for kind in EntityKind
}


def validate_entity_name(name: str, kind: EntityKind) -> str | None:
    """
    Return why ``name`` is not a usable entity name, or ``None`` when it is.

    Names must be 2-50 characters, not purely numeric, and must not open with
    an abstract term such as "Oppression" or "The System".
    """
    cleaned = (name or "").strip()
    if len(cleaned) < MIN_NAME_LENGTH:
        return "too short"
    if len(cleaned) > MAX_NAME_LENGTH:
        return "too long"
    if cleaned.isdigit():
        return "numeric"
    if _DENYLISTS[EntityKind(kind)].match(cleaned):
        return "abstract term"
    return None


def _strip_markup(line: str) -> str:
    cleaned = line.strip().lstrip("#>").strip()
    cleaned = re.sub(r"^(?:[-*•]|\d+[.)])\s*", "", cleaned)
    cleaned = cleaned.replace("**", "").replace("__", "")
    return cleaned.strip().strip("\"'`").strip()


def _section_for(line: str) -> EntityKind | None:
    """
    Return the section a header line opens, or ``None`` for non-header lines.

    A header names a section and carries no ``name: detail`` content, so an
    entry that merely mentions "character" never switches the section.
    """
    if len(line.split()) > _HEADER_MAX_WORDS:
        return None
    entry = _ENTRY_PATTERN.match(line)
    if entry and entry.group("details").strip():
        return None
    for pattern, kind in _SECTION_KEYWORDS:
        if pattern.search(line):
            return kind
    return None


@dataclass(frozen=True)
class ExtractedElements:
    characters: tuple[Entity, ...] = ()
    locations: tuple[Entity, ...] = ()
    objects: tuple[Entity, ...] = ()


def parse_extraction_response(text: str) -> ExtractedElements:
    """
    Scan sectioned ``Name: details`` lines into validated entities.

    Caps of five characters, three locations and three objects keep the
    earliest valid entries; repeated names are dropped.
    """
    caps = {
        EntityKind.CHARACTER: MAX_CHARACTERS,
        EntityKind.LOCATION: MAX_LOCATIONS,
        EntityKind.OBJECT: MAX_OBJECTS,
    }
    buckets: dict[EntityKind, list[Entity]] = {kind: [] for kind in caps}
    seen: set[tuple[EntityKind, str]] = set()
    section: EntityKind | None = None

    for raw in (text or "").splitlines():
        line = _strip_markup(raw)
        if not line:
            continue

        header = _section_for(line)
        if header is not None:
            section = header
            continue
        if section is None:
            continue

        entry = _ENTRY_PATTERN.match(line)
        if not entry:
            continue
        name = entry.group("name").strip().strip("\"'`").strip()
        details = entry.group("details").strip()
        aside = (entry.group("aside") or "").strip()
        if aside:
            details = f"{details} ({aside})" if details else aside
        if not details:
            continue

        reason = validate_entity_name(name, section)
        if reason is not None:
            logger.debug("Rejected %s '%s': %s.", section.value, name, reason)
            continue

        key = (section, name.lower())
        if key in seen or len(buckets[section]) >= caps[section]:
            continue
        seen.add(key)

        role = None
        category = None
        if section is EntityKind.CHARACTER:
            hint = _ROLE_HINT.search(details)
            role = coerce_enum(CharacterRole, hint.group(1) if hint else None, CharacterRole.SUPPORTING)
        elif section is EntityKind.OBJECT:
            hint = _CATEGORY_HINT.search(details)
            category = coerce_enum(ObjectCategory, hint.group(1) if hint else None, ObjectCategory.OTHER)

        buckets[section].append(
            Entity(kind=section, name=name, description=details, role=role, category=category)
        )

    return ExtractedElements(
        characters=tuple(buckets[EntityKind.CHARACTER]),
        locations=tuple(buckets[EntityKind.LOCATION]),
        objects=tuple(buckets[EntityKind.OBJECT]),
    )


@dataclass(frozen=True)
class ExtractionResult:
    """
    User-authored entities followed by validated extracted ones.
    """

    characters: tuple[Entity, ...] = ()
    locations: tuple[Entity, ...] = ()
    scenarios: tuple[Entity, ...] = ()
    objects: tuple[Entity, ...] = ()
    contributions: tuple[AgentContribution, ...] = field(default=(), compare=False)
    summary: CollaborationSummary | None = field(default=None, compare=False)

    @property
    def entities(self) -> tuple[Entity, ...]:
        return self.characters + self.locations + self.scenarios + self.objects

    def names(self, kind: EntityKind) -> list[str]:
        return [entity.name for entity in self.entities if entity.kind is kind]


class EntityExtractor:
    """
    Runs the extraction collaboration round and merges in user-authored entities.
    """

    def __init__(
        self,
        *,
        engine: CollaborationEngine | None = None,
        completion_fn: CompletionCallable | None = None,
        model: str | None = None,
        api_key: str | None = None,
        personas: Sequence[AgentPersona] = EXTRACTION_PERSONAS,
    ) -> None:
        self._engine = engine or CollaborationEngine(
            completion_fn=completion_fn, model=model, api_key=api_key
        )
        self._personas = tuple(personas)

    async def extract(
        self,
        narrative: str,
        *,
        user_entities: Sequence[Entity] = (),
    ) -> ExtractionResult:
        if not narrative or not narrative.strip():
            raise ValueError("narrative must be a non-empty string.")

        user_entities = tuple(user_entities)
        brief = CollaborationBrief(
            label="extraction",
            personas=self._personas,
            persona_prompt=lambda persona: self._persona_prompt(persona, narrative, user_entities),
            synthesis_prompt=lambda contributions: self._synthesis_prompt(contributions, user_entities),
            synthesis_temperature=0.6,
            synthesis_max_tokens=1000,
            synthesis_method="Multi-Agent Element Extraction",
        )
        outcome = await self._engine.run(brief)
        extracted = parse_extraction_response(outcome.text)

        taken = {entity.name.lower() for entity in user_entities}

        def _fresh(entities: Iterable[Entity]) -> tuple[Entity, ...]:
            return tuple(entity for entity in entities if entity.name.lower() not in taken)

        def _user(kind: EntityKind) -> tuple[Entity, ...]:
            return tuple(entity for entity in user_entities if entity.kind is kind)

        result = ExtractionResult(
            characters=_user(EntityKind.CHARACTER) + _fresh(extracted.characters),
            locations=_user(EntityKind.LOCATION) + _fresh(extracted.locations),
            scenarios=_user(EntityKind.SCENARIO),
            objects=_user(EntityKind.OBJECT) + _fresh(extracted.objects),
            contributions=outcome.contributions,
            summary=outcome.summary,
        )
        logger.info(
            "Extracted %d character(s), %d location(s), %d object(s) (%d user-authored).",
            len(result.characters),
            len(result.locations),
            len(result.objects),
            len(user_entities),
        )
        return result

    @staticmethod
    def _user_context(user_entities: Sequence[Entity]) -> str:
        lines = []
        for kind, label in (
            (EntityKind.CHARACTER, "User Characters"),
            (EntityKind.SCENARIO, "User Scenarios"),
            (EntityKind.OBJECT, "User Objects"),
        ):
            group = [entity.prompt_line() for entity in user_entities if entity.kind is kind]
            lines.append(f"- {label}: {', '.join(group) or 'none'}")
        return "\n".join(lines)

    def _persona_prompt(
        self,
        persona: AgentPersona,
        narrative: str,
        user_entities: Sequence[Entity],
    ) -> ChatPrompt:
        secondary = persona.expertise[1] if len(persona.expertise) > 1 else persona.focus
        system = f"""{persona.introduction()}

Your task is to extract and analyze story elements from the narrative, focusing on your area of expertise.

User Context:
{self._user_context(user_entities)}

Focus on {persona.focus} and {secondary} while extracting elements."""

        user = f"""Analyze this narrative and extract ONLY the most important story elements:

{narrative}

IMPORTANT: Only extract elements that are:
- Explicitly named in the story
- Clearly described as characters, locations, or objects
- Essential to the plot

DO NOT extract abstract concepts (like "oppression" or "authority"), generic descriptions without names, numbers, or themes.

{ELEMENT_FORMAT}

Focus on {persona.focus}. Be selective and conservative. Finish with a line "Confidence: N" (1-10)."""
        return ChatPrompt(system=system, user=user)

    def _synthesis_prompt(
        self,
        contributions: Sequence[AgentContribution],
        user_entities: Sequence[Entity],
    ) -> ChatPrompt:
        user = f"""You are the Element Synthesizer, responsible for combining and refining element extractions from specialized agents.

Agent Extractions:
{format_contributions(contributions)}

User Context:
{self._user_context(user_entities)}

Create the final element list by removing duplicates, keeping only explicitly named characters and locations, and rejecting abstract concepts or generic descriptions. Do not repeat user-defined elements.

STRICT RULES:
- Only include characters with clear names
- Only include locations with specific names or clear descriptions
- Maximum {MAX_CHARACTERS} characters, {MAX_LOCATIONS} locations, {MAX_OBJECTS} objects total

{ELEMENT_FORMAT}"""
        return ChatPrompt(system=SYNTHESIS_SYSTEM_PROMPT, user=user)
