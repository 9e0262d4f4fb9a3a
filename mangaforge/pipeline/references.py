"""
Pipeline-scoped entity references and their generation.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from mangaforge.ai_generation import GeneratedImage, build_angle_prompts, build_reference_prompt
from mangaforge.common import settle_all
from mangaforge.story_generation.models import Entity, EntityAngle, EntityKind

from .matching import EntityMatcher, KeywordEntityMatcher

logger = logging.getLogger(__name__)


class ImageGenerator(Protocol):
    async def text_to_image(
        self, prompt: str, *, aspect_ratio: str = "1:1", seed: int | None = None
    ) -> GeneratedImage:
        ...

    async def image_to_image(
        self,
        prompt: str,
        reference_images: Sequence[str],
        *,
        aspect_ratio: str = "1:1",
        seed: int | None = None,
    ) -> GeneratedImage:
        ...


@dataclass(frozen=True)
class PanelReferences:
    """
    Reference images and seed chosen for one panel.

    Attributes
    ----------
    reference_images:
        Ordered, de-duplicated image URLs: characters (main image then angles),
        then locations, scenarios, and objects.
    seed:
        Seed the panel is rendered with.
    focus_entity:
        Character the consistency check is framed around, if any.
    """

    reference_images: tuple[str, ...]
    seed: int
    focus_entity: Entity | None = None

    @property
    def should_verify(self) -> bool:
        return self.focus_entity is not None or bool(self.reference_images)


@dataclass(frozen=True)
class ReferenceReport:
    generated: tuple[tuple[Entity, GeneratedImage], ...] = ()
    failed: tuple[tuple[Entity, str], ...] = ()


def _dedupe(urls: Iterable[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    ordered: list[str] = []
    for url in urls:
        if url and url not in seen:
            seen.add(url)
            ordered.append(url)
    return tuple(ordered)


class ReferenceStore:
    """
    Holds every entity of one pipeline run together with the chapter style seed.

    The store keeps its own copies of the entities it is given, so user input
    is never mutated. Only the orchestrator writes to it, and only after a
    generation batch has settled.
    """

    def __init__(
        self,
        entities: Iterable[Entity],
        *,
        style_seed: int,
        matcher: EntityMatcher | None = None,
    ) -> None:
        self._entities = [copy.deepcopy(entity) for entity in entities]
        self._style_seed = style_seed
        self._matcher = matcher or KeywordEntityMatcher()

    @property
    def style_seed(self) -> int:
        return self._style_seed

    @property
    def entities(self) -> tuple[Entity, ...]:
        return tuple(self._entities)

    def _of_kind(self, kind: EntityKind) -> list[Entity]:
        return [entity for entity in self._entities if entity.kind is kind]

    @property
    def user_characters(self) -> list[Entity]:
        return [entity for entity in self._of_kind(EntityKind.CHARACTER) if entity.user_authored]

    @property
    def characters(self) -> list[Entity]:
        """User-authored characters first, then extracted ones."""
        extracted = [
            entity for entity in self._of_kind(EntityKind.CHARACTER) if not entity.user_authored
        ]
        return self.user_characters + extracted

    @property
    def locations(self) -> list[Entity]:
        return self._of_kind(EntityKind.LOCATION)

    @property
    def scenarios(self) -> list[Entity]:
        return self._of_kind(EntityKind.SCENARIO)

    @property
    def objects(self) -> list[Entity]:
        return self._of_kind(EntityKind.OBJECT)

    def get(self, name: str, kind: EntityKind | None = None) -> Entity | None:
        lowered = name.strip().lower()
        for entity in self._entities:
            if entity.name.lower() == lowered and (kind is None or entity.kind is kind):
                return entity
        return None

    def pending_references(self) -> list[Entity]:
        """Entities that still need a reference image, in generation order."""
        ordered = self.characters + self.locations + self.scenarios + self.objects
        return [entity for entity in ordered if not entity.is_anchored]

    def apply_reference(self, entity: Entity, image: GeneratedImage) -> None:
        self._own(entity).attach_image(image.image_url, image.seed)

    def apply_angles(self, entity: Entity, angles: Sequence[EntityAngle]) -> None:
        owned = self._own(entity)
        for angle in angles:
            owned.add_angle(angle)

    def select(self, panel_description: str) -> PanelReferences:
        """
        Choose reference images and a seed for a panel description.

        The result depends only on the description and the store contents, so
        calling it again for the same panel returns the same selection.
        """
        text = panel_description or ""
        matched_characters = [
            entity for entity in self.characters if self._matcher.matches(entity, text)
        ]
        matched_locations = [
            entity for entity in self.locations if self._matcher.matches(entity, text)
        ]
        matched_others = [
            entity
            for entity in self.scenarios + self.objects
            if entity.is_anchored and self._matcher.matches(entity, text)
        ]

        images: list[str] = []
        for entity in matched_characters:
            if entity.is_anchored:
                images.extend(entity.all_images())
        for entity in matched_locations:
            if entity.image_url:
                images.append(entity.image_url)
        for entity in matched_others:
            images.append(entity.image_url)

        user_focus = next(
            (
                entity
                for entity in matched_characters
                if entity.user_authored and entity.is_anchored and entity.seed is not None
            ),
            None,
        )
        seeded_character = next(
            (entity for entity in matched_characters if entity.seed is not None), None
        )
        seeded_location = next(
            (entity for entity in matched_locations if entity.seed is not None), None
        )

        if user_focus is not None:
            seed = user_focus.seed
        elif seeded_character is not None:
            seed = seeded_character.seed
        elif seeded_location is not None:
            seed = seeded_location.seed
        else:
            seed = self._style_seed

        focus = user_focus or (matched_characters[0] if matched_characters else None)
        return PanelReferences(reference_images=_dedupe(images), seed=seed, focus_entity=focus)

    def _own(self, entity: Entity) -> Entity:
        for candidate in self._entities:
            if candidate is entity:
                return candidate
        raise ValueError(f"Entity '{entity.name}' does not belong to this reference store.")


class ReferenceGenerator:
    """
    Generates reference sheets and alternate angles for entities.

    Parameters
    ----------
    image_generator:
        Async image service (normally :class:`ReplicateImageGenerator`).
    character_aspect_ratio, location_aspect_ratio, default_aspect_ratio:
        Aspect ratios per entity kind; scenarios and objects use the default.
    call_timeout:
        Per-call timeout in seconds.
    max_concurrency:
        Cap on simultaneous image calls inside one batch.
    """

    def __init__(
        self,
        image_generator: ImageGenerator,
        *,
        character_aspect_ratio: str = "3:4",
        location_aspect_ratio: str = "16:9",
        default_aspect_ratio: str = "1:1",
        call_timeout: float | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self._image_generator = image_generator
        self._aspect_ratios = {
            EntityKind.CHARACTER: character_aspect_ratio,
            EntityKind.LOCATION: location_aspect_ratio,
        }
        self._default_aspect_ratio = default_aspect_ratio
        self._call_timeout = call_timeout
        self._max_concurrency = max_concurrency

    def aspect_ratio_for(self, entity: Entity) -> str:
        return self._aspect_ratios.get(entity.kind, self._default_aspect_ratio)

    async def generate(self, store: ReferenceStore, *, style: str = "manga") -> ReferenceReport:
        """
        Render one reference per pending entity, concurrently.

        Anchored entities are skipped. A failed render is reported and the
        entity proceeds without an image; the store itself is not modified.
        """
        pending = store.pending_references()
        if not pending:
            return ReferenceReport()

        logger.info("Generating %d reference image(s).", len(pending))
        results = await settle_all(
            (
                self._image_generator.text_to_image(
                    build_reference_prompt(entity, style),
                    aspect_ratio=self.aspect_ratio_for(entity),
                )
                for entity in pending
            ),
            timeout=self._call_timeout,
            limit=self._max_concurrency,
        )

        generated: list[tuple[Entity, GeneratedImage]] = []
        failed: list[tuple[Entity, str]] = []
        for entity, result in zip(pending, results):
            if isinstance(result, BaseException):
                logger.warning("Reference for %s '%s' failed: %r", entity.kind.value, entity.name, result)
                failed.append((entity, repr(result)))
            elif not result.image_url:
                logger.warning("Reference for %s '%s' returned no image.", entity.kind.value, entity.name)
                failed.append((entity, "no image returned"))
            else:
                generated.append((entity, result))
        return ReferenceReport(generated=tuple(generated), failed=tuple(failed))

    async def generate_angles(
        self,
        entity: Entity,
        count: int,
        *,
        style: str = "manga",
    ) -> list[EntityAngle]:
        """
        Render up to ``count`` alternate views of ``entity``.

        Views are rendered from the entity's base image when it has one. Failed
        views are skipped.
        """
        prompts = build_angle_prompts(entity, style, count)
        if not prompts:
            return []

        aspect_ratio = self.aspect_ratio_for(entity)
        if entity.image_url:
            calls = (
                self._image_generator.image_to_image(
                    prompt, [entity.image_url], aspect_ratio=aspect_ratio, seed=entity.seed
                )
                for prompt in prompts
            )
        else:
            calls = (
                self._image_generator.text_to_image(prompt, aspect_ratio=aspect_ratio, seed=entity.seed)
                for prompt in prompts
            )

        results = await settle_all(calls, timeout=self._call_timeout, limit=self._max_concurrency)
        angles: list[EntityAngle] = []
        for index, (prompt, result) in enumerate(zip(prompts, results), start=1):
            if isinstance(result, BaseException) or not result.image_url:
                logger.warning("Angle %d for '%s' failed: %r", index, entity.name, result)
                continue
            angles.append(
                EntityAngle(
                    image_url=result.image_url,
                    description=f"Angle {index}: {prompt.split('.')[0]}",
                    seed=result.seed,
                )
            )
        if not angles and prompts:
            logger.warning("No angles could be generated for '%s'.", entity.name)
        return angles

