"""
Chapter persistence: the repository interface and local adapters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence

import yaml

from mangaforge.story_generation import Entity, RenderedPanel

logger = logging.getLogger(__name__)


class ChapterRepository(Protocol):
    async def create_chapter(self, record: "ChapterRecord") -> str:
        ...

    async def create_character_record(self, story_id: str, character: Entity) -> None:
        ...


@dataclass
class ChapterRecord:
    """A finished chapter as handed to storage."""

    story_id: str
    chapter_number: int
    title: str
    narrative: str
    panels: list[RenderedPanel]

    def to_dict(self) -> dict[str, Any]:
        return {
            "story_id": self.story_id,
            "chapter_number": self.chapter_number,
            "title": self.title,
            "narrative": self.narrative,
            "panels": [panel.to_dict() for panel in self.panels],
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, allow_unicode=True)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChapterRecord":
        for key in ("story_id", "chapter_number", "panels"):
            if key not in payload:
                raise ValueError(f"Chapter payload must include '{key}'.")

        panels = [RenderedPanel.from_dict(entry) for entry in payload.get("panels") or []]
        try:
            chapter_number = int(payload["chapter_number"])
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid chapter number: {payload['chapter_number']!r}") from exc

        return cls(
            story_id=str(payload["story_id"]).strip(),
            chapter_number=chapter_number,
            title=str(payload.get("title") or f"Chapter {chapter_number}").strip(),
            narrative=str(payload.get("narrative", "")).strip(),
            panels=panels,
        )

    @classmethod
    def from_yaml(cls, source: str | Path) -> "ChapterRecord":
        path = Path(source)
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not isinstance(data, Mapping):
            raise ValueError("Chapter YAML must deserialize to a mapping.")
        return cls.from_dict(data)


def chapter_key(story_id: str, chapter_number: int) -> str:
    return f"{story_id}/chapter-{chapter_number:02d}"


class YamlChapterRepository:
    """
    Writes chapters to ``<root>/<story_id>/chapter-<NN>.yaml`` and appends
    character records to ``<root>/<story_id>/characters.yaml``.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    async def create_chapter(self, record: ChapterRecord) -> str:
        key = chapter_key(record.story_id, record.chapter_number)
        path = self._root / f"{key}.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(record.to_yaml(), encoding="utf-8")
        logger.info("Saved chapter %s (%d panels) to %s.", key, len(record.panels), path)
        return key

    async def create_character_record(self, story_id: str, character: Entity) -> None:
        path = self._root / story_id / "characters.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)

        existing: list[Any] = []
        if path.exists():
            loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
            if isinstance(loaded, list):
                existing = loaded

        payload = character.to_dict()
        existing = [
            item
            for item in existing
            if not (isinstance(item, Mapping) and item.get("name") == character.name)
        ]
        existing.append(payload)
        path.write_text(
            yaml.safe_dump(existing, sort_keys=False, allow_unicode=True), encoding="utf-8"
        )

    def load_chapter(self, story_id: str, chapter_number: int) -> ChapterRecord:
        return ChapterRecord.from_yaml(self._root / f"{chapter_key(story_id, chapter_number)}.yaml")

    def load_characters(self, story_id: str) -> list[Entity]:
        path = self._root / story_id / "characters.yaml"
        if not path.exists():
            return []
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or []
        return [
            Entity.from_mapping(
                item,
                kind=item.get("kind", "character"),
                user_authored=bool(item.get("user_authored")),
            )
            for item in data
            if isinstance(item, Mapping)
        ]


class InMemoryChapterRepository:
    """Keeps chapters and character records in dictionaries."""

    def __init__(self) -> None:
        self.chapters: dict[str, ChapterRecord] = {}
        self.characters: dict[str, list[Entity]] = {}

    async def create_chapter(self, record: ChapterRecord) -> str:
        key = chapter_key(record.story_id, record.chapter_number)
        self.chapters[key] = record
        return key

    async def create_character_record(self, story_id: str, character: Entity) -> None:
        self.characters.setdefault(story_id, []).append(character)

    def chapter_panels(self, key: str) -> Sequence[RenderedPanel]:
        return self.chapters[key].panels
