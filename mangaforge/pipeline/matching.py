"""
Decide whether an entity is relevant to a panel description.
"""

from __future__ import annotations

import re
from typing import Protocol

from mangaforge.story_generation.models import Entity

GENERIC_PROTAGONIST_REFERENTS = ("hero", "main character", "protagonist", "the character")
DESCRIPTION_PREFIX_WORDS = 3


class EntityMatcher(Protocol):
    def matches(self, entity: Entity, text: str) -> bool:
        ...


class KeywordEntityMatcher:
    """
    Case-insensitive keyword matcher.

    An entity matches when its name occurs in the text, when it is a
    protagonist and the text uses a generic referent such as "the hero", or
    when the first three words of its description occur in the text.
    """

    def __init__(
        self,
        *,
        protagonist_referents: tuple[str, ...] = GENERIC_PROTAGONIST_REFERENTS,
        description_words: int = DESCRIPTION_PREFIX_WORDS,
    ) -> None:
        self._referents = tuple(
            re.compile(rf"\b{re.escape(term)}\b", re.IGNORECASE) for term in protagonist_referents
        )
        self._description_words = description_words

    def matches(self, entity: Entity, text: str) -> bool:
        haystack = (text or "").lower()
        if not haystack:
            return False

        name = entity.name.lower()
        if name and name in haystack:
            return True

        if entity.is_protagonist and any(pattern.search(haystack) for pattern in self._referents):
            return True

        prefix = self.description_prefix(entity)
        return bool(prefix) and prefix in haystack

    def description_prefix(self, entity: Entity) -> str:
        # Shorter descriptions would match on a single common word.
        words = entity.description.lower().split()
        if len(words) < self._description_words:
            return ""
        return " ".join(words[: self._description_words])
