"""
Story planning: a single structured call that outlines the whole story.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from mangaforge.common import (
    ChatResult,
    CompletionCallable,
    GenerationError,
    call_chat_completion,
    parse_json_payload,
    with_timeout,
)
from mangaforge.settings import resolve_llm_api_key, resolve_text_model

from .request import ChapterRequest

logger = logging.getLogger(__name__)

PLANNER_SYSTEM_PROMPT = """You are a master manga story architect. Given a story idea, plan out:
1. A compelling title
2. An engaging synopsis (2-3 sentences)
3. Total number of chapters needed (realistic for manga serialization)
4. Brief description of what happens in each chapter
5. Estimated panels per chapter (typically 6-10 for web manga)

Respond ONLY with valid JSON in this exact format:
{
  "title": "Story Title",
  "synopsis": "Brief compelling synopsis",
  "totalChapters": 5,
  "estimatedPanelsPerChapter": 8,
  "chapterOutlines": [
    {
      "chapterNumber": 1,
      "title": "Chapter Title",
      "summary": "What happens in this chapter",
      "estimatedPanels": 8
    }
  ]
}"""


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class ChapterOutline:
    chapter_number: int
    title: str
    summary: str
    estimated_panels: int = 8

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, fallback_number: int) -> "ChapterOutline":
        return cls(
            chapter_number=_as_int(_pick(data, "chapterNumber", "chapter_number"), fallback_number),
            title=str(_pick(data, "title") or f"Chapter {fallback_number}").strip(),
            summary=str(_pick(data, "summary", "description") or "").strip(),
            estimated_panels=_as_int(_pick(data, "estimatedPanels", "estimated_panels"), 8),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "chapter_number": self.chapter_number,
            "title": self.title,
            "summary": self.summary,
            "estimated_panels": self.estimated_panels,
        }


@dataclass(frozen=True)
class StoryPlan:
    """
    Story-level outline produced before the first chapter is written.
    """

    title: str
    synopsis: str
    total_chapters: int
    estimated_panels_per_chapter: int
    chapter_outlines: tuple[ChapterOutline, ...] = ()

    def outline_for(self, chapter_number: int) -> ChapterOutline | None:
        for outline in self.chapter_outlines:
            if outline.chapter_number == chapter_number:
                return outline
        return None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StoryPlan":
        if not isinstance(data, Mapping):
            raise ValueError("Story plan must be a JSON object.")

        title = str(_pick(data, "title") or "").strip()
        if not title:
            raise ValueError("Story plan is missing a title.")

        raw_outlines = _pick(data, "chapterOutlines", "chapter_outlines") or []
        if not isinstance(raw_outlines, list):
            raise ValueError("chapterOutlines must be a list.")

        outlines = tuple(
            ChapterOutline.from_mapping(item, fallback_number=index)
            for index, item in enumerate(raw_outlines, start=1)
            if isinstance(item, Mapping)
        )
        return cls(
            title=title,
            synopsis=str(_pick(data, "synopsis") or "").strip(),
            total_chapters=max(1, _as_int(_pick(data, "totalChapters", "total_chapters"), len(outlines) or 1)),
            estimated_panels_per_chapter=_as_int(
                _pick(data, "estimatedPanelsPerChapter", "estimated_panels_per_chapter"), 8
            ),
            chapter_outlines=outlines,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "synopsis": self.synopsis,
            "total_chapters": self.total_chapters,
            "estimated_panels_per_chapter": self.estimated_panels_per_chapter,
            "chapter_outlines": [outline.to_dict() for outline in self.chapter_outlines],
        }


def chapter_prompt(request: ChapterRequest, plan: StoryPlan | None) -> str:
    """
    Return the prompt the narrative round should write from.

    When the plan outlines the requested chapter, the outline replaces the raw
    premise so the chapter stays on the planned arc.
    """
    if plan is None:
        return request.prompt

    outline = plan.outline_for(request.chapter_number)
    if outline is None:
        return request.prompt
    return f"{plan.title} - Chapter {outline.chapter_number}: {outline.title}. {outline.summary}".strip()


class StoryPlanner:
    """
    Turns a story premise into a :class:`StoryPlan` with one JSON completion.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        completion_fn: CompletionCallable | None = None,
        temperature: float = 0.7,
        call_timeout: float | None = None,
    ) -> None:
        self._api_key = resolve_llm_api_key(api_key)
        self._model = resolve_text_model(model)
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion
        self._temperature = temperature
        self._call_timeout = call_timeout

    @property
    def model(self) -> str:
        return self._model

    async def plan_story(self, request: ChapterRequest) -> StoryPlan:
        messages = [
            {"role": "system", "content": PLANNER_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"Plan a {request.genre} manga story based on this idea: {request.prompt}",
            },
        ]
        result: ChatResult = await with_timeout(
            self._completion_fn(
                model=self._model,
                messages=messages,
                temperature=self._temperature,
                api_key=self._api_key,
            ),
            self._call_timeout,
        )
        if not result.text:
            raise GenerationError("Story planner returned an empty response.")

        try:
            plan = StoryPlan.from_mapping(parse_json_payload(result.text))
        except ValueError as exc:
            raise GenerationError(f"Story planner returned an invalid plan: {exc}") from exc

        logger.info(
            "Planned '%s' with %d chapter outline(s).", plan.title, len(plan.chapter_outlines)
        )
        return plan
