from __future__ import annotations

import itertools
import random
import re
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import pytest

from mangaforge.ai_generation import GeneratedImage
from mangaforge.common import ChatResult, ImageGenerationError
from mangaforge.pipeline import InMemoryChapterRepository, MangaChapterOrchestrator
from mangaforge.pipeline.verifier import VERIFIER_SYSTEM_PROMPT
from mangaforge.settings import PipelineSettings
from mangaforge.story_generation import extraction, narrative, panels
from mangaforge.story_generation.planning import PLANNER_SYSTEM_PROMPT

PLAN_JSON = """```json
{
  "title": "The Lantern Road",
  "synopsis": "A courier chases a thief across a neon city.",
  "totalChapters": 3,
  "estimatedPanelsPerChapter": 3,
  "chapterOutlines": [
    {"chapterNumber": 1, "title": "Sparks Over Neo Kyoto", "summary": "Aiko meets Ren.", "estimatedPanels": 3}
  ]
}
```"""

NARRATIVE_TEXT = (
    "Aiko sprints across the rooftops of Neo Kyoto, chasing the masked thief Ren. "
    "The stolen lantern glows blue in his hands as rain begins to fall."
)

EXTRACTION_TEXT = """Characters:
- Aiko: a young courier with a red scarf (role: protagonist)
- Ren: a masked thief in a grey cloak (role: antagonist)
Locations:
- Neo Kyoto Rooftops: rain-slick tiled roofs under neon signs
Objects:
- Lantern: a brass lantern glowing blue (category: tool)
"""

PANELS_TEXT = """Panel 1:
Description: Aiko leaps between rooftops at night.
Dialogue: "You won't escape, Ren!"
Visual notes: low angle, rain streaks
Reasoning: opens on action

Panel 2:
Description: Ren turns, the lantern glowing in his grip.
Dialogue: none
Visual notes: close-up
Reasoning: reveals the stolen item

Panel 3:
Description: A quiet street corner glows under moonlight.
Dialogue: "..."
Visual notes: wide shot
Reasoning: breathing room
"""

CONSISTENT_REPORT = '{"isConsistent": true, "confidenceScore": 92, "issues": [], "suggestions": []}'

_PERSONA_NAME = re.compile(r"^You are ([^,]+),")

ROUTES = (
    ("planner", PLANNER_SYSTEM_PROMPT),
    ("narrative", narrative.SYNTHESIS_SYSTEM_PROMPT),
    ("rewrite", narrative.REWRITE_SYSTEM_PROMPT),
    ("panels", panels.SYNTHESIS_SYSTEM_PROMPT),
    ("continuation", panels.CONTINUATION_SYSTEM_PROMPT),
    ("extraction", extraction.SYNTHESIS_SYSTEM_PROMPT),
    ("verify", VERIFIER_SYSTEM_PROMPT),
)


def default_responses() -> dict[str, Any]:
    return {
        "planner": PLAN_JSON,
        "narrative": NARRATIVE_TEXT,
        "rewrite": "Revised chapter text.",
        "panels": PANELS_TEXT,
        "continuation": "",
        "extraction": EXTRACTION_TEXT,
        "verify": CONSISTENT_REPORT,
    }


class ScriptedCompletion:
    """
    Async stand-in for ``call_chat_completion`` that answers by system prompt.

    A response may be a string, an exception to raise, or a list consumed one
    call at a time (the last entry repeats).
    """

    def __init__(self, responses: dict[str, Any] | None = None, *, persona_text: str = "Idea. Confidence: 8"):
        self.responses = default_responses()
        self.responses.update(responses or {})
        self.persona_text = persona_text
        self.failing_personas: set[str] = set()
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, *, model: str, messages: Sequence[dict[str, Any]], **kwargs: Any) -> ChatResult:
        system = str(messages[0]["content"]) if messages else ""
        route, persona = self._route(system)
        self.calls.append({"route": route, "persona": persona, "model": model, "messages": list(messages), **kwargs})

        if route == "persona":
            if persona in self.failing_personas:
                raise RuntimeError(f"{persona} is unavailable")
            return ChatResult(text=self.persona_text, raw=None)

        value = self.responses[route]
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, BaseException):
            raise value
        return ChatResult(text=value, raw=None)

    def calls_for(self, route: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["route"] == route]

    @staticmethod
    def _route(system: str) -> tuple[str, str | None]:
        for route, prompt in ROUTES:
            if system == prompt:
                return route, None
        match = _PERSONA_NAME.match(system)
        return "persona", match.group(1) if match else None


@dataclass(frozen=True)
class ImageCall:
    mode: str
    prompt: str
    reference_images: tuple[str, ...]
    aspect_ratio: str
    seed: int | None


class FakeImageGenerator:
    """Records every call and returns deterministic URLs."""

    def __init__(self, *, fail_when: Callable[[str], bool] | None = None) -> None:
        self.calls: list[ImageCall] = []
        self.fail_when = fail_when
        self._counter = itertools.count(1)

    async def text_to_image(self, prompt: str, *, aspect_ratio: str = "1:1", seed: int | None = None) -> GeneratedImage:
        return self._record("t2i", prompt, (), aspect_ratio, seed)

    async def image_to_image(
        self,
        prompt: str,
        reference_images: Sequence[str],
        *,
        aspect_ratio: str = "1:1",
        seed: int | None = None,
    ) -> GeneratedImage:
        return self._record("i2i", prompt, tuple(reference_images), aspect_ratio, seed)

    def calls_for(self, mode: str) -> list[ImageCall]:
        return [call for call in self.calls if call.mode == mode]

    def panel_calls(self) -> list[ImageCall]:
        return [call for call in self.calls if "Manga panel:" in call.prompt]

    def _record(
        self,
        mode: str,
        prompt: str,
        references: tuple[str, ...],
        aspect_ratio: str,
        seed: int | None,
    ) -> GeneratedImage:
        self.calls.append(ImageCall(mode, prompt, references, aspect_ratio, seed))
        if self.fail_when is not None and self.fail_when(prompt):
            raise ImageGenerationError("image service unavailable")
        number = next(self._counter)
        return GeneratedImage(
            image_url=f"https://images.test/{mode}/{number}.png",
            seed=seed if seed is not None else 1000 + number,
        )


@pytest.fixture
def completion() -> ScriptedCompletion:
    return ScriptedCompletion()


@pytest.fixture
def images() -> FakeImageGenerator:
    return FakeImageGenerator()


@pytest.fixture
def repository() -> InMemoryChapterRepository:
    return InMemoryChapterRepository()


@pytest.fixture
def settings() -> PipelineSettings:
    return PipelineSettings(call_timeout=None, max_concurrency=None)


@pytest.fixture
def make_orchestrator(completion, images, repository, settings):
    def _make(**overrides: Any) -> MangaChapterOrchestrator:
        kwargs: dict[str, Any] = {
            "completion_fn": completion,
            "image_generator": images,
            "repository": repository,
            "settings": settings,
            "rng": random.Random(7),
        }
        kwargs.update(overrides)
        return MangaChapterOrchestrator(**kwargs)

    return _make
