"""
Vision-model consistency checks for rendered panels.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from mangaforge.ai_generation import GeneratedImage, build_refinement_prompt
from mangaforge.common import (
    ChatResult,
    CompletionCallable,
    GenerationError,
    call_chat_completion,
    parse_json_payload,
    with_timeout,
)
from mangaforge.settings import resolve_llm_api_key, resolve_vision_model
from mangaforge.story_generation.models import PanelScript

from .references import PanelReferences
from .renderer import PanelRenderer

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 75

VERIFIER_SYSTEM_PROMPT = (
    "You are an expert manga consistency checker. Analyze images and determine if they "
    "maintain character/scene consistency with reference images."
)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return bool(value)


def _as_str_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value.strip(),) if value.strip() else ()
    if isinstance(value, Sequence):
        return tuple(str(item).strip() for item in value if str(item).strip())
    return (str(value),)


@dataclass(frozen=True)
class ConsistencyReport:
    is_consistent: bool
    confidence_score: int
    issues: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()

    def needs_refinement(self, threshold: int = DEFAULT_THRESHOLD) -> bool:
        return not self.is_consistent or self.confidence_score < threshold

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ConsistencyReport":
        if not isinstance(data, Mapping):
            raise ValueError("Consistency report must be a JSON object.")
        if "isConsistent" not in data and "is_consistent" not in data:
            raise ValueError("Consistency report is missing 'isConsistent'.")

        raw_score = data.get("confidenceScore", data.get("confidence_score", 0))
        try:
            score = int(round(float(raw_score)))
        except (TypeError, ValueError):
            score = 0

        return cls(
            is_consistent=_as_bool(data.get("isConsistent", data.get("is_consistent"))),
            confidence_score=max(0, min(100, score)),
            issues=_as_str_list(data.get("issues")),
            suggestions=_as_str_list(data.get("suggestions")),
        )


class ConsistencyVerifier:
    """
    Asks a vision-capable chat model whether a panel matches its references.

    Parameters
    ----------
    model:
        Vision model identifier. Falls back to ``MANGAFORGE_VISION_MODEL`` and
        ``LITELLM_VISION_MODEL``.
    api_key:
        Optional API key forwarded to LiteLLM.
    completion_fn:
        Async chat completion callable, mainly useful for testing.
    call_timeout:
        Per-call timeout in seconds.
    """

    def __init__(
        self,
        *,
        model: str | None = None,
        api_key: str | None = None,
        completion_fn: CompletionCallable | None = None,
        call_timeout: float | None = None,
    ) -> None:
        self._model = resolve_vision_model(model)
        self._api_key = resolve_llm_api_key(api_key)
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion
        self._call_timeout = call_timeout

    @property
    def model(self) -> str:
        return self._model

    async def verify(
        self,
        image_url: str,
        reference_images: Sequence[str],
        *,
        name: str = "",
        description: str = "",
        role: str = "",
    ) -> ConsistencyReport:
        """
        Judge ``image_url`` against ``reference_images``.

        Raises
        ------
        GenerationError
            When the model answers with nothing or with an unparseable judgment.
        """
        if not image_url:
            raise ValueError("image_url must be a non-empty string.")

        messages = [
            {"role": "system", "content": VERIFIER_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": self._user_content(
                    image_url, reference_images, name=name, description=description, role=role
                ),
            },
        ]
        result: ChatResult = await with_timeout(
            self._completion_fn(
                model=self._model,
                messages=messages,
                temperature=0.3,
                max_tokens=500,
                api_key=self._api_key,
            ),
            self._call_timeout,
        )
        if not result.text:
            raise GenerationError("Consistency check returned an empty response.")

        try:
            report = ConsistencyReport.from_mapping(parse_json_payload(result.text))
        except ValueError as exc:
            raise GenerationError(f"Consistency check returned an invalid report: {exc}") from exc

        logger.debug(
            "Consistency for %s: consistent=%s score=%d.",
            name or "panel",
            report.is_consistent,
            report.confidence_score,
        )
        return report

    @staticmethod
    def _user_content(
        image_url: str,
        reference_images: Sequence[str],
        *,
        name: str,
        description: str,
        role: str,
    ) -> list[dict[str, Any]]:
        subject = name or "the main character"
        if role:
            subject = f"{subject} ({role})"

        content: list[dict[str, Any]] = []
        if reference_images:
            content.append({"type": "text", "text": f"Reference images for {subject}: {description}"})
            content.extend({"type": "image_url", "image_url": {"url": url}} for url in reference_images)
            content.append({"type": "text", "text": "New generated image:"})
        content.append({"type": "image_url", "image_url": {"url": image_url}})

        comparison = (
            "Compare with the reference images above. Check for consistency in appearance, style, and design."
            if reference_images
            else "Evaluate if the image matches the description."
        )
        content.append(
            {
                "type": "text",
                "text": f"""Analyze this image. Does it match {subject} with description: "{description}"? {comparison}

Respond with JSON:
{{
  "isConsistent": true/false,
  "confidenceScore": 0-100,
  "issues": ["list of any inconsistencies"],
  "suggestions": ["improvements to make it more consistent"]
}}""",
            }
        )
        return content


@dataclass(frozen=True)
class RefinementOutcome:
    image: GeneratedImage
    refined: bool = False
    report: ConsistencyReport | None = None


class PanelRefiner:
    """
    Verifies a rendered panel and re-renders it at most once.

    The refinement appends the verifier's suggestions to the original prompt
    and renders with the panel's own seed and references. A failing verifier
    or refinement keeps the original image.
    """

    def __init__(
        self,
        verifier: ConsistencyVerifier,
        renderer: PanelRenderer,
        *,
        threshold: int = DEFAULT_THRESHOLD,
    ) -> None:
        self._verifier = verifier
        self._renderer = renderer
        self._threshold = threshold

    async def refine(
        self,
        panel: PanelScript,
        image: GeneratedImage,
        references: PanelReferences,
        *,
        prompt: str,
        aspect_ratio: str = "1:1",
    ) -> RefinementOutcome:
        if not references.should_verify:
            return RefinementOutcome(image=image)

        focus = references.focus_entity
        try:
            report = await self._verifier.verify(
                image.image_url,
                references.reference_images,
                name=focus.name if focus else "",
                description=focus.description if focus else panel.description,
                role=focus.role_label() if focus else "",
            )
        except Exception:
            logger.warning("Consistency check failed, keeping the original panel.", exc_info=True)
            return RefinementOutcome(image=image)

        if not report.needs_refinement(self._threshold):
            return RefinementOutcome(image=image, report=report)

        logger.info(
            "Refining panel (consistent=%s, score=%d).", report.is_consistent, report.confidence_score
        )
        refined = await self._renderer.render(
            panel,
            references,
            prompt=build_refinement_prompt(prompt, report.suggestions),
            aspect_ratio=aspect_ratio,
        )
        if refined is None:
            return RefinementOutcome(image=image, report=report)
        return RefinementOutcome(image=refined, refined=True, report=report)
