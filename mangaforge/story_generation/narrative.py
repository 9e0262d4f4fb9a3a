"""
Chapter narrative generation and targeted rewrites.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from mangaforge.common import CompletionCallable, GenerationError

from .collaboration import (
    AgentContribution,
    AgentPersona,
    ChatPrompt,
    CollaborationBrief,
    CollaborationEngine,
    CollaborationSummary,
    format_contributions,
)
from .models import Entity
from .personas import NARRATIVE_PERSONAS
from .planning import StoryPlan, chapter_prompt
from .request import ChapterRequest

logger = logging.getLogger(__name__)

SYNTHESIS_SYSTEM_PROMPT = (
    "You are an expert story synthesizer who creates compelling narratives by combining "
    "specialized contributions."
)

REWRITE_SYSTEM_PROMPT = " ".join(
    [
        "You are a senior manga story editor.",
        "Revise the given chapter to incorporate the user's edit request while keeping coherence, "
        "pacing, and continuity.",
        "Preserve the existing tone and genre unless the edit requests otherwise.",
        "Return ONLY the full revised chapter text, no preface or explanation.",
    ]
)

CONTINUITY_RULES = """CRITICAL CONTINUITY REQUIREMENTS:
- Maintain character consistency throughout the story: same appearance, clothing, accessories, and personality traits
- If user characters are provided, use them as main characters and reference their descriptions consistently
- Track character positioning and relationships across scenes
- Preserve environmental details: locations, lighting, time of day, weather
- Ensure dialogue flows naturally between scenes and maintains character voice"""


def _entity_line(entities: Iterable[Entity]) -> str:
    return ", ".join(entity.prompt_line() for entity in entities) or "none"


@dataclass(frozen=True)
class NarrativeDraft:
    text: str
    contributions: tuple[AgentContribution, ...] = ()
    summary: CollaborationSummary | None = None


class NarrativeGenerator:
    """
    Writes chapter prose with a collaboration round over the narrative roster.

    Parameters
    ----------
    engine:
        Pre-configured collaboration engine. Built from the remaining arguments
        when omitted.
    personas:
        Roster override, mainly for tests.
    rewrite_temperature:
        Sampling temperature of the single rewrite call.
    """

    def __init__(
        self,
        *,
        engine: CollaborationEngine | None = None,
        completion_fn: CompletionCallable | None = None,
        model: str | None = None,
        api_key: str | None = None,
        personas: Sequence[AgentPersona] = NARRATIVE_PERSONAS,
        rewrite_temperature: float = 0.5,
    ) -> None:
        self._engine = engine or CollaborationEngine(
            completion_fn=completion_fn, model=model, api_key=api_key
        )
        self._personas = tuple(personas)
        self._rewrite_temperature = rewrite_temperature

    async def generate(self, request: ChapterRequest, plan: StoryPlan | None = None) -> NarrativeDraft:
        """
        Produce the chapter narrative for ``request``.
        """
        premise = chapter_prompt(request, plan)
        brief = CollaborationBrief(
            label="narrative",
            personas=self._personas,
            persona_prompt=lambda persona: self._persona_prompt(persona, request, premise),
            synthesis_prompt=lambda contributions: self._synthesis_prompt(
                contributions, request, premise
            ),
            synthesis_temperature=0.7,
            synthesis_max_tokens=1200,
        )
        outcome = await self._engine.run(brief)
        logger.info(
            "Narrative ready (%d words, %d/%d personas).",
            len(outcome.text.split()),
            outcome.summary.successful_agents,
            outcome.summary.total_agents,
        )
        return NarrativeDraft(
            text=outcome.text,
            contributions=outcome.contributions,
            summary=outcome.summary,
        )

    async def rewrite(
        self,
        narrative: str,
        instruction: str,
        *,
        selection: str = "",
        genre: str = "",
    ) -> str:
        """
        Return a full replacement for ``narrative`` that applies ``instruction``.

        ``selection`` optionally narrows the edit to one passage; the model still
        returns the whole chapter.
        """
        if not narrative or not narrative.strip():
            raise ValueError("narrative must be a non-empty string.")
        if not instruction or not instruction.strip():
            raise ValueError("instruction must be a non-empty string.")

        parts = [
            f"Genre: {genre}" if genre else "",
            f'Selected passage to adapt:\n"""{selection}"""' if selection else "",
            f"User edit request: {instruction.strip()}",
            "Original chapter:",
            narrative,
        ]
        prompt = ChatPrompt(system=REWRITE_SYSTEM_PROMPT, user="\n\n".join(filter(None, parts)))
        result = await self._engine.complete(
            prompt, temperature=self._rewrite_temperature, max_tokens=None
        )
        if not result.text:
            raise GenerationError("Rewrite returned an empty response.")
        return result.text

    @staticmethod
    def _persona_prompt(persona: AgentPersona, request: ChapterRequest, premise: str) -> ChatPrompt:
        secondary = persona.expertise[1] if len(persona.expertise) > 1 else persona.focus
        system = f"""{persona.introduction()}

Your task is to contribute your expertise to create an engaging {request.genre} story. Focus specifically on your area of expertise while considering the overall story context.

Story Context:
- Genre: {request.genre}
- Art Style: {request.style}
- Target Panels: {request.panel_count}
- User Characters: {_entity_line(request.user_characters)}
- User Scenarios: {_entity_line(request.user_scenarios)}
- User Objects: {_entity_line(request.user_objects)}
- Story Prompt: {premise}

{CONTINUITY_RULES}

Provide your specialized contribution focusing on {persona.focus} and {secondary}. Be specific and actionable."""

        user = f"""Create a detailed contribution for this {request.genre} story focusing on your expertise. Include:
1. Your specific contribution (2-3 paragraphs)
2. Key focus areas you're addressing
3. Suggestions for other agents
4. A final line "Confidence: N" with your confidence level (1-10)

Make it engaging and true to the {request.genre} genre while staying in character as {persona.name}."""
        return ChatPrompt(system=system, user=user)

    @staticmethod
    def _synthesis_prompt(
        contributions: Sequence[AgentContribution],
        request: ChapterRequest,
        premise: str,
    ) -> ChatPrompt:
        user = f"""You are the Story Orchestrator, responsible for synthesizing contributions from specialized writing agents into a cohesive, engaging {request.genre} story in {request.style} style for {request.panel_count} panels.

Agent Contributions:
{format_contributions(contributions)}

User Context:
- Characters: {_entity_line(request.user_characters)}
- Scenarios: {_entity_line(request.user_scenarios)}
- Objects: {_entity_line(request.user_objects)}
- Original Prompt: {premise}

Create a compelling {request.genre} story in {request.style} style that incorporates the best elements from each agent's contribution. The story should be cohesive and well-structured, true to the {request.genre} genre, and optimized for {request.panel_count} manga panels ready for visual breakdown.

Return only the story text."""
        return ChatPrompt(system=SYNTHESIS_SYSTEM_PROMPT, user=user)
