"""
Break a chapter narrative into an exact number of panel scripts.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
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
from .models import PanelScript
from .personas import PANEL_PERSONAS

logger = logging.getLogger(__name__)

SYNTHESIS_SYSTEM_PROMPT = (
    "You are an expert manga panel orchestrator who creates compelling visual narratives."
)
CONTINUATION_SYSTEM_PROMPT = (
    "You are an expert manga panel orchestrator extending an existing panel plan."
)

PANEL_FORMAT = """Use exactly this format for every panel:
Panel N:
Description: what the reader sees
Dialogue: spoken lines, or leave empty
Visual notes: camera angle and composition
Reasoning: why this panel matters"""

PANEL_RULES = """STRICT PANEL RULES:
- Each panel depicts a single moment.
- Avoid describing split frames or multiple simultaneous sub-panels.
- Keep camera angle and focal point clear for one shot per panel."""

_PANEL_HEADER = re.compile(
    r"^[ \t#>*_\-]*panel[ \t]*(\d+)\b[ \t*_]*[:.)\-]?[ \t*_]*",
    re.IGNORECASE | re.MULTILINE,
)
_LABELLED_LINE = re.compile(
    r"^(visual description|scene description|visual notes|camera notes|description|visual|"
    r"dialogue|notes|reasoning|why)\b\s*(?:\([^)]*\))?\s*[:\-]\s*(.*)$",
    re.IGNORECASE,
)
_LABEL_FIELDS = {
    "visual description": "description",
    "scene description": "description",
    "description": "description",
    "visual": "description",
    "visual notes": "visual_notes",
    "camera notes": "visual_notes",
    "notes": "visual_notes",
    "dialogue": "dialogue",
    "reasoning": "reasoning",
    "why": "reasoning",
}
_EMPTY_DIALOGUE = {"none", "n/a", "na", "-", "no dialogue", "(none)", "silent", "(silent)"}


def continuation_placeholder(position: int) -> PanelScript:
    return PanelScript(
        description=f"Panel {position} - Continuation scene.",
        reasoning="Added to reach requested panel count.",
        is_placeholder=True,
    )


def _clean_line(line: str) -> str:
    cleaned = line.strip()
    cleaned = re.sub(r"^(?:[-*•]|\d+[.)])\s+", "", cleaned)
    return cleaned.replace("**", "").replace("__", "").strip()


def _parse_section(body: str, position: int) -> PanelScript | None:
    fields = {"description": [], "dialogue": [], "visual_notes": [], "reasoning": []}
    current: str | None = None

    for raw in body.splitlines():
        line = _clean_line(raw)
        if not line:
            continue

        labelled = _LABELLED_LINE.match(line)
        if labelled:
            current = _LABEL_FIELDS[labelled.group(1).lower()]
            value = labelled.group(2).strip()
            if value:
                fields[current].append(value)
        elif current is not None:
            fields[current].append(line)
        elif not fields["description"] and ":" not in line:
            current = "description"
            fields["description"].append(line)

    description = " ".join(fields["description"]).strip()
    dialogue = " ".join(fields["dialogue"]).strip()
    if dialogue.lower() in _EMPTY_DIALOGUE:
        dialogue = ""
    if not description and not dialogue:
        return None

    return PanelScript(
        description=description or f"Panel {position} visual content",
        dialogue=dialogue,
        visual_notes=" ".join(fields["visual_notes"]).strip(),
        reasoning=" ".join(fields["reasoning"]).strip(),
    )


def _parse_numbered(text: str) -> list[tuple[int, PanelScript]]:
    headers = list(_PANEL_HEADER.finditer(text or ""))
    panels: list[tuple[int, PanelScript]] = []
    for index, header in enumerate(headers):
        end = headers[index + 1].start() if index + 1 < len(headers) else len(text)
        panel = _parse_section(text[header.end() : end], len(panels) + 1)
        if panel is not None:
            panels.append((int(header.group(1)), panel))
    return panels


def parse_panel_response(text: str) -> list[PanelScript]:
    """
    Parse ``Panel <n>`` sections out of free-form model output.

    Recognised labels are description/visual, dialogue, visual notes/notes and
    reasoning/why; the first unlabelled line of a section is taken as the
    description. Sections carrying neither description nor dialogue are
    skipped. The result is never padded.
    """
    return [panel for _, panel in _parse_numbered(text)]


def parse_continuation_response(text: str, existing: int) -> list[PanelScript]:
    """
    Parse panels returned by a continuation call.

    Panels numbered at or below ``existing`` repeat what we already have and are
    dropped, unless the model restarted its numbering from one.
    """
    numbered = _parse_numbered(text)
    if any(number > existing for number, _ in numbered):
        return [panel for number, panel in numbered if number > existing]
    return [panel for _, panel in numbered]


def _join(values: Iterable[str]) -> str:
    return ", ".join(values) or "none specified"


@dataclass(frozen=True)
class PanelBreakdown:
    panels: tuple[PanelScript, ...]
    contributions: tuple[AgentContribution, ...] = ()
    summary: CollaborationSummary | None = None

    @property
    def placeholder_count(self) -> int:
        return sum(1 for panel in self.panels if panel.is_placeholder)


class PanelBreakdownGenerator:
    """
    Turns chapter prose into exactly ``panel_count`` panel scripts.
    """

    def __init__(
        self,
        *,
        engine: CollaborationEngine | None = None,
        completion_fn: CompletionCallable | None = None,
        model: str | None = None,
        api_key: str | None = None,
        personas: Sequence[AgentPersona] = PANEL_PERSONAS,
    ) -> None:
        self._engine = engine or CollaborationEngine(
            completion_fn=completion_fn, model=model, api_key=api_key
        )
        self._personas = tuple(personas)

    async def break_into_panels(
        self,
        narrative: str,
        panel_count: int,
        *,
        characters: Sequence[str] = (),
        locations: Sequence[str] = (),
        genre: str = "fantasy",
    ) -> PanelBreakdown:
        """
        Run the panel collaboration round and reconcile its output to ``panel_count``.

        Parameters
        ----------
        narrative:
            Approved chapter narrative.
        panel_count:
            Exact number of panels to return; must be at least one.
        characters, locations:
            Entity names the panels should keep consistent.
        genre:
            Genre label included in every prompt.
        """
        if panel_count < 1:
            raise ValueError("panel_count must be at least 1.")
        if not narrative or not narrative.strip():
            raise ValueError("narrative must be a non-empty string.")

        brief = CollaborationBrief(
            label="panels",
            personas=self._personas,
            persona_prompt=lambda persona: self._persona_prompt(
                persona, narrative, panel_count, characters, locations, genre
            ),
            synthesis_prompt=lambda contributions: self._synthesis_prompt(
                contributions, narrative, panel_count, characters, locations, genre
            ),
            synthesis_temperature=0.7,
            synthesis_max_tokens=1500,
            synthesis_method="Multi-Agent Panel Collaboration",
        )
        outcome = await self._engine.run(brief)
        parsed = parse_panel_response(outcome.text)
        if len(parsed) != panel_count:
            logger.info("Panel synthesis produced %d/%d panel(s).", len(parsed), panel_count)

        panels = await self._engine.complete_to_count(
            parsed,
            panel_count,
            parse=lambda text: parse_continuation_response(text, len(parsed)),
            continuation_prompt=lambda existing: self._continuation_prompt(
                existing, narrative, panel_count
            ),
            placeholder=continuation_placeholder,
            temperature=0.6,
            max_tokens=800,
        )
        breakdown = PanelBreakdown(
            panels=tuple(panels),
            contributions=outcome.contributions,
            summary=outcome.summary,
        )
        if breakdown.placeholder_count:
            logger.warning(
                "Padded panel breakdown with %d placeholder panel(s).", breakdown.placeholder_count
            )
        return breakdown

    @staticmethod
    def _persona_prompt(
        persona: AgentPersona,
        narrative: str,
        panel_count: int,
        characters: Sequence[str],
        locations: Sequence[str],
        genre: str,
    ) -> ChatPrompt:
        secondary = persona.expertise[1] if len(persona.expertise) > 1 else persona.focus
        system = f"""{persona.introduction()}

Your task is to break down the story into {panel_count} manga panels, focusing on your area of expertise.

Story Context:
- Genre: {genre}
- Characters: {_join(characters)}
- Locations: {_join(locations)}
- Target Panels: {panel_count}

IMPORTANT: Maintain character consistency across all panels. If specific characters are mentioned, ensure they appear consistently throughout the story with the same appearance, personality, and traits.

{PANEL_RULES}

Focus on {persona.focus} and {secondary} while creating panel breakdowns."""

        user = f"""Break this {genre} story into {panel_count} manga panels:

{narrative}

{PANEL_FORMAT}

Number the panels 1-{panel_count}. Finish with a line "Confidence: N" (1-10).
Focus on your expertise: {persona.focus}. Make each panel compelling and purposeful."""
        return ChatPrompt(system=system, user=user)

    @staticmethod
    def _synthesis_prompt(
        contributions: Sequence[AgentContribution],
        narrative: str,
        panel_count: int,
        characters: Sequence[str],
        locations: Sequence[str],
        genre: str,
    ) -> ChatPrompt:
        user = f"""You are the Panel Orchestrator, responsible for synthesizing panel suggestions from specialized agents into the final manga panel breakdown.

Story Context:
- Genre: {genre}
- Characters: {_join(characters)}
- Locations: {_join(locations)}
- Target Panels: {panel_count}

Story:
{narrative}

Use the character and location names exactly as listed above.

Agent Panel Suggestions:
{format_contributions(contributions)}

Create the final panel breakdown with exactly {panel_count} panels. For each panel, combine the best elements from the agent suggestions into a compelling visual description and natural dialogue, keeping clear narrative progression and visual flow between panels.

{PANEL_RULES}

{PANEL_FORMAT}"""
        return ChatPrompt(system=SYNTHESIS_SYSTEM_PROMPT, user=user)

    @staticmethod
    def _continuation_prompt(
        existing: Sequence[PanelScript],
        narrative: str,
        panel_count: int,
    ) -> ChatPrompt:
        current = len(existing)
        listing = "\n".join(
            f"Panel {index}: {panel.description}"
            + (f" | Dialogue: {panel.dialogue}" if panel.dialogue else "")
            for index, panel in enumerate(existing, start=1)
        )
        user = f"""We currently have {current} panels, but require {panel_count}.

Existing Panels:
{listing or "(none)"}

Please add {panel_count - current} more panels to reach exactly {panel_count}, continuing the story from the narrative:
{narrative}

Rules:
- Each panel covers a single moment.
- Maintain continuity with the existing panels.
- Return only the missing panels numbered {current + 1}-{panel_count}.

{PANEL_FORMAT}"""
        return ChatPrompt(system=CONTINUATION_SYSTEM_PROMPT, user=user)
