"""
Story generation utilities: planning, narrative, panel breakdown, and entity extraction.
"""

from .collaboration import (
    AgentContribution,
    AgentPersona,
    ChatPrompt,
    CollaborationBrief,
    CollaborationEngine,
    CollaborationOutcome,
    CollaborationSummary,
)
from .extraction import (
    EntityExtractor,
    ExtractedElements,
    ExtractionResult,
    parse_extraction_response,
    validate_entity_name,
)
from .models import (
    CharacterRole,
    Entity,
    EntityAngle,
    EntityKind,
    ObjectCategory,
    PanelScript,
    Relationship,
    RenderedPanel,
    ScenarioType,
)
from .narrative import NarrativeDraft, NarrativeGenerator
from .panels import PanelBreakdown, PanelBreakdownGenerator, parse_panel_response
from .personas import EXTRACTION_PERSONAS, NARRATIVE_PERSONAS, PANEL_PERSONAS
from .planning import ChapterOutline, StoryPlan, StoryPlanner, chapter_prompt
from .request import ChapterRequest

__all__ = [
    "AgentContribution",
    "AgentPersona",
    "ChatPrompt",
    "CollaborationBrief",
    "CollaborationEngine",
    "CollaborationOutcome",
    "CollaborationSummary",
    "EntityExtractor",
    "ExtractedElements",
    "ExtractionResult",
    "parse_extraction_response",
    "validate_entity_name",
    "CharacterRole",
    "Entity",
    "EntityAngle",
    "EntityKind",
    "ObjectCategory",
    "PanelScript",
    "Relationship",
    "RenderedPanel",
    "ScenarioType",
    "NarrativeDraft",
    "NarrativeGenerator",
    "PanelBreakdown",
    "PanelBreakdownGenerator",
    "parse_panel_response",
    "EXTRACTION_PERSONAS",
    "NARRATIVE_PERSONAS",
    "PANEL_PERSONAS",
    "ChapterOutline",
    "StoryPlan",
    "StoryPlanner",
    "chapter_prompt",
    "ChapterRequest",
]
