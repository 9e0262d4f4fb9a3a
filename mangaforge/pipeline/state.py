"""
Pipeline stages, mutable run state, and progress events.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from mangaforge.story_generation import (
    AgentContribution,
    ChapterRequest,
    PanelScript,
    RenderedPanel,
    StoryPlan,
)

from .references import ReferenceStore


class PipelineStage(str, Enum):
    INPUT = "input"
    PLANNING = "planning"
    GENERATING_NARRATIVE = "generating-narrative"
    NARRATIVE_REVIEW = "narrative-review"
    EXTRACTING_ENTITIES = "extracting-entities"
    GENERATING_REFERENCES = "generating-references"
    BREAKING_INTO_PANELS = "breaking-into-panels"
    GENERATING_PANEL_IMAGES = "generating-panel-images"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ProgressEvent:
    stage: PipelineStage
    progress: float
    status_message: str
    details: dict[str, Any] = field(default_factory=dict)


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class PipelineState:
    """
    Everything the orchestrator knows about the current run.

    ``progress`` only moves forward within a run; it returns to zero when a
    failure before narrative review resets the run to ``input``.
    """

    stage: PipelineStage = PipelineStage.INPUT
    progress: float = 0.0
    status_message: str = ""
    request: ChapterRequest | None = None
    plan: StoryPlan | None = None
    narrative: str = ""
    contributions: tuple[AgentContribution, ...] = ()
    references: ReferenceStore | None = None
    panels: tuple[PanelScript, ...] = ()
    rendered_panels: tuple[RenderedPanel, ...] = ()
    style_seed: int | None = None
    chapter_id: str | None = None
    error: str | None = None

    @property
    def panel_images(self) -> tuple[str, ...]:
        return tuple(panel.image_url for panel in self.rendered_panels)

    def clear_downstream(self) -> None:
        """Drop everything produced after narrative review."""
        self.references = None
        self.panels = ()
        self.rendered_panels = ()
        self.chapter_id = None


@dataclass(frozen=True)
class PipelineResult:
    success: bool
    stage: PipelineStage
    chapter_id: str | None = None
    narrative: str = ""
    panel_images: tuple[str, ...] = ()
    panels: tuple[RenderedPanel, ...] = ()
    error: str | None = None
