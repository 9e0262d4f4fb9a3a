"""
MangaForge package exposing story generation, image generation, and the chapter pipeline.
"""

from .pipeline import (
    InMemoryChapterRepository,
    MangaChapterOrchestrator,
    PipelineResult,
    PipelineStage,
    ProgressEvent,
    YamlChapterRepository,
)
from .settings import PipelineSettings
from .story_generation import ChapterRequest, Entity, EntityKind

__all__ = [
    "ChapterRequest",
    "Entity",
    "EntityKind",
    "InMemoryChapterRepository",
    "MangaChapterOrchestrator",
    "PipelineResult",
    "PipelineSettings",
    "PipelineStage",
    "ProgressEvent",
    "YamlChapterRepository",
]
