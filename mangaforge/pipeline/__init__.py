"""
End-to-end orchestration for MangaForge chapter generation.
"""

from .matching import EntityMatcher, KeywordEntityMatcher
from .persistence import (
    ChapterRecord,
    ChapterRepository,
    InMemoryChapterRepository,
    YamlChapterRepository,
    chapter_key,
)
from .pipeline import MangaChapterOrchestrator, ensure_llm_credentials, load_request_file
from .references import (
    ImageGenerator,
    PanelReferences,
    ReferenceGenerator,
    ReferenceReport,
    ReferenceStore,
)
from .renderer import PanelRenderer
from .state import (
    PipelineResult,
    PipelineStage,
    PipelineState,
    ProgressCallback,
    ProgressEvent,
)
from .verifier import ConsistencyReport, ConsistencyVerifier, PanelRefiner, RefinementOutcome

__all__ = [
    "EntityMatcher",
    "KeywordEntityMatcher",
    "ChapterRecord",
    "ChapterRepository",
    "InMemoryChapterRepository",
    "YamlChapterRepository",
    "chapter_key",
    "MangaChapterOrchestrator",
    "ensure_llm_credentials",
    "load_request_file",
    "ImageGenerator",
    "PanelReferences",
    "ReferenceGenerator",
    "ReferenceReport",
    "ReferenceStore",
    "PanelRenderer",
    "PipelineResult",
    "PipelineStage",
    "PipelineState",
    "ProgressCallback",
    "ProgressEvent",
    "ConsistencyReport",
    "ConsistencyVerifier",
    "PanelRefiner",
    "RefinementOutcome",
]
