"""
Exception hierarchy shared by the MangaForge generation pipeline.
"""

from __future__ import annotations


class MangaForgeError(RuntimeError):
    """Base class for all pipeline errors."""


class ConfigurationError(MangaForgeError, ValueError):
    """Raised when credentials or model identifiers are missing."""


class GenerationError(MangaForgeError):
    """An external generation call produced no usable output."""


class ImageGenerationError(GenerationError):
    """The image synthesis service returned no image."""


class InvalidTransitionError(MangaForgeError):
    """An orchestrator operation was invoked from the wrong stage."""


class StageError(MangaForgeError):
    """
    A pipeline stage failed fatally.

    The orchestrator records the stage so callers can tell which step halted
    the auto-chain.
    """

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage


class AllPanelsFailedError(StageError):
    """Every panel render in a chapter failed."""
