"""
Common utilities shared across MangaForge modules.
"""

from .concurrency import settle_all, with_timeout
from .errors import (
    AllPanelsFailedError,
    ConfigurationError,
    GenerationError,
    ImageGenerationError,
    InvalidTransitionError,
    MangaForgeError,
    StageError,
)
from .llm import ChatResult, CompletionCallable, call_chat_completion, parse_json_payload

__all__ = [
    "AllPanelsFailedError",
    "ChatResult",
    "CompletionCallable",
    "ConfigurationError",
    "GenerationError",
    "ImageGenerationError",
    "InvalidTransitionError",
    "MangaForgeError",
    "StageError",
    "call_chat_completion",
    "parse_json_payload",
    "settle_all",
    "with_timeout",
]
