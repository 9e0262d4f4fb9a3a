"""
Environment-driven configuration for the MangaForge pipeline.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_TEXT_MODEL = "gpt-4.1-mini"
DEFAULT_VISION_MODEL = "gpt-4o-mini"
DEFAULT_CALL_TIMEOUT = 180.0


def _first_env(*names: str) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()
    return None


def resolve_text_model(model: str | None = None) -> str:
    """Return the text-generation model, honouring explicit overrides first."""
    return (
        model
        or _first_env("MANGAFORGE_STORY_MODEL", "LITELLM_STORY_MODEL", "LITELLM_MODEL")
        or DEFAULT_TEXT_MODEL
    )


def resolve_synthesis_model(model: str | None = None) -> str:
    """Return the model used for synthesis calls (defaults to the text model)."""
    return model or _first_env("MANGAFORGE_SYNTHESIS_MODEL") or resolve_text_model()


def resolve_vision_model(model: str | None = None) -> str:
    return (
        model
        or _first_env("MANGAFORGE_VISION_MODEL", "LITELLM_VISION_MODEL")
        or DEFAULT_VISION_MODEL
    )


def resolve_llm_api_key(api_key: str | None = None) -> str | None:
    return api_key or _first_env("MANGAFORGE_LLM_API_KEY", "OPENAI_API_KEY", "LITELLM_API_KEY")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be numeric, got {raw!r}.") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer, got {raw!r}.") from exc


@dataclass(frozen=True)
class PipelineSettings:
    """
    Knobs that control how the orchestrator schedules and frames generation calls.

    Attributes
    ----------
    call_timeout:
        Seconds before a single external call is abandoned. The batch it belongs to
        still waits for every other call to settle.
    max_concurrency:
        Upper bound on concurrent calls inside one batch. ``None`` means unbounded.
    verification_threshold:
        Consistency confidence below which a panel is refined once.
    panel_aspect_ratio, character_aspect_ratio, location_aspect_ratio:
        Aspect ratios forwarded to the image service.
    angle_count:
        Number of auxiliary angle images generated for each character that has a
        reference image but no angles yet. Zero disables angle generation.
    output_dir:
        Root directory used by the YAML chapter repository.
    """

    call_timeout: float | None = DEFAULT_CALL_TIMEOUT
    max_concurrency: int | None = 6
    verification_threshold: int = 75
    panel_aspect_ratio: str = "1:1"
    character_aspect_ratio: str = "3:4"
    location_aspect_ratio: str = "16:9"
    angle_count: int = 0
    output_dir: Path = Path("chapters")

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        defaults = cls()
        timeout = _env_float("MANGAFORGE_CALL_TIMEOUT", defaults.call_timeout or 0.0)
        concurrency = _env_int("MANGAFORGE_MAX_CONCURRENCY", defaults.max_concurrency or 0)
        return cls(
            call_timeout=timeout if timeout > 0 else None,
            max_concurrency=concurrency if concurrency > 0 else None,
            verification_threshold=_env_int(
                "MANGAFORGE_VERIFICATION_THRESHOLD", defaults.verification_threshold
            ),
            panel_aspect_ratio=_first_env("MANGAFORGE_PANEL_ASPECT_RATIO")
            or defaults.panel_aspect_ratio,
            angle_count=max(0, _env_int("MANGAFORGE_ANGLE_COUNT", defaults.angle_count)),
            output_dir=Path(_first_env("MANGAFORGE_OUTPUT_DIR") or defaults.output_dir),
        )
