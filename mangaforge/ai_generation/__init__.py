"""
AI image generation package for MangaForge.
"""

from .prompting import (
    build_angle_prompts,
    build_panel_prompt,
    build_reference_prompt,
    build_refinement_prompt,
    build_style_clause,
)
from .replicate_service import GeneratedImage, ReplicateImageGenerator, normalize_image_outputs

__all__ = [
    "build_angle_prompts",
    "build_panel_prompt",
    "build_reference_prompt",
    "build_refinement_prompt",
    "build_style_clause",
    "GeneratedImage",
    "ReplicateImageGenerator",
    "normalize_image_outputs",
]
