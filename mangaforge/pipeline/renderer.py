"""
Render a single panel image.
"""

from __future__ import annotations

import logging

from mangaforge.ai_generation import GeneratedImage
from mangaforge.common import with_timeout
from mangaforge.story_generation.models import PanelScript

from .references import ImageGenerator, PanelReferences

logger = logging.getLogger(__name__)


class PanelRenderer:
    """
    Chooses image-to-image when references exist and text-to-image otherwise.

    Rendering never raises: failures are logged and reported as ``None`` so the
    caller can drop the panel.
    """

    def __init__(self, image_generator: ImageGenerator, *, call_timeout: float | None = None) -> None:
        self._image_generator = image_generator
        self._call_timeout = call_timeout

    async def render(
        self,
        panel: PanelScript,
        references: PanelReferences,
        *,
        prompt: str,
        aspect_ratio: str = "1:1",
    ) -> GeneratedImage | None:
        try:
            if references.reference_images:
                call = self._image_generator.image_to_image(
                    prompt,
                    list(references.reference_images),
                    aspect_ratio=aspect_ratio,
                    seed=references.seed,
                )
            else:
                call = self._image_generator.text_to_image(
                    prompt, aspect_ratio=aspect_ratio, seed=references.seed
                )
            image = await with_timeout(call, self._call_timeout)
        except Exception:
            logger.exception("Rendering failed for panel: %.80s", panel.description)
            return None

        if image is None or not image.image_url:
            logger.warning("Image service returned nothing for panel: %.80s", panel.description)
            return None
        return image
