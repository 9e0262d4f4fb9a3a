"""
Integration with Replicate for manga panel and reference image synthesis.
"""

from __future__ import annotations

import logging
import os
import random
from collections.abc import Iterable as IterableABC
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import replicate

from mangaforge.common.errors import ConfigurationError, ImageGenerationError

logger = logging.getLogger(__name__)

DEFAULT_TEXT_TO_IMAGE_MODEL = "black-forest-labs/flux-schnell"
DEFAULT_IMAGE_TO_IMAGE_MODEL = "black-forest-labs/flux-kontext-pro"

SEED_MOD = 2_147_483_647


@dataclass(frozen=True)
class GeneratedImage:
    """An image URL together with the seed that produced it, or ``None`` for seedless models."""

    image_url: str
    seed: int | None


def _build_flux_schnell_input(
    *,
    prompt: str,
    aspect_ratio: str,
    seed: int | None,
    reference_images: Sequence[str],
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt,
        "aspect_ratio": aspect_ratio,
        "num_outputs": 1,
        "output_format": "png",
        "go_fast": True,
    }
    if seed is not None:
        payload["seed"] = seed
    return payload


def _build_flux_dev_input(
    *,
    prompt: str,
    aspect_ratio: str,
    seed: int | None,
    reference_images: Sequence[str],
) -> dict[str, Any]:
    payload = _build_flux_schnell_input(
        prompt=prompt,
        aspect_ratio=aspect_ratio,
        seed=seed,
        reference_images=reference_images,
    )
    payload.pop("go_fast", None)
    payload["guidance"] = 3.5
    if reference_images:
        payload["image"] = reference_images[0]
        payload["prompt_strength"] = 0.8
    return payload


def _build_flux_kontext_input(
    *,
    prompt: str,
    aspect_ratio: str,
    seed: int | None,
    reference_images: Sequence[str],
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt,
        "aspect_ratio": aspect_ratio,
        "output_format": "png",
        "safety_tolerance": 2,
        "prompt_upsampling": False,
    }
    if reference_images:
        # Kontext accepts a single conditioning image; the first reference is the
        # highest-priority entity image.
        payload["input_image"] = reference_images[0]
    if seed is not None:
        payload["seed"] = seed
    return payload


def _build_nano_banana_input(
    *,
    prompt: str,
    aspect_ratio: str,
    seed: int | None,
    reference_images: Sequence[str],
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt,
        "output_format": "png",
    }
    if reference_images:
        payload["image_input"] = list(reference_images)
        payload["aspect_ratio"] = "match_input_image" if not aspect_ratio else aspect_ratio
    else:
        payload["aspect_ratio"] = aspect_ratio
    return payload


def _build_seedream_input(
    *,
    prompt: str,
    aspect_ratio: str,
    seed: int | None,
    reference_images: Sequence[str],
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt,
        "aspect_ratio": aspect_ratio,
        "size": "2K",
        "max_images": 1,
        "sequential_image_generation": "disabled",
    }
    if reference_images:
        payload["image_input"] = list(reference_images)
    return payload


@dataclass(frozen=True)
class _ModelInput:
    builder: Callable[..., dict[str, Any]]
    accepts_seed: bool


# nano-banana and seedream-4 expose no seed input on Replicate.
_MODEL_INPUT_BUILDERS: dict[str, _ModelInput] = {
    "black-forest-labs/flux-schnell": _ModelInput(_build_flux_schnell_input, accepts_seed=True),
    "black-forest-labs/flux-dev": _ModelInput(_build_flux_dev_input, accepts_seed=True),
    "black-forest-labs/flux-kontext-pro": _ModelInput(_build_flux_kontext_input, accepts_seed=True),
    "google/nano-banana": _ModelInput(_build_nano_banana_input, accepts_seed=False),
    "bytedance/seedream-4": _ModelInput(_build_seedream_input, accepts_seed=False),
}


def _resolve_model_input(model_identifier: str) -> _ModelInput:
    normalized_identifier = model_identifier.strip().lower()
    model_input = _MODEL_INPUT_BUILDERS.get(normalized_identifier)
    if model_input is None and ":" in normalized_identifier:
        base_identifier = normalized_identifier.split(":", maxsplit=1)[0]
        model_input = _MODEL_INPUT_BUILDERS.get(base_identifier)
    if model_input is None:
        supported_models = ", ".join(sorted(set(_MODEL_INPUT_BUILDERS)))
        raise ValueError(
            "Model identifier "
            f"'{model_identifier}' is not configured with a default input payload. "
            f"Supported models: {supported_models}."
        )
    return model_input


def _build_replicate_input_payload(
    *,
    model_identifier: str,
    prompt: str,
    aspect_ratio: str,
    seed: int | None,
    reference_images: Sequence[str],
) -> dict[str, Any]:
    return _resolve_model_input(model_identifier).builder(
        prompt=prompt,
        aspect_ratio=aspect_ratio,
        seed=seed,
        reference_images=reference_images,
    )


class ReplicateImageGenerator:
    """
    Convenience wrapper around the Replicate client for manga image generation.

    Parameters
    ----------
    api_token:
        Replicate API token. Falls back to ``REPLICATE_API_TOKEN`` environment variable.
    text_to_image_model:
        Model used when no reference images are supplied. Falls back to
        ``REPLICATE_TEXT_TO_IMAGE_MODEL`` and then ``REPLICATE_MODEL``.
    image_to_image_model:
        Model used when reference images are supplied. Falls back to
        ``REPLICATE_IMAGE_TO_IMAGE_MODEL``.
    client:
        Optional pre-configured :class:`replicate.Client`. Mainly useful for testing.
    """

    def __init__(
        self,
        *,
        api_token: str | None = None,
        text_to_image_model: str | None = None,
        image_to_image_model: str | None = None,
        client: replicate.Client | None = None,
    ) -> None:
        self._api_token = api_token or os.getenv("REPLICATE_API_TOKEN")
        if not self._api_token and not client:
            raise ConfigurationError(
                "Replicate API token is required. Set REPLICATE_API_TOKEN or pass api_token."
            )

        self._text_to_image_model = (
            text_to_image_model
            or os.getenv("REPLICATE_TEXT_TO_IMAGE_MODEL")
            or os.getenv("REPLICATE_MODEL")
            or DEFAULT_TEXT_TO_IMAGE_MODEL
        )
        self._image_to_image_model = (
            image_to_image_model
            or os.getenv("REPLICATE_IMAGE_TO_IMAGE_MODEL")
            or DEFAULT_IMAGE_TO_IMAGE_MODEL
        )
        self._client = client or replicate.Client(api_token=self._api_token)
        self._random = random.Random()

    @property
    def text_to_image_model(self) -> str:
        return self._text_to_image_model

    @property
    def image_to_image_model(self) -> str:
        return self._image_to_image_model

    async def text_to_image(
        self,
        prompt: str,
        *,
        aspect_ratio: str = "1:1",
        seed: int | None = None,
        **model_kwargs: Any,
    ) -> GeneratedImage:
        """
        Render ``prompt`` without reference images.
        """
        return await self._run(
            self._text_to_image_model,
            prompt=prompt,
            aspect_ratio=aspect_ratio,
            seed=seed,
            reference_images=(),
            model_kwargs=model_kwargs,
        )

    async def image_to_image(
        self,
        prompt: str,
        reference_images: Sequence[str],
        *,
        aspect_ratio: str = "1:1",
        seed: int | None = None,
        **model_kwargs: Any,
    ) -> GeneratedImage:
        """
        Render ``prompt`` conditioned on one or more reference image URLs.
        """
        references = [str(url) for url in reference_images if url]
        if not references:
            raise ValueError("image_to_image requires at least one reference image.")
        return await self._run(
            self._image_to_image_model,
            prompt=prompt,
            aspect_ratio=aspect_ratio,
            seed=seed,
            reference_images=references,
            model_kwargs=model_kwargs,
        )

    async def _run(
        self,
        model_identifier: str,
        *,
        prompt: str,
        aspect_ratio: str,
        seed: int | None,
        reference_images: Sequence[str],
        model_kwargs: dict[str, Any],
    ) -> GeneratedImage:
        if not prompt or not prompt.strip():
            raise ValueError("prompt must be a non-empty string.")

        model_input = _resolve_model_input(model_identifier)
        if model_input.accepts_seed:
            resolved_seed = seed if seed is not None else self._random.randrange(1, SEED_MOD)
        else:
            if seed is not None:
                logger.debug("%s takes no seed; ignoring seed=%s.", model_identifier, seed)
            resolved_seed = None
        replicate_input = model_input.builder(
            prompt=prompt,
            aspect_ratio=aspect_ratio,
            seed=resolved_seed,
            reference_images=reference_images,
        )
        # Allow the caller to tweak model-specific knobs (e.g., guidance, output_quality).
        replicate_input.update(model_kwargs)

        logger.debug(
            "Running %s with %d reference image(s), seed=%s.",
            model_identifier,
            len(reference_images),
            resolved_seed,
        )
        output = await self._client.async_run(model_identifier, input=replicate_input)
        urls = normalize_image_outputs(output)
        if not urls:
            raise ImageGenerationError(f"Replicate model '{model_identifier}' returned no image.")
        return GeneratedImage(image_url=urls[0], seed=resolved_seed)


def normalize_image_outputs(raw: Any) -> list[str]:
    """
    Normalize the image outputs returned by Replicate into a list of URL strings.
    """

    if raw is None:
        return []

    if isinstance(raw, str):
        return [raw] if raw.strip() else []

    if isinstance(raw, bytes):
        return [raw.decode("utf-8", errors="ignore")]

    url = getattr(raw, "url", None)
    if isinstance(url, str) and url:
        return [url]

    if isinstance(raw, IterableABC):
        collected = list(raw)
        if not collected:
            return []

        if all(isinstance(item, str) and len(item) == 1 for item in collected):
            return ["".join(collected)]

        normalized: list[str] = []
        for item in collected:
            if isinstance(item, str):
                if item.strip():
                    normalized.append(item)
            elif item is not None:
                normalized.extend(normalize_image_outputs(item))
        return normalized

    return [str(raw)]
