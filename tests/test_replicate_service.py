from __future__ import annotations

import pytest

from mangaforge.ai_generation import ReplicateImageGenerator, normalize_image_outputs
from mangaforge.ai_generation.replicate_service import _build_replicate_input_payload
from mangaforge.common import ConfigurationError, ImageGenerationError


class _FakeClient:
    def __init__(self, output=("https://replicate.test/out.png",)):
        self.output = output
        self.calls = []

    async def async_run(self, model, input):
        self.calls.append((model, input))
        return self.output


class _FileOutput:
    def __init__(self, url):
        self.url = url


def test_missing_token_raises(monkeypatch):
    monkeypatch.delenv("REPLICATE_API_TOKEN", raising=False)
    with pytest.raises(ConfigurationError):
        ReplicateImageGenerator()


def test_models_fall_back_to_environment(monkeypatch):
    monkeypatch.setenv("REPLICATE_TEXT_TO_IMAGE_MODEL", "black-forest-labs/flux-dev")
    monkeypatch.delenv("REPLICATE_IMAGE_TO_IMAGE_MODEL", raising=False)
    generator = ReplicateImageGenerator(client=_FakeClient())

    assert generator.text_to_image_model == "black-forest-labs/flux-dev"
    assert generator.image_to_image_model == "black-forest-labs/flux-kontext-pro"


@pytest.mark.asyncio
async def test_text_to_image_passes_seed_and_aspect_ratio():
    client = _FakeClient()
    generator = ReplicateImageGenerator(
        client=client, text_to_image_model="black-forest-labs/flux-schnell"
    )

    image = await generator.text_to_image("A rooftop at night.", aspect_ratio="16:9", seed=77)

    assert image.image_url == "https://replicate.test/out.png"
    assert image.seed == 77
    model, payload = client.calls[0]
    assert model == "black-forest-labs/flux-schnell"
    assert payload["aspect_ratio"] == "16:9"
    assert payload["seed"] == 77


@pytest.mark.asyncio
async def test_seed_is_drawn_when_missing():
    generator = ReplicateImageGenerator(client=_FakeClient(), text_to_image_model="black-forest-labs/flux-schnell")

    image = await generator.text_to_image("A rooftop.")

    assert isinstance(image.seed, int)
    assert image.seed > 0


@pytest.mark.asyncio
async def test_image_to_image_sends_references():
    client = _FakeClient(output=_FileOutput("https://replicate.test/ref.png"))
    generator = ReplicateImageGenerator(client=client, image_to_image_model="google/nano-banana")

    image = await generator.image_to_image("Aiko waves.", ["https://a.png", "", "https://b.png"])

    assert image.image_url == "https://replicate.test/ref.png"
    assert client.calls[0][1]["image_input"] == ["https://a.png", "https://b.png"]


@pytest.mark.asyncio
async def test_default_image_to_image_model_receives_the_returned_seed(monkeypatch):
    monkeypatch.delenv("REPLICATE_IMAGE_TO_IMAGE_MODEL", raising=False)
    client = _FakeClient()
    generator = ReplicateImageGenerator(client=client)

    image = await generator.image_to_image("A panel.", ["https://ref.png"], seed=4242)

    model, payload = client.calls[0]
    assert model == "black-forest-labs/flux-kontext-pro"
    assert payload["seed"] == 4242
    assert image.seed == payload["seed"]


@pytest.mark.asyncio
@pytest.mark.parametrize("model", ["google/nano-banana", "bytedance/seedream-4"])
async def test_seedless_models_report_no_seed(model):
    client = _FakeClient()
    generator = ReplicateImageGenerator(client=client, image_to_image_model=model)

    image = await generator.image_to_image("A panel.", ["https://ref.png"], seed=4242)

    assert "seed" not in client.calls[0][1]
    assert image.seed is None


@pytest.mark.asyncio
async def test_image_to_image_requires_references():
    generator = ReplicateImageGenerator(client=_FakeClient())
    with pytest.raises(ValueError):
        await generator.image_to_image("Prompt.", [])


@pytest.mark.asyncio
async def test_empty_output_raises():
    generator = ReplicateImageGenerator(
        client=_FakeClient(output=[]), text_to_image_model="black-forest-labs/flux-schnell"
    )
    with pytest.raises(ImageGenerationError):
        await generator.text_to_image("Prompt.")


def test_payload_builders_per_model():
    kontext = _build_replicate_input_payload(
        model_identifier="black-forest-labs/flux-kontext-pro",
        prompt="p",
        aspect_ratio="1:1",
        seed=3,
        reference_images=["https://a.png", "https://b.png"],
    )
    assert kontext["input_image"] == "https://a.png"
    assert kontext["seed"] == 3

    versioned = _build_replicate_input_payload(
        model_identifier="black-forest-labs/flux-schnell:abc123",
        prompt="p",
        aspect_ratio="3:4",
        seed=None,
        reference_images=(),
    )
    assert "seed" not in versioned
    assert versioned["aspect_ratio"] == "3:4"

    with pytest.raises(ValueError, match="Supported models"):
        _build_replicate_input_payload(
            model_identifier="someone/unknown",
            prompt="p",
            aspect_ratio="1:1",
            seed=None,
            reference_images=(),
        )


def test_normalize_image_outputs_shapes():
    assert normalize_image_outputs(None) == []
    assert normalize_image_outputs("https://x.png") == ["https://x.png"]
    assert normalize_image_outputs(_FileOutput("https://y.png")) == ["https://y.png"]
    assert normalize_image_outputs(["https://a.png", _FileOutput("https://b.png")]) == [
        "https://a.png",
        "https://b.png",
    ]
    assert normalize_image_outputs(iter("https://z.png")) == ["https://z.png"]
