from __future__ import annotations

import pytest

from conftest import FakeImageGenerator, ScriptedCompletion
from mangaforge.ai_generation import GeneratedImage
from mangaforge.common import GenerationError
from mangaforge.pipeline import (
    ConsistencyReport,
    ConsistencyVerifier,
    PanelReferences,
    PanelRefiner,
    PanelRenderer,
)
from mangaforge.story_generation import Entity, EntityKind, PanelScript

INCONSISTENT = (
    '{"isConsistent": false, "confidenceScore": 40, "issues": ["scarf is blue"], '
    '"suggestions": ["Make the scarf red"]}'
)

AIKO = Entity(
    kind=EntityKind.CHARACTER,
    name="Aiko",
    description="courier with a red scarf",
    image_url="https://aiko.png",
    seed=10,
    role="protagonist",
)
PANEL = PanelScript(description="Aiko leaps.")
REFERENCES = PanelReferences(reference_images=("https://aiko.png",), seed=10, focus_entity=AIKO)
ORIGINAL = GeneratedImage("https://panel.png", 10)


class _StubVerifier:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    async def verify(self, image_url, reference_images, **kwargs):
        self.calls.append((image_url, tuple(reference_images), kwargs))
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


def test_report_needs_refinement():
    assert ConsistencyReport(is_consistent=False, confidence_score=95).needs_refinement()
    assert ConsistencyReport(is_consistent=True, confidence_score=74).needs_refinement()
    assert not ConsistencyReport(is_consistent=True, confidence_score=75).needs_refinement()
    assert not ConsistencyReport(is_consistent=True, confidence_score=60).needs_refinement(threshold=50)


def test_report_from_mapping_clamps_and_normalises():
    report = ConsistencyReport.from_mapping(
        {"isConsistent": "yes", "confidenceScore": "150", "issues": "one issue"}
    )
    assert report.is_consistent
    assert report.confidence_score == 100
    assert report.issues == ("one issue",)
    assert report.suggestions == ()

    with pytest.raises(ValueError):
        ConsistencyReport.from_mapping({"confidenceScore": 80})


@pytest.mark.asyncio
async def test_verifier_sends_references_and_parses_report():
    completion = ScriptedCompletion({"verify": INCONSISTENT})
    verifier = ConsistencyVerifier(completion_fn=completion, model="vision-model")

    report = await verifier.verify(
        "https://panel.png", ["https://aiko.png"], name="Aiko", description="red scarf", role="protagonist"
    )

    assert not report.is_consistent
    assert report.confidence_score == 40
    assert report.suggestions == ("Make the scarf red",)

    call = completion.calls_for("verify")[0]
    assert call["model"] == "vision-model"
    assert call["temperature"] == 0.3
    assert call["max_tokens"] == 500
    content = call["messages"][1]["content"]
    urls = [part["image_url"]["url"] for part in content if part["type"] == "image_url"]
    assert urls == ["https://aiko.png", "https://panel.png"]
    assert "Aiko (protagonist)" in content[-1]["text"]


@pytest.mark.asyncio
async def test_verifier_rejects_unparseable_output():
    verifier = ConsistencyVerifier(completion_fn=ScriptedCompletion({"verify": "Looks fine!"}), model="v")
    with pytest.raises(GenerationError):
        await verifier.verify("https://panel.png", [])


@pytest.mark.asyncio
async def test_refiner_rerenders_once_with_suggestions():
    images = FakeImageGenerator()
    verifier = _StubVerifier(ConsistencyReport.from_mapping({"isConsistent": False, "confidenceScore": 30, "suggestions": ["Make the scarf red"]}))
    refiner = PanelRefiner(verifier, PanelRenderer(images))

    outcome = await refiner.refine(PANEL, ORIGINAL, REFERENCES, prompt="Base prompt.")

    assert outcome.refined
    assert outcome.image.image_url != ORIGINAL.image_url
    assert len(verifier.calls) == 1
    assert len(images.calls) == 1
    call = images.calls[0]
    assert call.prompt == "Base prompt. IMPORTANT: Make the scarf red."
    assert call.mode == "i2i"
    assert call.seed == 10
    assert verifier.calls[0][2]["name"] == "Aiko"


@pytest.mark.asyncio
async def test_refiner_keeps_consistent_panels():
    images = FakeImageGenerator()
    verifier = _StubVerifier(ConsistencyReport(is_consistent=True, confidence_score=90))
    refiner = PanelRefiner(verifier, PanelRenderer(images))

    outcome = await refiner.refine(PANEL, ORIGINAL, REFERENCES, prompt="Base prompt.")

    assert outcome.image == ORIGINAL
    assert not outcome.refined
    assert images.calls == []


@pytest.mark.asyncio
async def test_refiner_keeps_original_when_verifier_fails():
    images = FakeImageGenerator()
    refiner = PanelRefiner(_StubVerifier(GenerationError("vision down")), PanelRenderer(images))

    outcome = await refiner.refine(PANEL, ORIGINAL, REFERENCES, prompt="Base prompt.")

    assert outcome.image == ORIGINAL
    assert outcome.report is None
    assert images.calls == []


@pytest.mark.asyncio
async def test_refiner_keeps_original_when_rerender_fails():
    images = FakeImageGenerator(fail_when=lambda prompt: True)
    verifier = _StubVerifier(ConsistencyReport(is_consistent=False, confidence_score=10))
    refiner = PanelRefiner(verifier, PanelRenderer(images))

    outcome = await refiner.refine(PANEL, ORIGINAL, REFERENCES, prompt="Base prompt.")

    assert outcome.image == ORIGINAL
    assert not outcome.refined
    assert len(images.calls) == 1


@pytest.mark.asyncio
async def test_refiner_skips_panels_without_focus_or_references():
    verifier = _StubVerifier(ConsistencyReport(is_consistent=False, confidence_score=0))
    refiner = PanelRefiner(verifier, PanelRenderer(FakeImageGenerator()))

    outcome = await refiner.refine(PANEL, ORIGINAL, PanelReferences((), seed=5), prompt="Base prompt.")

    assert outcome.image == ORIGINAL
    assert verifier.calls == []


@pytest.mark.asyncio
async def test_renderer_uses_text_to_image_without_references():
    images = FakeImageGenerator()
    image = await PanelRenderer(images).render(PANEL, PanelReferences((), seed=5), prompt="P.", aspect_ratio="4:3")

    assert image.seed == 5
    assert images.calls[0].mode == "t2i"
    assert images.calls[0].aspect_ratio == "4:3"


@pytest.mark.asyncio
async def test_renderer_returns_none_on_failure():
    images = FakeImageGenerator(fail_when=lambda prompt: True)
    assert await PanelRenderer(images).render(PANEL, REFERENCES, prompt="P.") is None
