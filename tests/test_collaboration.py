from __future__ import annotations

import pytest

from conftest import ScriptedCompletion
from mangaforge.common import GenerationError
from mangaforge.story_generation import AgentPersona, ChatPrompt, CollaborationBrief, CollaborationEngine
from mangaforge.story_generation.collaboration import parse_confidence
from mangaforge.story_generation.narrative import SYNTHESIS_SYSTEM_PROMPT as SYSTEM
from mangaforge.story_generation.panels import CONTINUATION_SYSTEM_PROMPT

PERSONAS = (
    AgentPersona(name="Alpha", role="plot specialist", expertise=("plot", "pacing"), temperature=0.8),
    AgentPersona(name="Beta", role="dialogue specialist", expertise=("dialogue",), max_tokens=300),
    AgentPersona(name="Gamma", role="visual specialist", expertise=("composition",)),
)


def _brief() -> CollaborationBrief:
    return CollaborationBrief(
        label="test",
        personas=PERSONAS,
        persona_prompt=lambda persona: ChatPrompt(system=persona.introduction(), user="Contribute."),
        synthesis_prompt=lambda contributions: ChatPrompt(
            system=SYSTEM, user=f"Combine {len(contributions)} contributions."
        ),
        synthesis_temperature=0.7,
        synthesis_max_tokens=1200,
    )


@pytest.mark.asyncio
async def test_failed_persona_becomes_placeholder_contribution():
    completion = ScriptedCompletion(persona_text="A twist. Confidence: 9/10")
    completion.failing_personas.add("Beta")
    engine = CollaborationEngine(completion_fn=completion, model="test-model", api_key="key")

    outcome = await engine.run(_brief())

    assert [item.agent_name for item in outcome.contributions] == ["Alpha", "Beta", "Gamma"]
    beta = outcome.contributions[1]
    assert not beta.succeeded
    assert beta.confidence_score == 0
    assert outcome.contributions[0].confidence_score == 9
    assert outcome.summary.total_agents == 3
    assert outcome.summary.successful_agents == 2
    assert outcome.summary.average_confidence == 6

    synthesis_calls = completion.calls_for("narrative")
    assert len(synthesis_calls) == 1
    assert synthesis_calls[0]["temperature"] == 0.7
    assert synthesis_calls[0]["max_tokens"] == 1200
    assert outcome.text == completion.responses["narrative"]


@pytest.mark.asyncio
async def test_personas_use_their_own_sampling_parameters():
    completion = ScriptedCompletion()
    engine = CollaborationEngine(completion_fn=completion, model="test-model")

    await engine.run(_brief())

    persona_calls = {call["persona"]: call for call in completion.calls_for("persona")}
    assert persona_calls["Alpha"]["temperature"] == 0.8
    assert persona_calls["Beta"]["max_tokens"] == 300
    assert persona_calls["Gamma"]["model"] == "test-model"


@pytest.mark.asyncio
async def test_synthesis_failure_raises_generation_error():
    completion = ScriptedCompletion({"narrative": RuntimeError("down")})
    engine = CollaborationEngine(completion_fn=completion, model="test-model")

    with pytest.raises(GenerationError, match="synthesis call failed"):
        await engine.run(_brief())


@pytest.mark.asyncio
async def test_empty_synthesis_raises_generation_error():
    completion = ScriptedCompletion({"narrative": ""})
    engine = CollaborationEngine(completion_fn=completion, model="test-model")

    with pytest.raises(GenerationError, match="empty"):
        await engine.run(_brief())


@pytest.mark.asyncio
async def test_complete_to_count_truncates_without_calling_model():
    completion = ScriptedCompletion()
    engine = CollaborationEngine(completion_fn=completion, model="test-model")

    items = await engine.complete_to_count(
        ["a", "b", "c", "d"],
        2,
        parse=lambda text: [],
        continuation_prompt=lambda existing: ChatPrompt(system="x", user="y"),
        placeholder=lambda position: f"pad-{position}",
    )

    assert items == ["a", "b"]
    assert completion.calls == []


@pytest.mark.asyncio
async def test_complete_to_count_issues_one_continuation_then_pads():
    completion = ScriptedCompletion({"continuation": "c"})
    engine = CollaborationEngine(completion_fn=completion, model="test-model")

    items = await engine.complete_to_count(
        ["a"],
        4,
        parse=lambda text: [text],
        continuation_prompt=lambda existing: ChatPrompt(
            system=CONTINUATION_SYSTEM_PROMPT, user=f"have {len(existing)}"
        ),
        placeholder=lambda position: f"pad-{position}",
    )

    assert items == ["a", "c", "pad-3", "pad-4"]
    assert len(completion.calls_for("continuation")) == 1


@pytest.mark.asyncio
async def test_complete_to_count_pads_when_continuation_fails():
    async def _broken(**kwargs):
        raise TimeoutError("slow")

    engine = CollaborationEngine(completion_fn=_broken, model="test-model")

    items = await engine.complete_to_count(
        [],
        2,
        parse=lambda text: [text],
        continuation_prompt=lambda existing: ChatPrompt(system="x", user="y"),
        placeholder=lambda position: f"pad-{position}",
    )

    assert items == ["pad-1", "pad-2"]


def test_parse_confidence_reads_and_clamps():
    assert parse_confidence("Solid idea.\nConfidence: 8") == 8
    assert parse_confidence("**Confidence level:** 12/10") == 10
    assert parse_confidence("no score here") == 7


def test_persona_requires_expertise():
    with pytest.raises(ValueError):
        AgentPersona(name="Empty", role="nobody", expertise=())
