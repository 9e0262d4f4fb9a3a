"""
Multi-persona collaboration: fan a task out to specialist personas, then
synthesise their contributions with a single coordinating call.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Sequence, TypeVar

from mangaforge.common import (
    ChatResult,
    CompletionCallable,
    GenerationError,
    call_chat_completion,
    settle_all,
    with_timeout,
)
from mangaforge.settings import resolve_llm_api_key, resolve_synthesis_model, resolve_text_model

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CONFIDENCE = 7
SYNTHESIS_METHOD = "Multi-Agent Collaborative Generation"

_CONFIDENCE_PATTERN = re.compile(
    r"confidence(?:\s+(?:level|score))?\s*(?:[:=\-]|is)?\s*\**\s*(\d{1,2})(?:\s*/\s*10)?",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class AgentPersona:
    """
    A named specialist with its own sampling parameters.

    Personas are plain records; a roster is just a tuple of them.
    """

    name: str
    role: str
    expertise: tuple[str, ...]
    temperature: float = 0.7
    max_tokens: int = 600
    model: str | None = None
    coordinator: bool = False

    def __post_init__(self) -> None:
        if not self.expertise:
            raise ValueError(f"Persona '{self.name}' must declare at least one expertise.")

    @property
    def focus(self) -> str:
        return self.expertise[0]

    def introduction(self) -> str:
        return f"You are {self.name}, a {self.role} specialized in {', '.join(self.expertise)}."


@dataclass(frozen=True)
class ChatPrompt:
    system: str
    user: str

    def as_messages(self) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.user},
        ]


@dataclass(frozen=True)
class AgentContribution:
    agent_name: str
    output: str
    focus: str
    confidence_score: int
    succeeded: bool = True

    def to_dict(self) -> dict[str, object]:
        return {
            "agent_name": self.agent_name,
            "output": self.output,
            "focus": self.focus,
            "confidence_score": self.confidence_score,
            "succeeded": self.succeeded,
        }


@dataclass(frozen=True)
class CollaborationSummary:
    total_agents: int
    successful_agents: int
    average_confidence: int
    synthesis_method: str = SYNTHESIS_METHOD

    @classmethod
    def from_contributions(
        cls,
        contributions: Sequence[AgentContribution],
        *,
        synthesis_method: str = SYNTHESIS_METHOD,
    ) -> "CollaborationSummary":
        total = len(contributions)
        average = round(sum(item.confidence_score for item in contributions) / total) if total else 0
        return cls(
            total_agents=total,
            successful_agents=sum(1 for item in contributions if item.succeeded),
            average_confidence=average,
            synthesis_method=synthesis_method,
        )


@dataclass(frozen=True)
class CollaborationOutcome:
    text: str
    contributions: tuple[AgentContribution, ...]
    summary: CollaborationSummary


@dataclass(frozen=True)
class CollaborationBrief:
    """
    Everything the engine needs to run one collaboration round.

    Attributes
    ----------
    label:
        Short name of the round, used in logs.
    personas:
        Roster consulted in parallel.
    persona_prompt:
        Builds the system/user prompt for one persona.
    synthesis_prompt:
        Builds the synthesis prompt from every contribution, failed ones included.
    synthesis_temperature, synthesis_max_tokens:
        Sampling parameters of the synthesis call.
    """

    label: str
    personas: tuple[AgentPersona, ...]
    persona_prompt: Callable[[AgentPersona], ChatPrompt]
    synthesis_prompt: Callable[[Sequence[AgentContribution]], ChatPrompt]
    synthesis_temperature: float = 0.7
    synthesis_max_tokens: int | None = 1200
    synthesis_method: str = SYNTHESIS_METHOD
    extra_kwargs: dict[str, object] = field(default_factory=dict)


def parse_confidence(text: str, default: int = DEFAULT_CONFIDENCE) -> int:
    """
    Read a self-reported ``confidence: N`` (1-10) from persona output.
    """
    match = _CONFIDENCE_PATTERN.search(text or "")
    if not match:
        return default
    return max(1, min(10, int(match.group(1))))


def format_contributions(contributions: Sequence[AgentContribution]) -> str:
    blocks = [
        f"{item.agent_name} ({item.focus}):\n{item.output.strip()}" for item in contributions
    ]
    return "\n\n".join(blocks)


class CollaborationEngine:
    """
    Runs persona rounds and count-bounded continuations against a chat model.

    Parameters
    ----------
    completion_fn:
        Async chat completion callable. Defaults to LiteLLM.
    model:
        Model used for personas that do not pin their own.
    synthesis_model:
        Model used for synthesis and continuation calls.
    api_key:
        Optional API key forwarded to every call.
    call_timeout:
        Per-call timeout in seconds.
    max_concurrency:
        Cap on simultaneous persona calls.
    """

    def __init__(
        self,
        *,
        completion_fn: CompletionCallable | None = None,
        model: str | None = None,
        synthesis_model: str | None = None,
        api_key: str | None = None,
        call_timeout: float | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion
        self._model = resolve_text_model(model)
        self._synthesis_model = resolve_synthesis_model(synthesis_model)
        self._api_key = resolve_llm_api_key(api_key)
        self._call_timeout = call_timeout
        self._max_concurrency = max_concurrency

    @property
    def model(self) -> str:
        return self._model

    async def complete(
        self,
        prompt: ChatPrompt,
        *,
        temperature: float | None,
        max_tokens: int | None,
        model: str | None = None,
        **extra_kwargs: object,
    ) -> ChatResult:
        """Issue one chat call with the engine's credentials and timeout."""
        return await with_timeout(
            self._completion_fn(
                model=model or self._model,
                messages=prompt.as_messages(),
                temperature=temperature,
                max_tokens=max_tokens,
                api_key=self._api_key,
                **extra_kwargs,
            ),
            self._call_timeout,
        )

    async def run(self, brief: CollaborationBrief) -> CollaborationOutcome:
        """
        Consult every persona concurrently, then synthesise once.

        A persona call that fails or answers with nothing is recorded as a failed
        contribution and the synthesis call still runs. Only a failed or empty
        synthesis aborts the round.
        """
        if not brief.personas:
            raise ValueError(f"{brief.label}: the persona roster is empty.")

        logger.info("%s: consulting %d persona(s).", brief.label, len(brief.personas))
        results = await settle_all(
            (self._consult(persona, brief) for persona in brief.personas),
            limit=self._max_concurrency,
        )

        contributions: list[AgentContribution] = []
        for persona, result in zip(brief.personas, results):
            if isinstance(result, BaseException):
                logger.warning("%s: persona %s failed: %r", brief.label, persona.name, result)
                contributions.append(_failed_contribution(persona))
            elif not result.text:
                logger.warning("%s: persona %s returned no text.", brief.label, persona.name)
                contributions.append(_failed_contribution(persona))
            else:
                contributions.append(
                    AgentContribution(
                        agent_name=persona.name,
                        output=result.text,
                        focus=persona.focus,
                        confidence_score=parse_confidence(result.text),
                    )
                )

        summary = CollaborationSummary.from_contributions(
            contributions, synthesis_method=brief.synthesis_method
        )
        logger.info(
            "%s: %d/%d persona(s) contributed, synthesising.",
            brief.label,
            summary.successful_agents,
            summary.total_agents,
        )

        try:
            synthesis = await self.complete(
                brief.synthesis_prompt(contributions),
                temperature=brief.synthesis_temperature,
                max_tokens=brief.synthesis_max_tokens,
                model=self._synthesis_model,
                **brief.extra_kwargs,
            )
        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationError(f"{brief.label}: synthesis call failed: {exc}") from exc

        if not synthesis.text:
            raise GenerationError(f"{brief.label}: synthesis returned an empty response.")

        return CollaborationOutcome(
            text=synthesis.text,
            contributions=tuple(contributions),
            summary=summary,
        )

    async def complete_to_count(
        self,
        items: Sequence[T],
        required: int,
        *,
        parse: Callable[[str], Sequence[T]],
        continuation_prompt: Callable[[Sequence[T]], ChatPrompt],
        placeholder: Callable[[int], T],
        temperature: float = 0.6,
        max_tokens: int | None = 800,
    ) -> list[T]:
        """
        Return exactly ``required`` items.

        Extra items are truncated. When short, exactly one continuation call asks
        for the remainder; whatever is still missing afterwards is filled with
        ``placeholder(position)`` where ``position`` is 1-based.
        """
        if required < 1:
            raise ValueError("required must be at least 1.")

        collected = list(items)[:required]
        if len(collected) < required:
            missing = required - len(collected)
            logger.info("Requesting %d missing item(s) in one continuation call.", missing)
            try:
                result = await self.complete(
                    continuation_prompt(collected),
                    temperature=temperature,
                    max_tokens=max_tokens,
                    model=self._synthesis_model,
                )
                collected.extend(parse(result.text))
            except Exception as exc:
                logger.warning("Continuation call failed, padding instead: %r", exc)
            collected = collected[:required]

        while len(collected) < required:
            collected.append(placeholder(len(collected) + 1))
        return collected

    async def _consult(self, persona: AgentPersona, brief: CollaborationBrief) -> ChatResult:
        logger.debug("%s: calling persona %s.", brief.label, persona.name)
        return await self.complete(
            brief.persona_prompt(persona),
            temperature=persona.temperature,
            max_tokens=persona.max_tokens,
            model=persona.model,
        )


def _failed_contribution(persona: AgentPersona) -> AgentContribution:
    return AgentContribution(
        agent_name=persona.name,
        output=f"{persona.name} could not contribute to this round.",
        focus=persona.focus,
        confidence_score=0,
        succeeded=False,
    )
