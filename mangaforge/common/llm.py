"""
LiteLLM-powered chat completion helper utilities.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, MutableMapping, Sequence

from litellm import acompletion

ChatMessage = Mapping[str, Any]

_FENCED_JSON_PATTERN = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL | re.IGNORECASE)


@dataclass
class ChatResult:
    """
    Structured response returned from an LLM chat completion.
    """

    text: str
    raw: Any


CompletionCallable = Callable[..., Awaitable[ChatResult]]


async def call_chat_completion(
    *,
    model: str,
    messages: Sequence[ChatMessage],
    temperature: float | None = None,
    max_tokens: int | None = None,
    api_key: str | None = None,
    **extra_kwargs: Any,
) -> ChatResult:
    """
    Invoke LiteLLM's `acompletion` API and return the consolidated text.
    """
    payload: MutableMapping[str, Any] = {
        "model": model,
        "messages": list(messages),
    }

    if temperature is not None:
        payload["temperature"] = temperature

    if max_tokens is not None:
        payload["max_tokens"] = max_tokens

    if api_key is not None:
        payload["api_key"] = api_key

    payload.update(extra_kwargs)

    response = await acompletion(**payload)

    try:
        message = response["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise RuntimeError("Unexpected LiteLLM response format.") from exc

    text = str(message or "").strip()
    return ChatResult(text=text, raw=response)


def parse_json_payload(text: str) -> Any:
    """
    Parse a JSON document out of an LLM response.

    Models often wrap JSON in Markdown fences or add a sentence before it, so the
    fenced block is preferred and otherwise the outermost object or array is used.
    """
    if not text or not text.strip():
        raise ValueError("Cannot parse JSON from an empty response.")

    candidate = text.strip()
    fenced = _FENCED_JSON_PATTERN.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    for opener, closer in (("{", "}"), ("[", "]")):
        start = candidate.find(opener)
        end = candidate.rfind(closer)
        if start != -1 and end > start:
            try:
                return json.loads(candidate[start : end + 1])
            except json.JSONDecodeError:
                continue

    raise ValueError("Response did not contain a valid JSON document.")
