from __future__ import annotations

from pathlib import Path

import pytest

from mangaforge.settings import (
    DEFAULT_TEXT_MODEL,
    PipelineSettings,
    resolve_llm_api_key,
    resolve_synthesis_model,
    resolve_text_model,
)

_ENV = (
    "MANGAFORGE_STORY_MODEL",
    "LITELLM_STORY_MODEL",
    "LITELLM_MODEL",
    "MANGAFORGE_SYNTHESIS_MODEL",
    "MANGAFORGE_LLM_API_KEY",
    "OPENAI_API_KEY",
    "LITELLM_API_KEY",
    "MANGAFORGE_CALL_TIMEOUT",
    "MANGAFORGE_MAX_CONCURRENCY",
    "MANGAFORGE_ANGLE_COUNT",
    "MANGAFORGE_OUTPUT_DIR",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)


def test_text_model_fallback_chain(monkeypatch):
    assert resolve_text_model() == DEFAULT_TEXT_MODEL
    monkeypatch.setenv("LITELLM_MODEL", "litellm-default")
    assert resolve_text_model() == "litellm-default"
    monkeypatch.setenv("MANGAFORGE_STORY_MODEL", "story-model")
    assert resolve_text_model() == "story-model"
    assert resolve_text_model("explicit") == "explicit"


def test_synthesis_model_defaults_to_text_model(monkeypatch):
    monkeypatch.setenv("MANGAFORGE_STORY_MODEL", "story-model")
    assert resolve_synthesis_model() == "story-model"
    monkeypatch.setenv("MANGAFORGE_SYNTHESIS_MODEL", "big-model")
    assert resolve_synthesis_model() == "big-model"


def test_api_key_resolution(monkeypatch):
    assert resolve_llm_api_key() is None
    monkeypatch.setenv("OPENAI_API_KEY", "  sk-env  ")
    assert resolve_llm_api_key() == "sk-env"
    assert resolve_llm_api_key("sk-explicit") == "sk-explicit"


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("MANGAFORGE_CALL_TIMEOUT", "0")
    monkeypatch.setenv("MANGAFORGE_MAX_CONCURRENCY", "3")
    monkeypatch.setenv("MANGAFORGE_ANGLE_COUNT", "-2")
    monkeypatch.setenv("MANGAFORGE_OUTPUT_DIR", "/tmp/manga")

    settings = PipelineSettings.from_env()

    assert settings.call_timeout is None
    assert settings.max_concurrency == 3
    assert settings.angle_count == 0
    assert settings.output_dir == Path("/tmp/manga")
    assert settings.verification_threshold == 75


def test_settings_reject_non_numeric_values(monkeypatch):
    monkeypatch.setenv("MANGAFORGE_CALL_TIMEOUT", "soon")
    with pytest.raises(ValueError, match="MANGAFORGE_CALL_TIMEOUT"):
        PipelineSettings.from_env()
