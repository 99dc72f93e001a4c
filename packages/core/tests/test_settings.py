from __future__ import annotations

import pytest

from estimator_core.config import (
    build_client,
    build_validation_client,
    get_llm_mode,
    get_settings,
)
from estimator_core.llm.openai_client import OpenAIClient
from estimator_core.llm.retry import SINGLE_ATTEMPT


class DummyOpenAI:
    def __init__(self, api_key: str, timeout: float) -> None:
        self.api_key = api_key
        self.timeout = timeout


def test_defaults() -> None:
    settings = get_settings()
    assert settings.llm_mode == "fixture"
    assert settings.llm_provider == "openai"
    assert settings.low_confidence_threshold == 0.5
    assert settings.critical_confidence_threshold == 0.3
    assert settings.site_visit_confidence_threshold == 0.4
    assert settings.max_clarification_questions == 2
    assert build_client(settings) is None


def test_mock_mode_is_fixture(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ESTIMATOR_LLM_MODE", "MOCK")
    assert get_llm_mode() == "fixture"


def test_invalid_mode_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ESTIMATOR_LLM_MODE", "sometimes")
    with pytest.raises(ValueError):
        get_settings()


def test_thresholds_are_validated(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ESTIMATOR_LOW_CONFIDENCE_THRESHOLD", "0.65")
    assert get_settings().low_confidence_threshold == 0.65

    get_settings.cache_clear()
    monkeypatch.setenv("ESTIMATOR_CRITICAL_CONFIDENCE_THRESHOLD", "1.5")
    with pytest.raises(ValueError):
        get_settings()


def test_question_limit_is_clamped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ESTIMATOR_MAX_CLARIFICATION_QUESTIONS", "5")
    assert get_settings().max_clarification_questions == 2

    get_settings.cache_clear()
    monkeypatch.setenv("ESTIMATOR_MAX_CLARIFICATION_QUESTIONS", "-1")
    with pytest.raises(ValueError):
        get_settings()


def test_settings_are_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    first = get_settings()
    monkeypatch.setenv("ESTIMATOR_LOW_CONFIDENCE_THRESHOLD", "0.9")
    assert get_settings() is first


def test_live_mode_builds_provider_client(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("estimator_core.llm.openai_client.AsyncOpenAI", DummyOpenAI)
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("ESTIMATOR_LLM_MODE", "live")
    monkeypatch.setenv("ESTIMATOR_OPENAI_MODEL", "gpt-test")

    client = build_client()
    validation_client = build_validation_client()

    assert isinstance(client, OpenAIClient)
    assert client.model_id == "gpt-test"
    assert validation_client._retry_policy == SINGLE_ATTEMPT


def test_unknown_provider_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ESTIMATOR_LLM_PROVIDER", "local")
    with pytest.raises(ValueError):
        get_settings()
