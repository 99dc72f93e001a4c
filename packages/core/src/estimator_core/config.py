from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Literal

from estimator_core.llm.base import LLMClient
from estimator_core.llm.retry import SINGLE_ATTEMPT, RetryPolicy

MAX_CLARIFICATION_QUESTIONS = 2


@dataclass(frozen=True)
class EngineSettings:
    llm_mode: Literal["fixture", "live"] = "fixture"
    llm_provider: Literal["openai", "anthropic"] = "openai"
    low_confidence_threshold: float = 0.5
    critical_confidence_threshold: float = 0.3
    site_visit_confidence_threshold: float = 0.4
    max_clarification_questions: int = MAX_CLARIFICATION_QUESTIONS
    openai_model: str = "gpt-4o-mini"
    anthropic_model: str | None = None


def get_llm_mode() -> Literal["fixture", "live"]:
    raw_mode = os.getenv("ESTIMATOR_LLM_MODE", "fixture").lower()
    if raw_mode == "mock":
        raw_mode = "fixture"
    if raw_mode not in {"fixture", "live"}:
        raise ValueError("ESTIMATOR_LLM_MODE must be 'fixture' or 'live'")
    return raw_mode


def _read_threshold(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number between 0 and 1") from exc
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be a number between 0 and 1")
    return value


def _read_question_limit() -> int:
    raw = os.getenv("ESTIMATOR_MAX_CLARIFICATION_QUESTIONS")
    if raw is None or not raw.strip():
        return MAX_CLARIFICATION_QUESTIONS
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError("ESTIMATOR_MAX_CLARIFICATION_QUESTIONS must be an integer") from exc
    if value < 0:
        raise ValueError("ESTIMATOR_MAX_CLARIFICATION_QUESTIONS must not be negative")
    return min(value, MAX_CLARIFICATION_QUESTIONS)


def _read_provider() -> Literal["openai", "anthropic"]:
    provider = os.getenv("ESTIMATOR_LLM_PROVIDER", "openai").lower()
    if provider not in {"openai", "anthropic"}:
        raise ValueError("ESTIMATOR_LLM_PROVIDER must be 'openai' or 'anthropic'")
    return provider


@lru_cache
def get_settings() -> EngineSettings:
    return EngineSettings(
        llm_mode=get_llm_mode(),
        llm_provider=_read_provider(),
        low_confidence_threshold=_read_threshold("ESTIMATOR_LOW_CONFIDENCE_THRESHOLD", 0.5),
        critical_confidence_threshold=_read_threshold(
            "ESTIMATOR_CRITICAL_CONFIDENCE_THRESHOLD", 0.3
        ),
        site_visit_confidence_threshold=_read_threshold(
            "ESTIMATOR_SITE_VISIT_CONFIDENCE_THRESHOLD", 0.4
        ),
        max_clarification_questions=_read_question_limit(),
        openai_model=os.getenv("ESTIMATOR_OPENAI_MODEL", "gpt-4o-mini"),
        anthropic_model=os.getenv("ESTIMATOR_ANTHROPIC_MODEL") or None,
    )


def build_client(
    settings: EngineSettings | None = None,
    retry_policy: RetryPolicy | None = None,
) -> LLMClient | None:
    """Return a live provider client, or ``None`` in fixture mode."""
    resolved = settings or get_settings()
    if resolved.llm_mode != "live":
        return None
    if resolved.llm_provider == "anthropic":
        from estimator_core.llm.anthropic_client import AnthropicClient

        if resolved.anthropic_model:
            return AnthropicClient(model=resolved.anthropic_model, retry_policy=retry_policy)
        return AnthropicClient(retry_policy=retry_policy)
    from estimator_core.llm.openai_client import OpenAIClient

    return OpenAIClient(model=resolved.openai_model, retry_policy=retry_policy)


def build_validation_client(settings: EngineSettings | None = None) -> LLMClient | None:
    """Provider client for quote validation, which makes exactly one call per quote."""
    return build_client(settings, retry_policy=SINGLE_ATTEMPT)
