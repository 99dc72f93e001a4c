from __future__ import annotations

import os

import anthropic
import orjson
from anthropic import AsyncAnthropic

from estimator_core.llm.base import (
    InvalidResponseError,
    LLMClient,
    LLMError,
    ModelNotFoundError,
    RateLimitError,
    TimeoutError,
)
from estimator_core.llm.retry import RetryPolicy, build_idempotency_key, run_with_retry
from estimator_core.utils.text import extract_json_object

DEFAULT_CLAUDE_MODELS = [
    "claude-sonnet-4-5",
    "claude-3-5-haiku-latest",
]
_SYSTEM_PROMPT = "You assist a trade-services quoting engine."
_MAX_TOKENS = 2048
_JSON_SUFFIX = "\n\nRespond with a single JSON object matching this schema:\n{schema}"


def _candidate_models(preferred: str | None) -> list[str]:
    """Preferred model first, then configured fallbacks, then the defaults; no repeats."""
    ordered: list[str] = []
    if preferred and preferred.strip():
        ordered.append(preferred.strip())
    fallbacks = os.getenv("ESTIMATOR_ANTHROPIC_MODEL_FALLBACKS") or ""
    ordered.extend(name.strip() for name in fallbacks.split(",") if name.strip())
    ordered.extend(DEFAULT_CLAUDE_MODELS)
    return list(dict.fromkeys(ordered))


def _translate_error(exc: Exception) -> LLMError:
    if isinstance(exc, anthropic.NotFoundError):
        return ModelNotFoundError(str(exc))
    if isinstance(exc, anthropic.RateLimitError):
        return RateLimitError(str(exc))
    if isinstance(exc, anthropic.APITimeoutError):
        return TimeoutError(str(exc))
    return LLMError(str(exc))


class AnthropicClient(LLMClient):
    """Text completions over the Messages API, walking a model fallback list."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout_s: float = 30.0,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not key:
            raise LLMError("Anthropic API key is missing")
        self._client = AsyncAnthropic(api_key=key, timeout=timeout_s)
        self._models = _candidate_models(model or os.getenv("ESTIMATOR_ANTHROPIC_MODEL"))
        self._retry_policy = retry_policy or RetryPolicy()

    @property
    def model_id(self) -> str:
        return self._models[0] if self._models else ""

    @property
    def models(self) -> list[str]:
        return list(self._models)

    async def _call_model(self, prompt: str, model: str) -> str:
        try:
            message = await self._client.messages.create(
                model=model,
                max_tokens=_MAX_TOKENS,
                temperature=0.2,
                system=_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
                extra_headers={"Idempotency-Key": build_idempotency_key("anthropic")},
            )
        except anthropic.APIError as exc:
            raise _translate_error(exc) from exc
        return "".join(getattr(block, "text", "") for block in message.content or [])

    async def complete_text(self, prompt: str) -> str:
        missing: ModelNotFoundError | None = None
        for model in self._models:
            try:
                return await run_with_retry(
                    self._call_model, prompt, model, policy=self._retry_policy
                )
            except ModelNotFoundError as exc:
                missing = exc
        raise LLMError(f"No Anthropic model available from {self._models}") from missing

    async def complete_json(self, prompt: str, schema: dict) -> dict:
        schema_text = orjson.dumps(schema).decode("utf-8")
        payload = extract_json_object(
            await self.complete_text(prompt + _JSON_SUFFIX.format(schema=schema_text))
        )
        if payload is None:
            raise InvalidResponseError("Anthropic reply did not contain a JSON object")
        return payload
