from __future__ import annotations

import os
from typing import Any

import openai
import orjson
from openai import AsyncOpenAI

from estimator_core.llm.base import (
    InvalidResponseError,
    LLMClient,
    LLMError,
    RateLimitError,
    TimeoutError,
)
from estimator_core.llm.retry import RetryPolicy, build_idempotency_key, run_with_retry

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
_JSON_SYSTEM_PROMPT = "You assist a trade-services quoting engine. Return JSON only."
_TEXT_SYSTEM_PROMPT = "You assist a trade-services quoting engine."


def _missing_required_keys(payload: dict, schema: dict) -> list[str]:
    required = schema.get("required") or []
    return [key for key in required if key not in payload]


class OpenAIClient(LLMClient):
    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_OPENAI_MODEL,
        timeout_s: float = 30.0,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        resolved_key = api_key or os.getenv("OPENAI_API_KEY") or os.getenv("OPEN_AI_KEY")
        if not resolved_key:
            raise LLMError("OpenAI API key is missing")
        self._client = AsyncOpenAI(api_key=resolved_key, timeout=timeout_s)
        self._model = model
        self._retry_policy = retry_policy or RetryPolicy()

    @property
    def model_id(self) -> str:
        return self._model

    async def _create(self, messages: list[dict[str, Any]], **options: Any):
        try:
            return await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                extra_headers={"Idempotency-Key": build_idempotency_key("openai")},
                **options,
            )
        except openai.RateLimitError as exc:
            raise RateLimitError(str(exc)) from exc
        except openai.APITimeoutError as exc:
            raise TimeoutError(str(exc)) from exc
        except openai.APIError as exc:
            raise LLMError(str(exc)) from exc

    async def complete_json(self, prompt: str, schema: dict) -> dict:
        async def _call() -> dict:
            response = await self._create(
                [
                    {"role": "system", "content": _JSON_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0,
                response_format={"type": "json_object"},
            )
            content = response.choices[0].message.content or "{}"
            try:
                payload = orjson.loads(content)
            except orjson.JSONDecodeError as exc:
                raise InvalidResponseError("OpenAI returned invalid JSON") from exc
            if not isinstance(payload, dict):
                raise InvalidResponseError("OpenAI returned non-object JSON")
            missing = _missing_required_keys(payload, schema)
            if missing:
                raise InvalidResponseError(f"OpenAI response missing keys: {missing}")
            return payload

        return await run_with_retry(_call, policy=self._retry_policy)

    async def complete_text(self, prompt: str) -> str:
        async def _call() -> str:
            response = await self._create(
                [
                    {"role": "system", "content": _TEXT_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.2,
            )
            return response.choices[0].message.content or ""

        return await run_with_retry(_call, policy=self._retry_policy)
