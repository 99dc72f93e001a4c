from __future__ import annotations

from typing import Protocol


class LLMError(Exception):
    """Base error for inference provider failures."""


class RateLimitError(LLMError):
    """Raised when the provider rate limits requests."""


class TimeoutError(LLMError):
    """Raised when the provider times out."""


class InvalidResponseError(LLMError):
    """Raised when a provider reply cannot be decoded into the expected shape."""


class ModelNotFoundError(LLMError):
    """The provider does not serve the requested model."""


class LLMClient(Protocol):
    async def complete_json(self, prompt: str, schema: dict) -> dict:
        ...

    async def complete_text(self, prompt: str) -> str:
        ...
