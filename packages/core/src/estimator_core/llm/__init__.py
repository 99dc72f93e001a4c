from estimator_core.llm.anthropic_client import AnthropicClient
from estimator_core.llm.base import (
    InvalidResponseError,
    LLMClient,
    LLMError,
    ModelNotFoundError,
    RateLimitError,
    TimeoutError,
)
from estimator_core.llm.openai_client import OpenAIClient
from estimator_core.llm.retry import SINGLE_ATTEMPT, RetryPolicy

__all__ = [
    "AnthropicClient",
    "InvalidResponseError",
    "LLMClient",
    "LLMError",
    "ModelNotFoundError",
    "OpenAIClient",
    "RateLimitError",
    "RetryPolicy",
    "SINGLE_ATTEMPT",
    "TimeoutError",
]
