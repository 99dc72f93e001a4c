from __future__ import annotations

from dataclasses import dataclass, field
from uuid import uuid4

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from estimator_core.llm.base import LLMError, ModelNotFoundError, RateLimitError, TimeoutError


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    min_wait: float = 0.5
    max_wait: float = 4.0
    retry_on: tuple[type[Exception], ...] = field(
        default=(RateLimitError, TimeoutError, LLMError)
    )
    give_up_on: tuple[type[Exception], ...] = (ModelNotFoundError,)

    def build(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(max(self.max_attempts, 1)),
            wait=wait_exponential(min=self.min_wait, max=self.max_wait),
            retry=(
                retry_if_exception_type(self.retry_on)
                & retry_if_not_exception_type(self.give_up_on)
            ),
            reraise=True,
        )


# Quote validation makes exactly one provider call per quote.
SINGLE_ATTEMPT = RetryPolicy(max_attempts=1)


def build_idempotency_key(prefix: str = "estimator") -> str:
    return f"{prefix}-{uuid4()}"


async def run_with_retry(fn, *args, policy: RetryPolicy | None = None, **kwargs):
    retrying = (policy or RetryPolicy()).build()
    async for attempt in retrying:
        with attempt:
            return await fn(*args, **kwargs)
    raise LLMError("Retry attempts exhausted")  # pragma: no cover
