"""Retry/backoff helpers for upstream provider calls."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from oauth_proxy.core.errors import ProviderError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class RetryConfig:
    def __init__(
        self,
        *,
        attempts: int = 2,
        backoff_seconds: float = 0.25,
        jitter_seconds: float = 0.25,
    ) -> None:
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.jitter_seconds = jitter_seconds

    def delay_for(self, attempt: int) -> float:
        return self.backoff_seconds * attempt + random.uniform(0, self.jitter_seconds)


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args,
    retry_config: RetryConfig | None = None,
    **kwargs,
) -> T:
    """Await ``func`` retrying only transient ``ProviderError`` failures.

    Terminal provider failures (4xx other than 429) are raised immediately.
    """
    config = retry_config or RetryConfig()
    attempt = 0
    last_exception: ProviderError | None = None

    while attempt < config.attempts:
        try:
            return await func(*args, **kwargs)
        except ProviderError as exc:
            if not exc.retryable:
                raise
            last_exception = exc
            attempt += 1
            if attempt >= config.attempts:
                break
            delay = config.delay_for(attempt)
            logger.info(
                "Transient provider failure (status=%s); retrying in %.2fs",
                exc.provider_status,
                delay,
            )
            await asyncio.sleep(delay)

    if last_exception is not None:
        raise last_exception
    raise RuntimeError("Retry loop exited without attempting the call")


__all__ = ["RetryConfig", "call_with_retry"]
