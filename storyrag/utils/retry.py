"""Exponential backoff with jitter for provider calls.

``compute_backoff_ms`` gives the delay before the next attempt and
``with_retry`` drives a call through ``max_retries + 1`` attempts.  Only
:class:`~storyrag.utils.errors.ProviderError` instances flagged
``retryable`` are retried; any other exception propagates on the first
failure.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

import structlog

from storyrag.utils.errors import ProviderError

logger = structlog.get_logger(logger_name=__name__)

_T = TypeVar("_T")


@dataclass(frozen=True)
class BackoffConfig:
    """Backoff shape: ``base_ms * 2^(attempt-1)`` capped at ``max_ms``, +/- jitter."""

    base_ms: int = 250
    max_ms: int = 10_000
    jitter: float = 0.2


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    backoff: BackoffConfig = field(default_factory=BackoffConfig)


def compute_backoff_ms(
    attempt: int,
    config: BackoffConfig,
    rand: Callable[[], float] = random.random,
) -> int:
    """Return the delay in milliseconds before retry number *attempt* (1-based).

    The result always lies within ``[0, config.max_ms]``.
    """
    exponential = config.base_ms * (2 ** max(0, attempt - 1))
    capped = min(exponential, config.max_ms)
    jittered = capped * (1 + (rand() * 2 - 1) * config.jitter)
    return max(0, min(config.max_ms, round(jittered)))


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.retryable


async def with_retry(
    fn: Callable[[], Awaitable[_T]],
    policy: RetryPolicy,
    *,
    operation: str = "provider_call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> _T:
    """Call *fn* until it succeeds, retrying retryable provider errors.

    Parameters
    ----------
    fn:
        Zero-argument coroutine factory; called once per attempt.
    policy:
        Retry count and backoff shape.
    operation:
        Name used in log events.
    sleep:
        Injected for tests.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except ProviderError as exc:
            if not is_retryable(exc) or attempt > policy.max_retries:
                raise
            delay_ms = compute_backoff_ms(attempt, policy.backoff)
            logger.warning(
                "retrying_provider_call",
                operation=operation,
                provider=exc.provider_name,
                attempt=attempt,
                max_retries=policy.max_retries,
                status_code=exc.status_code,
                delay_ms=delay_ms,
                error=exc.message,
            )
            await sleep(delay_ms / 1000)
