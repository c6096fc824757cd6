"""Decorators around :class:`ILLMProvider`: concurrency limiting and retries.

The factory in :mod:`storyrag.main` stacks them as
``RetryingLLMProvider(RateLimitedLLMProvider(provider, limiter))`` so each
attempt (not each logical call) takes a limiter slot, and backoff sleeps do
not hold one.
"""

from __future__ import annotations

from storyrag.interfaces.llm_provider import ChatCompletion, ChatMessage, ILLMProvider
from storyrag.utils.concurrency import ConcurrencyLimiter
from storyrag.utils.retry import RetryPolicy, with_retry


class RateLimitedLLMProvider(ILLMProvider):
    """Runs every chat call of *inner* through a shared limiter."""

    def __init__(self, inner: ILLMProvider, limiter: ConcurrencyLimiter) -> None:
        self._inner = inner
        self._limiter = limiter

    async def chat(self, messages: list[ChatMessage], **kwargs) -> ChatCompletion:
        return await self._limiter.run(self._inner.chat, messages, **kwargs)

    def get_provider_name(self) -> str:
        return self._inner.get_provider_name()

    def is_available(self) -> bool:
        return self._inner.is_available()


class RetryingLLMProvider(ILLMProvider):
    """Retries retryable provider errors of *inner* with exponential backoff."""

    def __init__(self, inner: ILLMProvider, policy: RetryPolicy) -> None:
        self._inner = inner
        self._policy = policy

    async def chat(self, messages: list[ChatMessage], **kwargs) -> ChatCompletion:
        return await with_retry(
            lambda: self._inner.chat(messages, **kwargs),
            self._policy,
            operation=f"{self.get_provider_name()}_chat",
        )

    def get_provider_name(self) -> str:
        return self._inner.get_provider_name()

    def is_available(self) -> bool:
        return self._inner.is_available()
