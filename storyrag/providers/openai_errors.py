"""Map ``openai`` SDK exceptions onto :class:`ProviderError`.

Shared by the embedding and chat providers, which both talk to
OpenAI-compatible endpoints (OpenRouter, DeepSeek) through the SDK.
"""

from __future__ import annotations

import openai

from storyrag.utils.errors import ProviderError, RateLimitError


def to_provider_error(exc: Exception, provider_name: str) -> ProviderError:
    """Classify *exc*: timeouts, connection errors, 429 and 5xx are retryable."""
    if isinstance(exc, openai.RateLimitError):
        return RateLimitError(message=f"Rate limited: {exc}", provider_name=provider_name)
    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        return ProviderError(
            message=f"API error (HTTP {status}): {exc}",
            provider_name=provider_name,
            status_code=status,
            retryable=status == 429 or status >= 500,
        )
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError, TimeoutError)):
        return ProviderError(
            message=f"Request failed: {exc or type(exc).__name__}",
            provider_name=provider_name,
            retryable=True,
        )
    return ProviderError(
        message=f"Unexpected API failure: {exc}",
        provider_name=provider_name,
        retryable=False,
    )
