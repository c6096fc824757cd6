"""Abstract base class for chat-completion LLM providers.

Used by chunk enrichment for structured extraction (JSON output validated
against a pydantic schema) and, in two-stage mode, for a free-text
analysis pass by a second provider.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Literal

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str


@dataclass(frozen=True)
class ChatCompletion:
    """Text returned by one chat-completion call."""

    content: str
    model: str
    provider: str
    usage: dict[str, int] = field(default_factory=dict)


# Concrete implementation: OpenAICompatibleLLMProvider (storyrag/providers/llm/),
# decorated by RateLimitedLLMProvider and RetryingLLMProvider.
class ILLMProvider(ABC):
    """Contract for chat-completion services."""

    @abstractmethod
    async def chat(
        self,
        messages: list[ChatMessage],
        *,
        model: str | None = None,
        temperature: float = 0.0,
        max_tokens: int | None = None,
        top_p: float | None = None,
        json_mode: bool = False,
    ) -> ChatCompletion:
        """Run one chat completion.

        Parameters
        ----------
        messages:
            Conversation so far, oldest first.
        model:
            Overrides the provider's default model.
        json_mode:
            Ask the provider for a JSON object response.

        Raises
        ------
        storyrag.utils.errors.ProviderError
            If the API call fails; ``retryable`` reflects the failure class.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"deepseek"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider has the credentials it needs."""
