from storyrag.providers.llm.openai_provider import OpenAICompatibleLLMProvider
from storyrag.providers.llm.wrappers import RateLimitedLLMProvider, RetryingLLMProvider

__all__ = ["OpenAICompatibleLLMProvider", "RateLimitedLLMProvider", "RetryingLLMProvider"]
