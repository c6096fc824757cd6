"""OpenAI-compatible chat provider adapter.

Wraps the ``openai`` async client to implement :class:`ILLMProvider`.
DeepSeek and OpenRouter both expose OpenAI-compatible ``/chat/completions``
endpoints, so a single adapter pointed at a different ``base_url`` serves
both; ``provider_name`` tells them apart in logs and errors.
"""

from __future__ import annotations

import asyncio

import openai
import structlog

from storyrag.interfaces.llm_provider import ChatCompletion, ChatMessage, ILLMProvider
from storyrag.providers.openai_errors import to_provider_error
from storyrag.utils.errors import ProviderError

logger = structlog.get_logger(logger_name=__name__)


class OpenAICompatibleLLMProvider(ILLMProvider):
    """Chat-completion provider for any OpenAI-compatible endpoint.

    Parameters
    ----------
    provider_name:
        Label used in logs and errors (``"deepseek"``, ``"openrouter"``).
    http_referer, app_title:
        Optional OpenRouter attribution headers.
    """

    def __init__(
        self,
        provider_name: str,
        api_key: str,
        base_url: str,
        model: str,
        timeout_s: float = 120.0,
        http_referer: str | None = None,
        app_title: str | None = None,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self._provider_label = provider_name
        self._api_key = api_key
        self._model = model
        self._timeout_s = timeout_s

        default_headers: dict[str, str] = {}
        if http_referer:
            default_headers["HTTP-Referer"] = http_referer
        if app_title:
            default_headers["X-Title"] = app_title

        self._client = client or openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout_s,
            max_retries=0,
            default_headers=default_headers or None,
        )

    @property
    def model(self) -> str:
        return self._model

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
        model_name = model or self._model
        kwargs: dict = {
            "model": model_name,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
        }
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if top_p is not None:
            kwargs["top_p"] = top_p
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(**kwargs),
                timeout=self._timeout_s,
            )
        except (openai.APIError, TimeoutError) as exc:
            raise to_provider_error(exc, self._provider_label) from exc

        if not response.choices:
            raise ProviderError(
                message="Chat completion returned no choices",
                provider_name=self._provider_label,
                retryable=True,
            )

        content = response.choices[0].message.content or ""
        usage: dict[str, int] = {}
        if response.usage is not None:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        logger.debug(
            "llm_chat_completion",
            provider=self._provider_label,
            model=model_name,
            json_mode=json_mode,
            total_tokens=usage.get("total_tokens"),
        )
        return ChatCompletion(
            content=content,
            model=getattr(response, "model", None) or model_name,
            provider=self._provider_label,
            usage=usage,
        )

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        return bool(self._api_key)
