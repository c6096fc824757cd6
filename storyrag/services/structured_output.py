"""Schema-validated JSON generation on top of :class:`ILLMProvider`.

The model is asked for a JSON object; the reply is scanned for JSON (a
fenced block, or the outermost ``{...}``), parsed, and validated against a
pydantic model.  Any failure is fed back to the model as a repair
instruction, up to ``max_attempts`` calls in total.
"""

from __future__ import annotations

import json
import re
from typing import TypeVar

import pydantic
import structlog

from storyrag.interfaces.llm_provider import ChatMessage, ILLMProvider
from storyrag.utils.errors import ValidationError

logger = structlog.get_logger(logger_name=__name__)

_ModelT = TypeVar("_ModelT", bound=pydantic.BaseModel)

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_BRACED_JSON_RE = re.compile(r"\{[\s\S]*\}")

_NO_JSON_REPAIR = "You must respond with ONLY valid JSON matching the schema. No markdown, no prose."
_INVALID_JSON_REPAIR = "Your last response was not valid JSON. Respond again with ONLY valid JSON."
_SCHEMA_REPAIR = (
    "The JSON did not match the required schema. Fix it and output ONLY valid JSON.\n{issues}"
)


def extract_json(raw: str) -> str | None:
    """Return the JSON text embedded in *raw*, or ``None`` if there is none.

    Handles three reply shapes:
    1. Clean JSON: ``{"summary_for_embedding": ...}``
    2. Markdown-fenced: ``\\`\\`\\`json\\n{...}\\`\\`\\```
    3. JSON embedded in prose: ``Here is the result: {...}``
    """
    fenced = _FENCED_JSON_RE.search(raw)
    if fenced and fenced.group(1).strip():
        return fenced.group(1).strip()
    braced = _BRACED_JSON_RE.search(raw)
    return braced.group(0) if braced else None


def format_issues(exc: pydantic.ValidationError) -> str:
    return "\n".join(
        f"{'.'.join(str(p) for p in err['loc']) or '(root)'}: {err['msg']}" for err in exc.errors()
    )


async def generate_structured(
    llm: ILLMProvider,
    messages: list[ChatMessage],
    schema: type[_ModelT],
    *,
    model: str | None = None,
    temperature: float = 0.0,
    max_tokens: int | None = None,
    top_p: float | None = None,
    max_attempts: int = 2,
) -> _ModelT:
    """Ask *llm* for JSON and validate it into *schema*.

    Parameters
    ----------
    llm:
        Chat provider (normally already rate-limited and retrying).
    messages:
        Prompt; repair turns are appended to a copy.
    schema:
        Pydantic model the JSON must validate against.
    max_attempts:
        Total number of model calls, repairs included.

    Raises
    ------
    ValidationError
        When the last attempt still yields no JSON, invalid JSON, or JSON
        that fails schema validation.
    storyrag.utils.errors.ProviderError
        Propagated from the provider.
    """
    conversation = list(messages)
    attempts = max(1, max_attempts)

    for attempt in range(1, attempts + 1):
        completion = await llm.chat(
            conversation,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            top_p=top_p,
            json_mode=True,
        )
        raw = completion.content
        last_attempt = attempt >= attempts

        json_text = extract_json(raw)
        if json_text is None:
            if last_attempt:
                raise ValidationError(
                    "Model did not return JSON output",
                    provider_name=llm.get_provider_name(),
                    details=raw[:500],
                )
            repair = _NO_JSON_REPAIR
        else:
            try:
                payload = json.loads(json_text)
            except json.JSONDecodeError as exc:
                if last_attempt:
                    raise ValidationError(
                        f"Model returned invalid JSON: {exc}",
                        provider_name=llm.get_provider_name(),
                        details=json_text[:500],
                    ) from exc
                repair = _INVALID_JSON_REPAIR
            else:
                try:
                    return schema.model_validate(payload)
                except pydantic.ValidationError as exc:
                    issues = format_issues(exc)
                    if last_attempt:
                        raise ValidationError(
                            f"Model returned JSON that does not match schema:\n{issues}",
                            provider_name=llm.get_provider_name(),
                            details=payload,
                        ) from exc
                    repair = _SCHEMA_REPAIR.format(issues=issues)

        logger.info(
            "structured_output_repair",
            provider=llm.get_provider_name(),
            schema=schema.__name__,
            attempt=attempt,
        )
        conversation = conversation + [
            ChatMessage(role="assistant", content=raw),
            ChatMessage(role="user", content=repair),
        ]

    raise ValidationError("Structured generation failed", provider_name=llm.get_provider_name())
