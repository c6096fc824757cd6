"""Unit tests for JSON extraction and schema-validated generation."""

from __future__ import annotations

import json

import pytest

from storyrag.interfaces.llm_provider import ChatMessage
from storyrag.models.enrichment import ExtractedMetadata
from storyrag.services.structured_output import extract_json, generate_structured
from storyrag.utils.errors import ProviderError, ValidationError
from tests.conftest import ScriptedLLMProvider

_VALID = json.dumps(
    {
        "title": "The Storm",
        "language": "en",
        "content_type": "markdown",
        "tags": ["sea"],
        "summary_for_embedding": "A storm reaches the island.",
        "normalized_text": "By midnight the storm had reached the island.",
    }
)
_PROMPT = [ChatMessage(role="user", content="Enrich this chunk.")]


class TestExtractJson:
    def test_clean_json(self) -> None:
        assert extract_json('{"a": 1}') == '{"a": 1}'

    def test_fenced_json(self) -> None:
        raw = 'Sure.\n```json\n{"a": 1}\n```\nDone.'
        assert extract_json(raw) == '{"a": 1}'

    def test_fence_without_language(self) -> None:
        assert extract_json('```\n{"a": 2}\n```') == '{"a": 2}'

    def test_json_in_prose(self) -> None:
        assert extract_json('Here is the result: {"a": {"b": 3}} hope it helps') == '{"a": {"b": 3}}'

    def test_no_json(self) -> None:
        assert extract_json("I cannot help with that.") is None


class TestGenerateStructured:
    @pytest.mark.asyncio
    async def test_first_reply_valid(self) -> None:
        llm = ScriptedLLMProvider([_VALID])

        result = await generate_structured(llm, _PROMPT, ExtractedMetadata, max_tokens=100)

        assert result.title == "The Storm"
        assert len(llm.calls) == 1
        assert llm.calls[0]["json_mode"] is True
        assert llm.calls[0]["max_tokens"] == 100

    @pytest.mark.asyncio
    async def test_repairs_missing_json(self) -> None:
        llm = ScriptedLLMProvider(["no json here", _VALID])

        result = await generate_structured(llm, _PROMPT, ExtractedMetadata)

        assert result.language == "en"
        second_turn = llm.calls[1]["messages"]
        assert [m.role for m in second_turn] == ["user", "assistant", "user"]
        assert second_turn[1].content == "no json here"
        assert "ONLY valid JSON" in second_turn[2].content

    @pytest.mark.asyncio
    async def test_repairs_schema_mismatch_with_issue_list(self) -> None:
        llm = ScriptedLLMProvider(['{"language": "en"}', _VALID])

        await generate_structured(llm, _PROMPT, ExtractedMetadata)

        repair = llm.calls[1]["messages"][-1].content
        assert "did not match the required schema" in repair
        assert "summary_for_embedding" in repair

    @pytest.mark.asyncio
    async def test_original_messages_not_mutated(self) -> None:
        prompt = list(_PROMPT)
        llm = ScriptedLLMProvider(["{not json", _VALID])

        await generate_structured(llm, prompt, ExtractedMetadata)

        assert prompt == _PROMPT

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reply",
        ["plain prose", "{broken json", '{"language": "en"}'],
    )
    async def test_final_failure_raises_validation_error(self, reply: str) -> None:
        llm = ScriptedLLMProvider([reply, reply])

        with pytest.raises(ValidationError) as exc_info:
            await generate_structured(llm, _PROMPT, ExtractedMetadata, max_attempts=2)

        assert exc_info.value.provider_name == "scripted"
        assert len(llm.calls) == 2

    @pytest.mark.asyncio
    async def test_single_attempt_does_not_repair(self) -> None:
        llm = ScriptedLLMProvider(["nope"])

        with pytest.raises(ValidationError):
            await generate_structured(llm, _PROMPT, ExtractedMetadata, max_attempts=1)

        assert len(llm.calls) == 1

    @pytest.mark.asyncio
    async def test_provider_errors_propagate(self) -> None:
        llm = ScriptedLLMProvider([ProviderError("boom", provider_name="scripted")])

        with pytest.raises(ProviderError):
            await generate_structured(llm, _PROMPT, ExtractedMetadata)
