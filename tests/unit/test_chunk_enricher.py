"""Unit tests for ChunkEnricher single- and two-stage enrichment."""

from __future__ import annotations

import json

import pytest

from storyrag.services.ingestion.chunk_enricher import ChunkEnricher, build_enrichment_messages
from storyrag.utils.errors import ProviderError, ValidationError
from tests.conftest import ScriptedLLMProvider


def _payload(summary: str, **overrides: object) -> str:
    data = {
        "title": "Chapter One",
        "language": "en",
        "contentType": "markdown",
        "tags": ["lighthouse"],
        "entities": ["Mai"],
        "keywords": ["lamp"],
        "summaryForEmbedding": summary,
        "normalizedText": "The keeper climbed the stairs.",
    }
    data.update(overrides)
    return json.dumps(data)


class TestBuildEnrichmentMessages:
    def test_includes_uri_hint_and_text(self) -> None:
        messages = build_enrichment_messages("Some text.", "/books/a.md", "markdown")

        assert [m.role for m in messages] == ["system", "system", "user"]
        assert "/books/a.md" in messages[2].content
        assert "Content Type Hint: markdown" in messages[2].content
        assert "Some text." in messages[2].content

    def test_missing_hint_is_auto_detect(self) -> None:
        messages = build_enrichment_messages("x", "/a.txt")
        assert "(auto-detect)" in messages[2].content


class TestSingleStage:
    @pytest.mark.asyncio
    async def test_returns_primary_extraction(self) -> None:
        primary = ScriptedLLMProvider([_payload("Keeper lights the lamp.")], name="deepseek")
        enricher = ChunkEnricher(primary, primary_model="deepseek-chat")

        result = await enricher.enrich("text", "/books/a.md")

        assert not enricher.two_stage
        assert result.summary_for_embedding == "Keeper lights the lamp."
        assert result.content_type == "markdown"
        assert primary.calls[0]["model"] == "deepseek-chat"
        assert primary.calls[0]["temperature"] == 0.0

    @pytest.mark.asyncio
    async def test_invalid_output_raises(self) -> None:
        primary = ScriptedLLMProvider(["nope", "still nope"])
        enricher = ChunkEnricher(primary)

        with pytest.raises(ValidationError):
            await enricher.enrich("text", "/books/a.md")


class TestTwoStage:
    @pytest.mark.asyncio
    async def test_merges_analysis_into_extraction(self) -> None:
        primary = ScriptedLLMProvider(
            [_payload("first pass"), _payload("merged summary")], name="deepseek"
        )
        secondary = ScriptedLLMProvider(["Deep analysis: themes of duty."], name="openrouter")
        enricher = ChunkEnricher(primary, secondary=secondary, secondary_model="analyst")

        result = await enricher.enrich("text", "/books/a.md")

        assert enricher.two_stage
        assert result.summary_for_embedding == "merged summary"
        assert secondary.calls[0]["model"] == "analyst"
        assert secondary.calls[0]["json_mode"] is False
        merge_prompt = primary.calls[1]["messages"][-1].content
        assert "Deep analysis: themes of duty." in merge_prompt
        assert "first pass" in merge_prompt

    @pytest.mark.asyncio
    async def test_failed_analysis_falls_back_to_extraction(self) -> None:
        primary = ScriptedLLMProvider([_payload("first pass")])
        secondary = ScriptedLLMProvider([ProviderError("down", provider_name="openrouter")])
        enricher = ChunkEnricher(primary, secondary=secondary)

        result = await enricher.enrich("text", "/books/a.md")

        assert result.summary_for_embedding == "first pass"
        assert len(primary.calls) == 1

    @pytest.mark.asyncio
    async def test_blank_analysis_skips_merge(self) -> None:
        primary = ScriptedLLMProvider([_payload("first pass")])
        secondary = ScriptedLLMProvider(["   "])
        enricher = ChunkEnricher(primary, secondary=secondary)

        result = await enricher.enrich("text", "/books/a.md")

        assert result.summary_for_embedding == "first pass"
        assert len(primary.calls) == 1

    @pytest.mark.asyncio
    async def test_failed_merge_falls_back_to_extraction(self) -> None:
        primary = ScriptedLLMProvider([_payload("first pass"), "garbage", "garbage"])
        secondary = ScriptedLLMProvider(["analysis"])
        enricher = ChunkEnricher(primary, secondary=secondary)

        result = await enricher.enrich("text", "/books/a.md")

        assert result.summary_for_embedding == "first pass"
        assert len(primary.calls) == 3
