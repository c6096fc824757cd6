"""LLM-based chunk enrichment: normalized text, embedding summary, tags.

Enrichment is optional and fallible.  The ingestion pipeline calls
:meth:`ChunkEnricher.enrich` per chunk and falls back to the raw chunk text
(with its context window) when it raises.

Two modes:

1. **Single-stage** -- the primary provider (DeepSeek) returns the
   structured :class:`ExtractedMetadata` directly.
2. **Two-stage** -- when a secondary provider (OpenRouter) is configured,
   the primary extraction and a free-text analysis by the secondary run
   concurrently; the primary then merges the analysis into its own
   extraction.  A failed analysis or merge degrades to the primary
   extraction.
"""

from __future__ import annotations

import asyncio
import json

import structlog

from storyrag.interfaces.llm_provider import ChatMessage, ILLMProvider
from storyrag.models.enrichment import ExtractedMetadata
from storyrag.services.structured_output import generate_structured

logger = structlog.get_logger(logger_name=__name__)

_EXTRACTION_MAX_TOKENS = 1600
_ANALYSIS_MAX_TOKENS = 1000
_ANALYSIS_TEMPERATURE = 0.6

_ENRICHMENT_SYSTEM_PROMPT = """\
You are an expert content analyst specializing in text normalization and semantic extraction.

Your role is to:
1. Clean and normalize text for optimal retrieval
2. Extract structured metadata for indexing
3. Generate embedding-focused summaries that capture semantic meaning

Be concise, accurate, and consistent in your output format."""

_ENRICHMENT_TASK_PROMPT = """\
## TASK: CHUNK ENRICHMENT FOR RETRIEVAL

### 1. NORMALIZE TEXT
- Remove HTML artifacts, encoding errors, extra whitespace
- Fix obvious OCR/parsing errors if detectable
- Preserve paragraph structure and meaningful formatting

### 2. EXTRACT METADATA
- language: primary language (ISO 639-1 code: en, vi, zh, ja, ko, ...)
- content_type: one of markdown, pdf, text, html, unknown
- title: section/chapter title if present or inferable
- tags: key themes, genres, or categories (max 5)
- entities: named characters, locations, organizations (max 10)
- keywords: distinctive search terms (max 10)

### 3. GENERATE SUMMARY FOR EMBEDDING
Write a 2-4 sentence summary optimized for semantic search:
- Include key entities, actions, and themes
- Focus on searchable concepts, not style
- Use the SAME language as the source text

## OUTPUT
Return ONLY a JSON object with these keys:
{"title": string|null, "language": string, "content_type": string, "tags": [string],
 "entities": [string], "keywords": [string], "summary_for_embedding": string,
 "normalized_text": string}

## SAFETY
- Do NOT include secrets, passwords, or API keys
- Do NOT generate external links not present in the source"""

_ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert content analyzer. Analyze the following text deeply. "
    "Identify key entities, themes, and language nuances. Provide a detailed analysis."
)

_MERGE_SYSTEM_PROMPT = """\
You are a data merging expert. You have an initial structured extraction and a deep \
analysis from another model. IMPROVE the structured data based on the analysis:
- Update normalized_text only if the analysis suggests better phrasing or context.
- Refine summary_for_embedding to include the deeper insights.
- Make sure title and keywords capture the core themes identified.
- Verify language and content_type.

Return the final JSON object with exactly the same keys as the initial extraction."""


def build_enrichment_messages(
    chunk_text: str,
    source_uri: str,
    content_type_hint: str | None = None,
) -> list[ChatMessage]:
    user_prompt = "\n".join(
        [
            "# CHUNK METADATA",
            f"- Source URI: {source_uri}",
            f"- Content Type Hint: {content_type_hint or '(auto-detect)'}",
            "",
            "# CHUNK TEXT",
            "```",
            chunk_text,
            "```",
            "",
            "Process this chunk and return the enriched metadata JSON.",
        ]
    )
    return [
        ChatMessage(role="system", content=_ENRICHMENT_SYSTEM_PROMPT),
        ChatMessage(role="system", content=_ENRICHMENT_TASK_PROMPT),
        ChatMessage(role="user", content=user_prompt),
    ]


class ChunkEnricher:
    """Produces :class:`ExtractedMetadata` for chunks via one or two LLMs.

    Parameters
    ----------
    primary:
        Structured-extraction provider.
    primary_model:
        Model override for the primary provider (``None`` = its default).
    secondary:
        Optional free-text analyzer; enables two-stage mode.
    secondary_model:
        Model override for the secondary provider.
    """

    def __init__(
        self,
        primary: ILLMProvider,
        primary_model: str | None = None,
        secondary: ILLMProvider | None = None,
        secondary_model: str | None = None,
        max_attempts: int = 2,
    ) -> None:
        self._primary = primary
        self._primary_model = primary_model
        self._secondary = secondary
        self._secondary_model = secondary_model
        self._max_attempts = max_attempts

    @property
    def two_stage(self) -> bool:
        return self._secondary is not None

    async def enrich(
        self,
        chunk_text: str,
        source_uri: str,
        content_type_hint: str | None = None,
    ) -> ExtractedMetadata:
        """Enrich one chunk.

        Raises
        ------
        storyrag.utils.errors.ValidationError
            If the primary extraction never matches the schema.
        storyrag.utils.errors.ProviderError
            If the primary provider call fails.
        """
        messages = build_enrichment_messages(chunk_text, source_uri, content_type_hint)
        if self._secondary is None:
            return await self._extract(messages)

        extraction, analysis = await asyncio.gather(
            self._extract(messages),
            self._analyze(chunk_text),
        )
        if not analysis:
            return extraction

        try:
            return await self._merge(chunk_text, extraction, analysis)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "chunk_enrichment_merge_failed",
                source_uri=source_uri,
                error=str(exc),
                msg="Using primary extraction.",
            )
            return extraction

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _extract(self, messages: list[ChatMessage]) -> ExtractedMetadata:
        return await generate_structured(
            self._primary,
            messages,
            ExtractedMetadata,
            model=self._primary_model,
            temperature=0.0,
            top_p=1.0,
            max_tokens=_EXTRACTION_MAX_TOKENS,
            max_attempts=self._max_attempts,
        )

    async def _analyze(self, chunk_text: str) -> str | None:
        if self._secondary is None:
            return None
        try:
            completion = await self._secondary.chat(
                [
                    ChatMessage(role="system", content=_ANALYSIS_SYSTEM_PROMPT),
                    ChatMessage(role="user", content=chunk_text),
                ],
                model=self._secondary_model,
                temperature=_ANALYSIS_TEMPERATURE,
                max_tokens=_ANALYSIS_MAX_TOKENS,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "chunk_analysis_failed",
                provider=self._secondary.get_provider_name(),
                error=str(exc),
            )
            return None
        return completion.content.strip() or None

    async def _merge(
        self,
        chunk_text: str,
        extraction: ExtractedMetadata,
        analysis: str,
    ) -> ExtractedMetadata:
        user_prompt = "\n".join(
            [
                "**ORIGINAL TEXT:**",
                chunk_text,
                "",
                "**INITIAL EXTRACTION:**",
                json.dumps(extraction.model_dump(), ensure_ascii=False, indent=2),
                "",
                "**DEEP ANALYSIS:**",
                analysis,
                "",
                "**TASK:** Merge and refine the extraction.",
            ]
        )
        return await generate_structured(
            self._primary,
            [
                ChatMessage(role="system", content=_MERGE_SYSTEM_PROMPT),
                ChatMessage(role="user", content=user_prompt),
            ],
            ExtractedMetadata,
            model=self._primary_model,
            temperature=0.0,
            max_tokens=_EXTRACTION_MAX_TOKENS,
            max_attempts=self._max_attempts,
        )
