"""Intermediate values passed between ingestion stages."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from storyrag.models.rag import ContentType, ParagraphContentType, SourceType


class LoadedDocument(BaseModel):
    """Text extracted from one source (a file, a page or a PDF)."""

    model_config = ConfigDict(frozen=True)

    page_content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class LoadedSource(BaseModel):
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    source_type: SourceType
    uri: str
    content_type: ContentType = ContentType.UNKNOWN
    documents: list[LoadedDocument] = Field(default_factory=list)
    # Guessed from the ingest root the file was discovered under.
    language: str | None = None
    paragraph_content_type: ParagraphContentType | None = None


class ChunkDraft(BaseModel):
    """A chunk before enrichment and embedding."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    source_type: SourceType
    source_uri: str
    source_id: str
    content_type: ContentType
    chunk_index: int = Field(ge=0)
    text: str
    text_with_context: str | None = None
    section_path: list[str] = Field(default_factory=list)
    title: str | None = None
    language: str = "unknown"
    paragraph_content_type: ParagraphContentType | None = None
    total_paragraphs: int | None = None
    has_prev_context: bool | None = None
    has_next_context: bool | None = None
    is_grouped: bool | None = None
    group_size: int | None = None
    group_indices: list[int] | None = None
