"""Structured output of the chunk enrichment LLM call."""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from storyrag.models.rag import ContentType


class ExtractedMetadata(BaseModel):
    """Normalized text, embedding summary and tags for one chunk.

    Accepts both snake_case and camelCase keys since models differ in which
    they emit.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    title: str | None = None
    language: str = Field(default="unknown", min_length=1)
    content_type: ContentType = Field(
        default=ContentType.UNKNOWN,
        validation_alias=AliasChoices("content_type", "contentType"),
    )
    tags: list[str] = Field(default_factory=list)
    entities: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    summary_for_embedding: str = Field(
        min_length=1,
        validation_alias=AliasChoices("summary_for_embedding", "summaryForEmbedding"),
    )
    normalized_text: str = Field(
        min_length=1,
        validation_alias=AliasChoices("normalized_text", "normalizedText"),
    )

    @field_validator("content_type", mode="before")
    @classmethod
    def _coerce_content_type(cls, value: object) -> object:
        # Models occasionally invent labels like "novel"; treat them as unknown.
        if isinstance(value, str) and value.lower() not in {c.value for c in ContentType}:
            return ContentType.UNKNOWN
        if isinstance(value, str):
            return value.lower()
        return value
