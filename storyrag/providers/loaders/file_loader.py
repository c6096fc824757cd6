"""Local file loader: markdown (with YAML frontmatter), PDF and plain text."""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Any

import structlog
import yaml

from storyrag.models.ingest import LoadedDocument
from storyrag.models.rag import ContentType
from storyrag.providers.loaders.pdf import extract_pdf_text
from storyrag.utils.errors import SourceIOError
from storyrag.utils.text_normalizer import normalize_text_for_search

logger = structlog.get_logger(logger_name=__name__)

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


def content_type_for_path(path: str | Path) -> ContentType:
    """Infer the content type from a file extension."""
    suffix = Path(path).suffix.lower()
    if suffix in (".md", ".mdx"):
        return ContentType.MARKDOWN
    if suffix == ".pdf":
        return ContentType.PDF
    if suffix == ".txt":
        return ContentType.TEXT
    return ContentType.UNKNOWN


def split_frontmatter(raw: str) -> tuple[dict[str, Any], str]:
    """Split a leading ``---`` YAML block from markdown *raw*.

    Malformed frontmatter is left in the body and an empty mapping is
    returned.
    """
    match = _FRONTMATTER_RE.match(raw)
    if not match:
        return {}, raw
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        logger.warning("frontmatter_parse_failed", error=str(exc))
        return {}, raw
    if not isinstance(data, dict):
        return {}, raw
    return data, raw[match.end() :]


class FileLoader:
    """Loads one local file into a :class:`LoadedDocument`.

    Parameters
    ----------
    path:
        File to read.
    content_type:
        Overrides extension-based detection.  Unknown extensions are read
        as plain text.
    """

    def __init__(self, path: str | Path, content_type: ContentType | None = None) -> None:
        self._path = Path(path)
        self._content_type = content_type or content_type_for_path(self._path)

    @property
    def content_type(self) -> ContentType:
        return self._content_type

    async def load(self) -> list[LoadedDocument]:
        uri = str(self._path.resolve())
        try:
            data = await asyncio.to_thread(self._path.read_bytes)
        except OSError as exc:
            raise SourceIOError(f"Failed to read {self._path}: {exc}", path=uri) from exc

        base_metadata = {
            "source_type": "file",
            "source_uri": uri,
            "content_type": self._content_type.value,
        }

        if self._content_type == ContentType.PDF:
            try:
                text, page_count = await asyncio.to_thread(extract_pdf_text, data, uri)
            except Exception as exc:
                raise SourceIOError(f"Failed to parse PDF {self._path}: {exc}", path=uri) from exc
            return [
                LoadedDocument(
                    page_content=normalize_text_for_search(text),
                    metadata={**base_metadata, "page_count": page_count},
                )
            ]

        try:
            raw = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SourceIOError(f"{self._path} is not valid UTF-8: {exc}", path=uri) from exc

        if self._content_type == ContentType.MARKDOWN:
            frontmatter, body = split_frontmatter(raw)
            return [
                LoadedDocument(
                    page_content=normalize_text_for_search(body),
                    metadata={**base_metadata, "frontmatter": frontmatter},
                )
            ]

        return [LoadedDocument(page_content=normalize_text_for_search(raw), metadata=base_metadata)]
