"""Text chunking for retrieval: markdown sections, recursive windows, paragraphs.

Three strategies are supported, selected by ``ChunkingConfig.strategy``:

1. **markdown** -- Split on heading lines (``#`` .. ``######``) and track the
   heading path of each section, then split oversized sections with the
   recursive strategy.

2. **recursive** -- Fixed-size windows that end at the last "good"
   separator (blank line, newline, sentence end, space) inside the window.
   Consecutive windows overlap by ``chunk_overlap`` characters and the
   window start always moves forward, so the chunks cover the whole text.

3. **paragraph** -- One chunk per paragraph (or per group of short /
   dialogue paragraphs), each carrying a *context window*: trailing text of
   the preceding paragraphs and leading text of the following ones.  The
   chunk text is what gets stored and shown; the context window is what the
   embedding summary is built from, so short lines of dialogue still embed
   with enough surrounding meaning.

The chunker is pure: no I/O, deterministic output for a given input.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

import structlog

from storyrag.config.schema import ChunkingConfig, ContextWindowConfig, GroupingConfig
from storyrag.utils.text_normalizer import normalize_text_for_search, split_markdown_paragraphs

logger = structlog.get_logger(logger_name=__name__)

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.*)$")
_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")
# Opening quote glyphs (straight, curly, low-9, CJK corner brackets) or a dash.
_DIALOGUE_RE = re.compile(r"^[\"“”„「『'‘’\-–—]")

_SEPARATORS = ("\n\n", "\n", ". ", " ", "")
_PARAGRAPH_JOIN = "\n\n"
_ELLIPSIS = "..."


@dataclass(frozen=True)
class TextChunk:
    """One chunk produced by :class:`TextChunker`.

    ``paragraph_index`` and the context / grouping fields are only set by
    the paragraph strategy.
    """

    text: str
    section_path: list[str] = field(default_factory=list)
    paragraph_index: int | None = None
    total_paragraphs: int | None = None
    text_with_context: str | None = None
    prev_context: str = ""
    next_context: str = ""
    has_prev_context: bool = False
    has_next_context: bool = False
    is_grouped: bool = False
    group_size: int = 1
    group_indices: list[int] = field(default_factory=list)


class TextChunker:
    """Splits normalized text into retrieval chunks.

    Parameters
    ----------
    chunking:
        Size, overlap and strategy.
    context:
        Context-window budgets for the paragraph strategy.
    grouping:
        Short-paragraph grouping for the paragraph strategy.
    """

    def __init__(
        self,
        chunking: ChunkingConfig | None = None,
        context: ContextWindowConfig | None = None,
        grouping: GroupingConfig | None = None,
    ) -> None:
        self._chunking = chunking or ChunkingConfig()
        self._context = context or ContextWindowConfig()
        self._grouping = grouping or GroupingConfig()

    @property
    def strategy(self) -> str:
        return self._chunking.strategy

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str) -> list[TextChunk]:
        """Split *text* into chunks using the configured strategy.

        The text is normalized first; empty (or whitespace-only) input
        yields an empty list.
        """
        if self._chunking.normalize:
            normalized = normalize_text_for_search(text)
        else:
            normalized = text.strip()
        if not normalized:
            return []

        strategy = self._chunking.strategy
        if strategy == "markdown":
            chunks = self._chunk_markdown(normalized)
        elif strategy == "paragraph":
            chunks = self._chunk_paragraphs(normalized)
        else:
            chunks = [TextChunk(text=piece) for piece in self._split_recursive(normalized)]

        logger.debug(
            "text_chunked",
            strategy=strategy,
            input_chars=len(normalized),
            chunk_count=len(chunks),
        )
        return chunks

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _chunk_markdown(self, text: str) -> list[TextChunk]:
        chunks: list[TextChunk] = []
        section_path: list[str] = []
        buffer: list[str] = []

        def _flush() -> None:
            body = normalize_text_for_search("\n".join(buffer))
            buffer.clear()
            if not body:
                return
            for piece in self._split_recursive(body):
                chunks.append(TextChunk(text=piece, section_path=list(section_path)))

        for line in text.split("\n"):
            match = _HEADING_RE.match(line.strip())
            if match:
                _flush()
                level = len(match.group(1))
                section_path = section_path[: level - 1] + [match.group(2).strip()]
                continue
            buffer.append(line)
        _flush()

        return chunks

    def _split_recursive(self, text: str) -> list[str]:
        size = self._chunking.chunk_size
        overlap = min(self._chunking.chunk_overlap, max(0, size - 1))

        if len(text) <= size:
            return [text] if text.strip() else []

        pieces: list[str] = []
        start = 0
        length = len(text)
        while start < length:
            end = min(start + size, length)
            window = text[start:end]
            # The last window is always taken whole so nothing is dropped.
            split = len(window) if end == length else _find_split(window, overlap)

            piece = window[:split].strip()
            if piece:
                pieces.append(piece)
            if end == length:
                break
            start = max(start + 1, start + split - overlap)

        return pieces

    def _chunk_paragraphs(self, text: str) -> list[TextChunk]:
        if self._chunking.preserve_markdown_blocks:
            paragraphs = split_markdown_paragraphs(text)
        else:
            paragraphs = [p.strip() for p in _PARAGRAPH_BREAK_RE.split(text) if p.strip()]
        if not paragraphs:
            return []

        if self._grouping.enabled:
            groups = group_short_paragraphs(
                paragraphs,
                short_threshold=self._grouping.short_threshold,
                max_group_size=self._grouping.max_group_size,
            )
        else:
            groups = [[i] for i in range(len(paragraphs))]

        chunks: list[TextChunk] = []
        for indices in groups:
            group_text = _PARAGRAPH_JOIN.join(paragraphs[i] for i in indices)
            prev_context = build_prev_context(
                paragraphs, indices[0], self._context.prev_context_chars
            )
            next_context = build_next_context(
                paragraphs, indices[-1], self._context.next_context_chars
            )
            if self._context.include_context:
                text_with_context = _PARAGRAPH_JOIN.join(
                    part for part in (prev_context.strip(), group_text, next_context.strip()) if part
                )
            else:
                text_with_context = group_text

            chunks.append(
                TextChunk(
                    text=group_text,
                    paragraph_index=indices[0],
                    total_paragraphs=len(paragraphs),
                    text_with_context=text_with_context,
                    prev_context=prev_context,
                    next_context=next_context,
                    has_prev_context=len(prev_context) > 0,
                    has_next_context=len(next_context) > 0,
                    is_grouped=len(indices) > 1,
                    group_size=len(indices),
                    group_indices=list(indices),
                )
            )

        return chunks


# ----------------------------------------------------------------------
# Paragraph helpers
# ----------------------------------------------------------------------


def is_dialogue(paragraph: str) -> bool:
    """Return ``True`` if *paragraph* opens with a quote glyph or a dash."""
    return bool(_DIALOGUE_RE.match(paragraph))


def group_short_paragraphs(
    paragraphs: list[str],
    short_threshold: int = 80,
    max_group_size: int = 4,
) -> list[list[int]]:
    """Group runs of short or dialogue paragraphs.

    A paragraph qualifies when it is shorter than *short_threshold* or opens
    like dialogue.  Qualifying paragraphs join the running group while it
    has fewer than *max_group_size* members; otherwise the group is closed
    and a new one started.  Non-qualifying paragraphs stand alone.

    Returns
    -------
    list[list[int]]
        Paragraph indices per group, in document order.  Every index
        appears exactly once.
    """
    groups: list[list[int]] = []
    current: list[int] = []

    for index, paragraph in enumerate(paragraphs):
        qualifies = len(paragraph) < short_threshold or is_dialogue(paragraph)

        if qualifies and len(current) < max_group_size:
            current.append(index)
            continue

        if current:
            groups.append(current)
            current = []

        if qualifies:
            current = [index]
        else:
            groups.append([index])

    if current:
        groups.append(current)

    return groups


def build_prev_context(paragraphs: list[str], first_index: int, budget: int) -> str:
    """Collect up to *budget* trailing characters of paragraphs before *first_index*.

    Paragraphs are taken nearest first.  The oldest paragraph that does not
    fit is cut to its tail and prefixed with ``...``.  Separators and the
    ellipsis count toward the budget.
    """
    pieces: list[str] = []
    used = 0
    for index in range(first_index - 1, -1, -1):
        separator = len(_PARAGRAPH_JOIN) if pieces else 0
        available = budget - used - separator
        if available <= 0:
            break

        paragraph = paragraphs[index]
        if len(paragraph) <= available:
            pieces.insert(0, paragraph)
            used += separator + len(paragraph)
            continue

        tail_length = available - len(_ELLIPSIS)
        if tail_length > 0:
            pieces.insert(0, _ELLIPSIS + paragraph[-tail_length:])
        break

    return _PARAGRAPH_JOIN.join(pieces)


def build_next_context(paragraphs: list[str], last_index: int, budget: int) -> str:
    """Collect up to *budget* leading characters of paragraphs after *last_index*.

    The furthest paragraph that does not fit is cut to its head and
    suffixed with ``...``.  Separators and the ellipsis count toward the
    budget.
    """
    pieces: list[str] = []
    used = 0
    for index in range(last_index + 1, len(paragraphs)):
        separator = len(_PARAGRAPH_JOIN) if pieces else 0
        available = budget - used - separator
        if available <= 0:
            break

        paragraph = paragraphs[index]
        if len(paragraph) <= available:
            pieces.append(paragraph)
            used += separator + len(paragraph)
            continue

        head_length = available - len(_ELLIPSIS)
        if head_length > 0:
            pieces.append(paragraph[:head_length] + _ELLIPSIS)
        break

    return _PARAGRAPH_JOIN.join(pieces)


def _find_split(window: str, overlap: int) -> int:
    """Return the split offset within *window*.

    Picks the last occurrence of the highest-priority separator that ends
    past the overlap, so the next window always starts further along.
    """
    for separator in _SEPARATORS:
        if not separator:
            return len(window)
        index = window.rfind(separator)
        if index > 0 and index + len(separator) > overlap:
            return index + len(separator)
    return len(window)
