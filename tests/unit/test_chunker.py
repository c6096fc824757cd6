"""Unit tests for TextChunker -- markdown, recursive and paragraph strategies."""

from __future__ import annotations

import pytest

from storyrag.config.schema import ChunkingConfig, ContextWindowConfig, GroupingConfig
from storyrag.services.ingestion.chunker import (
    TextChunker,
    build_next_context,
    build_prev_context,
    group_short_paragraphs,
    is_dialogue,
)

_P0 = "The lighthouse keeper climbed the spiral stairs every evening at dusk to light the great lamp."
_P1 = '"Is the lamp ready?" asked Mai.'
_P2 = '"Almost," he said.'
_P3 = (
    "Far below, the fishing boats returned to the harbor, their lanterns swaying "
    "against the dark water."
)
_STORY = "\n\n".join([_P0, _P1, _P2, _P3])


def _paragraph_chunker(**grouping) -> TextChunker:
    return TextChunker(
        chunking=ChunkingConfig(strategy="paragraph"),
        context=ContextWindowConfig(prev_context_chars=120, next_context_chars=60),
        grouping=GroupingConfig(**grouping),
    )


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


class TestGroupShortParagraphs:
    def test_short_runs_group_and_long_paragraph_stands_alone(self) -> None:
        paragraphs = ["a" * n for n in (10, 15, 200, 5, 8, 9, 9)]

        groups = group_short_paragraphs(paragraphs, short_threshold=80, max_group_size=4)

        assert groups == [[0, 1], [2], [3, 4, 5, 6]]

    def test_group_size_cap_starts_new_group(self) -> None:
        paragraphs = ["short"] * 6

        groups = group_short_paragraphs(paragraphs, short_threshold=80, max_group_size=4)

        assert groups == [[0, 1, 2, 3], [4, 5]]

    def test_long_dialogue_still_qualifies(self) -> None:
        paragraphs = ["Hi.", '"' + "x" * 150 + '"', "y" * 150]

        groups = group_short_paragraphs(paragraphs, short_threshold=80, max_group_size=4)

        assert groups == [[0, 1], [2]]

    def test_every_index_appears_exactly_once(self) -> None:
        paragraphs = ["a" * n for n in (3, 300, 4, 4, 4, 4, 4, 250, 1)]

        groups = group_short_paragraphs(paragraphs, short_threshold=80, max_group_size=3)

        flat = [i for group in groups for i in group]
        assert flat == list(range(len(paragraphs)))

    @pytest.mark.parametrize(
        "paragraph",
        ['"Quoted."', "“Curly.”", "„Low.“", "「Corner」", "'Single.'", "- Dash", "— Em dash"],
    )
    def test_dialogue_markers(self, paragraph: str) -> None:
        assert is_dialogue(paragraph)

    def test_narration_is_not_dialogue(self) -> None:
        assert not is_dialogue("The rain fell.")


# ---------------------------------------------------------------------------
# Context windows
# ---------------------------------------------------------------------------


class TestContextWindows:
    def test_prev_context_truncates_oldest_with_ellipsis(self) -> None:
        paragraphs = ["a" * 30, "b" * 30, "c" * 10]

        context = build_prev_context(paragraphs, first_index=2, budget=50)

        assert len(context) <= 50
        assert context.startswith("...a")
        assert context.endswith("b" * 30)

    def test_next_context_truncates_furthest_with_ellipsis(self) -> None:
        paragraphs = ["x", "b" * 30, "c" * 30]

        context = build_next_context(paragraphs, last_index=0, budget=50)

        assert len(context) <= 50
        assert context.startswith("b" * 30)
        assert context.endswith("c...")

    def test_zero_budget_yields_empty_context(self) -> None:
        paragraphs = ["one", "two", "three"]

        assert build_prev_context(paragraphs, first_index=2, budget=0) == ""
        assert build_next_context(paragraphs, last_index=0, budget=0) == ""

    def test_no_neighbours_yields_empty_context(self) -> None:
        paragraphs = ["only"]

        assert build_prev_context(paragraphs, first_index=0, budget=100) == ""
        assert build_next_context(paragraphs, last_index=0, budget=100) == ""

    def test_budget_too_small_for_ellipsis_drops_paragraph(self) -> None:
        paragraphs = ["a" * 40, "b"]

        assert build_prev_context(paragraphs, first_index=1, budget=3) == ""


# ---------------------------------------------------------------------------
# Paragraph strategy
# ---------------------------------------------------------------------------


class TestParagraphStrategy:
    def test_dialogue_lines_are_grouped(self) -> None:
        chunks = _paragraph_chunker().chunk(_STORY)

        assert [c.paragraph_index for c in chunks] == [0, 1, 3]
        grouped = chunks[1]
        assert grouped.text == f"{_P1}\n\n{_P2}"
        assert grouped.is_grouped is True
        assert grouped.group_size == 2
        assert grouped.group_indices == [1, 2]
        assert all(c.total_paragraphs == 4 for c in chunks)

    def test_context_flags_and_bounds(self) -> None:
        chunks = _paragraph_chunker().chunk(_STORY)

        assert chunks[0].has_prev_context is False
        assert chunks[0].has_next_context is True
        assert chunks[-1].has_prev_context is True
        assert chunks[-1].has_next_context is False
        for chunk in chunks:
            assert len(chunk.prev_context) <= 120
            assert len(chunk.next_context) <= 60
            assert chunk.has_prev_context == (len(chunk.prev_context) > 0)
            assert chunk.has_next_context == (len(chunk.next_context) > 0)

    def test_text_with_context_wraps_chunk_text(self) -> None:
        chunks = _paragraph_chunker().chunk(_STORY)

        middle = chunks[1]
        assert middle.text in middle.text_with_context
        assert middle.text_with_context.startswith(middle.prev_context.strip())
        assert middle.text_with_context.endswith(middle.next_context.strip())

    def test_context_excluded_when_disabled(self) -> None:
        chunker = TextChunker(
            chunking=ChunkingConfig(strategy="paragraph"),
            context=ContextWindowConfig(include_context=False),
        )

        chunks = chunker.chunk(_STORY)

        assert all(c.text_with_context == c.text for c in chunks)

    def test_grouping_disabled_gives_one_chunk_per_paragraph(self) -> None:
        chunks = _paragraph_chunker(enabled=False).chunk(_STORY)

        assert [c.text for c in chunks] == [_P0, _P1, _P2, _P3]
        assert not any(c.is_grouped for c in chunks)

    def test_long_paragraph_is_not_split(self) -> None:
        long_paragraph = "word " * 600
        chunker = TextChunker(chunking=ChunkingConfig(strategy="paragraph", chunk_size=100))

        chunks = chunker.chunk(long_paragraph)

        assert len(chunks) == 1
        assert chunks[0].text == long_paragraph.strip()

    def test_markdown_blocks_preserved(self) -> None:
        text = "Intro line.\n\n```\ncode a\n\ncode b\n```\n\nOutro."
        chunker = TextChunker(
            chunking=ChunkingConfig(strategy="paragraph", preserve_markdown_blocks=True),
            grouping=GroupingConfig(enabled=False),
        )

        chunks = chunker.chunk(text)

        assert len(chunks) == 3
        assert chunks[1].text == "```\ncode a\n\ncode b\n```"


# ---------------------------------------------------------------------------
# Recursive and markdown strategies
# ---------------------------------------------------------------------------


class TestRecursiveStrategy:
    def test_short_text_is_one_chunk(self) -> None:
        chunker = TextChunker(chunking=ChunkingConfig(strategy="recursive", chunk_size=500))

        chunks = chunker.chunk("A short passage.")

        assert [c.text for c in chunks] == ["A short passage."]

    def test_windows_respect_size_and_cover_text(self) -> None:
        text = " ".join(f"word{i}" for i in range(200))
        chunker = TextChunker(
            chunking=ChunkingConfig(strategy="recursive", chunk_size=100, chunk_overlap=20)
        )

        pieces = [c.text for c in chunker.chunk(text)]

        assert len(pieces) > 1
        assert all(len(piece) <= 100 for piece in pieces)
        assert text.startswith(pieces[0])
        assert text.endswith(pieces[-1])

        previous_start = 0
        previous_end = len(pieces[0])
        for piece in pieces[1:]:
            start = text.find(piece, previous_start + 1)
            assert start != -1
            assert start <= previous_end, "gap between consecutive chunks"
            previous_start, previous_end = start, start + len(piece)

    def test_unbreakable_text_still_advances(self) -> None:
        text = "x" * 1000
        chunker = TextChunker(
            chunking=ChunkingConfig(strategy="recursive", chunk_size=100, chunk_overlap=99)
        )

        pieces = [c.text for c in chunker.chunk(text)]

        assert pieces
        assert all(len(piece) <= 100 for piece in pieces)

    def test_deterministic(self) -> None:
        text = " ".join(f"token{i}" for i in range(300))
        chunker = TextChunker(
            chunking=ChunkingConfig(strategy="recursive", chunk_size=120, chunk_overlap=30)
        )

        assert chunker.chunk(text) == chunker.chunk(text)


class TestMarkdownStrategy:
    def test_heading_path_tracking(self, sample_story_text: str) -> None:
        chunker = TextChunker(chunking=ChunkingConfig(strategy="markdown", chunk_size=2000))

        chunks = chunker.chunk(sample_story_text)

        assert [c.section_path for c in chunks] == [
            ["Chapter One"],
            ["Chapter One", "The Storm"],
        ]
        assert "lighthouse keeper" in chunks[0].text
        assert chunks[1].text.startswith("By midnight")

    def test_sibling_heading_replaces_deeper_path(self) -> None:
        text = "# A\n\nalpha\n\n## B\n\nbeta\n\n### C\n\ngamma\n\n## D\n\ndelta"
        chunker = TextChunker(chunking=ChunkingConfig(strategy="markdown"))

        chunks = chunker.chunk(text)

        assert [c.section_path for c in chunks] == [
            ["A"],
            ["A", "B"],
            ["A", "B", "C"],
            ["A", "D"],
        ]

    def test_oversized_section_is_split(self) -> None:
        body = " ".join(f"w{i}" for i in range(400))
        chunker = TextChunker(
            chunking=ChunkingConfig(strategy="markdown", chunk_size=200, chunk_overlap=20)
        )

        chunks = chunker.chunk(f"# Big\n\n{body}")

        assert len(chunks) > 1
        assert all(c.section_path == ["Big"] for c in chunks)
        assert all(len(c.text) <= 200 for c in chunks)


class TestEmptyInput:
    @pytest.mark.parametrize("strategy", ["markdown", "recursive", "paragraph"])
    @pytest.mark.parametrize("text", ["", "   ", "\n\n\n"])
    def test_empty_input_yields_no_chunks(self, strategy: str, text: str) -> None:
        chunker = TextChunker(chunking=ChunkingConfig(strategy=strategy))

        assert chunker.chunk(text) == []
