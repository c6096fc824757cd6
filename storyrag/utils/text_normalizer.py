"""Text normalization helpers shared by loaders, the chunker and the store.

1. **Search normalization** -- newline and whitespace cleanup applied to
   every loaded document and (optionally) to every chunk before hashing,
   so that trivially different copies of a text hash identically.

2. **Tokenization** -- a conservative lowercase tokenizer used for seed
   queries and debugging.  The lexical index has its own tokenizer.

3. **Markup stripping** -- a dependency-free HTML fallback for pages that
   trafilatura cannot extract, and a markdown paragraph splitter that keeps
   fenced code blocks and tables in one piece.
"""

import re

_TRAILING_SPACE_RE = re.compile(r"[ \t]+\n")
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")
_INLINE_SPACE_RE = re.compile(r"[ \t]{2,}")
_TOKEN_SPLIT_RE = re.compile(r"[^\w]+", re.UNICODE)

_HTML_DROP_RE = re.compile(r"<(script|style|noscript)\b[\s\S]*?</\1\s*>", re.IGNORECASE)
_HTML_BLOCK_END_RE = re.compile(r"</(p|div|li|h[1-6]|tr|section|article)\s*>|<br\s*/?>", re.IGNORECASE)
_HTML_TAG_RE = re.compile(r"<[^>]+>")
_HTML_ENTITIES = {
    "&nbsp;": " ",
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
}

_FENCE_PREFIXES = ("```", "~~~")
_TABLE_RULE_RE = re.compile(r"^\|?[-:]+\|")
_HEADING_RE = re.compile(r"^#{1,6}\s")


def normalize_text_for_search(text: str) -> str:
    """Normalize line endings and collapse redundant whitespace.

    CRLF becomes LF, trailing spaces before a newline are removed, runs of
    three or more newlines collapse to one blank line, runs of spaces/tabs
    collapse to a single space, and the result is stripped.
    """
    normalized = text.replace("\r\n", "\n")
    normalized = _TRAILING_SPACE_RE.sub("\n", normalized)
    normalized = _EXCESS_NEWLINES_RE.sub("\n\n", normalized)
    normalized = _INLINE_SPACE_RE.sub(" ", normalized)
    return normalized.strip()


def tokenize(text: str) -> list[str]:
    """Split text into lowercase word tokens (letters, digits, underscore)."""
    lowered = normalize_text_for_search(text).lower().replace("’", "'").replace("'", "")
    return [token for token in _TOKEN_SPLIT_RE.split(lowered) if token]


def html_to_text(html: str) -> str:
    """Strip tags from *html*, keeping block boundaries as newlines."""
    text = _HTML_DROP_RE.sub(" ", html)
    text = _HTML_BLOCK_END_RE.sub("\n", text)
    text = _HTML_TAG_RE.sub(" ", text)
    for entity, replacement in _HTML_ENTITIES.items():
        text = text.replace(entity, replacement)
    return normalize_text_for_search(text)


def split_markdown_paragraphs(text: str) -> list[str]:
    """Split markdown into paragraphs without breaking code fences or tables.

    Blank lines separate paragraphs; headings always stand alone; a fenced
    block (```` ``` ```` or ``~~~``) and a run of table lines each form a
    single paragraph.
    """
    paragraphs: list[str] = []
    current: list[str] = []
    in_code_block = False
    in_table = False

    def _flush() -> None:
        if current:
            paragraph = "\n".join(current).strip()
            if paragraph:
                paragraphs.append(paragraph)
            current.clear()

    for line in text.split("\n"):
        stripped = line.strip()

        if stripped.startswith(_FENCE_PREFIXES):
            if in_code_block:
                current.append(line)
                _flush()
                in_code_block = False
            else:
                _flush()
                current.append(line)
                in_code_block = True
            continue

        if in_code_block:
            current.append(line)
            continue

        if stripped.startswith("|") or _TABLE_RULE_RE.match(stripped):
            if not in_table:
                _flush()
                in_table = True
            current.append(line)
            continue
        if in_table:
            _flush()
            in_table = False

        if not stripped:
            _flush()
            continue

        if _HEADING_RE.match(stripped):
            _flush()
            current.append(line)
            _flush()
            continue

        current.append(line)

    _flush()
    return paragraphs


def truncate(text: str, max_chars: int) -> str:
    """Return at most *max_chars* leading characters of *text*."""
    if max_chars <= 0:
        return ""
    return text[:max_chars]
