"""PDF text extraction with PyMuPDF (``fitz``)."""

from __future__ import annotations

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

logger = structlog.get_logger(logger_name=__name__)


def extract_pdf_text(data: bytes, source: str) -> tuple[str, int]:
    """Return the text of every page (blank-line separated) and the page count.

    Raises whatever PyMuPDF raises for unreadable input; callers wrap it.
    """
    with fitz.open(stream=data, filetype="pdf") as doc:
        pages = [page.get_text("text").strip() for page in doc]
        page_count = doc.page_count

    text = "\n\n".join(page for page in pages if page)
    logger.debug("pdf_text_extracted", source=source, pages=page_count, chars=len(text))
    return text, page_count
