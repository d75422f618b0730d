"""DOI / arXiv identifier extraction from uploaded PDFs."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

import fitz  # PyMuPDF

from models import ExtractedIdentifiers

LOGGER = logging.getLogger(__name__)

# Identifiers are only looked for on the first pages; later pages are mostly
# body text and references, which carry other papers' DOIs.
MAX_SCAN_PAGES = 2

DOI_PATTERN = re.compile(r"\b(10\.\d{4,}(?:\.\d+)*/\S+)", re.IGNORECASE)
ARXIV_PATTERN = re.compile(r"\b(?:arXiv:)?(\d{4}\.\d{4,5}(?:v\d+)?)", re.IGNORECASE)
ARXIV_FILENAME_PATTERN = re.compile(r"\b(\d{4}\.\d{4,5}(?:v\d+)?)\b", re.IGNORECASE)

_DOI_TRAILING_PUNCTUATION = re.compile(r"[.,;:)\]}>'\"]+$")


def clean_doi(raw: str) -> str:
    """Drop trailing punctuation picked up from the surrounding sentence."""
    return _DOI_TRAILING_PUNCTUATION.sub("", raw)


def extract_identifiers(page_texts: Sequence[str], file_name: str = "") -> ExtractedIdentifiers:
    """Find the first DOI and arXiv id in the leading pages.

    The file name is consulted for an arXiv id (e.g. ``1605.08695v2.pdf``)
    only when the page text has none.
    """
    doi: str | None = None
    arxiv_id: str | None = None
    first_page_text = page_texts[0] if page_texts else ""

    for text in page_texts[:MAX_SCAN_PAGES]:
        if doi is None:
            match = DOI_PATTERN.search(text)
            if match:
                doi = clean_doi(match.group(1))

        if arxiv_id is None:
            match = ARXIV_PATTERN.search(text)
            if match:
                arxiv_id = match.group(1)

    if arxiv_id is None and file_name:
        match = ARXIV_FILENAME_PATTERN.search(file_name)
        if match:
            arxiv_id = match.group(1)

    return ExtractedIdentifiers(doi=doi, arxiv_id=arxiv_id, first_page_text=first_page_text)


def read_page_texts(data: bytes, max_pages: int | None = None) -> list[str]:
    """Return the plain text of each page (all pages when max_pages is None)."""
    with fitz.open(stream=data, filetype="pdf") as doc:
        count = doc.page_count if max_pages is None else min(doc.page_count, max_pages)
        return [doc[index].get_text("text") for index in range(count)]


def extract_pdf_identifiers(data: bytes, file_name: str = "") -> ExtractedIdentifiers:
    """Open a PDF and extract its identifiers; unreadable files yield nothing."""
    try:
        page_texts = read_page_texts(data, max_pages=MAX_SCAN_PAGES)
    except Exception as exc:  # PyMuPDF raises several unrelated types on corrupt input
        LOGGER.warning("Identifier extraction failed for file=%s: %s", file_name or "<upload>", exc)
        return ExtractedIdentifiers()

    identifiers = extract_identifiers(page_texts, file_name)
    LOGGER.info(
        "Identifiers for file=%s: doi=%s arxiv=%s",
        file_name or "<upload>",
        identifiers.doi,
        identifiers.arxiv_id,
    )
    return identifiers


def extract_full_text(data: bytes) -> str:
    """Concatenate the text of every page, one page per line block."""
    return "\n".join(read_page_texts(data))
