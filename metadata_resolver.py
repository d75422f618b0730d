"""Ordered fallback chain across the bibliographic catalogs."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator

import arxiv_client
import crossref_client
import semantic_scholar_client
from models import ExtractedIdentifiers, PaperMetadata

LOGGER = logging.getLogger(__name__)

Attempt = tuple[str, Callable[[], PaperMetadata | None]]


def resolve_metadata(
    doi: str | None = None,
    arxiv_id: str | None = None,
    query: str | None = None,
) -> PaperMetadata | None:
    """Return the first record produced by the applicable sources, else None.

    Sources run one at a time and a later source is only called once the
    previous one came back empty. Nothing here raises: a failing source just
    counts as empty.
    """
    for label, attempt in _attempts(doi, arxiv_id, query):
        try:
            record = attempt()
        except Exception as exc:  # adapters can still trip over odd payloads
            LOGGER.warning("Metadata source %s raised, skipping: %s", label, exc)
            continue

        if record is not None:
            LOGGER.info("Metadata resolved via %s: %s", label, record.title)
            return record
        LOGGER.info("Metadata source %s had no result", label)

    LOGGER.info("No metadata found for doi=%s arxiv=%s query=%s", doi, arxiv_id, bool(query))
    return None


def resolve_for_identifiers(identifiers: ExtractedIdentifiers) -> PaperMetadata | None:
    """Resolve straight from an upload's extracted identifiers."""
    return resolve_metadata(
        doi=identifiers.doi,
        arxiv_id=identifiers.arxiv_id,
        query=identifiers.first_page_text,
    )


def _attempts(doi: str | None, arxiv_id: str | None, query: str | None) -> Iterator[Attempt]:
    if doi:
        yield "crossref:doi", lambda: crossref_client.fetch_work(doi)
        yield "semantic_scholar:doi", lambda: semantic_scholar_client.fetch_paper(f"DOI:{doi}")
    elif arxiv_id:
        yield "arxiv", lambda: arxiv_client.fetch_entry(arxiv_id)
        yield "semantic_scholar:arxiv", lambda: semantic_scholar_client.fetch_paper(f"ARXIV:{arxiv_id}")
        unversioned = arxiv_client.strip_version(arxiv_id)
        yield (
            "semantic_scholar:arxiv_unversioned",
            lambda: semantic_scholar_client.fetch_paper(f"ARXIV:{unversioned}"),
        )

    # Free-text search is only trusted when there was no arXiv id to go on.
    if not arxiv_id and query and query.strip():
        yield "crossref:search", lambda: crossref_client.search_bibliographic(query)
