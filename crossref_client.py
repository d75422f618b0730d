"""Crossref client: exact DOI lookup and bibliographic search."""

from __future__ import annotations

import logging
import os
import re
from typing import Any
from urllib.parse import quote

import requests

from models import UNTITLED, PaperMetadata

CROSSREF_WORKS_URL = "https://api.crossref.org/works"
DOI_RESOLVER_URL = "https://doi.org"
LOOKUP_TIMEOUT_SECONDS = 8
SEARCH_TIMEOUT_SECONDS = 10
MAX_QUERY_CHARS = 200
DEFAULT_USER_AGENT = "paper-companion/0.1 (mailto:dev@example.com)"

LOGGER = logging.getLogger(__name__)

_TAG_PATTERN = re.compile(r"<[^>]*>")


def fetch_work(doi: str) -> PaperMetadata | None:
    """Look up one work by DOI; None when Crossref has nothing usable."""
    body = _get_json(f"{CROSSREF_WORKS_URL}/{quote(doi, safe='')}", timeout=LOOKUP_TIMEOUT_SECONDS)
    if body is None:
        return None

    work = body.get("message")
    if not isinstance(work, dict):
        LOGGER.warning("Crossref: unexpected payload for doi=%s", doi)
        return None
    return work_to_metadata(work, doi)


def search_bibliographic(query: str) -> PaperMetadata | None:
    """Search by free text and keep the top-ranked hit, which must carry a DOI."""
    trimmed = query[:MAX_QUERY_CHARS].strip()
    if not trimmed:
        return None

    body = _get_json(
        CROSSREF_WORKS_URL,
        params={"query.bibliographic": trimmed, "rows": 1},
        timeout=SEARCH_TIMEOUT_SECONDS,
    )
    if body is None:
        return None

    message = body.get("message")
    items = message.get("items") if isinstance(message, dict) else None
    if not isinstance(items, list) or not items or not isinstance(items[0], dict):
        LOGGER.info("Crossref search: no results")
        return None

    work = items[0]
    doi = work.get("DOI")
    if not isinstance(doi, str) or not doi:
        LOGGER.info("Crossref search: top result has no DOI, ignoring")
        return None
    return work_to_metadata(work, doi)


def work_to_metadata(work: dict[str, Any], doi: str) -> PaperMetadata:
    """Map a Crossref ``work`` object onto the canonical record."""
    title = _first(work.get("title")) or _first(work.get("short-title")) or UNTITLED

    authors: list[str] = []
    for author in work.get("author") or []:
        if not isinstance(author, dict):
            continue
        parts = [author.get("given"), author.get("family")]
        authors.append(" ".join(part for part in parts if isinstance(part, str) and part))

    year = None
    for key in ("published", "published-print", "published-online"):
        year = _first_date_part(work.get(key))
        if year is not None:
            break

    journal = _first(work.get("container-title")) or _first(work.get("short-container-title"))

    abstract = work.get("abstract")
    if isinstance(abstract, str) and abstract:
        abstract = _TAG_PATTERN.sub("", abstract).strip()
    else:
        abstract = None

    url = work.get("URL") if isinstance(work.get("URL"), str) and work.get("URL") else None

    return PaperMetadata(
        doi=doi,
        title=title,
        authors=tuple(authors),
        journal=journal,
        year=year,
        abstract=abstract,
        url=url or f"{DOI_RESOLVER_URL}/{doi}",
    )


def _get_json(url: str, *, timeout: int, params: dict[str, Any] | None = None) -> dict[str, Any] | None:
    headers = {"User-Agent": os.getenv("CATALOG_USER_AGENT", DEFAULT_USER_AGENT)}
    try:
        response = requests.get(url, params=params, headers=headers, timeout=timeout)
        response.raise_for_status()
        body = response.json()
    except (requests.RequestException, ValueError) as exc:
        LOGGER.warning("Crossref request failed for url=%s: %s", url, exc)
        return None

    if not isinstance(body, dict):
        LOGGER.warning("Crossref: expected a JSON object from url=%s", url)
        return None
    return body


def _first(value: Any) -> str | None:
    if isinstance(value, list) and value and isinstance(value[0], str) and value[0]:
        return value[0]
    return None


def _first_date_part(value: Any) -> int | None:
    if not isinstance(value, dict):
        return None
    parts = value.get("date-parts")
    try:
        year = parts[0][0]
    except (TypeError, IndexError, KeyError):
        return None
    return year if isinstance(year, int) else None
