"""Semantic Scholar Graph API client (paper lookup by external id)."""

from __future__ import annotations

import logging
import os
from typing import Any
from urllib.parse import quote

import requests

from models import UNTITLED, PaperMetadata

SEMANTIC_SCHOLAR_PAPER_URL = "https://api.semanticscholar.org/graph/v1/paper"
PAPER_FIELDS = "title,authors,year,abstract,externalIds,venue,url"
REQUEST_TIMEOUT_SECONDS = 8

LOGGER = logging.getLogger(__name__)


def fetch_paper(paper_id: str) -> PaperMetadata | None:
    """Fetch a paper by a prefixed id such as ``DOI:10.1000/x`` or ``ARXIV:2301.12345``."""
    headers: dict[str, str] = {}
    api_key = os.getenv("SEMANTIC_SCHOLAR_API_KEY")
    if api_key:
        headers["x-api-key"] = api_key

    url = f"{SEMANTIC_SCHOLAR_PAPER_URL}/{quote(paper_id, safe='')}"
    try:
        response = requests.get(
            url,
            params={"fields": PAPER_FIELDS},
            headers=headers,
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        body = response.json()
    except (requests.RequestException, ValueError) as exc:
        LOGGER.warning("Semantic Scholar lookup failed for id=%s: %s", paper_id, exc)
        return None

    if not isinstance(body, dict):
        LOGGER.warning("Semantic Scholar: unexpected payload for id=%s", paper_id)
        return None
    return paper_to_metadata(body)


def paper_to_metadata(data: dict[str, Any]) -> PaperMetadata:
    external_ids = data.get("externalIds") if isinstance(data.get("externalIds"), dict) else {}
    doi = external_ids.get("DOI") if isinstance(external_ids.get("DOI"), str) else ""

    authors = tuple(
        author["name"]
        for author in data.get("authors") or []
        if isinstance(author, dict) and isinstance(author.get("name"), str)
    )

    year = data.get("year")
    url = data.get("url") or (f"https://doi.org/{doi}" if doi else None)

    return PaperMetadata(
        doi=doi,
        title=_as_str(data.get("title")) or UNTITLED,
        authors=authors,
        journal=_as_str(data.get("venue")),
        year=year if isinstance(year, int) else None,
        abstract=_as_str(data.get("abstract")),
        url=url,
    )


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None
