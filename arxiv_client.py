"""arXiv export API client (Atom feed lookup by id)."""

from __future__ import annotations

import logging
import re
from typing import Any

import feedparser
import requests

from models import PaperMetadata

ARXIV_QUERY_URL = "https://export.arxiv.org/api/query"
REQUEST_TIMEOUT_SECONDS = 8
ARXIV_JOURNAL = "arXiv"

LOGGER = logging.getLogger(__name__)

_VERSION_SUFFIX = re.compile(r"v\d+$", re.IGNORECASE)


def strip_version(arxiv_id: str) -> str:
    """``2301.12345v2`` -> ``2301.12345``."""
    return _VERSION_SUFFIX.sub("", arxiv_id)


def fetch_entry(arxiv_id: str) -> PaperMetadata | None:
    """Fetch the feed entry for an arXiv id; None on any failure or empty entry."""
    try:
        response = requests.get(
            ARXIV_QUERY_URL,
            params={"id_list": strip_version(arxiv_id)},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
    except requests.RequestException as exc:
        LOGGER.warning("arXiv lookup failed for id=%s: %s", arxiv_id, exc)
        return None

    return parse_feed(response.text)


def parse_feed(xml: str) -> PaperMetadata | None:
    """Normalize the first entry of an Atom response.

    An entry whose title is blank is treated as a miss, so a malformed feed
    does not end the resolver chain with an empty record.
    """
    feed = feedparser.parse(xml)
    if not feed.entries:
        LOGGER.info("arXiv: feed has no entries")
        return None

    entry = feed.entries[0]
    title = " ".join(str(entry.get("title", "")).split())
    if not title:
        LOGGER.info("arXiv: entry without title, treating as not found")
        return None

    authors = tuple(
        author["name"].strip()
        for author in entry.get("authors", [])
        if isinstance(author.get("name"), str) and author["name"].strip()
    )
    summary = str(entry.get("summary", "")).strip()
    entry_id = str(entry.get("id", "")).strip()

    return PaperMetadata(
        doi="",
        title=title,
        authors=authors,
        journal=ARXIV_JOURNAL,
        year=_published_year(entry.get("published")),
        abstract=summary or None,
        url=entry_id or None,
    )


def _published_year(published: Any) -> int | None:
    if not isinstance(published, str):
        return None
    try:
        return int(published.strip()[:4])
    except ValueError:
        return None
