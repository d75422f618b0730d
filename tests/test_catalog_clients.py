from unittest.mock import MagicMock, patch

import requests

import arxiv_client
import crossref_client
import semantic_scholar_client

_CROSSREF_WORK = {
    "DOI": "10.1000/xyz123",
    "title": ["Deep Learning for Everything"],
    "author": [
        {"given": "Ada", "family": "Lovelace"},
        {"family": "Turing"},
        {"given": "", "family": "Hopper"},
    ],
    "published-print": {"date-parts": [[2021, 5]]},
    "short-container-title": ["J. Things"],
    "abstract": "<jats:p>We study <jats:italic>everything</jats:italic>.</jats:p>  ",
}

_ARXIV_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title type="html">ArXiv Query: id_list=2301.12345</title>
  <id>http://arxiv.org/api/query</id>
  <entry>
    <id>http://arxiv.org/abs/2301.12345v2</id>
    <published>2023-01-28T10:00:00Z</published>
    <title>Graphs &amp; Transformers:
      A   Study</title>
    <summary>  We combine graphs &amp; transformers.  </summary>
    <author><name>Alice Smith</name></author>
    <author><name>Bob Jones</name></author>
  </entry>
</feed>
"""


def _mock_resp(payload=None, text: str = "", status_error: Exception | None = None) -> MagicMock:
    mock = MagicMock()
    mock.json.return_value = payload
    mock.text = text
    if status_error is not None:
        mock.raise_for_status.side_effect = status_error
    return mock


def test_crossref_fetch_work_normalizes_fields() -> None:
    with patch("crossref_client.requests.get", return_value=_mock_resp({"message": _CROSSREF_WORK})):
        record = crossref_client.fetch_work("10.1000/xyz123")

    assert record is not None
    assert record.title == "Deep Learning for Everything"
    assert record.authors == ("Ada Lovelace", "Turing", "Hopper")
    assert record.year == 2021
    assert record.journal == "J. Things"
    assert record.abstract == "We study everything."
    assert record.url == "https://doi.org/10.1000/xyz123"


def test_crossref_fetch_work_sends_user_agent() -> None:
    with patch.dict("os.environ", {"CATALOG_USER_AGENT": "tester/1.0"}), \
         patch("crossref_client.requests.get", return_value=_mock_resp({"message": {}})) as mock_get:
        crossref_client.fetch_work("10.1000/xyz123")

    assert mock_get.call_args.kwargs["headers"]["User-Agent"] == "tester/1.0"
    assert mock_get.call_args.kwargs["timeout"] == crossref_client.LOOKUP_TIMEOUT_SECONDS


def test_crossref_fetch_work_missing_title_uses_placeholder() -> None:
    with patch("crossref_client.requests.get", return_value=_mock_resp({"message": {"URL": "http://x"}})):
        record = crossref_client.fetch_work("10.1000/abc")

    assert record is not None
    assert record.title == "Untitled"
    assert record.authors == ()
    assert record.url == "http://x"
    assert record.abstract is None


def test_crossref_fetch_work_http_error_returns_none() -> None:
    error = requests.HTTPError("404 Not Found")
    with patch("crossref_client.requests.get", return_value=_mock_resp(status_error=error)):
        assert crossref_client.fetch_work("10.1000/missing") is None


def test_crossref_fetch_work_timeout_returns_none() -> None:
    with patch("crossref_client.requests.get", side_effect=requests.Timeout("slow")):
        assert crossref_client.fetch_work("10.1000/slow") is None


def test_crossref_search_truncates_query_to_200_chars() -> None:
    query = "x" * 450
    with patch("crossref_client.requests.get",
               return_value=_mock_resp({"message": {"items": [_CROSSREF_WORK]}})) as mock_get:
        record = crossref_client.search_bibliographic(query)

    sent = mock_get.call_args.kwargs["params"]
    assert sent["query.bibliographic"] == "x" * 200
    assert sent["rows"] == 1
    assert record is not None
    assert record.doi == "10.1000/xyz123"


def test_crossref_search_result_without_doi_is_not_found() -> None:
    item = {"title": ["Has A Title"], "author": [{"given": "A", "family": "B"}]}
    with patch("crossref_client.requests.get", return_value=_mock_resp({"message": {"items": [item]}})):
        assert crossref_client.search_bibliographic("some first page text") is None


def test_crossref_search_blank_query_skips_request() -> None:
    with patch("crossref_client.requests.get") as mock_get:
        assert crossref_client.search_bibliographic("   ") is None
    mock_get.assert_not_called()


def test_semantic_scholar_normalizes_fields() -> None:
    payload = {
        "title": "A Paper",
        "authors": [{"name": "Alice"}, {"name": "Bob"}],
        "year": 2020,
        "venue": "",
        "abstract": None,
        "externalIds": {"DOI": "10.1/abc", "ArXiv": "2001.00001"},
        "url": None,
    }
    with patch("semantic_scholar_client.requests.get", return_value=_mock_resp(payload)) as mock_get:
        record = semantic_scholar_client.fetch_paper("ARXIV:2001.00001")

    assert mock_get.call_args.args[0].endswith("/ARXIV%3A2001.00001")
    assert record is not None
    assert record.doi == "10.1/abc"
    assert record.authors == ("Alice", "Bob")
    assert record.journal is None
    assert record.url == "https://doi.org/10.1/abc"


def test_semantic_scholar_without_doi_has_no_synthesized_url() -> None:
    with patch("semantic_scholar_client.requests.get", return_value=_mock_resp({"title": "T"})):
        record = semantic_scholar_client.fetch_paper("ARXIV:2001.00001")

    assert record is not None
    assert record.doi == ""
    assert record.url is None


def test_semantic_scholar_error_returns_none() -> None:
    with patch("semantic_scholar_client.requests.get", side_effect=requests.ConnectionError("down")):
        assert semantic_scholar_client.fetch_paper("DOI:10.1/x") is None


def test_arxiv_strip_version() -> None:
    assert arxiv_client.strip_version("2301.12345v2") == "2301.12345"
    assert arxiv_client.strip_version("2301.12345") == "2301.12345"


def test_arxiv_fetch_entry_parses_feed() -> None:
    with patch("arxiv_client.requests.get", return_value=_mock_resp(text=_ARXIV_FEED)) as mock_get:
        record = arxiv_client.fetch_entry("2301.12345v2")

    assert mock_get.call_args.kwargs["params"] == {"id_list": "2301.12345"}
    assert record is not None
    assert record.title == "Graphs & Transformers: A Study"
    assert record.authors == ("Alice Smith", "Bob Jones")
    assert record.year == 2023
    assert record.abstract == "We combine graphs & transformers."
    assert record.doi == ""
    assert record.journal == "arXiv"
    assert record.url == "http://arxiv.org/abs/2301.12345v2"


def test_arxiv_entry_with_blank_title_is_a_miss() -> None:
    feed = _ARXIV_FEED.replace(
        "<title>Graphs &amp; Transformers:\n      A   Study</title>", "<title>   </title>"
    )
    assert arxiv_client.parse_feed(feed) is None


def test_arxiv_invalid_published_year_is_absent() -> None:
    feed = _ARXIV_FEED.replace("2023-01-28T10:00:00Z", "unknown")
    record = arxiv_client.parse_feed(feed)
    assert record is not None
    assert record.year is None


def test_arxiv_empty_feed_is_a_miss() -> None:
    feed = '<feed xmlns="http://www.w3.org/2005/Atom"><title>ArXiv Query</title></feed>'
    assert arxiv_client.parse_feed(feed) is None


def test_semantic_scholar_http_error_returns_none() -> None:
    error = requests.HTTPError("404 Not Found")
    with patch("semantic_scholar_client.requests.get", return_value=_mock_resp(status_error=error)):
        assert semantic_scholar_client.fetch_paper("DOI:10.1/missing") is None


def test_arxiv_fetch_entry_http_error_returns_none() -> None:
    error = requests.HTTPError("503 Service Unavailable")
    with patch("arxiv_client.requests.get", return_value=_mock_resp(status_error=error)) as mock_get:
        assert arxiv_client.fetch_entry("2301.12345") is None

    assert mock_get.call_args.kwargs["timeout"] == arxiv_client.REQUEST_TIMEOUT_SECONDS


def test_arxiv_fetch_entry_timeout_returns_none() -> None:
    with patch("arxiv_client.requests.get", side_effect=requests.Timeout("slow")):
        assert arxiv_client.fetch_entry("2301.12345v1") is None
