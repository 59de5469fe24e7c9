"""
Tests for the shared fetch/parse helpers.
"""

from unittest.mock import Mock, patch

import pytest
import requests

from septo_worker.core.scraper_utils import (
    USER_AGENTS,
    element_value,
    fetch_html,
    find_emails,
    find_phones,
    make_soup,
    meta_content,
    parse_count,
)


class TestParseCount:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("1,234", 1234),
            ("1.2k", 1200),
            ("2.3K followers", 2300),
            ("3M", 3_000_000),
            ("1.5b", 1_500_000_000),
            ("12 members", 12),
            ("  42  ", 42),
            (17, 17),
            (None, None),
            ("", None),
            ("n/a", None),
            (True, None),
        ],
    )
    def test_parse_count(self, raw, expected):
        assert parse_count(raw) == expected


class TestSoupHelpers:
    def test_make_soup_drops_subresources(self):
        soup = make_soup(
            "<html><head><script>var x = 1;</script><style>p{}</style></head>"
            "<body><p>hello</p><img src='a.png'><iframe src='x'></iframe></body></html>"
        )
        assert soup.find("script") is None
        assert soup.find("img") is None
        assert soup.find("iframe") is None
        assert soup.get_text(strip=True) == "hello"

    def test_meta_content_checks_property_and_name(self):
        soup = make_soup(
            '<html><head><meta property="og:title" content=" The  Octocat "/>'
            '<meta name="description" content="Hub mascot"/></head></html>'
        )
        assert meta_content(soup, "og:title") == "The Octocat"
        assert meta_content(soup, "og:description", "description") == "Hub mascot"
        assert meta_content(soup, "twitter:title") is None

    def test_element_value_falls_back_to_attributes(self):
        soup = make_soup('<relative-time datetime="2011-01-25T18:44:36Z"></relative-time><a href="/x">link</a>')
        assert element_value(soup.find("relative-time")) == "2011-01-25T18:44:36Z"
        assert element_value(soup.find("a")) == "link"


class TestContactExtraction:
    def test_find_emails_dedupes_case_insensitively(self):
        text = "Write to Octo@GitHub.com or octo@github.com, or press@github.com."
        assert find_emails(text) == ["octo@github.com", "press@github.com"]

    def test_find_phones_filters_short_numbers(self):
        text = "Call +1 (555) 012-3456 today. Ticket 2024-01 is unrelated."
        assert find_phones(text) == ["+1 (555) 012-3456"]


class TestFetchHtml:
    @patch("septo_worker.core.scraper_utils.requests.get")
    def test_sends_browser_user_agent_and_timeout(self, mock_get):
        response = Mock(text="<html></html>")
        mock_get.return_value = response

        assert fetch_html("https://example.com", timeout=7) == "<html></html>"

        _, kwargs = mock_get.call_args
        assert kwargs["headers"]["User-Agent"] in USER_AGENTS
        assert kwargs["timeout"] == 7
        response.raise_for_status.assert_called_once()

    @patch("septo_worker.core.scraper_utils.requests.get")
    def test_http_errors_propagate(self, mock_get):
        mock_get.return_value.raise_for_status.side_effect = requests.HTTPError("404")
        with pytest.raises(requests.HTTPError):
            fetch_html("https://example.com/missing")
