"""
Tests for link discovery, URL normalization and the URL frontier.
"""

import pytest

from importer.queue.url_frontier import URLFrontier
from importer.services.link_extractor import (
    LinkExtractor,
    get_link_extractor,
    matches_any,
    normalize_url,
    same_origin,
)


class TestNormalizeUrl:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://Shop.Example.com/about/", "https://shop.example.com/about"),
            ("https://shop.example.com/", "https://shop.example.com/"),
            ("https://shop.example.com/a#section", "https://shop.example.com/a"),
            ("https://shop.example.com/a?utm_source=x&page=2&fbclid=y", "https://shop.example.com/a?page=2"),
            ("https://shop.example.com/collections/shirts/products/blue", "https://shop.example.com/products/blue"),
            ("https://shop.example.com:443/a", "https://shop.example.com/a"),
            ("http://shop.example.com:8080/a", "http://shop.example.com:8080/a"),
        ],
    )
    def test_normalization(self, url, expected):
        assert normalize_url(url) == expected

    def test_relative_urls_resolve_against_base(self):
        assert normalize_url("../b", "https://e.com/a/c") == "https://e.com/b"

    def test_non_http_urls_are_rejected(self):
        assert normalize_url("mailto:a@b.com") is None
        assert normalize_url("ftp://e.com/file") is None
        assert normalize_url("") is None


class TestHelpers:
    def test_same_origin_ignores_case(self):
        assert same_origin("https://E.com/a", "https://e.com/")
        assert not same_origin("https://other.com/a", "https://e.com/")

    def test_matches_any_checks_path_and_query(self):
        assert matches_any("https://e.com/shop?sort_by=price", ["sort_by="])
        assert matches_any("https://e.com/Blog/Tagged/x", ["/tagged/"])
        assert not matches_any("https://e.com/a", [])


class TestLinkExtractor:
    HTML = """
    <html><body>
      <a href="/products/shirt">Shirt</a>
      <a href="/products/shirt#reviews">Shirt again</a>
      <a href="/pages/about/">About</a>
      <a href="https://other.com/x">External</a>
      <a href="mailto:hi@e.com">Mail</a>
      <a href="/cart">Cart</a>
      <a href="/files/catalog.pdf">PDF</a>
      <a href="/collections/all?sort_by=price">Sorted</a>
      <a href="javascript:void(0)">JS</a>
      <a>No href</a>
    </body></html>
    """

    def test_extracts_same_origin_crawlable_links(self):
        extractor = LinkExtractor(
            priority_patterns=["/products/"],
            exclude_patterns=["sort_by="],
        )
        links = extractor.extract_links(self.HTML, "https://e.com/", "https://e.com/")

        assert [link.url for link in links] == [
            "https://e.com/products/shirt",
            "https://e.com/pages/about",
        ]
        assert links[0].is_priority is True
        assert links[0].text == "Shirt"
        assert links[1].is_priority is False

    def test_empty_html(self):
        assert LinkExtractor().extract_links("", "https://e.com/", "https://e.com/") == []

    def test_factory_reads_crawl_config(self):
        extractor = get_link_extractor({"priorityPatterns": ["/p/"], "excludePatterns": ["/x/"]})
        assert extractor.priority_patterns == ["/p/"]
        assert extractor.exclude_patterns == ["/x/"]


class TestURLFrontier:
    def test_add_url_deduplicates(self):
        frontier = URLFrontier("site")
        assert frontier.add_url("https://e.com/a") is True
        assert frontier.add_url("https://e.com/a") is False
        assert frontier.get_next_url() == "https://e.com/a"
        assert frontier.is_empty()

    def test_url_is_never_requeued_after_pop(self):
        frontier = URLFrontier()
        frontier.add_url("https://e.com/a")
        assert frontier.get_next_url() == "https://e.com/a"
        assert frontier.add_url("https://e.com/a") is False
        assert frontier.is_empty()

    def test_priority_urls_go_first(self):
        frontier = URLFrontier()
        frontier.add_url("https://e.com/1")
        frontier.add_url("https://e.com/2")
        frontier.add_url("https://e.com/p", priority=True)
        assert frontier.get_next_url() == "https://e.com/p"
        assert frontier.get_next_url() == "https://e.com/1"

    def test_marked_urls_are_not_queued(self):
        frontier = URLFrontier()
        frontier.mark_url_seen("https://e.com/final")
        assert frontier.add_url("https://e.com/final") is False
        assert frontier.is_empty()

    def test_preloaded_seen_urls_are_skipped(self):
        frontier = URLFrontier(seen=["https://e.com/done"])
        assert frontier.add_url("https://e.com/done") is False
        assert frontier.get_next_url() is None
