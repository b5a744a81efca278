"""
Link Extractor Service.

Discovers crawlable same-origin links on a page and normalizes URLs so the
frontier sees each page exactly once.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set, Union
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

from importer.utils.html import parse_html

logger = logging.getLogger(__name__)

# Query parameters that never change page content
TRACKING_PARAMS = frozenset({
    "fbclid", "gclid", "ref", "variant", "view", "_ss", "_v", "_pos",
    "pr_prod_strat", "pr_rec_id",
})
TRACKING_PREFIXES = ("utm_",)

# Shopify renders the same product under every collection it belongs to
COLLECTION_PRODUCT_RE = re.compile(r"/collections/[^/]+/products/(.+)")


@dataclass
class ExtractedLink:
    """A discovered link, normalized and classified."""

    url: str
    text: str = ""
    is_internal: bool = True
    is_priority: bool = False


def normalize_url(url: str, base_url: Optional[str] = None) -> Optional[str]:
    """
    Normalize a URL for de-duplication.

    - resolves against ``base_url``
    - drops the fragment and lower-cases the host
    - collapses /collections/x/products/y to /products/y
    - strips tracking parameters (utm_*, fbclid, gclid, ref, variant, view, ...)
    - drops the trailing slash except on the root path

    Returns:
        The normalized URL, or None for non-http(s) or unparsable URLs.
    """
    if not url:
        return None
    try:
        absolute = urljoin(base_url, url.strip()) if base_url else url.strip()
        parsed = urlparse(absolute)
    except ValueError:
        return None

    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None

    netloc = parsed.hostname.lower()
    try:
        port = parsed.port
    except ValueError:
        return None
    if port and not (
        (parsed.scheme == "http" and port == 80)
        or (parsed.scheme == "https" and port == 443)
    ):
        netloc = f"{netloc}:{port}"

    path = parsed.path or "/"
    match = COLLECTION_PRODUCT_RE.search(path)
    if match:
        path = f"/products/{match.group(1)}"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    query_pairs = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if key not in TRACKING_PARAMS and not key.startswith(TRACKING_PREFIXES)
    ]
    query = urlencode(query_pairs, doseq=True)

    return urlunparse((parsed.scheme, netloc, path, "", query, ""))


def same_origin(url: str, root_url: str) -> bool:
    """Host equality, ignoring case."""
    return (urlparse(url).hostname or "").lower() == (urlparse(root_url).hostname or "").lower()


def _path_and_query(url: str) -> str:
    parsed = urlparse(url)
    path = parsed.path.lower()
    if parsed.query:
        return f"{path}?{parsed.query.lower()}"
    return path


def matches_any(url: str, patterns: Iterable[str]) -> bool:
    """Substring match of any pattern against the URL's lower-cased path and query."""
    target = _path_and_query(url)
    return any(p and p.lower() in target for p in patterns)


class LinkExtractor:
    """
    Extracts same-origin crawl candidates from HTML content.

    Skips mailto/tel/javascript links, binary assets, transactional paths
    (cart, checkout, account, ...) and the crawl's exclude patterns.
    Links matching a priority pattern are flagged for the front of the queue.
    """

    # URLs to skip
    SKIP_PATTERNS = [
        r"\.(jpg|jpeg|png|gif|webp|svg|ico|bmp|tiff?|pdf|zip|gz|rar|mp4|mp3|"
        r"mov|avi|webm|wav|css|js|json|xml|woff2?|ttf|eot|exe|dmg)$",
        r"^mailto:",
        r"^tel:",
        r"^javascript:",
        r"^data:",
        r"^#",
    ]

    # Paths that never hold importable content
    JUNK_PATH_PREFIXES = (
        "/cart", "/search", "/account", "/login", "/logout", "/checkout", "/tools/",
    )

    def __init__(
        self,
        priority_patterns: Optional[Iterable[str]] = None,
        exclude_patterns: Optional[Iterable[str]] = None,
    ):
        """
        Initialize the link extractor.

        Args:
            priority_patterns: Path substrings that are crawled first
            exclude_patterns: Path/query substrings that are never crawled
        """
        self.priority_patterns = list(priority_patterns or [])
        self.exclude_patterns = list(exclude_patterns or [])
        self._skip_regexes = [
            re.compile(p, re.IGNORECASE) for p in self.SKIP_PATTERNS
        ]

    def should_skip(self, url: str) -> bool:
        """Check if a raw href or absolute URL should be skipped."""
        target = url.split("?", 1)[0].split("#", 1)[0] if "://" in url else url
        for regex in self._skip_regexes:
            if regex.search(target) or regex.search(url):
                return True
        return False

    def is_junk_path(self, url: str) -> bool:
        path = urlparse(url).path.lower()
        return path.startswith(self.JUNK_PATH_PREFIXES)

    def is_excluded(self, url: str) -> bool:
        return matches_any(url, self.exclude_patterns)

    def is_priority(self, url: str) -> bool:
        path = urlparse(url).path.lower()
        return any(p and p.lower() in path for p in self.priority_patterns)

    def extract_links(
        self,
        html: Union[str, BeautifulSoup],
        page_url: str,
        root_url: str,
    ) -> List[ExtractedLink]:
        """
        Extract crawlable links from a page.

        Args:
            html: Raw HTML or parsed document
            page_url: URL the page was fetched from (resolves relative hrefs)
            root_url: Crawl root; only links on its host are kept

        Returns:
            Normalized, de-duplicated links in document order
        """
        if not html:
            return []

        soup = parse_html(html)
        links: List[ExtractedLink] = []
        seen_urls: Set[str] = set()

        for anchor in soup.find_all("a", href=True):
            href = (anchor.get("href") or "").strip()
            if not href or self.should_skip(href):
                continue

            normalized = normalize_url(href, page_url)
            if not normalized or normalized in seen_urls:
                continue
            seen_urls.add(normalized)

            if not same_origin(normalized, root_url):
                continue
            if self.should_skip(normalized) or self.is_junk_path(normalized):
                continue
            if self.is_excluded(normalized):
                continue

            links.append(
                ExtractedLink(
                    url=normalized,
                    text=anchor.get_text(strip=True)[:200],
                    is_internal=True,
                    is_priority=self.is_priority(normalized),
                )
            )

        logger.debug(f"Extracted {len(links)} links from {page_url}")
        return links


def get_link_extractor(config: Optional[dict] = None) -> LinkExtractor:
    """Factory function to get a LinkExtractor for a resolved crawl config."""
    config = config or {}
    return LinkExtractor(
        priority_patterns=config.get("priorityPatterns"),
        exclude_patterns=config.get("excludePatterns"),
    )
