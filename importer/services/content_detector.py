"""
Automatic main-content detection for pages without an explicit selector.
"""

import logging
import re
from typing import Union

from bs4 import BeautifulSoup, Tag

from importer.utils.html import parse_html, safe_select_one

logger = logging.getLogger(__name__)

CHROME_TAGS = ["header", "footer", "nav", "aside", "script", "style"]

SEMANTIC_SELECTORS = ["main", "[role=main]", "article"]

COMMON_CONTENT_SELECTORS = [
    "#content",
    "#main",
    "#main-content",
    ".main-content",
    ".post-content",
    ".article-content",
    ".entry-content",
    ".product-description",
    "#description",
]

MIN_CONTENT_CHARS = 100

_CHROME_NAME_RE = re.compile(r"footer|header|nav", re.IGNORECASE)


def _inner_html(element: Tag) -> str:
    return element.decode_contents().strip()


def _text_length(element: Tag) -> int:
    return len(element.get_text(strip=True))


def _is_chrome(element: Tag) -> bool:
    element_id = element.get("id") or ""
    classes = " ".join(element.get("class") or [])
    return bool(_CHROME_NAME_RE.search(element_id) or _CHROME_NAME_RE.search(classes))


def find_main_element(soup: BeautifulSoup) -> Tag:
    """
    Locate the element most likely to hold the page's main content.

    Mutates ``soup``: page chrome (header, footer, nav, aside, script,
    style) is removed first.
    """
    for element in soup.find_all(CHROME_TAGS):
        element.extract()

    for selector in SEMANTIC_SELECTORS:
        element = safe_select_one(soup, selector)
        if element is not None and _text_length(element) > MIN_CONTENT_CHARS:
            return element

    for selector in COMMON_CONTENT_SELECTORS:
        element = safe_select_one(soup, selector)
        if element is not None and _text_length(element) > MIN_CONTENT_CHARS:
            return element

    best = None
    best_length = 0
    for element in soup.find_all(["div", "section"]):
        if _is_chrome(element):
            continue
        length = _text_length(element)
        if length > best_length:
            best, best_length = element, length
    if best is not None:
        return best

    return soup.body or soup


def detect_main_content(html: Union[str, BeautifulSoup]) -> str:
    """
    Inner HTML of the detected main content.

    Args:
        html: Raw page HTML (a parsed soup is modified in place)

    Returns:
        Inner HTML, or "" for an empty document
    """
    soup = parse_html(html)
    element = find_main_element(soup)
    content = _inner_html(element)
    logger.debug(f"Detected main content <{element.name}> ({len(content)} chars)")
    return content
