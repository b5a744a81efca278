"""
HTML helpers shared by extraction, validation and migration.

Selectors come from presets, operators and the layout model, so an invalid
or unsupported selector must behave like a selector that matches nothing.
"""

import logging
import re
from typing import Any, List, Optional, Union

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

logger = logging.getLogger(__name__)

_NON_NUMERIC_RE = re.compile(r"[^\d.]")
_WHITESPACE_RE = re.compile(r"\s+")


def parse_html(html: Union[str, BeautifulSoup, None]) -> BeautifulSoup:
    """Parse HTML with the stdlib parser; already parsed documents pass through."""
    if isinstance(html, BeautifulSoup):
        return html
    return BeautifulSoup(html or "", "html.parser")


def safe_select(root: Union[BeautifulSoup, Tag], selector: Optional[str]) -> List[Tag]:
    """
    Run a CSS selector, returning [] for empty, invalid or unsupported selectors.
    """
    if not selector or not selector.strip():
        return []
    try:
        return root.select(selector)
    except (SelectorSyntaxError, NotImplementedError, ValueError) as e:
        logger.debug(f"Invalid selector {selector!r}: {e}")
        return []


def safe_select_one(root: Union[BeautifulSoup, Tag], selector: Optional[str]) -> Optional[Tag]:
    matches = safe_select(root, selector)
    return matches[0] if matches else None


def text_of(element: Optional[Tag]) -> str:
    """Visible text of an element with whitespace collapsed."""
    if element is None:
        return ""
    return _WHITESPACE_RE.sub(" ", element.get_text(" ", strip=True)).strip()


def has_markup(element: Tag) -> bool:
    """True when the element contains child elements, not just text."""
    return any(isinstance(child, Tag) for child in element.children)


def clean_numeric(value: Any) -> Optional[float]:
    """
    Coerce a scraped numeric value ("$1,299.00", "12 in stock") to float.

    Returns:
        The float, or None when nothing numeric remains.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = _NON_NUMERIC_RE.sub("", str(value))
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        # e.g. "1.2.3" from a version-like string
        return None
