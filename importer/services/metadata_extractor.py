"""
Metadata Extractor / Rules Engine.

First-pass extraction of page metadata during crawl. Sources are applied
in precedence order, highest first:

1. JSON-LD blocks (Product with offers, Article/BlogPosting/WebPage)
2. OpenGraph and meta tags
3. The crawl's ordered rule list (later rules win over earlier ones)

A field set by a higher-precedence source is never overwritten by a
lower one. The ``<title>`` element is only used when nothing else
produced a title. Extraction never raises.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Union
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from importer.services.fingerprint import page_title
from importer.utils.html import clean_numeric, parse_html, safe_select, text_of

logger = logging.getLogger(__name__)

NUMERIC_FIELDS = ("price", "compare_at_price", "weight", "inventory_quantity")

SET_FIELD_KEYS = frozenset({"title", "description", "price", "sku", "image", "images"})

ARTICLE_TYPES = frozenset({"Article", "BlogPosting", "WebPage", "NewsArticle"})


def empty_metadata() -> Dict[str, Any]:
    """The metadata shape every staged item carries."""
    return {
        "title": "",
        "description": "",
        "images": [],
        "price": None,
        "compare_at_price": None,
        "sku": "",
        "canonical": "",
        "type": "page",
        "options": [],
        "variants": [],
    }


# Rule actions: a closed set of tagged variants


@dataclass(frozen=True)
class SetType:
    value: str


@dataclass(frozen=True)
class SetField:
    key: str


@dataclass(frozen=True)
class SetConst:
    key: str
    value: str


RuleAction = Union[SetType, SetField, SetConst]


@dataclass
class ExtractionRule:
    """
    One rule of a preset or crawl config.

    A rule applies when every condition it declares matches: ``url_pattern``
    is a regex searched in the URL path, ``selector`` must match at least
    one element. A rule declaring neither never applies.
    """

    action: RuleAction
    selector: Optional[str] = None
    url_pattern: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["ExtractionRule"]:
        """
        Build a rule from its stored form
        ``{"selector", "urlPattern", "action", "value"}``.

        Returns:
            The rule, or None when the action is unknown or malformed.
        """
        if not isinstance(data, dict):
            return None
        action_name = data.get("action")
        value = data.get("value")
        if value is None:
            value = ""
        value = str(value)

        if action_name == "setType":
            if not value:
                return None
            action: RuleAction = SetType(value)
        elif action_name == "setField":
            if value not in SET_FIELD_KEYS:
                return None
            action = SetField(value)
        elif action_name == "setConst":
            key, sep, const = value.partition(":")
            if not sep or not key or not const:
                return None
            action = SetConst(key.strip(), const.strip())
        else:
            return None

        return cls(
            action=action,
            selector=data.get("selector") or None,
            url_pattern=data.get("urlPattern") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.action, SetType):
            name, value = "setType", self.action.value
        elif isinstance(self.action, SetField):
            name, value = "setField", self.action.key
        else:
            name, value = "setConst", f"{self.action.key}:{self.action.value}"
        data: Dict[str, Any] = {"action": name, "value": value}
        if self.selector:
            data["selector"] = self.selector
        if self.url_pattern:
            data["urlPattern"] = self.url_pattern
        return data


def parse_rules(rules: Optional[Iterable[Any]]) -> List[ExtractionRule]:
    parsed = []
    for raw in rules or []:
        if isinstance(raw, ExtractionRule):
            parsed.append(raw)
            continue
        rule = ExtractionRule.from_dict(raw)
        if rule is None:
            logger.debug(f"Ignoring malformed extraction rule: {raw!r}")
            continue
        parsed.append(rule)
    return parsed


@dataclass
class _Extraction:
    """Metadata under construction plus the fields locked by a source."""

    data: Dict[str, Any] = field(default_factory=empty_metadata)
    locked: Set[str] = field(default_factory=set)

    def set(self, key: str, value: Any, lock: bool = False) -> bool:
        if key in self.locked:
            return False
        self.data[key] = value
        if lock:
            self.locked.add(key)
        return True


class MetadataExtractor:
    """
    Applies JSON-LD, OpenGraph and the ordered rule list to one page.
    """

    def __init__(self, rules: Optional[Iterable[Any]] = None):
        self.rules = parse_rules(rules)

    def extract(self, html: Union[str, BeautifulSoup], url: str = "") -> Dict[str, Any]:
        """
        Extract metadata from a page.

        Args:
            html: Raw HTML or an already parsed document
            url: Page URL, used for urlPattern rules and absolute image URLs

        Returns:
            Metadata dict (see ``empty_metadata``); missing fields stay empty.
        """
        try:
            soup = parse_html(html)
        except Exception as e:
            logger.warning(f"Could not parse HTML for {url}: {e}")
            return empty_metadata()

        result = _Extraction()
        canonical = soup.find("link", rel="canonical")
        if canonical and canonical.get("href"):
            result.data["canonical"] = urljoin(url, canonical["href"].strip()) if url else canonical["href"].strip()

        self._apply_json_ld(soup, result)
        self._apply_meta_tags(soup, result)
        for rule in self.rules:
            self._apply_rule(rule, soup, url, result)

        if not result.data["title"]:
            result.data["title"] = page_title(soup) or ""

        return self._finalize(result.data, url)

    # JSON-LD

    def _json_ld_items(self, soup: BeautifulSoup) -> List[Dict[str, Any]]:
        items = []
        for script in soup.find_all("script", type="application/ld+json"):
            raw = script.string or script.get_text()
            if not raw or not raw.strip():
                continue
            try:
                payload = json.loads(raw)
            except ValueError:
                logger.debug("Skipping malformed JSON-LD block")
                continue
            schemas = payload if isinstance(payload, list) else [payload]
            for schema in schemas:
                if not isinstance(schema, dict):
                    continue
                graph = schema.get("@graph")
                if isinstance(graph, list):
                    items.extend(item for item in graph if isinstance(item, dict))
                else:
                    items.append(schema)
        return items

    @staticmethod
    def _types_of(item: Dict[str, Any]) -> Set[str]:
        raw = item.get("@type")
        if isinstance(raw, list):
            return {str(t) for t in raw}
        return {str(raw)} if raw else set()

    @staticmethod
    def _image_urls(value: Any) -> List[str]:
        values = value if isinstance(value, list) else [value]
        urls = []
        for img in values:
            if isinstance(img, dict):
                img = img.get("url") or img.get("contentUrl")
            if isinstance(img, str) and img.strip():
                urls.append(img.strip())
        return urls

    def _apply_json_ld(self, soup: BeautifulSoup, result: _Extraction):
        for item in self._json_ld_items(soup):
            types = self._types_of(item)
            if "Product" in types:
                self._apply_product(item, result)
            elif types & ARTICLE_TYPES:
                self._apply_article(item, result)

    def _apply_product(self, item: Dict[str, Any], result: _Extraction):
        result.set("type", "product", lock=True)
        if item.get("name"):
            result.set("title", str(item["name"]), lock=True)
        if item.get("description"):
            result.set("description", str(item["description"]), lock=True)
        images = self._image_urls(item.get("image"))
        if images:
            result.set("images", images, lock=True)
        if item.get("sku"):
            result.set("sku", str(item["sku"]), lock=True)

        offers = item.get("offers")
        if isinstance(offers, dict) and isinstance(offers.get("offers"), list):
            # AggregateOffer wrapping individual offers
            offers = offers["offers"]
        if offers:
            offers = offers if isinstance(offers, list) else [offers]
            offers = [o for o in offers if isinstance(o, dict)]
            first_price = offers[0].get("price") or offers[0].get("lowPrice") if offers else None
            if first_price not in (None, ""):
                result.set("price", first_price, lock=True)
            variants = []
            for offer in offers:
                availability = str(offer.get("availability") or "")
                variants.append({
                    "title": offer.get("name") or item.get("name") or "",
                    "price": clean_numeric(offer.get("price")) or 0.0,
                    "sku": offer.get("sku") or item.get("sku") or "",
                    "availability": 1 if "InStock" in availability else 0,
                })
            if variants:
                result.set("variants", variants, lock=True)

    def _apply_article(self, item: Dict[str, Any], result: _Extraction):
        title = item.get("headline") or item.get("name")
        if title and not result.data["title"]:
            result.set("title", str(title), lock=True)
        description = item.get("description") or item.get("articleBody")
        if description and not result.data["description"]:
            result.set("description", str(description), lock=True)
        images = self._image_urls(item.get("image"))
        if images and not result.data["images"]:
            result.set("images", images, lock=True)

    # OpenGraph / meta

    @staticmethod
    def _meta_content(soup: BeautifulSoup, **attrs) -> str:
        tag = soup.find("meta", attrs=attrs)
        if tag and tag.get("content"):
            return tag["content"].strip()
        return ""

    def _apply_meta_tags(self, soup: BeautifulSoup, result: _Extraction):
        og_title = self._meta_content(soup, property="og:title")
        if og_title and not result.data["title"]:
            result.set("title", og_title, lock=True)

        description = (
            self._meta_content(soup, property="og:description")
            or self._meta_content(soup, name="description")
        )
        if description and not result.data["description"]:
            result.set("description", description, lock=True)

        og_image = self._meta_content(soup, property="og:image")
        if og_image and not result.data["images"]:
            result.set("images", [og_image], lock=True)

        og_price = (
            self._meta_content(soup, property="og:price:amount")
            or self._meta_content(soup, property="product:price:amount")
        )
        if og_price and result.data["price"] in (None, ""):
            result.set("price", og_price, lock=True)

    # Rules

    @staticmethod
    def _url_matches(pattern: str, url: str) -> Optional[bool]:
        """True/False for a match; None when the pattern is not a valid regex."""
        path = urlparse(url).path if url else ""
        try:
            return re.search(pattern, path) is not None
        except re.error as e:
            logger.debug(f"Invalid urlPattern {pattern!r}: {e}")
            return None

    def _apply_rule(
        self,
        rule: ExtractionRule,
        soup: BeautifulSoup,
        url: str,
        result: _Extraction,
    ):
        if not rule.selector and not rule.url_pattern:
            return

        if rule.url_pattern:
            if not self._url_matches(rule.url_pattern, url):
                return

        matches: List[Tag] = []
        if rule.selector:
            matches = safe_select(soup, rule.selector)
            if not matches:
                return

        action = rule.action
        if isinstance(action, SetType):
            result.set("type", action.value)
        elif isinstance(action, SetConst):
            if action.key in result.data and not isinstance(result.data[action.key], list):
                result.set(action.key, action.value)
        elif isinstance(action, SetField):
            if not matches:
                return
            self._apply_set_field(action.key, matches, url, result)

    def _apply_set_field(
        self, key: str, matches: List[Tag], url: str, result: _Extraction
    ):
        if key == "image":
            src = _image_source(matches[0])
            if src and "images" not in result.locked:
                images = [img for img in result.data["images"] if img != src]
                result.set("images", [src] + images)
        elif key == "images":
            sources = [src for src in (_image_source(m) for m in matches) if src]
            if sources:
                result.set("images", sources)
        else:
            value = text_of(matches[0])
            if value:
                result.set(key, value)

    # Normalization

    @staticmethod
    def _finalize(data: Dict[str, Any], url: str) -> Dict[str, Any]:
        for key in NUMERIC_FIELDS:
            if data.get(key) not in (None, ""):
                data[key] = clean_numeric(data[key])
            else:
                data[key] = None

        data["title"] = str(data.get("title") or "").strip()
        data["description"] = str(data.get("description") or "").strip()
        data["sku"] = str(data.get("sku") or "").strip()

        images = []
        for img in data.get("images") or []:
            if not img:
                continue
            absolute = urljoin(url, img) if url else img
            if absolute not in images:
                images.append(absolute)
        data["images"] = images
        return data


def _image_source(element: Tag) -> Optional[str]:
    """Image URL from an img/source/meta/link element or its first nested img."""
    for attr in ("src", "data-src", "content", "href"):
        value = element.get(attr)
        if value and isinstance(value, str):
            return value.strip()
    nested = element.find("img")
    if nested is not None and nested is not element:
        return _image_source(nested)
    return None


def extract_metadata(
    html: Union[str, BeautifulSoup],
    rules: Optional[Iterable[Any]] = None,
    url: str = "",
) -> Dict[str, Any]:
    """Convenience wrapper: ``MetadataExtractor(rules).extract(html, url)``."""
    return MetadataExtractor(rules).extract(html, url)
