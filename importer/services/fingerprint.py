"""
Structural Fingerprinter.

Computes a content-independent hash of a page's DOM skeleton so pages
rendered from the same template land in the same structural group, and
produces the reduced HTML used downstream: ``clean_html_for_model``
removes chrome (header/footer/nav/aside, menus), reduces attributes to
class/id/src/href/alt and collapses whitespace.
"""

import hashlib
import logging
import re
from typing import List, Optional, Union

from bs4 import BeautifulSoup, Comment, Tag

logger = logging.getLogger(__name__)

# Inline and content-bearing tags do not contribute to the skeleton
CONTENT_TAGS = frozenset({
    "a", "span", "i", "strong", "em", "b", "u", "br", "svg", "path",
    "small", "label", "button", "img", "p", "h1", "h2", "h3", "h4",
    "h5", "h6", "input", "select", "textarea", "video", "audio",
    "canvas", "iframe", "hr", "picture", "source",
})

# Non-rendered tags are dropped with their subtree
IGNORED_TAGS = frozenset({"script", "style", "noscript", "template", "link", "meta"})

SKELETON_SKIP_TAGS = CONTENT_TAGS | IGNORED_TAGS

MAX_DEPTH = 20

MODEL_STRIP_TAGS = [
    "head", "script", "style", "noscript", "iframe", "svg", "canvas",
    "link", "meta", "template", "object", "embed",
]

MODEL_CHROME_SELECTORS = (
    "header, footer, nav, aside, .sidebar, .menu, .nav, .footer, .header, "
    "#header, #footer, #nav"
)

MODEL_KEEP_ATTRIBUTES = frozenset({"class", "id", "src", "href", "alt"})

_DIGITS_RE = re.compile(r"\d+")
_WHITESPACE_RE = re.compile(r"\s+")


def _parse(html: Union[str, BeautifulSoup]) -> BeautifulSoup:
    if isinstance(html, BeautifulSoup):
        return html
    return BeautifulSoup(html or "", "html.parser")


def element_signature(element: Tag) -> str:
    """
    Signature of one structural element.

    Tag name, sorted class names with digit runs normalized to ``#``, and
    sorted attribute names. Attribute values and text never contribute.
    """
    classes = element.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    normalized_classes = sorted({_DIGITS_RE.sub("#", c) for c in classes if c})
    attr_names = sorted(name for name in element.attrs if name != "class")
    return f"{element.name}.{'.'.join(normalized_classes)}[{','.join(attr_names)}]"


def _skeleton(element: Tag, tokens: List[str], depth: int = 0):
    if depth > MAX_DEPTH or element.name in SKELETON_SKIP_TAGS:
        return

    signature = element_signature(element)
    tokens.append(signature)

    last_signature = None
    for child in element.children:
        if not isinstance(child, Tag) or child.name in SKELETON_SKIP_TAGS:
            continue
        child_signature = element_signature(child)
        # Repeated siblings (lists of cards, rows) collapse to one
        if child_signature == last_signature:
            continue
        last_signature = child_signature
        _skeleton(child, tokens, depth + 1)

    tokens.append(f"/{element.name}")


def structural_hash(html: Union[str, BeautifulSoup]) -> str:
    """
    SHA-256 over the tag skeleton of ``<body>``.

    Args:
        html: Raw HTML or an already parsed document

    Returns:
        Hex digest. Pages without a body hash the whole document.
    """
    soup = _parse(html)
    root = soup.body or soup.find(True)
    tokens: List[str] = []
    if root is not None:
        _skeleton(root, tokens)
    return hashlib.sha256(">".join(tokens).encode("utf-8")).hexdigest()


def clean_html_for_model(html: Union[str, BeautifulSoup]) -> str:
    """
    Reduce a page to structure plus visible content.

    The result is what the layout model sees and what proposed selectors
    are validated against, so both must come from this function.
    """
    soup = BeautifulSoup(str(html or ""), "html.parser")

    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    for element in soup.find_all(MODEL_STRIP_TAGS):
        if not element.decomposed:
            element.decompose()

    for element in soup.select(MODEL_CHROME_SELECTORS):
        if not element.decomposed:
            element.decompose()

    for element in soup.find_all(True):
        for name in list(element.attrs):
            if name not in MODEL_KEEP_ATTRIBUTES:
                del element.attrs[name]

    root = soup.body if soup.body else soup
    markup = root.decode_contents() if isinstance(root, Tag) else str(root)
    return _WHITESPACE_RE.sub(" ", markup).strip()


def page_title(soup: BeautifulSoup) -> Optional[str]:
    """Text of the ``<title>`` element, if any."""
    if soup.title and soup.title.string:
        title = soup.title.string.strip()
        return title or None
    return None
