"""
Platform presets for site crawls.

Each preset captures the URL conventions and markup quirks of a common
platform: how many pages to crawl, which paths to visit first, which to
skip, and first-pass extraction rules. Explicit crawl config overrides a
preset key by key.
"""

import copy
from typing import Any, Dict, List, Optional

from django.conf import settings

CRAWLER_PRESETS: Dict[str, Dict[str, Any]] = {
    "shopify": {
        "name": "Shopify",
        "maxPages": 1000,
        "feedUrl": "/products.json",
        "priorityPatterns": ["/products/", "/collections/", "/pages/", "/blogs/"],
        "excludePatterns": ["/tagged/", "/search", "sort_by=", "view=", "variant="],
        "rules": [
            {"selector": 'form[action="/cart/add"]', "action": "setType", "value": "product"},
            {"selector": ".product-single__title, .product__title", "action": "setField", "value": "title"},
            {
                "selector": ".product-single__description, .product__description",
                "action": "setField",
                "value": "description",
            },
            {"selector": "[data-product-sku]", "action": "setField", "value": "sku"},
        ],
    },
    "woocommerce": {
        "name": "WooCommerce",
        "maxPages": 1000,
        "priorityPatterns": ["/product/", "/product-category/"],
        "excludePatterns": ["/cart/", "/checkout/", "/my-account/", "add-to-cart="],
        "rules": [
            {"selector": ".type-product", "action": "setType", "value": "product"},
            {"selector": ".product_title", "action": "setField", "value": "title"},
            {
                "selector": ".woocommerce-product-details__short-description",
                "action": "setField",
                "value": "description",
            },
            {"selector": ".sku", "action": "setField", "value": "sku"},
        ],
    },
    "generic_ecommerce": {
        "name": "Generic Store",
        "maxPages": 800,
        "priorityPatterns": ["/p/", "/product", "/item/"],
        "excludePatterns": ["/cart", "/login", "/admin"],
        "rules": [
            {"selector": "product-card", "action": "setType", "value": "product"},
        ],
    },
    "blog": {
        "name": "Blog/CMS",
        "maxPages": 2000,
        "priorityPatterns": ["/post/", "/article/", "/blog/"],
        "excludePatterns": ["/wp-admin/", "/admin/", "/login", "/search"],
        "rules": [
            {"selector": "article", "action": "setType", "value": "page"},
            {"selector": ".post-title, h1", "action": "setField", "value": "title"},
            {"selector": ".post-content, .entry-content", "action": "setField", "value": "description"},
        ],
    },
    "corporate": {
        "name": "Corporate Site",
        "maxPages": 1500,
        "priorityPatterns": ["/about", "/services", "/products", "/contact"],
        "excludePatterns": ["/admin", "/login", "/wp-admin"],
        "rules": [
            {"selector": "main", "action": "setType", "value": "page"},
            {"selector": "h1", "action": "setField", "value": "title"},
        ],
    },
}

CRAWL_CONFIG_KEYS = ("maxPages", "priorityPatterns", "excludePatterns", "rules", "feedUrl")


class UnknownPresetError(ValueError):
    """Raised when a crawl config names a preset that does not exist."""


def list_presets() -> List[Dict[str, Any]]:
    """Presets as a list for the operator surface."""
    return [{"id": key, **copy.deepcopy(preset)} for key, preset in CRAWLER_PRESETS.items()]


def get_preset(name: Optional[str]) -> Dict[str, Any]:
    if not name:
        return {}
    try:
        return copy.deepcopy(CRAWLER_PRESETS[name])
    except KeyError:
        raise UnknownPresetError(f"Unknown crawler preset: {name}")


def resolve_crawl_config(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Merge a site's crawl config over its preset.

    Keys present in the config win over the preset; missing keys fall back
    to the preset, then to defaults.

    Args:
        config: ImportedSite.config (may name a ``preset``)

    Returns:
        Dict with maxPages, priorityPatterns, excludePatterns, rules, feedUrl
    """
    config = config or {}
    preset = get_preset(config.get("preset"))

    resolved: Dict[str, Any] = {
        "maxPages": getattr(settings, "IMPORTER_DEFAULT_MAX_PAGES", 500),
        "priorityPatterns": [],
        "excludePatterns": [],
        "rules": [],
        "feedUrl": None,
    }
    for key in CRAWL_CONFIG_KEYS:
        if key in preset:
            resolved[key] = preset[key]
        if config.get(key) is not None:
            resolved[key] = copy.deepcopy(config[key])

    try:
        resolved["maxPages"] = max(1, int(resolved["maxPages"]))
    except (TypeError, ValueError):
        resolved["maxPages"] = getattr(settings, "IMPORTER_DEFAULT_MAX_PAGES", 500)
    return resolved
