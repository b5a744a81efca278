"""
Structured feed sync (Shopify ``products.json``).

When a crawl config names a ``feedUrl`` the product catalogue is read from
the platform's JSON feed instead of crawling HTML. Each feed product is
staged as one completed product item carrying options and variants, which
is everything product migration needs. Any failure makes the caller fall
back to the HTML crawl.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlparse

from asgiref.sync import sync_to_async
from django.db import IntegrityError, transaction
from django.db.models import F

from importer.fetchers.http_fetcher import HttpFetcher
from importer.models import ImportedSite, StagedItem, StagedItemStatus
from importer.services.metadata_extractor import empty_metadata
from importer.utils.html import clean_numeric

logger = logging.getLogger(__name__)

# Shopify caps products.json pages at 250 products
FEED_PAGE_LIMIT = 250


@dataclass
class FeedSyncResult:
    success: bool
    items_staged: int = 0
    error: Optional[str] = None


def product_to_metadata(product: Dict[str, Any], product_url: str) -> Dict[str, Any]:
    """
    Map one Shopify feed product to the staged metadata shape.
    """
    metadata = empty_metadata()
    variants = [v for v in product.get("variants") or [] if isinstance(v, dict)]
    first_variant = variants[0] if variants else {}

    metadata.update({
        "title": (product.get("title") or "").strip(),
        "description": product.get("body_html") or "",
        "images": [
            img.get("src") for img in product.get("images") or []
            if isinstance(img, dict) and img.get("src")
        ],
        "sku": first_variant.get("sku") or "",
        "price": clean_numeric(first_variant.get("price")),
        "compare_at_price": clean_numeric(first_variant.get("compare_at_price")),
        "type": "product",
        "canonical": product_url,
        "vendor": product.get("vendor") or "",
        "product_type": product.get("product_type") or "",
        "tags": product.get("tags") or [],
    })

    metadata["options"] = [
        {"name": opt.get("name") or "", "values": list(opt.get("values") or [])}
        for opt in product.get("options") or []
        if isinstance(opt, dict) and opt.get("name")
    ]

    metadata["variants"] = [
        {
            "title": v.get("title") or metadata["title"],
            "price": clean_numeric(v.get("price")) or 0.0,
            "compare_at_price": clean_numeric(v.get("compare_at_price")),
            "sku": v.get("sku") or "",
            "option1": v.get("option1"),
            "option2": v.get("option2"),
            "option3": v.get("option3"),
            "inventory_quantity": v.get("inventory_quantity") or 0,
            "availability": 1 if v.get("available", True) else 0,
        }
        for v in variants
    ]
    return metadata


class FeedSync:
    """
    Stages products from a Shopify-style ``products.json`` feed.
    """

    def __init__(self, fetcher: HttpFetcher):
        self.fetcher = fetcher

    async def sync(
        self, site: ImportedSite, feed_url: str, max_items: int
    ) -> FeedSyncResult:
        """
        Page through the feed and stage its products.

        Args:
            site: Site being imported
            feed_url: Feed path or absolute URL (resolved against the root URL)
            max_items: Stop after this many staged items

        Returns:
            FeedSyncResult; ``success`` is False when the first page is not
            a product feed, so the caller can crawl HTML instead.
        """
        absolute_feed = urljoin(site.root_url, feed_url)
        parsed = urlparse(absolute_feed)
        origin = f"{parsed.scheme}://{parsed.netloc}"
        separator = "&" if parsed.query else "?"

        staged = 0
        page = 1
        while staged < max_items:
            page_url = f"{absolute_feed}{separator}limit={FEED_PAGE_LIMIT}&page={page}"
            payload = await self.fetcher.fetch_json(page_url)

            products = payload.get("products") if isinstance(payload, dict) else None
            if not isinstance(products, list):
                if page == 1:
                    logger.info(f"No product feed at {absolute_feed}, falling back to crawl")
                    return FeedSyncResult(success=False, error="Feed unavailable or not a product feed")
                break
            if not products:
                break

            for product in products:
                if staged >= max_items:
                    break
                if not isinstance(product, dict) or not product.get("handle"):
                    continue
                product_url = f"{origin}/products/{product['handle']}"
                metadata = product_to_metadata(product, product_url)
                if await sync_to_async(_stage_feed_item)(site.pk, product_url, product, metadata):
                    staged += 1

            if len(products) < FEED_PAGE_LIMIT:
                break
            page += 1

        logger.info(f"Feed sync staged {staged} products for {site.root_url}")
        return FeedSyncResult(
            success=staged > 0,
            items_staged=staged,
            error=None if staged else "Feed contained no products",
        )


def _stage_feed_item(
    site_id, product_url: str, product: Dict[str, Any], metadata: Dict[str, Any]
) -> bool:
    body_html = product.get("body_html") or ""
    try:
        with transaction.atomic():
            StagedItem.objects.create(
                site_id=site_id,
                url=product_url,
                title=(metadata["title"] or product_url)[:500],
                raw_html=body_html,
                cleaned_html=body_html,
                # Feed items have no page layout to infer
                structural_hash="",
                metadata=metadata,
                item_type="product",
                status=StagedItemStatus.COMPLETED,
            )
            ImportedSite.objects.filter(pk=site_id).update(page_count=F("page_count") + 1)
    except IntegrityError:
        logger.debug(f"Feed product already staged: {product_url}")
        return False
    return True
