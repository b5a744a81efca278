"""
Product migration: staged product items -> ``products`` CMS records with variants.
"""

import logging
from typing import Any, Dict, List, Optional

from django.db import IntegrityError, transaction
from django.utils.text import slugify

from importer.models import ImportedSite, StagedItem, StagedItemStatus
from importer.services.cms import CMSClient, existing_variant_keys, get_cms_client
from importer.services.media import MediaLocalizer, get_media_localizer
from importer.services.migration import MigrationError, run_bulk
from importer.services.results import MigrationOutcome, MigrationReport

logger = logging.getLogger(__name__)

PRODUCTS_MODULE = "products"
DEFAULT_PRODUCT_TITLE = "Product"


class NotAProductError(MigrationError):
    """The staged item's metadata does not describe a product."""


def default_sku(title: str) -> str:
    base = slugify(title or "").upper() or "PRODUCT"
    return f"{base}-001"


def _option_names(metadata: Dict[str, Any]) -> List[str]:
    return [o.get("name") for o in metadata.get("options") or [] if isinstance(o, dict) and o.get("name")]


def _option_tuple(variant: Dict[str, Any]) -> tuple:
    return (variant.get("option1"), variant.get("option2"), variant.get("option3"))


def _create_variant(
    cms: CMSClient,
    record_id: int,
    variant: Dict[str, Any],
    option_names: List[str],
    fallback_sku: str,
    title: str,
    price: Any,
) -> bool:
    """Create one variant; a uniqueness violation skips it. Returns True when created."""
    payload = {
        **variant,
        "sku": variant.get("sku") or fallback_sku,
        "title": variant.get("title") or title,
        "price": variant.get("price") or price,
        "options": option_names,
    }
    try:
        with transaction.atomic():
            cms.create_variant(record_id, payload)
    except IntegrityError as e:
        logger.warning(f"Variant {payload['sku']} of \"{title}\" skipped: {e}")
        return False
    return True


def migrate_product(
    item: StagedItem,
    template_id: Optional[str] = None,
    cms: Optional[CMSClient] = None,
    localizer: Optional[MediaLocalizer] = None,
) -> MigrationOutcome:
    """
    Migrate one staged product.

    An existing product with the same title gets its content replaced and
    any variants it does not have yet (matched by sku or option values).

    Raises:
        NotAProductError: metadata type is not ``product``
    """
    metadata = item.metadata or {}
    if metadata.get("type") != "product":
        raise NotAProductError(f"{item.url} is not identified as a product")

    cms = cms or get_cms_client()
    localizer = localizer or get_media_localizer()

    title = metadata.get("title") or item.title or DEFAULT_PRODUCT_TITLE
    data = {
        "description": localizer.localize_html(metadata.get("description") or "", item.url),
        "images": localizer.localize_many(metadata.get("images") or [], item.url),
    }
    option_names = _option_names(metadata)
    variants = [v for v in metadata.get("variants") or [] if isinstance(v, dict)]

    existing = cms.find_by_title(PRODUCTS_MODULE, title)
    if existing:
        cms.update(existing["id"], data)
        stored = cms.find_variants(existing["id"])
        skus, options = existing_variant_keys(stored)
        product_sku = existing.get("sku") or default_sku(title)
        added = 0
        for variant in variants:
            if variant.get("sku") and variant["sku"] in skus:
                continue
            if any(_option_tuple(variant)) and _option_tuple(variant) in options:
                continue
            position = len(stored) + added + 1
            if _create_variant(
                cms, existing["id"], variant, option_names,
                f"{product_sku}-{position}", title, existing.get("price"),
            ):
                added += 1
        item.mark_migrated(existing["id"])
        logger.info(f"Updated product \"{title}\" ({added} new variants)")
        return MigrationOutcome(record_id=existing["id"], action="updated")

    sku = metadata.get("sku") or default_sku(title)
    price = metadata.get("price") or 0
    record = cms.create(
        PRODUCTS_MODULE,
        title,
        cms.unique_slug(title, PRODUCTS_MODULE),
        data,
        template_id=template_id,
        sku=sku,
        price=price,
    )
    for position, variant in enumerate(variants, start=1):
        _create_variant(cms, record["id"], variant, option_names, f"{sku}-{position}", title, price)

    item.mark_migrated(record["id"])
    logger.info(f"Migrated product {item.url} -> {record['id']} ({len(variants)} variants)")
    return MigrationOutcome(record_id=record["id"], action="created")


def migrate_products(
    site: ImportedSite,
    template_id: Optional[str] = None,
    item_ids: Optional[List[int]] = None,
    cms: Optional[CMSClient] = None,
    localizer: Optional[MediaLocalizer] = None,
) -> MigrationReport:
    """
    Migrate product items of a site.

    With ``item_ids`` every id is reported (non-products as failures);
    otherwise all completed or migrated product items are migrated.
    """
    if item_ids is None:
        item_ids = list(
            StagedItem.objects.filter(
                site=site,
                status__in=[StagedItemStatus.COMPLETED, StagedItemStatus.MIGRATED],
                metadata__type="product",
            )
            .order_by("id")
            .values_list("id", flat=True)
        )
        logger.info(f"Site {site.pk}: {len(item_ids)} product items to migrate")

    cms = cms or get_cms_client()
    with localizer or get_media_localizer() as media:
        return run_bulk(
            site,
            item_ids,
            lambda item: migrate_product(item, template_id=template_id, cms=cms, localizer=media),
        )
