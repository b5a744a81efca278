"""
CMS content-creation collaborator.

The migration engine only talks to the CMS through ``CMSClient``.
``DatabaseCMSClient`` stores content as ContentRecord / ContentVariant rows.
"""

import logging
import re
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

from django.utils.text import slugify

from importer.models import ContentRecord, ContentVariant

logger = logging.getLogger(__name__)

_HTML_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


def _json_strings(value: Any) -> List[str]:
    if isinstance(value, str):
        return [_WHITESPACE_RE.sub(" ", _HTML_TAG_RE.sub(" ", value)).strip()]
    if isinstance(value, dict):
        value = list(value.values())
    if isinstance(value, (list, tuple)):
        strings = []
        for item in value:
            if isinstance(item, (str, dict, list, tuple)):
                strings.extend(_json_strings(item))
        return strings
    return []


def build_search_index(title: str, data: Dict[str, Any]) -> str:
    """
    Searchable text for a record: unique words longer than two characters
    from the title and every string value in ``data`` (HTML stripped).
    """
    words = " ".join([title or ""] + _json_strings(data or {})).split()
    seen = dict.fromkeys(w for w in words if len(w) > 2)
    return " ".join(seen)


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        return None


class CMSClient(ABC):
    """Interface of the CMS the migration engine writes into."""

    @abstractmethod
    def find_by_title(self, module: str, title: str) -> Optional[Dict[str, Any]]:
        """Record with exactly this title in the module, or None."""

    @abstractmethod
    def create(
        self,
        module: str,
        title: str,
        slug: str,
        data: Dict[str, Any],
        template_id: Optional[str] = None,
        sku: str = "",
        price: Any = None,
    ) -> Dict[str, Any]:
        """Create a record and return it."""

    @abstractmethod
    def update(self, record_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        """Replace a record's data and return it."""

    @abstractmethod
    def create_variant(self, record_id: int, variant: Dict[str, Any]) -> Dict[str, Any]:
        """Create a product variant; raises on a duplicate sku."""

    @abstractmethod
    def find_variants(self, record_id: int) -> List[Dict[str, Any]]:
        """Variants of a product record."""

    @abstractmethod
    def unique_slug(self, title: str, module: str) -> str:
        """Slug for ``title`` not yet used in the module."""


class DatabaseCMSClient(CMSClient):
    """CMS backed by the ContentRecord / ContentVariant tables."""

    @staticmethod
    def _record_dict(record: ContentRecord) -> Dict[str, Any]:
        return {
            "id": record.id,
            "module": record.module,
            "title": record.title,
            "slug": record.slug,
            "data": record.data,
            "template_id": record.template_id,
            "sku": record.sku,
            "price": record.price,
        }

    @staticmethod
    def _variant_dict(variant: ContentVariant) -> Dict[str, Any]:
        return {
            "id": variant.id,
            "sku": variant.sku,
            "title": variant.title,
            "price": variant.price,
            "inventory_quantity": variant.inventory_quantity,
            "option1": variant.option1_value or None,
            "option2": variant.option2_value or None,
            "option3": variant.option3_value or None,
        }

    def find_by_title(self, module, title):
        record = ContentRecord.objects.filter(module=module, title=title).order_by("id").first()
        return self._record_dict(record) if record else None

    def create(self, module, title, slug, data, template_id=None, sku="", price=None):
        record = ContentRecord.objects.create(
            module=module,
            title=title[:500],
            slug=slug,
            data=data,
            search_index=build_search_index(title, data),
            template_id=template_id or "",
            sku=sku or "",
            price=to_decimal(price),
        )
        logger.debug(f"Created {module} record {record.id}: {title}")
        return self._record_dict(record)

    def update(self, record_id, data):
        record = ContentRecord.objects.get(pk=record_id)
        record.data = data
        record.search_index = build_search_index(record.title, data)
        record.save(update_fields=["data", "search_index", "updated_at"])
        return self._record_dict(record)

    def create_variant(self, record_id, variant):
        options = variant.get("options") or []
        fields = {}
        for index in range(3):
            name = options[index] if index < len(options) else ""
            value = variant.get(f"option{index + 1}")
            if name and value:
                fields[f"option{index + 1}_name"] = name[:100]
                fields[f"option{index + 1}_value"] = str(value)[:255]

        created = ContentVariant.objects.create(
            record_id=record_id,
            sku=variant["sku"],
            title=(variant.get("title") or "")[:500],
            price=to_decimal(variant.get("price")),
            inventory_quantity=int(variant.get("inventory_quantity") or 0),
            **fields,
        )
        return self._variant_dict(created)

    def find_variants(self, record_id):
        return [
            self._variant_dict(v)
            for v in ContentVariant.objects.filter(record_id=record_id).order_by("id")
        ]

    def unique_slug(self, title, module):
        base = slugify(title or "")[:240] or "untitled"
        slug = base
        counter = 1
        while ContentRecord.objects.filter(module=module, slug=slug).exists():
            slug = f"{base}-{counter}"
            counter += 1
        return slug


def get_cms_client() -> CMSClient:
    """Factory function to get the configured CMS client."""
    return DatabaseCMSClient()


def existing_variant_keys(variants: Iterable[Dict[str, Any]]) -> tuple:
    """(skus, option tuples) of stored variants, used to skip duplicates."""
    skus = {v["sku"] for v in variants if v.get("sku")}
    options = {(v.get("option1"), v.get("option2"), v.get("option3")) for v in variants}
    return skus, options
