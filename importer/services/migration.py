"""
Migration Engine.

Turns staged pages into CMS records using a selector map:

    {"main": "body", "title": "h1.page-title", "images": {"selector": "#gallery img", "attr": "src", "multiple": true}}

- ``main`` with a default selector ("", "body", "main") uses the automatic
  content detector; a missing ``main`` falls back to the body
- HTML fields get embedded media localized; image fields are localized
  one by one
- A record with the same title in the module is only overwritten when
  the new main content is longer; the item is marked migrated either way

Bulk operations isolate every item and return a MigrationReport with one
ItemResult per requested item.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import urljoin

from django.db import transaction

from importer.models import ImportedSite, StagedItem, StagedItemStatus
from importer.services.cms import CMSClient, get_cms_client
from importer.services.content_detector import detect_main_content
from importer.services.fingerprint import page_title
from importer.services.media import MediaLocalizer, get_media_localizer, resolve_media_url
from importer.services.results import ItemResult, MigrationOutcome, MigrationReport
from importer.services.rule_store import get_migration_rule
from importer.utils.html import has_markup, parse_html, safe_select, text_of

logger = logging.getLogger(__name__)

PAGES_MODULE = "pages"
MAIN_FIELD = "main"
DEFAULT_SELECTOR_MAP = {MAIN_FIELD: "body"}
AUTO_DETECT_SELECTORS = ("", "body", "main")
DEFAULT_TITLE = "Imported Page"


class MigrationError(Exception):
    """A staged item cannot be migrated."""


def field_spec(value: Any) -> Dict[str, Any]:
    """Normalize a selector-map value to ``{selector, attr, multiple, type}``."""
    if isinstance(value, dict):
        return {
            "selector": (value.get("selector") or "").strip(),
            "attr": value.get("attr"),
            "multiple": bool(value.get("multiple")),
            "type": value.get("type"),
        }
    return {"selector": (value or "").strip(), "attr": None, "multiple": False, "type": None}


def is_media_field(spec: Dict[str, Any]) -> bool:
    return spec["type"] == "image" or spec["multiple"] or bool(spec["attr"])


def extract_fields(raw_html: str, selector_map: Dict[str, Any], page_url: str = "") -> Dict[str, Any]:
    """
    Apply a selector map to a page's raw HTML.

    Returns:
        Field values; media fields hold absolute URLs, other fields inner
        HTML (when the element contains markup) or text
    """
    soup = parse_html(raw_html)
    data: Dict[str, Any] = {}

    for key, value in (selector_map or {}).items():
        spec = field_spec(value)
        if key == MAIN_FIELD and spec["selector"] in AUTO_DETECT_SELECTORS:
            data[key] = detect_main_content(raw_html)
            continue

        elements = safe_select(soup, spec["selector"])
        if not elements:
            continue

        if is_media_field(spec):
            attr = spec["attr"] or "src"
            urls = [
                urljoin(page_url, element.get(attr)) if page_url else element.get(attr)
                for element in elements
                if element.get(attr)
            ]
            if urls:
                data[key] = urls if spec["multiple"] else urls[0]
            continue

        element = elements[0]
        data[key] = element.decode_contents().strip() if has_markup(element) else text_of(element)

    if not data.get(MAIN_FIELD):
        body = soup.body or soup
        data[MAIN_FIELD] = body.decode_contents().strip()
    return data


def localize_fields(
    data: Dict[str, Any],
    selector_map: Dict[str, Any],
    localizer: MediaLocalizer,
    base_url: Optional[str] = None,
) -> Dict[str, Any]:
    """Localize media in extracted fields; relative references resolve against ``base_url``."""
    localized = {}
    for key, value in data.items():
        spec = field_spec((selector_map or {}).get(key))
        if is_media_field(spec):
            if isinstance(value, list):
                localized[key] = localizer.localize_many(value, base_url)
            else:
                localized[key] = localizer.localize(resolve_media_url(value, base_url) or value)
        elif isinstance(value, str):
            localized[key] = localizer.localize_html(value, base_url)
        else:
            localized[key] = value
    return localized


def resolve_title(item: StagedItem) -> str:
    if item.title and item.title != item.url:
        return item.title
    metadata_title = (item.metadata or {}).get("title")
    if metadata_title:
        return metadata_title
    if item.raw_html:
        title = page_title(parse_html(item.raw_html))
        if title:
            return title
    return DEFAULT_TITLE


def migrate_page(
    item: StagedItem,
    selector_map: Optional[Dict[str, Any]] = None,
    template_id: Optional[str] = None,
    cms: Optional[CMSClient] = None,
    localizer: Optional[MediaLocalizer] = None,
) -> MigrationOutcome:
    """
    Migrate one staged page into the ``pages`` module.

    Args:
        item: Staged page with raw HTML
        selector_map: Field -> selector (default: auto-detected main content)
        template_id: CMS template for a newly created record
        cms: CMS client (default: database CMS)
        localizer: Media localizer (default from settings)

    Returns:
        MigrationOutcome naming the created or merged record

    Raises:
        MigrationError: the item has no HTML
    """
    if not item.raw_html:
        raise MigrationError(f"Item {item.pk} has no HTML to migrate")

    cms = cms or get_cms_client()
    localizer = localizer or get_media_localizer()
    selector_map = selector_map or DEFAULT_SELECTOR_MAP

    data = extract_fields(item.raw_html, selector_map, item.url)
    data = localize_fields(data, selector_map, localizer, item.url)
    title = resolve_title(item)

    existing = cms.find_by_title(PAGES_MODULE, title)
    if existing:
        existing_length = len((existing.get("data") or {}).get(MAIN_FIELD) or "")
        new_length = len(data.get(MAIN_FIELD) or "")
        if new_length > existing_length:
            cms.update(existing["id"], data)
            action = "updated"
            logger.info(
                f"Updated page \"{title}\" with longer content ({new_length} vs {existing_length} chars)"
            )
        else:
            action = "unchanged"
            logger.info(f"Kept existing page \"{title}\" ({existing_length} vs {new_length} chars)")
        item.mark_migrated(existing["id"])
        return MigrationOutcome(record_id=existing["id"], action=action)

    record = cms.create(
        PAGES_MODULE,
        title,
        cms.unique_slug(title, PAGES_MODULE),
        data,
        template_id=template_id,
    )
    item.mark_migrated(record["id"])
    logger.info(f"Migrated {item.url} -> page {record['id']}")
    return MigrationOutcome(record_id=record["id"], action="created")


# Bulk operations


def run_bulk(
    site: ImportedSite,
    item_ids: Iterable[int],
    migrate_one: Callable[[StagedItem], MigrationOutcome],
) -> MigrationReport:
    """
    Migrate items one by one; every id gets exactly one ItemResult.
    """
    item_ids = list(item_ids)
    items = {item.pk: item for item in StagedItem.objects.filter(site=site, pk__in=item_ids)}
    report = MigrationReport()

    for item_id in item_ids:
        item = items.get(item_id)
        if item is None:
            report.add(ItemResult(id=item_id, success=False, error="Item not found"))
            continue
        try:
            with transaction.atomic():
                outcome = migrate_one(item)
            report.add(ItemResult(id=item_id, success=True, created_id=outcome.record_id))
        except Exception as e:
            logger.warning(f"Migration failed for item {item_id} ({item.url}): {e}")
            report.add(ItemResult(id=item_id, success=False, error=str(e)))

    logger.info(
        f"Bulk migration for site {site.pk}: {report.succeeded} succeeded, {report.failed} failed"
    )
    return report


def _selector_map_for(site: ImportedSite, structural_hash: str, selector_map: Optional[Dict[str, Any]]):
    if selector_map:
        return selector_map
    entry = (site.ruleset or {}).get(structural_hash) or {}
    return entry.get("selector_map") or DEFAULT_SELECTOR_MAP


def _page_migrator(site, selector_map, template_id, cms, localizer):
    def migrate_one(item: StagedItem) -> MigrationOutcome:
        return migrate_page(
            item,
            _selector_map_for(site, item.structural_hash, selector_map),
            template_id=template_id,
            cms=cms,
            localizer=localizer,
        )
    return migrate_one


def _completed_ids(site: ImportedSite, **filters) -> List[int]:
    return list(
        StagedItem.objects.filter(site=site, status=StagedItemStatus.COMPLETED, **filters)
        .order_by("id")
        .values_list("id", flat=True)
    )


def migrate_group(
    site: ImportedSite,
    structural_hash: str,
    template_id: Optional[str] = None,
    selector_map: Optional[Dict[str, Any]] = None,
    cms: Optional[CMSClient] = None,
    localizer: Optional[MediaLocalizer] = None,
) -> MigrationReport:
    """
    Migrate the completed items of one structural group.

    Without an explicit selector map the group's inferred selector map is used.
    """
    with localizer or get_media_localizer() as media:
        migrate_one = _page_migrator(site, selector_map, template_id, cms or get_cms_client(), media)
        return run_bulk(site, _completed_ids(site, structural_hash=structural_hash), migrate_one)


def migrate_items(
    site: ImportedSite,
    item_ids: List[int],
    template_id: Optional[str] = None,
    selector_map: Optional[Dict[str, Any]] = None,
    cms: Optional[CMSClient] = None,
    localizer: Optional[MediaLocalizer] = None,
) -> MigrationReport:
    """Migrate an explicit list of items, in the given order."""
    with localizer or get_media_localizer() as media:
        migrate_one = _page_migrator(site, selector_map, template_id, cms or get_cms_client(), media)
        return run_bulk(site, item_ids, migrate_one)


def migrate_all(
    site: ImportedSite,
    template_id: Optional[str] = None,
    selector_map: Optional[Dict[str, Any]] = None,
    cms: Optional[CMSClient] = None,
    localizer: Optional[MediaLocalizer] = None,
) -> MigrationReport:
    """Migrate every completed item of the site."""
    with localizer or get_media_localizer() as media:
        migrate_one = _page_migrator(site, selector_map, template_id, cms or get_cms_client(), media)
        return run_bulk(site, _completed_ids(site), migrate_one)


def migrate_with_rule(
    site: ImportedSite,
    rule_id: str,
    item_ids: Optional[List[int]] = None,
    cms: Optional[CMSClient] = None,
    localizer: Optional[MediaLocalizer] = None,
) -> MigrationReport:
    """
    Migrate with a stored MigrationRule: its selector map and template,
    applied to explicit ids or else to the rule's structural group.

    Raises:
        RuleNotFound: unknown rule id
        MigrationError: the rule names neither a group nor items
    """
    rule = get_migration_rule(site, rule_id)
    if item_ids is None:
        if not rule.get("structural_hash"):
            raise MigrationError(f"Migration rule {rule_id} has no structural group; pass item ids")
        item_ids = _completed_ids(site, structural_hash=rule["structural_hash"])

    selector_map = rule.get("selector_map") or DEFAULT_SELECTOR_MAP
    with localizer or get_media_localizer() as media:
        migrate_one = _page_migrator(site, selector_map, rule.get("template_id"), cms or get_cms_client(), media)
        return run_bulk(site, item_ids, migrate_one)
