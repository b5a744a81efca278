"""
Celery tasks for the site importer.

- crawl_site: crawl (or feed-sync) one site into staged items
- generate_rules: infer and validate region rules per structural group
- migrate_group / migrate_items / migrate_all: page migration
- migrate_products: product migration
- migrate_with_rule: migration with a stored MigrationRule

Concurrent runs against the same site are not supported; each task works
on one site.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from celery import shared_task

from importer.models import ImportedSite, SiteStatus

logger = logging.getLogger(__name__)


def _load_site(site_id: str) -> Optional[ImportedSite]:
    try:
        return ImportedSite.objects.get(pk=site_id)
    except ImportedSite.DoesNotExist:
        logger.error(f"Site {site_id} not found")
        return None


def _run(coroutine):
    """Run a coroutine to completion in a fresh event loop."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coroutine)
    finally:
        loop.close()


@shared_task(name="importer.tasks.crawl_site", bind=True)
def crawl_site(self, site_id: str) -> Dict[str, Any]:
    """
    Crawl worker task.

    Args:
        site_id: UUID of the ImportedSite

    Returns:
        Dict with crawl counts and final status
    """
    logger.info(f"Starting crawl task for site {site_id}")
    from importer.services.crawler import SiteCrawler

    site = _load_site(site_id)
    if site is None:
        return {"site_id": site_id, "status": "failed", "error": "Site not found"}

    result = _run(SiteCrawler(site).crawl())

    site.refresh_from_db(fields=["status", "page_count"])
    return {**result.to_dict(), "status": site.status, "page_count": site.page_count}


@shared_task(name="importer.tasks.generate_rules", bind=True)
def generate_rules(self, site_id: str) -> Dict[str, Any]:
    """
    Rule generation task: one state machine per structural group.

    Returns:
        Dict with per-status group counts
    """
    logger.info(f"Starting rule generation for site {site_id}")
    from importer.services.rule_generator import RuleGenerationError, RuleGenerator

    site = _load_site(site_id)
    if site is None:
        return {"site_id": site_id, "status": "failed", "error": "Site not found"}

    try:
        ruleset = _run(RuleGenerator(site).run())
    except RuleGenerationError as e:
        logger.warning(f"Rule generation not possible for site {site_id}: {e}")
        return {"site_id": site_id, "status": site.status, "error": str(e)}
    except Exception as e:
        logger.exception(f"Rule generation failed for site {site_id}: {e}")
        ImportedSite.objects.filter(pk=site_id).exclude(status=SiteStatus.CANCELLED).update(
            status=SiteStatus.FAILED, status_message=f"Rule generation failed: {e}"[:2000]
        )
        return {"site_id": site_id, "status": SiteStatus.FAILED, "error": str(e)}

    counts: Dict[str, int] = {}
    for entry in ruleset.values():
        counts[entry.get("status")] = counts.get(entry.get("status"), 0) + 1

    site.refresh_from_db(fields=["status"])
    return {"site_id": site_id, "status": site.status, "groups": len(ruleset), "by_status": counts}


@shared_task(name="importer.tasks.migrate_group", bind=True)
def migrate_group(
    self,
    site_id: str,
    structural_hash: str,
    template_id: Optional[str] = None,
    selector_map: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    from importer.services import migration

    site = _load_site(site_id)
    if site is None:
        return {"site_id": site_id, "error": "Site not found"}
    report = migration.migrate_group(site, structural_hash, template_id, selector_map)
    return {"site_id": site_id, **report.to_dict()}


@shared_task(name="importer.tasks.migrate_items", bind=True)
def migrate_items(
    self,
    site_id: str,
    item_ids: List[int],
    template_id: Optional[str] = None,
    selector_map: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    from importer.services import migration

    site = _load_site(site_id)
    if site is None:
        return {"site_id": site_id, "error": "Site not found"}
    report = migration.migrate_items(site, item_ids, template_id, selector_map)
    return {"site_id": site_id, **report.to_dict()}


@shared_task(name="importer.tasks.migrate_all", bind=True)
def migrate_all(
    self,
    site_id: str,
    template_id: Optional[str] = None,
    selector_map: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    from importer.services import migration

    site = _load_site(site_id)
    if site is None:
        return {"site_id": site_id, "error": "Site not found"}
    report = migration.migrate_all(site, template_id, selector_map)
    return {"site_id": site_id, **report.to_dict()}


@shared_task(name="importer.tasks.migrate_products", bind=True)
def migrate_products(
    self,
    site_id: str,
    template_id: Optional[str] = None,
    item_ids: Optional[List[int]] = None,
) -> Dict[str, Any]:
    from importer.services import product_migration

    site = _load_site(site_id)
    if site is None:
        return {"site_id": site_id, "error": "Site not found"}
    report = product_migration.migrate_products(site, template_id, item_ids)
    return {"site_id": site_id, **report.to_dict()}


@shared_task(name="importer.tasks.migrate_with_rule", bind=True)
def migrate_with_rule(
    self,
    site_id: str,
    rule_id: str,
    item_ids: Optional[List[int]] = None,
) -> Dict[str, Any]:
    from importer.services import migration
    from importer.services.rule_store import RuleNotFound

    site = _load_site(site_id)
    if site is None:
        return {"site_id": site_id, "error": "Site not found"}
    try:
        report = migration.migrate_with_rule(site, rule_id, item_ids)
    except (RuleNotFound, migration.MigrationError) as e:
        logger.warning(f"Migration with rule {rule_id} failed for site {site_id}: {e}")
        return {"site_id": site_id, "error": str(e)}
    return {"site_id": site_id, **report.to_dict()}
