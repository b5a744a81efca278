"""
Site lifecycle: create, start, stop, restart and delete import jobs.
"""

import logging
from typing import Any, Dict, Optional

from django.core.exceptions import ValidationError
from django.db import transaction

from importer.models import ImportedSite, SiteStatus
from importer.presets import get_preset
from importer.services.link_extractor import normalize_url

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (SiteStatus.PENDING, SiteStatus.CRAWLING, SiteStatus.GENERATING_RULES)


class SiteNotFound(Exception):
    """No ImportedSite with that id."""


class SiteStateError(Exception):
    """The operation is not allowed in the site's current status."""


class InvalidSiteURL(ValueError):
    """The root URL is not an absolute http(s) URL."""


def get_site(site_id) -> ImportedSite:
    """
    Raises:
        SiteNotFound: unknown or malformed id
    """
    try:
        return ImportedSite.objects.get(pk=site_id)
    except (ImportedSite.DoesNotExist, ValidationError, ValueError):
        raise SiteNotFound(f"Site {site_id} not found")


def create_site(root_url: str, preset: Optional[str] = None, config: Optional[Dict[str, Any]] = None) -> ImportedSite:
    """
    Create a pending import job.

    Args:
        root_url: Site root URL
        preset: Platform preset name (validated)
        config: Explicit crawl options overriding the preset key by key

    Raises:
        InvalidSiteURL: root URL is not http(s)
        UnknownPresetError: preset name is unknown
    """
    normalized = normalize_url(root_url or "")
    if not normalized:
        raise InvalidSiteURL(f"Invalid root URL: {root_url}")

    site_config = dict(config or {})
    if preset:
        get_preset(preset)
        site_config["preset"] = preset

    site = ImportedSite.objects.create(root_url=normalized, config=site_config)
    logger.info(f"Created import job {site.pk} for {normalized}")
    return site


def start_crawl(site: ImportedSite) -> str:
    """Queue the crawl task; returns the Celery task id."""
    from importer.tasks import crawl_site

    task = crawl_site.delay(str(site.pk))
    logger.info(f"Queued crawl of site {site.pk} as task {task.id}")
    return task.id


def stop_site(site: ImportedSite) -> ImportedSite:
    """
    Cancel a running crawl or rule generation.

    Workers notice the ``cancelled`` status between page fetches (crawl)
    or before the next group (rule generation).

    Raises:
        SiteStateError: the site is not running
    """
    if site.status not in ACTIVE_STATUSES:
        raise SiteStateError(f"Site is {site.status}, nothing to stop")
    site.set_status(SiteStatus.CANCELLED, "Stopped by operator")
    logger.info(f"Stopped site {site.pk}")
    return site


def restart_site(site: ImportedSite) -> str:
    """
    Discard staged items and inferred rules, then crawl from scratch.

    Returns:
        The Celery task id of the new crawl
    """
    with transaction.atomic():
        deleted, _ = site.items.all().delete()
        site.page_count = 0
        site.ruleset = {}
        site.status = SiteStatus.PENDING
        site.status_message = "Restarted"
        site.save(update_fields=["page_count", "ruleset", "status", "status_message", "updated_at"])
    logger.info(f"Restarting site {site.pk} ({deleted} staged rows removed)")
    return start_crawl(site)


def delete_site(site: ImportedSite):
    """Delete the job and, by cascade, its staged items."""
    site_id = site.pk
    site.delete()
    logger.info(f"Deleted site {site_id}")


def ensure_can_generate_rules(site: ImportedSite):
    """
    Raises:
        SiteStateError: a crawl or rule generation is queued or running
    """
    if site.status in ACTIVE_STATUSES:
        raise SiteStateError(f"Site is {site.status}; wait for it to finish")
    if not site.items.exists():
        raise SiteStateError("Site has no crawled pages")


def start_rule_generation(site: ImportedSite) -> str:
    """
    Queue rule generation; returns the Celery task id.

    The site is ``pending`` until the worker picks the job up, so it can be
    stopped before any group is analyzed.
    """
    from importer.tasks import generate_rules

    ensure_can_generate_rules(site)
    site.set_status(SiteStatus.PENDING, "Rule generation queued")
    task = generate_rules.delay(str(site.pk))
    logger.info(f"Queued rule generation for site {site.pk} as task {task.id}")
    return task.id
