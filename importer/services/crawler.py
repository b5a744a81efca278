"""
Site Crawler.

Breadth-first, same-origin crawl of one ImportedSite:

1. Resolve the crawl config (explicit config over platform preset)
2. Try the structured product feed when one is configured
3. Otherwise crawl HTML: a coordinator coroutine owns the frontier and
   keeps up to IMPORTER_CRAWL_CONCURRENCY fetches in flight; each fetched
   page is fingerprinted, extracted and staged as a completed StagedItem

Failed fetches are skipped, unparsable pages are staged with an empty
extraction, and an operator stop (status ``cancelled``) is honoured
between page fetches while in-flight fetches finish.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from asgiref.sync import sync_to_async
from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F

from importer.fetchers.http_fetcher import HttpFetcher
from importer.models import ImportedSite, SiteStatus, StagedItem, StagedItemStatus
from importer.presets import resolve_crawl_config
from importer.queue.url_frontier import URLFrontier
from importer.services.feed_sync import FeedSync
from importer.services.fingerprint import clean_html_for_model, structural_hash
from importer.services.link_extractor import (
    LinkExtractor,
    get_link_extractor,
    normalize_url,
    same_origin,
)
from importer.services.metadata_extractor import MetadataExtractor, empty_metadata
from importer.utils.html import parse_html

logger = logging.getLogger(__name__)


@dataclass
class PageSnapshot:
    """Everything staged for one fetched page."""

    url: str
    raw_html: str
    title: str = ""
    cleaned_html: str = ""
    structural_hash: str = ""
    metadata: Dict[str, Any] = field(default_factory=empty_metadata)
    links: List[Any] = field(default_factory=list)
    canonical: Optional[str] = None
    parse_error: Optional[str] = None


@dataclass
class CrawlResult:
    """Summary of one crawl run."""

    site_id: str
    pages_stored: int = 0
    pages_failed: int = 0
    cancelled: bool = False
    used_feed: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "site_id": self.site_id,
            "pages_stored": self.pages_stored,
            "pages_failed": self.pages_failed,
            "cancelled": self.cancelled,
            "used_feed": self.used_feed,
            "error": self.error,
        }


def build_snapshot(
    html: str,
    url: str,
    root_url: str,
    extractor: MetadataExtractor,
    link_extractor: LinkExtractor,
) -> PageSnapshot:
    """
    Fingerprint, extract and discover links for one page.

    Never raises: a page that cannot be processed is returned with an
    empty extraction and a blank structural hash.
    """
    try:
        soup = parse_html(html)
        metadata = extractor.extract(soup, url)
        snapshot = PageSnapshot(
            url=url,
            raw_html=html,
            title=(metadata.get("title") or url)[:500],
            cleaned_html=clean_html_for_model(html),
            structural_hash=structural_hash(soup),
            metadata=metadata,
            links=link_extractor.extract_links(soup, url, root_url),
        )
    except Exception as e:
        logger.warning(f"Could not parse {url}, staging without extraction: {e}")
        return PageSnapshot(url=url, raw_html=html, title=url[:500], parse_error=str(e))

    canonical = metadata.get("canonical")
    if canonical:
        normalized = normalize_url(canonical, url)
        if normalized and normalized != url and same_origin(normalized, root_url):
            snapshot.canonical = normalized
    return snapshot


def _existing_urls(site_id) -> List[str]:
    return list(StagedItem.objects.filter(site_id=site_id).values_list("url", flat=True))


def _is_cancelled(site_id) -> bool:
    return ImportedSite.objects.filter(pk=site_id, status=SiteStatus.CANCELLED).exists()


def _store_snapshot(site_id, snapshot: PageSnapshot) -> bool:
    """Persist a page; False when the URL is already staged for the site."""
    try:
        with transaction.atomic():
            StagedItem.objects.create(
                site_id=site_id,
                url=snapshot.url,
                title=snapshot.title,
                raw_html=snapshot.raw_html,
                cleaned_html=snapshot.cleaned_html,
                structural_hash=snapshot.structural_hash,
                metadata=snapshot.metadata,
                status=StagedItemStatus.COMPLETED,
            )
            ImportedSite.objects.filter(pk=site_id).update(page_count=F("page_count") + 1)
    except IntegrityError:
        logger.debug(f"Already staged: {snapshot.url}")
        return False
    return True


def _finish(site_id, message: str):
    """Mark completed unless an operator cancelled in the meantime."""
    ImportedSite.objects.filter(pk=site_id).exclude(status=SiteStatus.CANCELLED).update(
        status=SiteStatus.COMPLETED, status_message=message
    )


def _fail(site_id, message: str):
    ImportedSite.objects.filter(pk=site_id).exclude(status=SiteStatus.CANCELLED).update(
        status=SiteStatus.FAILED, status_message=message[:2000]
    )


class SiteCrawler:
    """
    Crawls one site into StagedItems.

    Usage:
        result = await SiteCrawler(site).crawl()
    """

    def __init__(
        self,
        site: ImportedSite,
        fetcher: Optional[HttpFetcher] = None,
        concurrency: Optional[int] = None,
        delay: Optional[float] = None,
    ):
        """
        Initialize the crawler.

        Args:
            site: Site to crawl
            fetcher: Page fetcher (default configured from settings)
            concurrency: Fetches in flight (default IMPORTER_CRAWL_CONCURRENCY)
            delay: Politeness delay after each fetch (default IMPORTER_CRAWL_DELAY)
        """
        self.site = site
        self.fetcher = fetcher or HttpFetcher()
        self.concurrency = max(1, concurrency or getattr(settings, "IMPORTER_CRAWL_CONCURRENCY", 4))
        self.delay = delay if delay is not None else getattr(settings, "IMPORTER_CRAWL_DELAY", 0.1)

        self.config = resolve_crawl_config(site.config)
        self.max_pages = self.config["maxPages"]
        self.extractor = MetadataExtractor(self.config["rules"])
        self.link_extractor = get_link_extractor(self.config)

    async def crawl(self) -> CrawlResult:
        """
        Run the crawl to completion, cancellation or failure.

        Returns:
            CrawlResult with page counts and the reason the crawl stopped
        """
        site_id = self.site.pk
        result = CrawlResult(site_id=str(site_id))

        root_url = normalize_url(self.site.root_url)
        if not root_url:
            result.error = f"Invalid root URL: {self.site.root_url}"
            await sync_to_async(_fail)(site_id, result.error)
            return result

        if not await sync_to_async(self.site.start)():
            logger.info(f"Crawl for {root_url} skipped: site was cancelled before it started")
            result.cancelled = True
            return result
        logger.info(f"Crawl started for {root_url} (max {self.max_pages} pages)")

        try:
            async with self.fetcher:
                if self.config.get("feedUrl"):
                    feed_result = await FeedSync(self.fetcher).sync(
                        self.site, self.config["feedUrl"], self.max_pages
                    )
                    if feed_result.success:
                        result.used_feed = True
                        result.pages_stored = feed_result.items_staged
                        await sync_to_async(_finish)(
                            site_id, f"Synced {feed_result.items_staged} products from feed"
                        )
                        return result

                await self._crawl_html(root_url, result)
        except Exception as e:
            logger.exception(f"Crawl failed for {root_url}: {e}")
            result.error = str(e)
            await sync_to_async(_fail)(site_id, f"Crawl failed: {e}")
            return result

        if result.cancelled:
            logger.info(f"Crawl cancelled for {root_url} after {result.pages_stored} pages")
        else:
            await sync_to_async(_finish)(site_id, f"Crawled {result.pages_stored} pages")
            logger.info(
                f"Crawl completed for {root_url}: {result.pages_stored} stored, "
                f"{result.pages_failed} failed"
            )
        return result

    async def _crawl_html(self, root_url: str, result: CrawlResult):
        site_id = self.site.pk
        existing = await sync_to_async(_existing_urls)(site_id)
        frontier = URLFrontier(str(site_id), seen=existing)
        stored = len(existing)
        frontier.add_url(root_url, priority=True)

        pending: Dict[asyncio.Task, str] = {}
        try:
            while True:
                if await sync_to_async(_is_cancelled)(site_id):
                    result.cancelled = True
                    break

                while (
                    len(pending) < self.concurrency
                    and stored + len(pending) < self.max_pages
                    and not frontier.is_empty()
                ):
                    url = frontier.get_next_url()
                    task = asyncio.create_task(self._process_url(url, root_url))
                    pending[task] = url

                if not pending:
                    break

                done, _ = await asyncio.wait(pending.keys(), return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    pending.pop(task)
                    stored += await self._handle_result(task.result(), frontier, result)

            # In-flight fetches finish after a stop
            if pending:
                for snapshot in await asyncio.gather(*pending.keys()):
                    if stored < self.max_pages:
                        stored += await self._handle_result(snapshot, frontier, result)
                pending.clear()
        finally:
            for task in pending:
                task.cancel()

    async def _handle_result(
        self, snapshot: Optional[PageSnapshot], frontier: URLFrontier, result: CrawlResult
    ) -> int:
        if snapshot is None:
            result.pages_failed += 1
            return 0

        frontier.mark_url_seen(snapshot.url)
        created = await sync_to_async(_store_snapshot)(self.site.pk, snapshot)
        if created:
            result.pages_stored += 1

        if snapshot.canonical:
            frontier.add_url(snapshot.canonical, priority=True)
        for link in snapshot.links:
            frontier.add_url(link.url, priority=link.is_priority)
        return 1 if created else 0

    async def _process_url(self, url: str, root_url: str) -> Optional[PageSnapshot]:
        """Fetch and process one URL; None when the fetch failed."""
        logger.debug(f"Fetching {url}")
        response = await self.fetcher.fetch(url)
        if self.delay:
            await asyncio.sleep(self.delay)

        if not response.success:
            logger.warning(f"Skipping {url}: {response.error}")
            return None

        # Redirected pages are staged, and their links resolved, under the final URL
        final_url = normalize_url(response.final_url or url) or url
        if final_url != url and not same_origin(final_url, root_url):
            logger.info(f"Skipping {url}: redirected off-site to {final_url}")
            return None

        return await sync_to_async(build_snapshot, thread_sensitive=False)(
            response.content, final_url, root_url, self.extractor, self.link_extractor
        )

