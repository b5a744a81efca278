"""
URL Frontier - de-duplicated crawl queue for one site crawl.

Implements a breadth-first queue with:
- URL deduplication via seen URL tracking (a URL is accepted at most once)
- Priority insertion at the front of the queue
- Persistence awareness: URLs already staged for the site can be preloaded
  as seen so a resumed crawl does not refetch them

The frontier is owned by the crawl coordinator coroutine; workers never
touch it directly.
"""

import logging
from collections import deque
from typing import Deque, Iterable, Optional, Set

logger = logging.getLogger(__name__)


class URLFrontier:
    """
    In-process URL frontier for a single crawl.

    ``add_url`` rejects any URL that was ever enqueued, so concurrent
    discovery of the same link by several pages enqueues it once.
    """

    def __init__(self, queue_id: str = "", seen: Optional[Iterable[str]] = None):
        """
        Initialize URL frontier.

        Args:
            queue_id: Identifier used in log messages (typically the site id)
            seen: URLs to treat as already processed
        """
        self.queue_id = queue_id
        self._queue: Deque[str] = deque()
        self._seen: Set[str] = set(seen or [])
        logger.debug(f"URL Frontier initialized for {queue_id or 'crawl'}")

    def add_url(self, url: str, priority: bool = False) -> bool:
        """
        Add URL to frontier if not already seen.

        Args:
            url: Normalized URL to add
            priority: Insert at the front of the queue

        Returns:
            True if URL was added, False if already seen
        """
        if not url or url in self._seen:
            return False
        self._seen.add(url)
        if priority:
            self._queue.appendleft(url)
        else:
            self._queue.append(url)
        return True

    def get_next_url(self) -> Optional[str]:
        """Pop the next URL, or None when the queue is empty."""
        if not self._queue:
            return None
        return self._queue.popleft()

    def is_empty(self) -> bool:
        return not self._queue

    def mark_url_seen(self, url: str):
        """Mark a URL as processed without queueing it."""
        self._seen.add(url)
