"""
URL Queue Management - crawl frontier.

Provides priority-aware URL queuing with deduplication for site crawls.
"""

from .url_frontier import URLFrontier

__all__ = [
    "URLFrontier",
]
