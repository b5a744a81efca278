"""
Page fetching for site crawls.

Static HTML only: pages are fetched with httpx, never rendered.
"""

from .http_fetcher import FetchResponse, HttpFetcher

__all__ = [
    "FetchResponse",
    "HttpFetcher",
]
