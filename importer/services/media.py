"""
Media Localizer.

Downloads remote images and videos referenced by migrated content into
MEDIA_ROOT (``YYYY/MM/<uuid><ext>``) and records them as MediaAsset rows,
so the same original URL is only ever downloaded once.

Failures never propagate: the original URL is returned instead.
"""

import logging
import mimetypes
import uuid
from pathlib import Path, PurePosixPath
from typing import List, Optional
from urllib.parse import urljoin, urlparse

import httpx
from django.conf import settings
from django.utils import timezone

from importer.models import MediaAsset
from importer.utils.html import parse_html

logger = logging.getLogger(__name__)

MAX_MEDIA_BYTES = 50 * 1024 * 1024

MEDIA_EXTENSIONS = {
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg",
    ".mp4", ".webm", ".ogg", ".mov",
}


class MediaDownloadError(Exception):
    """A media URL could not be downloaded or is not media."""


class MediaLocalizer:
    """
    Sync media downloader used by the migration engine.

    Usage:
        with MediaLocalizer() as localizer:
            local_url = localizer.localize("https://cdn.example.com/a.jpg")
    """

    def __init__(
        self,
        timeout: float = 30.0,
        max_bytes: int = MAX_MEDIA_BYTES,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.user_agent = user_agent or getattr(
            settings, "IMPORTER_USER_AGENT", "SiteImporter-Crawler/1.0"
        )
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
                transport=self._transport,
            )
        return self._client

    def close(self):
        if self._client is not None:
            self._client.close()
            self._client = None

    def localize(self, url: Optional[str], alt_text: str = "") -> Optional[str]:
        """
        Return the local URL for a remote media file, downloading it once.

        Args:
            url: Absolute http(s) media URL; anything else is returned as is
            alt_text: Stored on the MediaAsset

        Returns:
            Local MEDIA_URL path, or the original URL on failure
        """
        if not url or not isinstance(url, str) or not url.startswith("http"):
            return url

        existing = MediaAsset.objects.filter(original_url=url).first()
        if existing:
            return existing.path

        try:
            content, mime_type = self._download(url)
            local_url = self._store(url, content, mime_type, alt_text)
        except (httpx.HTTPError, MediaDownloadError, OSError) as e:
            logger.warning(f"Failed to localize media {url}: {e}")
            return url

        logger.info(f"Localized {url} -> {local_url}")
        return local_url

    def localize_many(self, urls: List[str], base_url: Optional[str] = None) -> List[str]:
        return [
            self.localize(resolve_media_url(u, base_url) or u)
            for u in urls
            if u and isinstance(u, str)
        ]

    def localize_html(self, html: Optional[str], base_url: Optional[str] = None) -> Optional[str]:
        """
        Rewrite img/video/source references in an HTML fragment to local copies.

        Relative sources are resolved against ``base_url``, the page the
        fragment came from; without it only absolute sources are localized.
        ``srcset`` is dropped from localized images.
        """
        if not html or not isinstance(html, str):
            return html

        soup = parse_html(html)
        elements = soup.find_all(["img", "video", "source"])
        if not elements:
            return html

        for element in elements:
            src = resolve_media_url(element.get("src"), base_url)
            if not src:
                continue
            alt_text = element.get("alt", "") if element.name == "img" else ""
            local = self.localize(src, alt_text)
            element["src"] = local
            if element.name == "img" and element.has_attr("srcset"):
                del element["srcset"]
        return str(soup)

    def _download(self, url: str):
        with self.client.stream("GET", url) as response:
            if response.status_code != 200:
                raise MediaDownloadError(f"HTTP {response.status_code}")

            declared = response.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > self.max_bytes:
                raise MediaDownloadError(f"File larger than {self.max_bytes} bytes")

            chunks = []
            size = 0
            for chunk in response.iter_bytes():
                size += len(chunk)
                # Stop reading as soon as the cap is passed
                if size > self.max_bytes:
                    raise MediaDownloadError(f"File larger than {self.max_bytes} bytes")
                chunks.append(chunk)
            content = b"".join(chunks)
            content_type = response.headers.get("content-type", "")

        mime_type = content_type.split(";")[0].strip().lower()
        if not mime_type.startswith(("image/", "video/")):
            if _extension(url) not in MEDIA_EXTENSIONS:
                raise MediaDownloadError(f"Not a supported media type: {mime_type or 'unknown'}")
            mime_type = mimetypes.guess_type(urlparse(url).path)[0] or "application/octet-stream"
        return content, mime_type

    def _store(self, url: str, content: bytes, mime_type: str, alt_text: str) -> str:
        now = timezone.now()
        subdir = f"{now.year}/{now.month:02d}"
        extension = _extension(url) or mimetypes.guess_extension(mime_type) or ".bin"
        filename = f"{uuid.uuid4()}{extension}"

        directory = Path(settings.MEDIA_ROOT) / subdir
        directory.mkdir(parents=True, exist_ok=True)
        file_path = directory / filename
        file_path.write_bytes(content)

        local_url = f"{settings.MEDIA_URL.rstrip('/')}/{subdir}/{filename}"
        asset, created = MediaAsset.objects.get_or_create(
            original_url=url,
            defaults={
                "path": local_url,
                "mime_type": mime_type[:100],
                "size": len(content),
                "alt_text": (alt_text or "")[:500],
            },
        )

        if not created:
            # Another worker stored it first
            file_path.unlink(missing_ok=True)
        return asset.path


def resolve_media_url(src: Optional[str], base_url: Optional[str] = None) -> Optional[str]:
    """
    Absolute http(s) URL for a media reference, or None.

    Root-relative, document-relative and protocol-relative references need
    ``base_url``; data URIs never resolve.
    """
    if not src or not isinstance(src, str):
        return None
    src = src.strip()
    if not src or src.startswith("data:"):
        return None
    if base_url:
        src = urljoin(base_url, src)
    if urlparse(src).scheme not in ("http", "https"):
        return None
    return src


def _extension(url: str) -> str:
    return PurePosixPath(urlparse(url).path).suffix.lower()


def get_media_localizer() -> MediaLocalizer:
    """Factory function to get a media localizer configured from settings."""
    return MediaLocalizer()
