"""
Django signals for the importer application.

Active Signals:
- MediaAsset delete -> remove the localized file from MEDIA_ROOT
"""

import logging
from pathlib import Path

from django.conf import settings
from django.db.models.signals import post_delete
from django.dispatch import receiver

from importer.models import MediaAsset

logger = logging.getLogger(__name__)


@receiver(post_delete, sender=MediaAsset)
def remove_media_file(sender, instance, **kwargs):
    """Delete the stored file once its MediaAsset row is gone."""
    if not instance.path:
        return
    relative = instance.path
    media_url = settings.MEDIA_URL
    if relative.startswith(media_url):
        relative = relative[len(media_url):]
    file_path = Path(settings.MEDIA_ROOT) / relative.lstrip("/")
    try:
        file_path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove media file {file_path}: {e}")
