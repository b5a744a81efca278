"""
Importer application configuration.
"""

from django.apps import AppConfig


class ImporterConfig(AppConfig):
    """Configuration for the importer Django application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "importer"
    verbose_name = "Site Importer"

    def ready(self):
        """
        Perform application initialization.

        Imports signal handlers so media files are removed from storage
        when their MediaAsset rows are deleted.
        """
        from importer import signals  # noqa: F401
