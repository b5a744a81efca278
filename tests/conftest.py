"""
Pytest configuration and fixtures for the Site Import Service test suite.
"""

import pytest


@pytest.fixture(autouse=True)
def clear_cache():
    """Each test starts with an empty cache (throttles, prompt cache)."""
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Create a test API client."""
    from rest_framework.test import APIClient

    return APIClient()


@pytest.fixture
def operator(db):
    """A user allowed to drive imports."""
    from django.contrib.auth.models import User

    return User.objects.create_user(username="operator", password="secret")


@pytest.fixture
def auth_client(api_client, operator):
    """API client authenticated as the operator."""
    api_client.force_authenticate(user=operator)
    return api_client


@pytest.fixture
def site(db):
    """An imported site whose crawl has completed."""
    from importer.models import ImportedSite, SiteStatus

    return ImportedSite.objects.create(
        root_url="https://example.com",
        status=SiteStatus.COMPLETED,
        config={},
    )


@pytest.fixture
def make_item(site):
    """Factory for staged items on the ``site`` fixture."""
    from importer.models import StagedItem, StagedItemStatus
    from importer.services.fingerprint import clean_html_for_model, structural_hash

    def _make(url, html, status=StagedItemStatus.COMPLETED, metadata=None, title="", **kwargs):
        return StagedItem.objects.create(
            site=kwargs.pop("target_site", site),
            url=url,
            title=title,
            raw_html=html,
            cleaned_html=clean_html_for_model(html),
            structural_hash=kwargs.pop("structural_hash", None) or structural_hash(html),
            metadata=metadata or {},
            status=status,
            **kwargs,
        )

    return _make
