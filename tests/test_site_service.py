"""
Tests for the import job lifecycle.
"""

from unittest.mock import MagicMock, patch

import pytest

from importer.models import ImportedSite, SiteStatus, StagedItem
from importer.presets import UnknownPresetError
from importer.services import site_service
from importer.services.site_service import InvalidSiteURL, SiteNotFound, SiteStateError


@pytest.mark.django_db
class TestCreateSite:
    def test_creates_pending_site(self):
        site = site_service.create_site("HTTPS://Shop.Example.com/#top", "shopify", {"maxPages": 10})

        assert site.status == SiteStatus.PENDING
        assert site.root_url == "https://shop.example.com/"
        assert site.config == {"maxPages": 10, "preset": "shopify"}

    def test_invalid_url(self):
        with pytest.raises(InvalidSiteURL):
            site_service.create_site("ftp://example.com")
        with pytest.raises(InvalidSiteURL):
            site_service.create_site("")
        assert ImportedSite.objects.count() == 0

    def test_unknown_preset(self):
        with pytest.raises(UnknownPresetError):
            site_service.create_site("https://example.com", "joomla")
        assert ImportedSite.objects.count() == 0

    def test_get_site(self, site):
        assert site_service.get_site(site.pk) == site
        assert site_service.get_site(str(site.pk)) == site

    def test_get_site_unknown_or_malformed(self):
        with pytest.raises(SiteNotFound):
            site_service.get_site("00000000-0000-0000-0000-000000000000")
        with pytest.raises(SiteNotFound):
            site_service.get_site("not-a-uuid")


@pytest.mark.django_db
class TestStopSite:
    @pytest.mark.parametrize("status", [SiteStatus.PENDING, SiteStatus.CRAWLING, SiteStatus.GENERATING_RULES])
    def test_stops_running_site(self, site, status):
        site.set_status(status)

        site_service.stop_site(site)

        site.refresh_from_db()
        assert site.status == SiteStatus.CANCELLED
        assert site.status_message == "Stopped by operator"

    @pytest.mark.parametrize("status", [SiteStatus.COMPLETED, SiteStatus.FAILED, SiteStatus.CANCELLED])
    def test_finished_site_cannot_be_stopped(self, site, status):
        site.set_status(status)
        with pytest.raises(SiteStateError):
            site_service.stop_site(site)


@pytest.mark.django_db
class TestRestartSite:
    @patch("importer.tasks.crawl_site.delay")
    def test_clears_items_and_rules(self, mock_delay, site, make_item):
        mock_delay.return_value = MagicMock(id="task-123")
        make_item("https://example.com/a", "<p>x</p>")
        site.page_count = 1
        site.ruleset = {"a" * 64: {"status": "accepted"}}
        site.save()

        task_id = site_service.restart_site(site)

        assert task_id == "task-123"
        mock_delay.assert_called_once_with(str(site.pk))
        site.refresh_from_db()
        assert site.status == SiteStatus.PENDING
        assert site.status_message == "Restarted"
        assert site.page_count == 0
        assert site.ruleset == {}
        assert StagedItem.objects.filter(site=site).count() == 0

    def test_delete_cascades_to_items(self, site, make_item):
        make_item("https://example.com/a", "<p>x</p>")

        site_service.delete_site(site)

        assert ImportedSite.objects.count() == 0
        assert StagedItem.objects.count() == 0


@pytest.mark.django_db
class TestRuleGenerationGuard:
    def test_site_without_items(self, site):
        with pytest.raises(SiteStateError, match="no crawled pages"):
            site_service.ensure_can_generate_rules(site)

    def test_running_site(self, site, make_item):
        make_item("https://example.com/a", "<p>x</p>")
        site.set_status(SiteStatus.CRAWLING)
        with pytest.raises(SiteStateError):
            site_service.ensure_can_generate_rules(site)

    @patch("importer.tasks.generate_rules.delay")
    def test_queues_task(self, mock_delay, site, make_item):
        mock_delay.return_value = MagicMock(id="task-9")
        make_item("https://example.com/a", "<p>x</p>")

        assert site_service.start_rule_generation(site) == "task-9"
        mock_delay.assert_called_once_with(str(site.pk))
        site.refresh_from_db()
        assert site.status == SiteStatus.PENDING
        assert site.status_message == "Rule generation queued"

    @patch("importer.tasks.generate_rules.delay")
    def test_queued_site_is_not_queued_again(self, mock_delay, site, make_item):
        make_item("https://example.com/a", "<p>x</p>")
        site.set_status(SiteStatus.PENDING, "Rule generation queued")

        with pytest.raises(SiteStateError):
            site_service.start_rule_generation(site)
        mock_delay.assert_not_called()
