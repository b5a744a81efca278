"""
Tests for the importer REST API and the health check.
"""

from unittest.mock import MagicMock, patch

import pytest
from django.urls import reverse
from rest_framework import status

from importer.models import ContentRecord, ImportedSite, SiteStatus, StagedItemStatus

GROUP_HASH = "e" * 64

PAGE = (
    "<html><head><title>{title}</title></head><body>"
    '<div id="content"><p>{title} body</p></div></body></html>'
)


def url_for(name, **kwargs):
    return reverse(f"importer_api:{name}", kwargs=kwargs)


@pytest.mark.django_db
class TestAuthentication:
    def test_requires_authentication(self, api_client):
        response = api_client.get(url_for("sites"))
        assert response.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN)

    def test_presets(self, auth_client):
        response = auth_client.get(url_for("presets"))

        assert response.status_code == status.HTTP_200_OK
        names = [p["id"] for p in response.data["presets"]]
        assert "shopify" in names


@pytest.mark.django_db
class TestSitesEndpoint:
    @patch("importer.tasks.crawl_site.delay")
    def test_create_queues_crawl(self, mock_delay, auth_client):
        mock_delay.return_value = MagicMock(id="task-1")

        response = auth_client.post(
            url_for("sites"),
            {"root_url": "https://shop.example.com", "preset": "shopify", "config": {"maxPages": 5}},
            format="json",
        )

        assert response.status_code == status.HTTP_202_ACCEPTED
        assert response.data["task_id"] == "task-1"
        assert response.data["site"]["status"] == SiteStatus.PENDING
        assert response.data["site"]["config"]["maxPages"] == 5
        site = ImportedSite.objects.get()
        mock_delay.assert_called_once_with(str(site.pk))

    @pytest.mark.parametrize("payload", [
        {},
        {"root_url": "not a url"},
        {"root_url": "https://example.com", "preset": "unknown"},
        {"root_url": "https://example.com", "config": ["maxPages"]},
    ])
    def test_create_rejects_bad_input(self, auth_client, payload):
        response = auth_client.post(url_for("sites"), payload, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "error" in response.data
        assert ImportedSite.objects.count() == 0

    def test_list_filters_by_status(self, auth_client, site):
        ImportedSite.objects.create(root_url="https://other.example.com", status=SiteStatus.FAILED)

        response = auth_client.get(url_for("sites"), {"status": SiteStatus.COMPLETED})

        assert response.status_code == status.HTTP_200_OK
        assert [s["id"] for s in response.data["results"]] == [str(site.pk)]

    def test_detail_and_delete(self, auth_client, site):
        response = auth_client.get(url_for("site_detail", site_id=site.pk))
        assert response.status_code == status.HTTP_200_OK
        assert response.data["root_url"] == "https://example.com"

        response = auth_client.delete(url_for("site_detail", site_id=site.pk))
        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert ImportedSite.objects.count() == 0

    def test_unknown_site(self, auth_client):
        response = auth_client.get(url_for("site_detail", site_id="00000000-0000-0000-0000-000000000000"))
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_stop_finished_site_is_rejected(self, auth_client, site):
        response = auth_client.post(url_for("stop_site", site_id=site.pk))
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_stop_running_site(self, auth_client, site):
        site.set_status(SiteStatus.CRAWLING)

        response = auth_client.post(url_for("stop_site", site_id=site.pk))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == SiteStatus.CANCELLED

    @patch("importer.tasks.crawl_site.delay")
    def test_restart(self, mock_delay, auth_client, site, make_item):
        mock_delay.return_value = MagicMock(id="task-2")
        make_item("https://example.com/a", PAGE.format(title="A"))

        response = auth_client.post(url_for("restart_site", site_id=site.pk))

        assert response.status_code == status.HTTP_202_ACCEPTED
        assert response.data["site"]["page_count"] == 0
        assert site.items.count() == 0


@pytest.mark.django_db
class TestItemsAndGroups:
    def test_items_filter(self, auth_client, site, make_item):
        make_item("https://example.com/a", PAGE.format(title="A"), structural_hash=GROUP_HASH)
        make_item("https://example.com/b", PAGE.format(title="B"), status=StagedItemStatus.PENDING)

        response = auth_client.get(url_for("site_items", site_id=site.pk), {"structural_hash": GROUP_HASH})

        assert response.status_code == status.HTTP_200_OK
        assert response.data["count"] == 1
        assert response.data["results"][0]["url"] == "https://example.com/a"

    def test_groups_include_rule_status(self, auth_client, site, make_item):
        make_item("https://example.com/a", PAGE.format(title="A"), structural_hash=GROUP_HASH)
        make_item("https://example.com/b", PAGE.format(title="B"), structural_hash=GROUP_HASH)
        site.ruleset = {GROUP_HASH: {"status": "accepted"}}
        site.save()

        response = auth_client.get(url_for("site_groups", site_id=site.pk))

        groups = response.data["groups"]
        assert len(groups) == 1
        assert groups[0]["count"] == 2
        assert groups[0]["rule_status"] == "accepted"


@pytest.mark.django_db
class TestRulesEndpoints:
    def test_generate_without_pages_is_rejected(self, auth_client, site):
        response = auth_client.post(url_for("generate_rules", site_id=site.pk))
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @patch("importer.tasks.generate_rules.delay")
    def test_generate_queues_task(self, mock_delay, auth_client, site, make_item):
        mock_delay.return_value = MagicMock(id="task-3")
        make_item("https://example.com/a", PAGE.format(title="A"))

        response = auth_client.post(url_for("generate_rules", site_id=site.pk))

        assert response.status_code == status.HTTP_202_ACCEPTED
        assert response.data["task_id"] == "task-3"

    def test_ruleset(self, auth_client, site):
        site.ruleset = {GROUP_HASH: {"status": "best_effort"}}
        site.save()

        response = auth_client.get(url_for("ruleset", site_id=site.pk))

        assert response.data["ruleset"] == {GROUP_HASH: {"status": "best_effort"}}

    def test_override_unknown_group(self, auth_client, site):
        response = auth_client.patch(
            url_for("override_region", site_id=site.pk, structural_hash=GROUP_HASH, key="content"),
            {"selector": "#content"},
            format="json",
        )
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_override_empty_selector(self, auth_client, site):
        response = auth_client.patch(
            url_for("override_region", site_id=site.pk, structural_hash=GROUP_HASH, key="content"),
            {"selector": "  "},
            format="json",
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_migration_rules_crud(self, auth_client, site):
        response = auth_client.post(
            url_for("migration_rules", site_id=site.pk),
            {"name": "Blog posts", "structural_hash": GROUP_HASH, "selector_map": {"main": ".post"}},
            format="json",
        )
        assert response.status_code == status.HTTP_200_OK
        rule_id = response.data["id"]

        response = auth_client.get(url_for("migration_rules", site_id=site.pk))
        assert [r["id"] for r in response.data["migration_rules"]] == [rule_id]

        response = auth_client.delete(url_for("migration_rule_detail", site_id=site.pk, rule_id=rule_id))
        assert response.status_code == status.HTTP_204_NO_CONTENT

        response = auth_client.delete(url_for("migration_rule_detail", site_id=site.pk, rule_id=rule_id))
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_migration_rule_selector_map_must_be_object(self, auth_client, site):
        response = auth_client.post(
            url_for("migration_rules", site_id=site.pk),
            {"name": "Bad", "selector_map": ["main"]},
            format="json",
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.django_db
class TestMigrateEndpoints:
    def test_migrate_item_ids(self, auth_client, site, make_item):
        item = make_item("https://example.com/a", PAGE.format(title="A"), title="A")

        response = auth_client.post(
            url_for("migrate", site_id=site.pk),
            {"item_ids": [item.id, 424242], "selector_map": {"main": "#content"}},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["succeeded"] == 1
        assert response.data["failed"] == 1
        assert ContentRecord.objects.get().data["main"] == "<p>A body</p>"

    @patch("importer.tasks.migrate_group.delay")
    def test_background_group_migration(self, mock_delay, auth_client, site):
        mock_delay.return_value = MagicMock(id="task-4")

        response = auth_client.post(
            url_for("migrate", site_id=site.pk),
            {"structural_hash": GROUP_HASH, "background": True},
            format="json",
        )

        assert response.status_code == status.HTTP_202_ACCEPTED
        mock_delay.assert_called_once_with(str(site.pk), GROUP_HASH, None, None)

    @pytest.mark.parametrize("payload", [
        {},
        {"item_ids": ["1"]},
        {"item_ids": [True]},
        {"all": True, "selector_map": "main"},
    ])
    def test_migrate_rejects_bad_input(self, auth_client, site, payload):
        response = auth_client.post(url_for("migrate", site_id=site.pk), payload, format="json")
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_migrate_products_reports_every_id(self, auth_client, site, make_item):
        page = make_item("https://example.com/about", PAGE.format(title="About"), metadata={"type": "page"})

        response = auth_client.post(
            url_for("migrate_products", site_id=site.pk), {"item_ids": [page.id]}, format="json"
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["results"][0]["success"] is False

    def test_migrate_with_unknown_rule(self, auth_client, site):
        response = auth_client.post(url_for("migrate_with_rule", site_id=site.pk, rule_id="missing"), {}, format="json")
        assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.django_db
class TestHealthCheck:
    @patch("importer.views.get_celery_worker_count", return_value=2)
    def test_healthy(self, mock_workers, api_client, site):
        site.set_status(SiteStatus.CRAWLING)

        response = api_client.get("/api/health/")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["cache"] == "connected"
        assert body["celery_workers"] == 2
        assert body["active_sites"] == 1
