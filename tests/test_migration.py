"""
Tests for page migration into CMS records.
"""

import httpx
import pytest

from importer.models import ContentRecord, MediaAsset, StagedItem, StagedItemStatus
from importer.services.cms import DatabaseCMSClient, build_search_index, to_decimal
from importer.services.media import MediaLocalizer
from importer.services.migration import (
    DEFAULT_TITLE,
    MigrationError,
    extract_fields,
    migrate_all,
    migrate_group,
    migrate_items,
    migrate_page,
    migrate_with_rule,
    resolve_title,
)
from importer.services.rule_store import upsert_migration_rule


GROUP_HASH = "d" * 64


def page_html(title, body):
    return (
        f"<html><head><title>{title}</title></head>"
        f"<body><header><nav><a href='/'>Home</a></nav></header>"
        f"{body}<footer><p>Footer</p></footer></body></html>"
    )


@pytest.fixture
def offline_localizer():
    """Localizer whose downloads all fail, so media URLs are kept."""
    with MediaLocalizer(transport=httpx.MockTransport(lambda request: httpx.Response(404))) as media:
        yield media


@pytest.fixture
def image_localizer(settings, tmp_path):
    settings.MEDIA_ROOT = tmp_path
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, content=b"GIF89a", headers={"content-type": "image/gif"})
    )
    with MediaLocalizer(transport=transport) as media:
        yield media


def about_page(text_length):
    body = f'<div id="content"><p>{"x" * text_length}</p></div>'
    return page_html("About Us | Example", body)


class TestExtractFields:
    def test_selector_map_fields(self):
        html = page_html(
            "T",
            '<h1 class="title">Hello</h1><div id="content"><p>Body</p></div>'
            '<div id="gallery"><img src="/a.jpg"><img src="https://cdn.example.com/b.jpg"></div>',
        )
        data = extract_fields(
            html,
            {
                "main": "#content",
                "title": "h1.title",
                "images": {"selector": "#gallery img", "attr": "src", "multiple": True},
                "hero": {"selector": "#gallery img", "attr": "src"},
                "missing": ".nothing",
            },
            "https://example.com/pages/about",
        )
        assert data == {
            "main": "<p>Body</p>",
            "title": "Hello",
            "images": ["https://example.com/a.jpg", "https://cdn.example.com/b.jpg"],
            "hero": "https://example.com/a.jpg",
        }

    def test_default_main_selector_uses_content_detection(self):
        html = page_html("T", f'<main><p>{"Long text. " * 20}</p></main>')
        data = extract_fields(html, {"main": "body"})
        assert data["main"].startswith("<p>Long text.")
        assert "Footer" not in data["main"]

    def test_unmatched_main_falls_back_to_body(self):
        html = "<html><body><p>Only</p></body></html>"
        assert extract_fields(html, {"main": "#content"})["main"] == "<p>Only</p>"


@pytest.mark.django_db
class TestResolveTitle:
    def test_title_sources(self, site):
        item = StagedItem(site=site, url="https://e.com/a", title="Item Title")
        assert resolve_title(item) == "Item Title"

        item = StagedItem(site=site, url="https://e.com/a", title="https://e.com/a",
                          metadata={"title": "Meta Title"})
        assert resolve_title(item) == "Meta Title"

        item = StagedItem(site=site, url="https://e.com/a", raw_html="<title>Doc</title>")
        assert resolve_title(item) == "Doc"

        item = StagedItem(site=site, url="https://e.com/a")
        assert resolve_title(item) == DEFAULT_TITLE


@pytest.mark.django_db
class TestMigratePage:
    selector_map = {"main": "#content"}

    def test_creates_record_and_marks_item(self, make_item, offline_localizer):
        item = make_item("https://example.com/about", about_page(200), title="About Us")

        outcome = migrate_page(item, self.selector_map, template_id="tpl-1", localizer=offline_localizer)

        record = ContentRecord.objects.get(pk=outcome.record_id)
        assert outcome.action == "created"
        assert record.module == "pages"
        assert record.title == "About Us"
        assert record.slug == "about-us"
        assert record.template_id == "tpl-1"
        assert record.data["main"] == f"<p>{'x' * 200}</p>"

        item.refresh_from_db()
        assert item.status == StagedItemStatus.MIGRATED
        assert item.content_id == record.id

    def test_shorter_duplicate_keeps_existing_content(self, make_item, offline_localizer):
        first = make_item("https://example.com/about", about_page(200), title="About Us")
        second = make_item("https://example.com/about-us", about_page(50), title="About Us")

        created = migrate_page(first, self.selector_map, localizer=offline_localizer)
        merged = migrate_page(second, self.selector_map, localizer=offline_localizer)

        assert merged.action == "unchanged"
        assert merged.record_id == created.record_id
        assert ContentRecord.objects.count() == 1
        assert ContentRecord.objects.get().data["main"] == f"<p>{'x' * 200}</p>"

        second.refresh_from_db()
        assert second.status == StagedItemStatus.MIGRATED
        assert second.content_id == created.record_id

    def test_longer_duplicate_replaces_content(self, make_item, offline_localizer):
        first = make_item("https://example.com/about", about_page(50), title="About Us")
        second = make_item("https://example.com/about-us", about_page(200), title="About Us")

        migrate_page(first, self.selector_map, localizer=offline_localizer)
        merged = migrate_page(second, self.selector_map, localizer=offline_localizer)

        assert merged.action == "updated"
        assert ContentRecord.objects.count() == 1
        assert ContentRecord.objects.get().data["main"] == f"<p>{'x' * 200}</p>"

    def test_item_without_html_raises(self, make_item, offline_localizer):
        item = make_item("https://example.com/empty", "", title="Empty")
        with pytest.raises(MigrationError):
            migrate_page(item, self.selector_map, localizer=offline_localizer)

    def test_media_is_localized(self, make_item, image_localizer):
        html = page_html(
            "Gallery",
            '<div id="content"><p>Text</p><img src="https://cdn.example.com/inline.gif"></div>'
            '<div id="gallery"><img src="/g1.gif"></div>',
        )
        item = make_item("https://example.com/gallery", html, title="Gallery")
        selector_map = {
            "main": "#content",
            "images": {"selector": "#gallery img", "attr": "src", "multiple": True, "type": "image"},
        }

        outcome = migrate_page(item, selector_map, localizer=image_localizer)

        data = ContentRecord.objects.get(pk=outcome.record_id).data
        assert "https://cdn.example.com/inline.gif" not in data["main"]
        assert 'src="/uploads/' in data["main"]
        assert len(data["images"]) == 1
        assert data["images"][0].startswith("/uploads/")

    def test_relative_media_in_main_is_localized(self, make_item, image_localizer):
        html = page_html(
            "Story",
            '<div id="content"><p>Text</p><img src="/files/hero.gif">'
            '<img src="//cdn.example.com/b.gif"><img src="inline/c.gif"></div>',
        )
        item = make_item("https://example.com/blog/story", html, title="Story")

        outcome = migrate_page(item, {"main": "#content"}, localizer=image_localizer)

        main = ContentRecord.objects.get(pk=outcome.record_id).data["main"]
        assert "/files/hero.gif" not in main
        assert "//cdn.example.com/b.gif" not in main
        assert "inline/c.gif" not in main
        assert main.count('src="/uploads/') == 3
        assert MediaAsset.objects.filter(original_url="https://example.com/blog/inline/c.gif").exists()


@pytest.mark.django_db
class TestBulkMigration:
    def test_report_has_one_result_per_requested_id(self, site, make_item, offline_localizer):
        ok = make_item("https://example.com/a", about_page(100), title="A")
        empty = make_item("https://example.com/b", "", title="B")

        report = migrate_items(site, [ok.id, empty.id, 999999], selector_map={"main": "#content"},
                               localizer=offline_localizer)

        assert len(report) == 3
        assert report.succeeded == 1
        assert report.failed == 2
        results = report.to_dict()["results"]
        assert results[0] == {"id": ok.id, "success": True, "created_id": ContentRecord.objects.get().id}
        assert results[1]["success"] is False
        assert "no HTML" in results[1]["error"]
        assert results[2] == {"id": 999999, "success": False, "error": "Item not found"}

    def test_migrating_twice_creates_no_duplicate(self, site, make_item, offline_localizer):
        item = make_item("https://example.com/a", about_page(100), title="A")

        first = migrate_items(site, [item.id], localizer=offline_localizer)
        second = migrate_items(site, [item.id], localizer=offline_localizer)

        assert first.succeeded == second.succeeded == 1
        assert ContentRecord.objects.count() == 1

    def test_items_of_other_sites_are_not_found(self, site, make_item, offline_localizer):
        from importer.models import ImportedSite

        other = ImportedSite.objects.create(root_url="https://other.example.com")
        foreign = make_item("https://other.example.com/a", about_page(10), target_site=other)

        report = migrate_items(site, [foreign.id], localizer=offline_localizer)
        assert report.to_dict()["results"][0]["error"] == "Item not found"

    def test_group_uses_inferred_selector_map(self, site, make_item, offline_localizer):
        html = page_html("Doc", '<h1 class="t">Heading</h1><div id="content"><p>Body</p></div>')
        make_item("https://example.com/a", html, title="A", structural_hash=GROUP_HASH)
        make_item("https://example.com/b", html, title="B", structural_hash=GROUP_HASH)
        make_item("https://example.com/other", html, title="Other")
        site.ruleset = {GROUP_HASH: {"selector_map": {"main": "#content", "heading": "h1.t"}}}
        site.save()

        report = migrate_group(site, GROUP_HASH, localizer=offline_localizer)

        assert report.succeeded == 2
        assert set(ContentRecord.objects.values_list("title", flat=True)) == {"A", "B"}
        assert ContentRecord.objects.get(title="A").data == {"main": "<p>Body</p>", "heading": "Heading"}

    def test_migrate_all_skips_pending_and_migrated(self, site, make_item, offline_localizer):
        make_item("https://example.com/a", about_page(10), title="A")
        make_item("https://example.com/b", about_page(10), title="B", status=StagedItemStatus.PENDING)
        make_item("https://example.com/c", about_page(10), title="C", status=StagedItemStatus.MIGRATED)

        report = migrate_all(site, selector_map={"main": "#content"}, localizer=offline_localizer)

        assert len(report) == 1
        assert ContentRecord.objects.get().title == "A"

    def test_migrate_with_rule(self, site, make_item, offline_localizer):
        html = page_html("Doc", '<div class="copy"><p>Rule body</p></div>')
        item = make_item("https://example.com/a", html, title="A", structural_hash=GROUP_HASH)
        rule = upsert_migration_rule(site, {
            "name": "Copy pages",
            "structural_hash": GROUP_HASH,
            "template_id": "tpl-copy",
            "selector_map": {"main": ".copy"},
        })

        report = migrate_with_rule(site, rule["id"], localizer=offline_localizer)

        assert report.succeeded == 1
        record = ContentRecord.objects.get()
        assert record.template_id == "tpl-copy"
        assert record.data["main"] == "<p>Rule body</p>"
        item.refresh_from_db()
        assert item.content_id == record.id

    def test_rule_without_group_needs_item_ids(self, site, offline_localizer):
        rule = upsert_migration_rule(site, {"name": "Loose"})
        with pytest.raises(MigrationError):
            migrate_with_rule(site, rule["id"], localizer=offline_localizer)


@pytest.mark.django_db
class TestDatabaseCMSClient:
    def test_unique_slug(self):
        cms = DatabaseCMSClient()
        cms.create("pages", "About Us", cms.unique_slug("About Us", "pages"), {})
        cms.create("pages", "About Us", cms.unique_slug("About Us", "pages"), {})

        assert cms.unique_slug("About Us", "pages") == "about-us-2"
        assert cms.unique_slug("About Us", "products") == "about-us"
        assert cms.unique_slug("", "pages") == "untitled"

    def test_search_index(self):
        index = build_search_index("Blue Shirt", {"main": "<p>A blue <b>cotton</b> shirt</p>", "images": ["x"]})
        assert index.split() == ["Blue", "Shirt", "blue", "cotton", "shirt"]

    def test_to_decimal(self):
        assert str(to_decimal("19.9")) == "19.90"
        assert to_decimal("abc") is None
        assert to_decimal(None) is None
