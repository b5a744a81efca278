"""
Tests for crawl presets and crawl config resolution.
"""

import pytest

from importer.presets import (
    CRAWLER_PRESETS,
    UnknownPresetError,
    get_preset,
    list_presets,
    resolve_crawl_config,
)


class TestPresets:
    def test_list_presets_includes_ids(self):
        ids = [preset["id"] for preset in list_presets()]
        assert ids == list(CRAWLER_PRESETS)
        assert "shopify" in ids

    def test_get_preset_returns_copy(self):
        preset = get_preset("shopify")
        preset["rules"].clear()
        assert CRAWLER_PRESETS["shopify"]["rules"]

    def test_unknown_preset_raises(self):
        with pytest.raises(UnknownPresetError):
            get_preset("does-not-exist")

    def test_empty_name_is_no_preset(self):
        assert get_preset(None) == {}


class TestResolveCrawlConfig:
    def test_defaults(self, settings):
        settings.IMPORTER_DEFAULT_MAX_PAGES = 42
        resolved = resolve_crawl_config({})
        assert resolved == {
            "maxPages": 42,
            "priorityPatterns": [],
            "excludePatterns": [],
            "rules": [],
            "feedUrl": None,
        }

    def test_config_overrides_preset_key_by_key(self):
        resolved = resolve_crawl_config({"preset": "shopify", "maxPages": 10})
        assert resolved["maxPages"] == 10
        assert resolved["feedUrl"] == "/products.json"
        assert resolved["priorityPatterns"] == CRAWLER_PRESETS["shopify"]["priorityPatterns"]

    def test_max_pages_is_clamped(self):
        assert resolve_crawl_config({"maxPages": 0})["maxPages"] == 1
        assert resolve_crawl_config({"maxPages": "-5"})["maxPages"] == 1

    def test_invalid_max_pages_uses_default(self, settings):
        settings.IMPORTER_DEFAULT_MAX_PAGES = 7
        assert resolve_crawl_config({"maxPages": "lots"})["maxPages"] == 7
