"""
Tests for first-pass metadata extraction during crawl.
"""

import json

from importer.services.metadata_extractor import (
    ExtractionRule,
    MetadataExtractor,
    SetConst,
    SetField,
    SetType,
    extract_metadata,
    parse_rules,
)


def json_ld(payload):
    return f'<script type="application/ld+json">{json.dumps(payload)}</script>'


PRODUCT_LD = {
    "@context": "https://schema.org",
    "@type": "Product",
    "name": "LD Shirt",
    "description": "From JSON-LD",
    "sku": "SHIRT-1",
    "image": ["/img/a.jpg", {"url": "https://cdn.example.com/b.jpg"}],
    "offers": [
        {"price": "19.99", "sku": "SHIRT-1-S", "name": "Small",
         "availability": "https://schema.org/InStock"},
        {"price": "21.50", "sku": "SHIRT-1-L", "name": "Large",
         "availability": "https://schema.org/OutOfStock"},
    ],
}


class TestExtractionRule:
    """Parsing stored rules into tagged actions."""

    def test_from_dict_actions(self):
        assert ExtractionRule.from_dict({"action": "setType", "value": "product"}).action == SetType("product")
        assert ExtractionRule.from_dict({"action": "setField", "value": "sku"}).action == SetField("sku")
        assert ExtractionRule.from_dict(
            {"action": "setConst", "value": "sku:ABC:1"}
        ).action == SetConst("sku", "ABC:1")

    def test_malformed_rules_are_dropped(self):
        rules = parse_rules([
            {"action": "explode", "value": "x"},
            {"action": "setField", "value": "not_a_field"},
            {"action": "setConst", "value": "no-separator"},
            {"action": "setType", "value": ""},
            "not a dict",
            {"action": "setType", "value": "product", "selector": ".p"},
        ])
        assert len(rules) == 1
        assert rules[0].selector == ".p"

    def test_to_dict_round_trips_stored_form(self):
        data = {"action": "setConst", "value": "sku:X", "urlPattern": "^/p/"}
        assert ExtractionRule.from_dict(data).to_dict() == data


class TestPrecedence:
    """JSON-LD over OpenGraph over rules; title element last."""

    def test_json_ld_wins_over_meta_and_rules(self):
        html = (
            "<html><head><title>Page Title</title>"
            '<meta property="og:title" content="OG Title">'
            '<meta property="og:description" content="OG description">'
            f"{json_ld(PRODUCT_LD)}</head>"
            '<body><h1 class="t">Rule Title</h1></body></html>'
        )
        rules = [{"selector": ".t", "action": "setField", "value": "title"}]
        data = extract_metadata(html, rules, "https://shop.example.com/products/shirt")

        assert data["title"] == "LD Shirt"
        assert data["description"] == "From JSON-LD"
        assert data["type"] == "product"
        assert data["sku"] == "SHIRT-1"
        assert data["price"] == 19.99
        assert data["images"] == [
            "https://shop.example.com/img/a.jpg",
            "https://cdn.example.com/b.jpg",
        ]
        assert [v["sku"] for v in data["variants"]] == ["SHIRT-1-S", "SHIRT-1-L"]
        assert [v["availability"] for v in data["variants"]] == [1, 0]

    def test_og_wins_over_rules(self):
        html = (
            '<html><head><meta property="og:title" content="OG Title"></head>'
            '<body><h1 class="t">Rule Title</h1></body></html>'
        )
        rules = [{"selector": ".t", "action": "setField", "value": "title"}]
        assert extract_metadata(html, rules)["title"] == "OG Title"

    def test_rule_wins_over_title_element(self):
        html = '<html><head><title>Doc</title></head><body><h1 class="t">Heading</h1></body></html>'
        rules = [{"selector": ".t", "action": "setField", "value": "title"}]
        assert extract_metadata(html, rules)["title"] == "Heading"

    def test_title_element_is_fallback(self):
        assert extract_metadata("<html><head><title>Doc</title></head><body></body></html>")["title"] == "Doc"

    def test_later_rules_win(self):
        html = '<body><span class="a">First</span><span class="b">Second</span></body>'
        rules = [
            {"selector": ".a", "action": "setField", "value": "sku"},
            {"selector": ".b", "action": "setField", "value": "sku"},
        ]
        assert extract_metadata(html, rules)["sku"] == "Second"

    def test_graph_article(self):
        html = json_ld({"@graph": [{"@type": "BlogPosting", "headline": "Post", "image": "https://x.com/p.png"}]})
        data = extract_metadata(f"<html><head>{html}</head><body></body></html>")
        assert data["title"] == "Post"
        assert data["type"] == "page"
        assert data["images"] == ["https://x.com/p.png"]


class TestRules:
    """Rule conditions and actions."""

    def test_rule_needs_both_url_pattern_and_selector(self):
        rules = [{"urlPattern": "^/products/", "selector": "form.cart", "action": "setType", "value": "product"}]
        with_form = '<body><form class="cart"></form></body>'
        without_form = "<body><p>x</p></body>"

        assert extract_metadata(with_form, rules, "https://e.com/products/a")["type"] == "product"
        assert extract_metadata(with_form, rules, "https://e.com/pages/a")["type"] == "page"
        assert extract_metadata(without_form, rules, "https://e.com/products/a")["type"] == "page"

    def test_invalid_regex_and_selector_are_no_ops(self):
        rules = [
            {"urlPattern": "([unclosed", "action": "setType", "value": "product"},
            {"selector": "div[[[", "action": "setType", "value": "product"},
        ]
        data = extract_metadata("<body><div>x</div></body>", rules, "https://e.com/a")
        assert data["type"] == "page"

    def test_rule_without_conditions_never_applies(self):
        rules = [{"action": "setType", "value": "product"}]
        assert extract_metadata("<body></body>", rules, "https://e.com/")["type"] == "page"

    def test_set_const(self):
        rules = [{"urlPattern": "/gift-card", "action": "setConst", "value": "sku:GIFT"}]
        assert extract_metadata("<body></body>", rules, "https://e.com/gift-card")["sku"] == "GIFT"

    def test_numeric_fields_are_cleaned(self):
        rules = [{"selector": ".price", "action": "setField", "value": "price"}]
        data = extract_metadata('<body><span class="price">$1,299.00</span></body>', rules)
        assert data["price"] == 1299.0

    def test_image_rules_dedupe_and_absolutize(self):
        html = (
            '<body><div class="gallery">'
            '<img src="/a.jpg"><img src="/b.jpg"><img src="/a.jpg">'
            "</div></body>"
        )
        rules = [{"selector": ".gallery img", "action": "setField", "value": "images"}]
        data = extract_metadata(html, rules, "https://e.com/p/1")
        assert data["images"] == ["https://e.com/a.jpg", "https://e.com/b.jpg"]


class TestRobustness:
    """Extraction never raises and always returns the full shape."""

    def test_malformed_json_ld_is_skipped(self):
        html = '<html><head><script type="application/ld+json">{not json</script><title>T</title></head></html>'
        data = MetadataExtractor().extract(html, "https://e.com/")
        assert data["title"] == "T"

    def test_empty_document_has_full_shape(self):
        data = extract_metadata("")
        for key in ("title", "description", "images", "price", "sku", "type", "variants", "options"):
            assert key in data
        assert data["price"] is None
        assert data["type"] == "page"

    def test_canonical_is_absolute(self):
        html = '<html><head><link rel="canonical" href="/products/a"></head></html>'
        assert extract_metadata(html, url="https://e.com/collections/x/products/a")["canonical"] == (
            "https://e.com/products/a"
        )
