"""
Django admin configuration for the Site Import Service.

Provides interfaces for reviewing import jobs, staged items, inferred
rule sets, localized media and migrated content.
"""

from django.contrib import admin
from django.utils.html import format_html

from importer.models import (
    AIResponseCache,
    ContentRecord,
    ContentVariant,
    ImportedSite,
    MediaAsset,
    SiteStatus,
    StagedItem,
    StagedItemStatus,
)
from importer.services import site_service

STATUS_COLORS = {
    SiteStatus.PENDING: "#ffc107",
    SiteStatus.CRAWLING: "#007bff",
    SiteStatus.COMPLETED: "#28a745",
    SiteStatus.CANCELLED: "#6c757d",
    SiteStatus.FAILED: "#dc3545",
    SiteStatus.GENERATING_RULES: "#17a2b8",
    SiteStatus.RULES_GENERATED: "#20c997",
    StagedItemStatus.MIGRATED: "#6f42c1",
}


def _badge(value: str, label: str):
    color = STATUS_COLORS.get(value, "#6c757d")
    return format_html(
        '<span style="background-color: {}; color: white; '
        'padding: 2px 8px; border-radius: 4px;">{}</span>',
        color,
        label,
    )


class StagedItemInline(admin.TabularInline):
    model = StagedItem
    extra = 0
    fields = ["url", "title", "structural_hash", "item_type", "status"]
    readonly_fields = fields
    show_change_link = True
    can_delete = False
    max_num = 0


@admin.register(ImportedSite)
class ImportedSiteAdmin(admin.ModelAdmin):
    """Admin interface for import jobs."""

    list_display = [
        "root_url",
        "status_badge",
        "page_count",
        "rule_group_count",
        "created_at",
    ]
    list_filter = ["status"]
    search_fields = ["root_url"]
    readonly_fields = ["id", "page_count", "ruleset", "created_at", "updated_at"]
    ordering = ["-created_at"]

    fieldsets = (
        ("Site", {
            "fields": ("id", "root_url", "status", "status_message"),
        }),
        ("Configuration", {
            "fields": ("config",),
        }),
        ("Results", {
            "fields": ("page_count", "ruleset"),
            "classes": ("collapse",),
        }),
        ("Metadata", {
            "fields": ("created_at", "updated_at"),
            "classes": ("collapse",),
        }),
    )

    actions = ["start_crawl", "generate_rules", "stop_import"]

    def status_badge(self, obj):
        """Display status as colored badge."""
        return _badge(obj.status, obj.get_status_display())
    status_badge.short_description = "Status"
    status_badge.admin_order_field = "status"

    def rule_group_count(self, obj):
        return len(obj.ruleset or {})
    rule_group_count.short_description = "Rule groups"

    @admin.action(description="Start crawl for selected sites")
    def start_crawl(self, request, queryset):
        count = 0
        for site in queryset:
            site_service.start_crawl(site)
            count += 1
        self.message_user(request, f"Queued {count} crawl(s).")

    @admin.action(description="Generate rules for selected sites")
    def generate_rules(self, request, queryset):
        queued = 0
        for site in queryset:
            try:
                site_service.start_rule_generation(site)
                queued += 1
            except site_service.SiteStateError as e:
                self.message_user(request, f"{site.root_url}: {e}", level="warning")
        self.message_user(request, f"Queued rule generation for {queued} site(s).")

    @admin.action(description="Stop selected imports")
    def stop_import(self, request, queryset):
        stopped = 0
        for site in queryset:
            try:
                site_service.stop_site(site)
                stopped += 1
            except site_service.SiteStateError:
                continue
        self.message_user(request, f"Stopped {stopped} import(s).")


@admin.register(StagedItem)
class StagedItemAdmin(admin.ModelAdmin):
    """Admin interface for staged (crawled) items."""

    list_display = ["url", "title", "short_hash", "item_type", "status_badge", "created_at"]
    list_filter = ["status", "item_type", "site"]
    search_fields = ["url", "title", "structural_hash"]
    readonly_fields = ["site", "structural_hash", "content_id", "created_at"]
    raw_id_fields = ["site"]

    fieldsets = (
        ("Item", {
            "fields": ("site", "url", "title", "item_type", "status", "content_id"),
        }),
        ("Extraction", {
            "fields": ("structural_hash", "metadata"),
        }),
        ("HTML", {
            "fields": ("cleaned_html", "raw_html"),
            "classes": ("collapse",),
        }),
        ("Metadata", {
            "fields": ("created_at",),
        }),
    )

    def short_hash(self, obj):
        return obj.structural_hash[:12] if obj.structural_hash else "-"
    short_hash.short_description = "Structure"
    short_hash.admin_order_field = "structural_hash"

    def status_badge(self, obj):
        return _badge(obj.status, obj.get_status_display())
    status_badge.short_description = "Status"
    status_badge.admin_order_field = "status"


@admin.register(AIResponseCache)
class AIResponseCacheAdmin(admin.ModelAdmin):
    list_display = ["prompt_hash", "model", "created_at"]
    search_fields = ["prompt_hash"]
    readonly_fields = ["prompt_hash", "response", "model", "created_at"]


@admin.register(MediaAsset)
class MediaAssetAdmin(admin.ModelAdmin):
    list_display = ["path", "original_url", "mime_type", "size", "created_at"]
    search_fields = ["original_url", "path", "alt_text"]
    readonly_fields = ["created_at"]


class ContentVariantInline(admin.TabularInline):
    model = ContentVariant
    extra = 0
    fields = ["sku", "title", "price", "inventory_quantity", "option1_value", "option2_value", "option3_value"]


@admin.register(ContentRecord)
class ContentRecordAdmin(admin.ModelAdmin):
    """Admin interface for migrated CMS content."""

    list_display = ["title", "module", "slug", "sku", "price", "variant_count", "updated_at"]
    list_filter = ["module"]
    search_fields = ["title", "slug", "sku", "search_index"]
    readonly_fields = ["search_index", "created_at", "updated_at"]
    inlines = [ContentVariantInline]

    def variant_count(self, obj):
        return obj.variants.count()
    variant_count.short_description = "Variants"
