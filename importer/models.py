"""
Django models for the Site Import Service.

Models: ImportedSite, StagedItem, AIResponseCache, MediaAsset,
        ContentRecord, ContentVariant

ImportedSite and StagedItem hold one crawl job and its staged pages.
The structural rule set inferred for a site lives on ImportedSite.ruleset,
keyed by structural hash. ContentRecord / ContentVariant are the default
database-backed CMS the migration engine writes into.
"""

import uuid

from django.db import models
from django.utils import timezone


class SiteStatus(models.TextChoices):
    """Lifecycle status of an imported site."""

    PENDING = "pending", "Pending"
    CRAWLING = "crawling", "Crawling"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"
    FAILED = "failed", "Failed"
    GENERATING_RULES = "generating_rules", "Generating Rules"
    RULES_GENERATED = "rules_generated", "Rules Generated"


class StagedItemStatus(models.TextChoices):
    """Status of a staged (crawled) item."""

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    MIGRATED = "migrated", "Migrated"


class ItemType(models.TextChoices):
    """Page classification assigned by template inference."""

    PAGE = "page", "Page"
    PRODUCT = "product", "Product"
    OTHER = "other", "Other"


class ImportedSite(models.Model):
    """
    A single site import job.

    ``config`` holds the crawl options (preset, maxPages, priorityPatterns,
    excludePatterns, rules, feedUrl) and the named ``migration_rules``.
    ``ruleset`` maps structural hash -> inferred RuleSet entry.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    root_url = models.URLField(max_length=2000)
    status = models.CharField(
        max_length=20, choices=SiteStatus.choices, default=SiteStatus.PENDING
    )
    status_message = models.TextField(blank=True)

    config = models.JSONField(default=dict, blank=True)
    ruleset = models.JSONField(default=dict, blank=True)
    page_count = models.IntegerField(default=0)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "imported_sites"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["status", "created_at"], name="imported_si_status_6f1c2a_idx"
            ),
        ]

    def __str__(self):
        return f"{self.root_url} ({self.status})"

    @property
    def is_cancelled(self) -> bool:
        return self.status == SiteStatus.CANCELLED

    def start(self) -> bool:
        """
        Mark the crawl as running.

        Returns False, leaving the row untouched, when the site was
        cancelled before the crawl picked it up.
        """
        now = timezone.now()
        updated = (
            ImportedSite.objects.filter(pk=self.pk)
            .exclude(status=SiteStatus.CANCELLED)
            .update(status=SiteStatus.CRAWLING, status_message="", updated_at=now)
        )
        if not updated:
            self.status = SiteStatus.CANCELLED
            return False
        self.status = SiteStatus.CRAWLING
        self.status_message = ""
        self.updated_at = now
        return True

    def complete(self, success: bool = True, error_message: str = None):
        """Mark the crawl as completed or failed."""
        self.status = SiteStatus.COMPLETED if success else SiteStatus.FAILED
        if error_message:
            self.status_message = error_message
        self.save(update_fields=["status", "status_message", "updated_at"])

    def set_status(self, status: str, message: str = ""):
        self.status = status
        self.status_message = message
        self.save(update_fields=["status", "status_message", "updated_at"])

    @property
    def migration_rules(self):
        return list((self.config or {}).get("migration_rules", []))


class StagedItem(models.Model):
    """
    One crawled URL staged for template inference and migration.

    ``cleaned_html`` is the reduced markup sent to the layout model and used
    for selector validation. ``structural_hash`` is computed locally from the
    DOM skeleton, never by the model.
    """

    site = models.ForeignKey(
        ImportedSite, on_delete=models.CASCADE, related_name="items"
    )
    url = models.URLField(max_length=2000)
    title = models.CharField(max_length=500, blank=True)

    raw_html = models.TextField(blank=True)
    cleaned_html = models.TextField(blank=True)
    structural_hash = models.CharField(max_length=64, blank=True, db_index=True)

    item_type = models.CharField(
        max_length=20, choices=ItemType.choices, blank=True
    )
    metadata = models.JSONField(default=dict, blank=True)
    status = models.CharField(
        max_length=20,
        choices=StagedItemStatus.choices,
        default=StagedItemStatus.PENDING,
    )
    content_id = models.BigIntegerField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "staged_items"
        ordering = ["id"]
        constraints = [
            models.UniqueConstraint(
                fields=["site", "url"], name="unique_staged_url_per_site"
            ),
        ]
        indexes = [
            models.Index(
                fields=["site", "status"], name="staged_item_site_id_3b8e41_idx"
            ),
            models.Index(
                fields=["site", "structural_hash"],
                name="staged_item_site_id_9d2f07_idx",
            ),
        ]

    def __str__(self):
        return self.url[:100]

    @property
    def is_product(self) -> bool:
        return (self.metadata or {}).get("type") == ItemType.PRODUCT

    def mark_migrated(self, content_id: int):
        self.status = StagedItemStatus.MIGRATED
        self.content_id = content_id
        self.save(update_fields=["status", "content_id"])


class AIResponseCache(models.Model):
    """
    Content-addressed cache of layout-model responses.

    ``prompt_hash`` is SHA-256 over ``system|user|model``.
    """

    prompt_hash = models.CharField(max_length=64, unique=True)
    response = models.JSONField(default=dict)
    model = models.CharField(max_length=100, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "ai_response_cache"

    def __str__(self):
        return f"{self.model}:{self.prompt_hash[:12]}"


class MediaAsset(models.Model):
    """A remote image or video downloaded into local media storage."""

    original_url = models.URLField(max_length=2000, unique=True)
    path = models.CharField(max_length=500)
    mime_type = models.CharField(max_length=100, blank=True)
    size = models.IntegerField(default=0)
    alt_text = models.CharField(max_length=500, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "media_assets"
        ordering = ["-created_at"]

    def __str__(self):
        return self.path


class ContentRecord(models.Model):
    """
    A CMS content entry created by migration.

    ``module`` is the content collection ("pages", "products").
    """

    module = models.CharField(max_length=50, db_index=True)
    title = models.CharField(max_length=500)
    slug = models.SlugField(max_length=255)
    data = models.JSONField(default=dict, blank=True)
    search_index = models.TextField(blank=True)
    template_id = models.CharField(max_length=100, blank=True)

    sku = models.CharField(max_length=100, blank=True)
    price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "content_records"
        ordering = ["id"]
        constraints = [
            models.UniqueConstraint(
                fields=["module", "slug"], name="unique_content_slug_per_module"
            ),
        ]
        indexes = [
            models.Index(
                fields=["module", "title"], name="content_rec_module_5a7c19_idx"
            ),
        ]

    def __str__(self):
        return f"[{self.module}] {self.title}"


class ContentVariant(models.Model):
    """A purchasable variant of a product ContentRecord."""

    record = models.ForeignKey(
        ContentRecord, on_delete=models.CASCADE, related_name="variants"
    )
    sku = models.CharField(max_length=100, unique=True)
    title = models.CharField(max_length=500, blank=True)
    price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    inventory_quantity = models.IntegerField(default=0)

    option1_name = models.CharField(max_length=100, blank=True)
    option1_value = models.CharField(max_length=255, blank=True)
    option2_name = models.CharField(max_length=100, blank=True)
    option2_value = models.CharField(max_length=255, blank=True)
    option3_name = models.CharField(max_length=100, blank=True)
    option3_value = models.CharField(max_length=255, blank=True)

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "content_variants"
        ordering = ["id"]

    def __str__(self):
        return self.sku

    @property
    def option_values(self):
        return tuple(
            v for v in (self.option1_value, self.option2_value, self.option3_value) if v
        )
