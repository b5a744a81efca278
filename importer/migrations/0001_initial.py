"""
Migration: Initial schema for the site importer.

Creates imported sites, staged items, the model response cache,
localized media and the database-backed CMS content tables.
"""

import uuid
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="ImportedSite",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("root_url", models.URLField(max_length=2000)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("crawling", "Crawling"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                            ("failed", "Failed"),
                            ("generating_rules", "Generating Rules"),
                            ("rules_generated", "Rules Generated"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("status_message", models.TextField(blank=True)),
                ("config", models.JSONField(blank=True, default=dict)),
                ("ruleset", models.JSONField(blank=True, default=dict)),
                ("page_count", models.IntegerField(default=0)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "imported_sites",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="imported_si_status_6f1c2a_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="StagedItem",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("url", models.URLField(max_length=2000)),
                ("title", models.CharField(blank=True, max_length=500)),
                ("raw_html", models.TextField(blank=True)),
                ("cleaned_html", models.TextField(blank=True)),
                (
                    "structural_hash",
                    models.CharField(blank=True, db_index=True, max_length=64),
                ),
                (
                    "item_type",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("page", "Page"),
                            ("product", "Product"),
                            ("other", "Other"),
                        ],
                        max_length=20,
                    ),
                ),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("completed", "Completed"),
                            ("migrated", "Migrated"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("content_id", models.BigIntegerField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "site",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="importer.importedsite",
                    ),
                ),
            ],
            options={
                "db_table": "staged_items",
                "ordering": ["id"],
                "indexes": [
                    models.Index(
                        fields=["site", "status"],
                        name="staged_item_site_id_3b8e41_idx",
                    ),
                    models.Index(
                        fields=["site", "structural_hash"],
                        name="staged_item_site_id_9d2f07_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("site", "url"), name="unique_staged_url_per_site"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="AIResponseCache",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("prompt_hash", models.CharField(max_length=64, unique=True)),
                ("response", models.JSONField(default=dict)),
                ("model", models.CharField(blank=True, max_length=100)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "ai_response_cache",
            },
        ),
        migrations.CreateModel(
            name="MediaAsset",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("original_url", models.URLField(max_length=2000, unique=True)),
                ("path", models.CharField(max_length=500)),
                ("mime_type", models.CharField(blank=True, max_length=100)),
                ("size", models.IntegerField(default=0)),
                ("alt_text", models.CharField(blank=True, max_length=500)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "media_assets",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="ContentRecord",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("module", models.CharField(db_index=True, max_length=50)),
                ("title", models.CharField(max_length=500)),
                ("slug", models.SlugField(max_length=255)),
                ("data", models.JSONField(blank=True, default=dict)),
                ("search_index", models.TextField(blank=True)),
                ("template_id", models.CharField(blank=True, max_length=100)),
                ("sku", models.CharField(blank=True, max_length=100)),
                (
                    "price",
                    models.DecimalField(
                        blank=True, decimal_places=2, max_digits=12, null=True
                    ),
                ),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "content_records",
                "ordering": ["id"],
                "indexes": [
                    models.Index(
                        fields=["module", "title"],
                        name="content_rec_module_5a7c19_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("module", "slug"),
                        name="unique_content_slug_per_module",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ContentVariant",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("sku", models.CharField(max_length=100, unique=True)),
                ("title", models.CharField(blank=True, max_length=500)),
                (
                    "price",
                    models.DecimalField(
                        blank=True, decimal_places=2, max_digits=12, null=True
                    ),
                ),
                ("inventory_quantity", models.IntegerField(default=0)),
                ("option1_name", models.CharField(blank=True, max_length=100)),
                ("option1_value", models.CharField(blank=True, max_length=255)),
                ("option2_name", models.CharField(blank=True, max_length=100)),
                ("option2_value", models.CharField(blank=True, max_length=255)),
                ("option3_name", models.CharField(blank=True, max_length=100)),
                ("option3_value", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "record",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="variants",
                        to="importer.contentrecord",
                    ),
                ),
            ],
            options={
                "db_table": "content_variants",
                "ordering": ["id"],
            },
        ),
    ]
