"""
Management command to run a site import end to end in the foreground.

Usage:
    python manage.py import_site https://shop.example.com --preset shopify --max-pages 50
    python manage.py import_site https://example.com --generate-rules --migrate --migrate-products
"""

import json

from django.core.management.base import BaseCommand, CommandError

from importer.presets import UnknownPresetError
from importer.services import site_service


class Command(BaseCommand):
    help = "Crawl a site, optionally generate rules and migrate its content"

    def add_arguments(self, parser):
        parser.add_argument("root_url", help="Root URL of the site to import")
        parser.add_argument("--preset", help="Crawl preset name (see presets API)")
        parser.add_argument("--max-pages", type=int, help="Maximum pages to stage")
        parser.add_argument("--feed-url", help="Structured product feed URL")
        parser.add_argument(
            "--generate-rules",
            action="store_true",
            help="Infer region rules after the crawl",
        )
        parser.add_argument(
            "--migrate",
            action="store_true",
            help="Migrate all completed pages after the crawl",
        )
        parser.add_argument(
            "--migrate-products",
            action="store_true",
            help="Migrate all product items after the crawl",
        )
        parser.add_argument("--template-id", help="CMS template for created records")

    def handle(self, *args, **options):
        from importer import tasks

        config = {}
        if options["max_pages"]:
            config["maxPages"] = options["max_pages"]
        if options["feed_url"]:
            config["feedUrl"] = options["feed_url"]

        try:
            site = site_service.create_site(options["root_url"], options["preset"], config)
        except (site_service.InvalidSiteURL, UnknownPresetError) as e:
            raise CommandError(str(e))

        site_id = str(site.pk)
        self.stdout.write(f"Crawling {site.root_url} (site {site_id})...")
        crawl = tasks.crawl_site(site_id)
        self._report("Crawl", crawl)
        if crawl.get("status") != "completed":
            raise CommandError(f"Crawl ended with status {crawl.get('status')}: {crawl.get('error')}")

        if options["generate_rules"]:
            self.stdout.write("Generating rules...")
            self._report("Rules", tasks.generate_rules(site_id))

        if options["migrate"]:
            self.stdout.write("Migrating pages...")
            self._report("Pages", tasks.migrate_all(site_id, options["template_id"]))

        if options["migrate_products"]:
            self.stdout.write("Migrating products...")
            self._report("Products", tasks.migrate_products(site_id, options["template_id"]))

        self.stdout.write(self.style.SUCCESS(f"Import of {site.root_url} finished (site {site_id})"))

    def _report(self, label, result):
        summary = {k: v for k, v in result.items() if k != "results"}
        self.stdout.write(f"  {label}: {json.dumps(summary, default=str)}")
