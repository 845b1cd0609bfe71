import logging
import xml.etree.ElementTree as ElementTree
from datetime import datetime, time

import requests
from django.core.management.base import BaseCommand, CommandError
from django.db import DatabaseError
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from django_css_coverage.analyzer import analyze_url, store_report
from django_css_coverage.client import CoverageServiceClient
from django_css_coverage.exceptions import CSSCoverageError
from django_css_coverage.export import write_csv
from django_css_coverage.models import CSSCoverageReport

logger = logging.getLogger(__name__)

SITEMAP_NS = {"sm": "http://www.sitemaps.org/schemas/sitemap/0.9"}


class Command(BaseCommand):
    help = "Analyze CSS coverage for URLs from sitemap.xml and store reports in database"

    def add_arguments(self, parser):
        parser.add_argument(
            "sitemap_url", type=str, help="URL or file path to the sitemap.xml file"
        )
        parser.add_argument(
            "--service-url",
            type=str,
            help="URL of the CSS coverage service (defaults to CSS_COVERAGE_SERVICE_URL)",
        )
        parser.add_argument(
            "--force",
            action="store_true",
            help="Force re-analysis of all URLs regardless of last modified dates",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be processed without making changes",
        )
        parser.add_argument(
            "--limit",
            type=int,
            help="Limit the number of URLs to process (useful for testing)",
        )
        parser.add_argument(
            "--export",
            type=str,
            help="Write the processed reports to this CSV file",
        )

    def handle(self, *args, **options):
        sitemap_url = options["sitemap_url"]
        force = options["force"]
        dry_run = options["dry_run"]
        limit = options["limit"]
        export_path = options["export"]

        if dry_run:
            self.stdout.write(
                self.style.WARNING("Running in dry-run mode - no changes will be made")
            )

        client = CoverageServiceClient(service_url=options["service_url"])
        if not dry_run:
            health = client.check_health()
            if health is None:
                raise CommandError(
                    f"CSS coverage service not available at {client.service_url}"
                )
            features = ", ".join(health.get("features", []))
            self.stdout.write(
                self.style.SUCCESS(f"Service available with features: {features}")
            )

        urls_data = self.parse_sitemap(sitemap_url)

        if not urls_data:
            self.stdout.write(self.style.WARNING("No URLs found in sitemap"))
            return

        if limit:
            urls_data = urls_data[:limit]
            self.stdout.write(self.style.WARNING(f"Processing limited to {limit} URLs"))

        processed = 0
        skipped = 0
        errors = 0
        results = {}

        for i, url_data in enumerate(urls_data, 1):
            url = url_data["loc"]
            lastmod = url_data.get("lastmod")

            self.stdout.write(f"[{i}/{len(urls_data)}] Processing: {url}")

            if not self.should_process_url(url, lastmod, force):
                skipped += 1
                self.stdout.write(f"Skipping (up to date): {url}")
                continue

            if dry_run:
                self.stdout.write(f"Would process: {url}")
                processed += 1
                continue

            result = self.analyze(url, lastmod, client)
            if result is None:
                errors += 1
            else:
                processed += 1
                results[url] = result

        self.stdout.write(
            self.style.SUCCESS(
                f"Complete! Processed: {processed}, Skipped: {skipped}, Errors: {errors}"
            )
        )

        if export_path and results:
            with open(export_path, "w", newline="", encoding="utf-8") as f:
                rows = write_csv(results, f)
            self.stdout.write(self.style.SUCCESS(f"Exported {rows} rows to {export_path}"))

    def analyze(self, url, lastmod, client):
        """Analyze one URL and store its report. Returns the result or None."""
        try:
            result = analyze_url(url, client=client)
            _, created = store_report(url, result, lastmod)
        except (CSSCoverageError, DatabaseError) as e:
            logger.error(f"Failed to analyze CSS coverage for {url}", exc_info=True)
            self.stdout.write(self.style.ERROR(f"Failed to analyze {url}: {e!s}"))
            return None

        action = "Created" if created else "Updated"
        self.stdout.write(
            self.style.SUCCESS(
                f"{action} CSS coverage report for {url} "
                f"({result.used_bytes}/{result.total_bytes} bytes, "
                f"{result.usage_percent:.2f}% used)"
            )
        )
        return result

    def read_sitemap(self, sitemap_url):
        if sitemap_url.startswith(("http://", "https://")):
            response = requests.get(sitemap_url, timeout=30)
            response.raise_for_status()
            return response.content

        with open(sitemap_url, "rb") as f:
            return f.read()

    def parse_sitemap(self, sitemap_url):
        """
        Read a sitemap (local path or http URL) and return its entries as
        dicts with 'loc' and, when present and parseable, 'lastmod'.
        """
        self.stdout.write(f"Parsing sitemap: {sitemap_url}")

        try:
            # sitemap.xml is expected to be trusted content
            root = ElementTree.fromstring(self.read_sitemap(sitemap_url))  # noqa: S314
        except ElementTree.ParseError as e:
            raise CommandError(f"Failed to parse sitemap XML: {e!s}") from e
        except (OSError, requests.RequestException) as e:
            raise CommandError(f"Failed to fetch/read sitemap: {e!s}") from e

        urls_data = []
        for url_elem in root.iterfind("sm:url", SITEMAP_NS):
            loc = url_elem.findtext("sm:loc", default="", namespaces=SITEMAP_NS).strip()
            if not loc:
                continue

            entry = {"loc": loc}
            lastmod = url_elem.findtext("sm:lastmod", namespaces=SITEMAP_NS)
            if lastmod is not None:
                entry["lastmod"] = self.parse_lastmod(lastmod)
            urls_data.append(entry)

        self.stdout.write(f"Found {len(urls_data)} URLs in sitemap")
        return urls_data

    def parse_lastmod(self, value):
        """Parse a W3C datetime or plain date from a sitemap; None if invalid."""
        value = (value or "").strip()
        if not value:
            return None

        try:
            parsed = parse_datetime(value)
            if parsed is None:
                date = parse_date(value)
                if date is not None:
                    parsed = datetime.combine(date, time.min)
        except ValueError:
            parsed = None

        if parsed is None:
            logger.warning("Could not parse lastmod date: %s", value)
            return None

        if timezone.is_naive(parsed):
            parsed = timezone.make_aware(parsed)
        return parsed

    def should_process_url(self, url, lastmod, force):
        """
        A URL is analyzed when forced, when it has no stored report, or when
        the sitemap says the page changed after the stored report's source.
        """
        if force:
            return True

        report = CSSCoverageReport.objects.filter(url=url).only("source_last_modified").first()
        if report is None:
            return True
        if not lastmod:
            return False
        return report.source_last_modified is None or lastmod > report.source_last_modified
