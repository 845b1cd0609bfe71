from django.core.management.base import BaseCommand

from django_css_coverage.analyzer import get_result_cache
from django_css_coverage.models import CSSCoverageReport


class Command(BaseCommand):
    help = (
        "Remove all stored CSS coverage reports from the database "
        "(also empties the result cache of the current process only)"
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--no-confirm",
            action="store_true",
            help="Skip confirmation prompt and delete all reports immediately",
        )

    def handle(self, *args, **options):
        report_count = CSSCoverageReport.objects.count()

        if report_count == 0:
            self.clear_cache()
            self.stdout.write(
                self.style.SUCCESS("No CSS coverage reports found to remove.")
            )
            return

        # Show confirmation unless --no-confirm is used
        if not options["no_confirm"]:
            self.stdout.write(
                f"This will remove {report_count} CSS coverage reports from the database."
            )
            confirm = input("Are you sure you want to continue? [y/N]: ")
            if confirm.lower() not in ["y", "yes"]:
                self.stdout.write(self.style.WARNING("Operation cancelled."))
                return

        self.clear_cache()
        deleted_count, _ = CSSCoverageReport.objects.all().delete()

        self.stdout.write(
            self.style.SUCCESS(
                f"Successfully removed {deleted_count} CSS coverage reports."
            )
        )

    def clear_cache(self):
        # Other processes (web workers, Celery) keep their own caches
        cached = get_result_cache().clear()
        if cached:
            self.stdout.write(f"Cleared {cached} cached analysis results in this process.")
