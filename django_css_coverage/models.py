from django.db import models

from .analysis import AnalysisResult


class CSSCoverageReport(models.Model):
    """Model to store the most recent CSS coverage analysis for a page."""

    url = models.CharField(max_length=255, unique=True, help_text="Analyzed page URL")
    total_bytes = models.PositiveIntegerField(default=0)
    used_bytes = models.PositiveIntegerField(default=0)
    usage_percent = models.FloatField(default=0)
    result = models.JSONField(default=dict, help_text="Full analysis result, per stylesheet")
    source_last_modified = models.DateTimeField(
        blank=True, null=True, help_text="Last modified date from the source (e.g., sitemap)"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "CSS coverage report"
        verbose_name_plural = "CSS coverage reports"

    def __str__(self):
        return f"CSS coverage for {self.url} ({self.usage_percent:.2f}% used)"

    def as_result(self):
        return AnalysisResult.from_dict(self.result)
