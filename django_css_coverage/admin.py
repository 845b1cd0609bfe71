from django.contrib import admin
from .models import CSSCoverageReport


@admin.register(CSSCoverageReport)
class CSSCoverageReportAdmin(admin.ModelAdmin):
    list_display = ('url', 'usage_percent', 'used_bytes', 'total_bytes', 'updated_at')
    list_filter = ('created_at', 'updated_at', 'source_last_modified')
    search_fields = ('url',)
    readonly_fields = ('total_bytes', 'used_bytes', 'usage_percent', 'created_at', 'updated_at')
    fields = ('url', 'total_bytes', 'used_bytes', 'usage_percent', 'result', 'source_last_modified', 'created_at', 'updated_at')
