from django.apps import AppConfig


class CSSCoverageConfig(AppConfig):
    name = "django_css_coverage"
    verbose_name = "CSS Coverage"
    default_auto_field = "django.db.models.AutoField"
