from django.conf import settings

DEFAULTS = {
    "CSS_COVERAGE_SERVICE_URL": "http://localhost:3000",
    "CSS_COVERAGE_CACHE_TTL": 60 * 60,
    "CSS_COVERAGE_REQUEST_TIMEOUT": 60,
    "CSS_COVERAGE_NAVIGATION_TIMEOUT": 30000,
    "CSS_COVERAGE_RETRIES": 3,
    "CSS_COVERAGE_RETRY_DELAY": 1.0,
    "CSS_COVERAGE_VIEWPORT": (1920, 1080),
}


def get_setting(name):
    """Read a CSS_COVERAGE_* setting, falling back to the package default."""
    return getattr(settings, name, DEFAULTS[name])
