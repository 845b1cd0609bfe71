import logging
import threading

from .analysis import analyze_sources
from .cache import ResultCache
from .client import CoverageServiceClient
from .conf import get_setting
from .exceptions import InvalidURLError

logger = logging.getLogger(__name__)

_result_cache = None
_result_cache_lock = threading.Lock()


def get_result_cache():
    """Return the process-wide result cache, creating it on first use."""
    global _result_cache
    with _result_cache_lock:
        if _result_cache is None:
            _result_cache = ResultCache(ttl=get_setting("CSS_COVERAGE_CACHE_TTL"))
        return _result_cache


def validate_url(url):
    if not url or not isinstance(url, str) or not url.startswith("http"):
        raise InvalidURLError(url)
    return url


def analyze_url(url, cache=None, client=None):
    """
    Analyze the CSS coverage of the page at url.

    Results are served from the cache while fresh; otherwise the page is
    loaded through the coverage service and analyzed.

    Raises:
        InvalidURLError: url is not an http(s) URL
        CoverageFetchError: the coverage service failed
    """
    validate_url(url)
    cache = cache if cache is not None else get_result_cache()
    client = client or CoverageServiceClient()

    def compute():
        sources = client.fetch_coverage(url)
        result = analyze_sources(sources)
        logger.info(
            "Analyzed %s: %s/%s bytes used (%.2f%%) across %s stylesheets",
            url,
            result.used_bytes,
            result.total_bytes,
            result.usage_percent,
            len(result.files),
        )
        return result

    return cache.get_or_compute(url, compute)


def store_report(url, result, lastmod=None):
    """Save result as the stored report for url. Returns (report, created)."""
    from .models import CSSCoverageReport

    return CSSCoverageReport.objects.update_or_create(
        url=url,
        defaults={
            "total_bytes": result.total_bytes,
            "used_bytes": result.used_bytes,
            "usage_percent": result.usage_percent,
            "result": result.to_dict(),
            "source_last_modified": lastmod,
        },
    )
