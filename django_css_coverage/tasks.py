import logging

from celery import shared_task
from django.db import DatabaseError

from .analyzer import analyze_url, store_report
from .exceptions import CSSCoverageError

logger = logging.getLogger(__name__)


@shared_task
def analyze_css_coverage(url):
    """
    Analyze CSS coverage for a page through the coverage service
    and store the result in the DB.
    """
    try:
        result = analyze_url(url)
        store_report(url, result)
        return result.usage_percent
    except (CSSCoverageError, DatabaseError) as e:
        # Log failure, but don't raise (avoid crashing Celery worker loop)
        logger.error("CSS coverage analysis failed for %s: %s", url, e)
        return None
