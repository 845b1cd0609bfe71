import logging
import time

import requests

from .analysis import StylesheetSource
from .conf import get_setting
from .exceptions import CoverageFetchError

logger = logging.getLogger(__name__)


class CoverageServiceClient:
    """
    Client for the external headless-browser service that loads a page and
    reports which byte ranges of each stylesheet were applied.

    The service is expected to expose:
        POST /css-coverage  {"url", "width", "height", "timeout"}
            -> {"success": true, "coverage": [{"url", "text", "ranges"}]}
        GET  /health        -> {"status": "ok", "features": [...]}
    """

    def __init__(
        self,
        service_url=None,
        retries=None,
        retry_delay=None,
        timeout=None,
        navigation_timeout=None,
        viewport=None,
        session=None,
    ):
        service_url = service_url or get_setting("CSS_COVERAGE_SERVICE_URL")
        self.service_url = service_url.rstrip("/")
        self.retries = retries if retries is not None else get_setting("CSS_COVERAGE_RETRIES")
        self.retry_delay = (
            retry_delay if retry_delay is not None else get_setting("CSS_COVERAGE_RETRY_DELAY")
        )
        self.timeout = timeout or get_setting("CSS_COVERAGE_REQUEST_TIMEOUT")
        self.navigation_timeout = navigation_timeout or get_setting(
            "CSS_COVERAGE_NAVIGATION_TIMEOUT"
        )
        self.viewport = viewport or get_setting("CSS_COVERAGE_VIEWPORT")
        self.session = session or requests.Session()

    def check_health(self):
        """Return the service's health payload, or None if it is unreachable."""
        try:
            response = self.session.get(f"{self.service_url}/health", timeout=10)
            if response.status_code == 200:
                return response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Coverage service health check failed: %s", e)
        return None

    def fetch_coverage(self, url):
        """
        Load url in the coverage service and return its stylesheets.

        Navigation failures are retried up to `retries` attempts in total with
        a fixed delay between them.

        Returns:
            list of StylesheetSource, in the order the page loaded them

        Raises:
            CoverageFetchError: when every attempt failed
        """
        width, height = self.viewport
        payload = {
            "url": url,
            "width": width,
            "height": height,
            "timeout": self.navigation_timeout,
        }

        attempts = max(1, self.retries)
        for attempt in range(1, attempts + 1):
            try:
                return self._request_coverage(url, payload)
            except CoverageFetchError as e:
                if attempt == attempts:
                    raise
                logger.warning(
                    "Coverage attempt %s/%s for %s failed: %s",
                    attempt,
                    attempts,
                    url,
                    e,
                )
                time.sleep(self.retry_delay)

    def _request_coverage(self, url, payload):
        try:
            response = self.session.post(
                f"{self.service_url}/css-coverage",
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise CoverageFetchError(url, f"Request failed: {e!s}") from e
        except ValueError as e:
            raise CoverageFetchError(url, "Service returned invalid JSON") from e

        if not data.get("success"):
            raise CoverageFetchError(
                url, f"Service returned error: {data.get('message', 'Unknown error')}"
            )

        try:
            return [StylesheetSource.from_payload(entry) for entry in data["coverage"]]
        except (KeyError, TypeError, ValueError) as e:
            raise CoverageFetchError(url, f"Malformed coverage payload: {e!s}") from e
