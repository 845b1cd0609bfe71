class CSSCoverageError(Exception):
    """Base class for errors raised by django_css_coverage."""


class InvalidURLError(CSSCoverageError):
    def __init__(self, url):
        self.url = url
        super().__init__(f"Invalid URL: {url!r}")


class CoverageFetchError(CSSCoverageError):
    """The coverage service could not produce coverage for a page."""

    def __init__(self, url, message):
        self.url = url
        super().__init__(message)
