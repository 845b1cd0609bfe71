"""
CSS coverage analysis engine.

Takes the raw text of each stylesheet on a page together with the byte ranges
the browser reported as applied, splits the text into top-level rules and
works out which rules went unused.

Example usage:
    source = StylesheetSource(
        "styles.css",
        ".a{color:red}.b{color:blue}",
        [CoverageRange(0, 13)],
    )
    result = analyze_sources([source])
    result.usage_percent  # 48.14...
    result.files[0].unused_rules  # (RuleClassification(".b", False, 14),)
"""
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

INLINE_STYLE = "inline <style>"


def utf16_offset_mapper(text):
    """
    Return a function turning a UTF-16 code unit offset into text into a
    string index. Offsets inside a surrogate pair map to the start of that
    character; offsets past the end map to len(text).
    """
    if all(ord(char) < 0x10000 for char in text):
        return lambda offset: min(offset, len(text))

    indices = []
    for i, char in enumerate(text):
        indices.append(i)
        if ord(char) >= 0x10000:
            indices.append(i)
    indices.append(len(text))

    return lambda offset: indices[min(offset, len(indices) - 1)]


@dataclass(frozen=True)
class CoverageRange:
    """Half-open interval [start, end) of a stylesheet's text."""

    start: int
    end: int

    def __post_init__(self):
        if self.start < 0:
            raise ValueError(f"Range start must be non-negative, got {self.start}")
        if self.end <= self.start:
            raise ValueError(
                f"Range end must be greater than start, got [{self.start}, {self.end})"
            )

    def __len__(self):
        return self.end - self.start

    def contains(self, start, end):
        return start >= self.start and end <= self.end


@dataclass(frozen=True)
class StylesheetSource:
    """One stylesheet (or inline <style> block) as captured from the page."""

    identifier: str
    text: str
    ranges: tuple = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "ranges", tuple(self.ranges))

    @classmethod
    def from_payload(cls, entry):
        """
        Build a source from one coverage entry returned by the coverage service.

        The service reports offsets the way the browser counts string length,
        in UTF-16 code units. They are converted to indices into the Python
        string. Empty or reversed ranges are skipped.

        Args:
            entry: dict with keys 'url', 'text' and 'ranges', where 'ranges'
                   is a list of {'start': int, 'end': int} dicts
        """
        identifier = entry.get("url") or INLINE_STYLE
        text = entry.get("text") or ""
        to_index = utf16_offset_mapper(text)

        ranges = []
        for r in entry.get("ranges") or []:
            start, end = int(r["start"]), int(r["end"])
            if start < 0 or end <= start:
                logger.warning(
                    "Skipping invalid coverage range [%s, %s) in %s", start, end, identifier
                )
                continue
            start, end = to_index(start), to_index(end)
            if end > start:
                ranges.append(CoverageRange(start, end))
        return cls(identifier, text, ranges)


@dataclass(frozen=True)
class RuleClassification:
    selector: str
    used: bool
    bytes: int

    def to_dict(self):
        return {"selector": self.selector, "used": self.used, "bytes": self.bytes}


@dataclass(frozen=True)
class FileResult:
    url: str
    total: int
    used: int
    unused_rules: tuple = ()

    @property
    def usage_percent(self):
        return (self.used / self.total) * 100 if self.total > 0 else 0

    def to_dict(self):
        return {
            "url": self.url,
            "total": self.total,
            "used": self.used,
            "unusedRules": [rule.to_dict() for rule in self.unused_rules],
        }


@dataclass(frozen=True)
class AnalysisResult:
    total_bytes: int
    used_bytes: int
    usage_percent: float
    files: tuple = ()

    def to_dict(self):
        return {
            "totalBytes": self.total_bytes,
            "usedBytes": self.used_bytes,
            "usagePercent": self.usage_percent,
            "files": [f.to_dict() for f in self.files],
        }

    @classmethod
    def from_dict(cls, data):
        """Rebuild a result from the shape produced by to_dict()."""
        files = tuple(
            FileResult(
                url=f.get("url", ""),
                total=f.get("total", 0),
                used=f.get("used", 0),
                unused_rules=tuple(
                    RuleClassification(r["selector"], r["used"], r["bytes"])
                    for r in f.get("unusedRules", [])
                ),
            )
            for f in data.get("files", [])
        )
        return cls(
            total_bytes=data.get("totalBytes", 0),
            used_bytes=data.get("usedBytes", 0),
            usage_percent=data.get("usagePercent", 0),
            files=files,
        )


def segment_rules(text):
    """
    Split stylesheet text into top-level rules by tracking brace depth.

    A rule is emitted each time the depth drops back to zero, so an @media
    block comes out as one rule with its nested rules inside. Braces inside
    strings and comments are counted like any other brace. Content after the
    last balanced closing brace is dropped.
    """
    rules = []
    current = []
    depth = 0

    for char in text:
        current.append(char)

        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                rules.append("".join(current).strip())
                current = []

    return rules


def selector_of(rule):
    return rule.split("{", 1)[0].strip()


def is_rule_used(rule, stylesheet_text, ranges):
    """
    Return True when a single coverage range fully contains the rule.

    The rule is located by the first occurrence of its text in the
    stylesheet. Rules with identical text therefore share one position and
    one verdict. A rule that cannot be found is reported as unused.
    """
    rule_start = stylesheet_text.find(rule)
    if rule_start == -1:
        return False

    rule_end = rule_start + len(rule)
    return any(r.contains(rule_start, rule_end) for r in ranges)


def classify_rule(rule, stylesheet_text, ranges):
    return RuleClassification(
        selector=selector_of(rule),
        used=is_rule_used(rule, stylesheet_text, ranges),
        bytes=len(rule),
    )


def aggregate_file(source):
    """
    Compute byte totals and the unused rules of one stylesheet.

    'used' is the sum of the reported range lengths and is not reconciled
    with the rule classification; overlapping ranges are counted twice.
    """
    total = len(source.text)
    used = sum(len(r) for r in source.ranges)

    unused_rules = []
    for rule in segment_rules(source.text):
        classification = classify_rule(rule, source.text, source.ranges)
        if not classification.used:
            unused_rules.append(classification)

    return FileResult(
        url=source.identifier,
        total=total,
        used=used,
        unused_rules=tuple(unused_rules),
    )


def aggregate_report(files):
    files = tuple(files)
    total_bytes = sum(f.total for f in files)
    used_bytes = sum(f.used for f in files)
    usage_percent = (used_bytes / total_bytes) * 100 if total_bytes > 0 else 0

    return AnalysisResult(
        total_bytes=total_bytes,
        used_bytes=used_bytes,
        usage_percent=usage_percent,
        files=files,
    )


def analyze_sources(sources):
    """Run the full analysis over the stylesheets of one page, in page order."""
    return aggregate_report(aggregate_file(source) for source in sources)
