import csv
import json
import os
import tempfile
import threading
from datetime import timedelta
from io import StringIO
from unittest import mock

import requests
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DataError
from django.template import Context, Template
from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from .analysis import (
    INLINE_STYLE,
    AnalysisResult,
    CoverageRange,
    FileResult,
    RuleClassification,
    StylesheetSource,
    aggregate_file,
    aggregate_report,
    analyze_sources,
    classify_rule,
    is_rule_used,
    segment_rules,
)
from .analyzer import analyze_url, get_result_cache, store_report
from .cache import ResultCache
from .client import CoverageServiceClient
from .exceptions import CoverageFetchError, InvalidURLError
from .export import report_rows, write_csv
from .models import CSSCoverageReport
from .tasks import analyze_css_coverage


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_response(status_code=200, payload=None):
    response = mock.Mock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} Error")
    return response


SAMPLE_PAYLOAD = {
    "success": True,
    "coverage": [
        {
            "url": "https://example.com/style.css",
            "text": ".a{color:red}.b{color:blue}",
            "ranges": [{"start": 0, "end": 13}],
        },
        {"url": "", "text": "p{margin:0}", "ranges": []},
    ],
}


class SegmentRulesTest(SimpleTestCase):
    def test_splits_top_level_rules(self):
        rules = segment_rules(".a{color:red}.b{color:blue}")
        self.assertEqual(rules, [".a{color:red}", ".b{color:blue}"])

    def test_trims_whitespace_between_rules(self):
        css = "\n  body { margin: 0; }\n\n  h1 { font-size: 2em; }\n"
        self.assertEqual(
            segment_rules(css), ["body { margin: 0; }", "h1 { font-size: 2em; }"]
        )

    def test_nested_blocks_form_one_rule(self):
        css = "@media (max-width: 600px) { .a { color: red; } .b { color: blue; } } p{x:y}"
        rules = segment_rules(css)
        self.assertEqual(len(rules), 2)
        self.assertTrue(rules[0].startswith("@media"))
        self.assertTrue(rules[0].endswith("} }"))
        self.assertEqual(rules[1], "p{x:y}")

    def test_empty_and_whitespace_text(self):
        self.assertEqual(segment_rules(""), [])
        self.assertEqual(segment_rules("   \n\t"), [])

    def test_unclosed_trailing_content_is_dropped(self):
        self.assertEqual(segment_rules(".a{x:y} .b{color:"), [".a{x:y}"])
        self.assertEqual(segment_rules(".a{x:y} /* trailing */"), [".a{x:y}"])

    def test_comment_before_rule_is_part_of_rule(self):
        rules = segment_rules("/* reset */ * { box-sizing: border-box; }")
        self.assertEqual(rules, ["/* reset */ * { box-sizing: border-box; }"])

    def test_braces_in_strings_affect_depth(self):
        # Brace inside a string opens a level that never closes
        rules = segment_rules('.a::after{content:"{"} .b{x:y}')
        self.assertEqual(rules, [])

    def test_segmentation_is_repeatable(self):
        css = ".a{x:y} @media print { .b{x:y} } .c{x:y}"
        self.assertEqual(segment_rules(css), segment_rules(css))


class UsageClassifierTest(SimpleTestCase):
    text = ".a{color:red}.b{color:blue}"

    def test_rule_inside_single_range_is_used(self):
        self.assertTrue(is_rule_used(".a{color:red}", self.text, [CoverageRange(0, 13)]))
        self.assertTrue(is_rule_used(".a{color:red}", self.text, [CoverageRange(0, 27)]))

    def test_partial_overlap_is_unused(self):
        self.assertFalse(is_rule_used(".b{color:blue}", self.text, [CoverageRange(10, 20)]))

    def test_rule_split_across_two_ranges_is_unused(self):
        ranges = [CoverageRange(13, 20), CoverageRange(20, 27)]
        self.assertFalse(is_rule_used(".b{color:blue}", self.text, ranges))

    def test_unordered_ranges(self):
        ranges = [CoverageRange(20, 27), CoverageRange(13, 27), CoverageRange(0, 5)]
        self.assertTrue(is_rule_used(".b{color:blue}", self.text, ranges))

    def test_rule_not_found_is_unused(self):
        self.assertFalse(is_rule_used(".z{x:y}", self.text, [CoverageRange(0, 27)]))

    def test_no_ranges_is_unused(self):
        self.assertFalse(is_rule_used(".a{color:red}", self.text, []))

    def test_duplicate_rule_text_resolves_to_first_occurrence(self):
        text = ".a{x:y}.b{x:y}.a{x:y}"
        # Only the first copy is covered, and both copies share its verdict
        self.assertTrue(is_rule_used(".a{x:y}", text, [CoverageRange(0, 7)]))
        # Only the second copy is covered, and both copies miss it
        self.assertFalse(is_rule_used(".a{x:y}", text, [CoverageRange(14, 21)]))

    def test_classify_rule_selector_and_bytes(self):
        classification = classify_rule(
            "  .btn:hover , .btn:focus { opacity: 0.8 }".strip(),
            ".btn:hover , .btn:focus { opacity: 0.8 }",
            [],
        )
        self.assertEqual(classification.selector, ".btn:hover , .btn:focus")
        self.assertFalse(classification.used)
        self.assertEqual(classification.bytes, 40)


class CoverageRangeTest(SimpleTestCase):
    def test_length(self):
        self.assertEqual(len(CoverageRange(3, 10)), 7)

    def test_invalid_ranges_rejected(self):
        with self.assertRaises(ValueError):
            CoverageRange(-1, 4)
        with self.assertRaises(ValueError):
            CoverageRange(5, 5)
        with self.assertRaises(ValueError):
            CoverageRange(5, 2)

    def test_payload_offsets_are_utf16_code_units(self):
        text = '.a{content:"\U0001F600"}.b{x:y}'
        # ".b{x:y}" starts at code point 15, UTF-16 offset 16
        source = StylesheetSource.from_payload(
            {"url": "a.css", "text": text, "ranges": [{"start": 16, "end": 23}]}
        )
        self.assertEqual(source.ranges, (CoverageRange(15, 22),))
        self.assertEqual(aggregate_file(source).unused_rules[0].selector, ".a")

    def test_payload_skips_invalid_ranges(self):
        with self.assertLogs("django_css_coverage.analysis", level="WARNING"):
            source = StylesheetSource.from_payload(
                {
                    "url": "a.css",
                    "text": ".a{x:y}",
                    "ranges": [{"start": 5, "end": 1}, {"start": 3, "end": 3}, {"start": 0, "end": 7}],
                }
            )
        self.assertEqual(source.ranges, (CoverageRange(0, 7),))

    def test_payload_ranges_past_end_are_clamped(self):
        source = StylesheetSource.from_payload(
            {"url": "a.css", "text": ".a{x:y}", "ranges": [{"start": 0, "end": 50}]}
        )
        self.assertEqual(source.ranges, (CoverageRange(0, 7),))

    def test_source_from_payload(self):
        source = StylesheetSource.from_payload(
            {"url": "", "text": "a{}", "ranges": [{"start": 0, "end": 3}]}
        )
        self.assertEqual(source.identifier, INLINE_STYLE)
        self.assertEqual(source.ranges, (CoverageRange(0, 3),))


class AggregateFileTest(SimpleTestCase):
    def test_one_used_one_unused_rule(self):
        source = StylesheetSource(
            "style.css", ".a{color:red}.b{color:blue}", [CoverageRange(0, 13)]
        )
        result = aggregate_file(source)

        self.assertEqual(result.url, "style.css")
        self.assertEqual(result.total, 27)
        self.assertEqual(result.used, 13)
        self.assertEqual(
            result.unused_rules, (RuleClassification(".b", False, 14),)
        )

    def test_empty_stylesheet(self):
        result = aggregate_file(StylesheetSource("empty.css", "", []))
        self.assertEqual(result, FileResult("empty.css", 0, 0, ()))
        self.assertEqual(result.usage_percent, 0)

    def test_uncovered_rule(self):
        result = aggregate_file(StylesheetSource("a.css", "body { margin: 0; }", []))
        self.assertEqual(result.used, 0)
        self.assertEqual([r.selector for r in result.unused_rules], ["body"])

    def test_unused_rules_keep_source_order(self):
        css = ".c{x:y} .a{x:y} .b{x:y}"
        result = aggregate_file(StylesheetSource("a.css", css, []))
        self.assertEqual([r.selector for r in result.unused_rules], [".c", ".a", ".b"])
        self.assertTrue(all(not r.used for r in result.unused_rules))

    def test_used_bytes_come_from_ranges_not_rules(self):
        # The range covers half of a rule: bytes count, rule stays unused
        source = StylesheetSource("a.css", ".a{color:red}", [CoverageRange(0, 6)])
        result = aggregate_file(source)
        self.assertEqual(result.used, 6)
        self.assertEqual(len(result.unused_rules), 1)

    def test_used_never_exceeds_total_for_disjoint_ranges(self):
        css = "html{a:b} body{c:d} .x{e:f}"
        ranges = [CoverageRange(0, 9), CoverageRange(10, 19), CoverageRange(20, 27)]
        result = aggregate_file(StylesheetSource("a.css", css, ranges))
        self.assertEqual(result.total, len(css))
        self.assertTrue(0 <= result.used <= result.total)
        self.assertEqual(result.unused_rules, ())


class AggregateReportTest(SimpleTestCase):
    def test_fully_used_and_unused_files(self):
        files = [
            FileResult("used.css", 50, 50, ()),
            FileResult("unused.css", 30, 0, (RuleClassification(".x", False, 30),)),
        ]
        result = aggregate_report(files)

        self.assertEqual(result.total_bytes, 80)
        self.assertEqual(result.used_bytes, 50)
        self.assertEqual(result.usage_percent, 62.5)
        self.assertEqual([f.url for f in result.files], ["used.css", "unused.css"])

    def test_zero_total_bytes(self):
        result = aggregate_report([FileResult("a.css", 0, 0, ())])
        self.assertEqual(result.usage_percent, 0)
        self.assertEqual(aggregate_report([]).usage_percent, 0)

    def test_no_rounding(self):
        result = aggregate_report([FileResult("a.css", 3, 1, ())])
        self.assertAlmostEqual(result.usage_percent, 100 / 3)

    def test_empty_page(self):
        result = analyze_sources([StylesheetSource("a.css", "", [])])
        self.assertEqual(result.files, (FileResult("a.css", 0, 0, ()),))
        self.assertEqual(result.usage_percent, 0)

    def test_totals_are_sums_of_files(self):
        sources = [
            StylesheetSource("a.css", ".a{x:y}", [CoverageRange(0, 7)]),
            StylesheetSource(INLINE_STYLE, "p{m:0} h1{m:0}", [CoverageRange(0, 6)]),
        ]
        result = analyze_sources(sources)
        self.assertEqual(result.total_bytes, sum(f.total for f in result.files))
        self.assertEqual(result.used_bytes, sum(f.used for f in result.files))
        self.assertEqual(result.files[1].url, INLINE_STYLE)

    def test_to_dict_and_back(self):
        result = analyze_sources(
            [StylesheetSource("a.css", ".a{color:red}.b{color:blue}", [CoverageRange(0, 13)])]
        )
        data = result.to_dict()
        self.assertEqual(
            data,
            {
                "totalBytes": 27,
                "usedBytes": 13,
                "usagePercent": 13 / 27 * 100,
                "files": [
                    {
                        "url": "a.css",
                        "total": 27,
                        "used": 13,
                        "unusedRules": [{"selector": ".b", "used": False, "bytes": 14}],
                    }
                ],
            },
        )
        self.assertEqual(AnalysisResult.from_dict(json.loads(json.dumps(data))), result)


class ResultCacheTest(SimpleTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.cache = ResultCache(ttl=3600, clock=self.clock)

    def test_round_trip_within_ttl(self):
        self.cache.put("https://example.com/", "result")
        self.clock.now += 3599
        self.assertEqual(self.cache.get("https://example.com/"), "result")

    def test_expired_entry_is_absent_but_kept(self):
        self.cache.put("https://example.com/", "result")
        self.clock.now += 3600
        self.assertIsNone(self.cache.get("https://example.com/"))
        self.assertEqual(len(self.cache), 1)

    def test_missing_key(self):
        self.assertIsNone(self.cache.get("https://missing.example.com/"))

    def test_put_overwrites_and_resets_age(self):
        self.cache.put("k", "old")
        self.clock.now += 3000
        self.cache.put("k", "new")
        self.clock.now += 3000
        self.assertEqual(self.cache.get("k"), "new")

    def test_clear(self):
        self.cache.put("a", 1)
        self.cache.put("b", 2)
        self.assertEqual(self.cache.clear(), 2)
        self.assertIsNone(self.cache.get("a"))

    def test_get_or_compute_uses_cache(self):
        compute = mock.Mock(return_value="value")
        self.assertEqual(self.cache.get_or_compute("k", compute), "value")
        self.assertEqual(self.cache.get_or_compute("k", compute), "value")
        compute.assert_called_once_with()

    def test_get_or_compute_recomputes_after_expiry(self):
        compute = mock.Mock(side_effect=["first", "second"])
        self.cache.get_or_compute("k", compute)
        self.clock.now += 3600
        self.assertEqual(self.cache.get_or_compute("k", compute), "second")

    def test_get_or_compute_does_not_store_failures(self):
        compute = mock.Mock(side_effect=CoverageFetchError("k", "boom"))
        with self.assertRaises(CoverageFetchError):
            self.cache.get_or_compute("k", compute)
        self.assertEqual(len(self.cache), 0)

    def test_concurrent_misses_compute_once(self):
        started = threading.Event()
        release = threading.Event()
        calls = []

        def compute():
            calls.append(1)
            started.set()
            release.wait(5)
            return "value"

        results = []
        threads = [
            threading.Thread(
                target=lambda: results.append(self.cache.get_or_compute("k", compute))
            )
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        started.wait(5)
        release.set()
        for t in threads:
            t.join(5)

        self.assertEqual(len(calls), 1)
        self.assertEqual(results, ["value"] * 4)


class CoverageServiceClientTest(SimpleTestCase):
    def setUp(self):
        self.session = mock.Mock()
        self.client = CoverageServiceClient(
            service_url="http://coverage.test/",
            retries=3,
            retry_delay=0,
            session=self.session,
        )

    def test_fetch_coverage_parses_entries(self):
        self.session.post.return_value = make_response(payload=SAMPLE_PAYLOAD)

        sources = self.client.fetch_coverage("https://example.com/")

        self.assertEqual([s.identifier for s in sources], ["https://example.com/style.css", INLINE_STYLE])
        self.assertEqual(sources[0].ranges, (CoverageRange(0, 13),))
        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], "http://coverage.test/css-coverage")
        self.assertEqual(
            kwargs["json"],
            {"url": "https://example.com/", "width": 1920, "height": 1080, "timeout": 30000},
        )

    @mock.patch("django_css_coverage.client.time.sleep")
    def test_retries_then_succeeds(self, sleep):
        self.session.post.side_effect = [
            requests.ConnectionError("refused"),
            make_response(payload=SAMPLE_PAYLOAD),
        ]
        sources = self.client.fetch_coverage("https://example.com/")
        self.assertEqual(len(sources), 2)
        self.assertEqual(self.session.post.call_count, 2)
        sleep.assert_called_once_with(0)

    @mock.patch("django_css_coverage.client.time.sleep")
    def test_gives_up_after_retries(self, sleep):
        self.session.post.side_effect = requests.Timeout("timed out")
        with self.assertRaises(CoverageFetchError) as ctx:
            self.client.fetch_coverage("https://example.com/")
        self.assertEqual(ctx.exception.url, "https://example.com/")
        self.assertIn("timed out", str(ctx.exception))
        self.assertEqual(self.session.post.call_count, 3)
        self.assertEqual(sleep.call_count, 2)

    def test_http_error_status(self):
        self.client.retries = 1
        self.session.post.return_value = make_response(status_code=502)
        with self.assertRaises(CoverageFetchError):
            self.client.fetch_coverage("https://example.com/")

    def test_service_reported_failure(self):
        self.client.retries = 1
        self.session.post.return_value = make_response(
            payload={"success": False, "message": "Navigation timeout"}
        )
        with self.assertRaisesMessage(CoverageFetchError, "Navigation timeout"):
            self.client.fetch_coverage("https://example.com/")

    def test_malformed_payload(self):
        self.client.retries = 1
        self.session.post.return_value = make_response(
            payload={"success": True, "coverage": [{"url": "a.css", "text": "", "ranges": [{"end": 1}]}]}
        )
        with self.assertRaises(CoverageFetchError):
            self.client.fetch_coverage("https://example.com/")

    def test_astral_characters_keep_used_within_total(self):
        text = '.a::before{content:"\U0001F600"}.b{color:red}'
        utf16_length = len(text.encode("utf-16-le")) // 2
        self.session.post.return_value = make_response(
            payload={
                "success": True,
                "coverage": [
                    {"url": "a.css", "text": text, "ranges": [{"start": 0, "end": utf16_length}]}
                ],
            }
        )

        result = analyze_sources(self.client.fetch_coverage("https://example.com/"))

        self.assertEqual(utf16_length, 37)
        self.assertEqual(result.files[0].total, 36)
        self.assertEqual(result.files[0].used, 36)
        self.assertEqual(result.files[0].unused_rules, ())

    def test_check_health(self):
        self.session.get.return_value = make_response(payload={"status": "ok", "features": ["coverage"]})
        self.assertEqual(self.client.check_health()["features"], ["coverage"])

        self.session.get.side_effect = requests.ConnectionError("down")
        self.assertIsNone(self.client.check_health())


class AnalyzeUrlTest(TestCase):
    def setUp(self):
        self.cache = ResultCache(ttl=3600, clock=FakeClock())
        self.client = mock.Mock()
        self.client.fetch_coverage.return_value = [
            StylesheetSource("a.css", ".a{color:red}.b{color:blue}", [CoverageRange(0, 13)])
        ]

    def test_analyze_and_cache(self):
        result = analyze_url("https://example.com/", cache=self.cache, client=self.client)
        again = analyze_url("https://example.com/", cache=self.cache, client=self.client)

        self.assertIs(result, again)
        self.assertEqual(result.total_bytes, 27)
        self.assertEqual(result.used_bytes, 13)
        self.client.fetch_coverage.assert_called_once_with("https://example.com/")

    def test_invalid_urls(self):
        for url in (None, "", "ftp://example.com/", 42):
            with self.assertRaises(InvalidURLError):
                analyze_url(url, cache=self.cache, client=self.client)
        self.client.fetch_coverage.assert_not_called()

    def test_fetch_failure_is_distinct_from_zero_usage(self):
        self.client.fetch_coverage.side_effect = CoverageFetchError("https://example.com/", "boom")
        with self.assertRaises(CoverageFetchError):
            analyze_url("https://example.com/", cache=self.cache, client=self.client)

        self.client.fetch_coverage.side_effect = None
        self.client.fetch_coverage.return_value = []
        result = analyze_url("https://example.com/", cache=self.cache, client=self.client)
        self.assertEqual(result.usage_percent, 0)
        self.assertEqual(result.files, ())

    def test_report_without_result_data(self):
        report = CSSCoverageReport.objects.create(url="https://example.com/")
        self.assertEqual(report.as_result(), AnalysisResult(0, 0, 0, ()))

    def test_store_report_creates_and_updates(self):
        result = analyze_url("https://example.com/", cache=self.cache, client=self.client)

        report, created = store_report("https://example.com/", result)
        self.assertTrue(created)
        self.assertEqual(report.total_bytes, 27)
        self.assertEqual(report.as_result(), result)

        lastmod = timezone.now()
        report, created = store_report("https://example.com/", aggregate_report([]), lastmod)
        self.assertFalse(created)
        self.assertEqual(CSSCoverageReport.objects.count(), 1)
        report.refresh_from_db()
        self.assertEqual(report.total_bytes, 0)
        self.assertEqual(report.source_last_modified, lastmod)


class CheckCSSViewTest(TestCase):
    def setUp(self):
        get_result_cache().clear()

    def post(self, body):
        return self.client.post("/check-css/", data=body, content_type="application/json")

    def test_method_not_allowed(self):
        response = self.client.get("/check-css/")
        self.assertEqual(response.status_code, 405)
        self.assertEqual(response.json(), {"error": "Method Not Allowed"})

    def test_invalid_url(self):
        for body in ({}, {"url": 5}, {"url": "example.com"}):
            response = self.post(json.dumps(body))
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.json(), {"error": "Invalid URL"})

        response = self.post("not json")
        self.assertEqual(response.status_code, 400)

    @mock.patch.object(CoverageServiceClient, "fetch_coverage")
    def test_returns_analysis_and_caches_it(self, fetch_coverage):
        fetch_coverage.return_value = [
            StylesheetSource("a.css", ".a{color:red}.b{color:blue}", [CoverageRange(0, 13)])
        ]

        response = self.post(json.dumps({"url": "https://example.com/"}))
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["totalBytes"], 27)
        self.assertEqual(data["usedBytes"], 13)
        self.assertEqual(data["files"][0]["unusedRules"], [{"selector": ".b", "used": False, "bytes": 14}])

        response = self.post(json.dumps({"url": "https://example.com/"}))
        self.assertEqual(response.status_code, 200)
        fetch_coverage.assert_called_once()

    @mock.patch.object(CoverageServiceClient, "fetch_coverage")
    def test_fetch_failure(self, fetch_coverage):
        fetch_coverage.side_effect = CoverageFetchError("https://example.com/", "Request failed: timeout")

        with self.assertLogs("django_css_coverage.views", level="ERROR"):
            response = self.post(json.dumps({"url": "https://example.com/"}))

        self.assertEqual(response.status_code, 500)
        self.assertEqual(
            response.json(), {"error": "CSS analysis failed: Request failed: timeout"}
        )


class AnalyzeTaskTest(TestCase):
    def setUp(self):
        get_result_cache().clear()

    @mock.patch.object(CoverageServiceClient, "fetch_coverage")
    def test_task_stores_report(self, fetch_coverage):
        fetch_coverage.return_value = [
            StylesheetSource("used.css", "a" * 50, [CoverageRange(0, 50)]),
            StylesheetSource("unused.css", "b" * 30, []),
        ]

        self.assertEqual(analyze_css_coverage("https://example.com/"), 62.5)

        report = CSSCoverageReport.objects.get(url="https://example.com/")
        self.assertEqual(report.total_bytes, 80)
        self.assertEqual(report.used_bytes, 50)
        self.assertEqual(report.usage_percent, 62.5)

    @mock.patch("django_css_coverage.tasks.store_report", side_effect=DataError("value too long"))
    @mock.patch.object(CoverageServiceClient, "fetch_coverage", return_value=[])
    def test_task_logs_database_failure(self, fetch_coverage, store_report):
        with self.assertLogs("django_css_coverage.tasks", level="ERROR"):
            self.assertIsNone(analyze_css_coverage("https://example.com/" + "a" * 300))
        store_report.assert_called_once()

    @mock.patch.object(CoverageServiceClient, "fetch_coverage")
    def test_task_logs_failure(self, fetch_coverage):
        fetch_coverage.side_effect = CoverageFetchError("https://example.com/", "boom")

        with self.assertLogs("django_css_coverage.tasks", level="ERROR"):
            self.assertIsNone(analyze_css_coverage("https://example.com/"))
        self.assertFalse(CSSCoverageReport.objects.exists())


class ExportTest(SimpleTestCase):
    def setUp(self):
        self.result = analyze_sources(
            [
                StylesheetSource("a.css", ".a{color:red}.b{color:blue}.c{x:y}", [CoverageRange(0, 13)]),
                StylesheetSource("b.css", "p{m:0}", [CoverageRange(0, 6)]),
                StylesheetSource("empty.css", "", []),
            ]
        )

    def test_rows_per_unused_rule_or_file(self):
        rows = list(report_rows(self.result))

        self.assertEqual(len(rows), 4)
        self.assertEqual(rows[0]["File URL"], "a.css")
        self.assertEqual(rows[0]["Unused Selector"], ".b")
        self.assertEqual(rows[0]["Unused Bytes"], 14)
        self.assertEqual(rows[1]["Unused Selector"], ".c")
        self.assertEqual(rows[0]["Usage Percentage"], "38.24%")
        self.assertEqual(rows[2]["Usage Percentage"], "100.00%")
        self.assertEqual(rows[2]["Unused Selector"], "")
        self.assertEqual(rows[3]["Usage Percentage"], "0.00%")

    def test_write_csv(self):
        out = StringIO()
        count = write_csv(self.result, out)

        self.assertEqual(count, 4)
        rows = list(csv.reader(StringIO(out.getvalue())))
        self.assertEqual(rows[0][0], "File URL")
        self.assertEqual(rows[1][:3], ["a.css", "34", "13"])

    def test_write_csv_for_several_pages(self):
        out = StringIO()
        write_csv({"https://example.com/": self.result}, out)

        rows = list(csv.DictReader(StringIO(out.getvalue())))
        self.assertEqual(rows[0]["Page URL"], "https://example.com/")
        self.assertEqual(len(rows), 4)


class TemplateFilterTest(SimpleTestCase):
    def render(self, source, **context):
        return Template("{% load css_coverage %}" + source).render(Context(context))

    def test_percent(self):
        self.assertEqual(self.render("{{ value|percent }}", value=62.5), "62.50")
        self.assertEqual(self.render("{{ value|percent }}", value=None), "")

    def test_file_usage_percent(self):
        self.assertEqual(
            self.render("{{ file|file_usage_percent }}", file={"total": 3, "used": 1}), "33.33"
        )
        self.assertEqual(
            self.render("{{ file|file_usage_percent }}", file=FileResult("a.css", 0, 0)), "0.00"
        )


class AnalyzeCSSCoverageCommandTest(TestCase):
    def setUp(self):
        get_result_cache().clear()
        self.sitemap_xml = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
    <url>
        <loc>https://example.com/</loc>
        <lastmod>2023-12-01T10:00:00Z</lastmod>
    </url>
    <url>
        <loc>https://example.com/about/</loc>
        <lastmod>2023-12-02T15:30:00Z</lastmod>
    </url>
    <url>
        <loc>https://example.com/contact/</loc>
    </url>
</urlset>"""
        health = mock.patch.object(
            CoverageServiceClient, "check_health", return_value={"status": "ok", "features": ["coverage"]}
        )
        fetch = mock.patch.object(
            CoverageServiceClient,
            "fetch_coverage",
            return_value=[StylesheetSource("a.css", ".a{x:y}.b{x:y}", [CoverageRange(0, 7)])],
        )
        self.check_health = health.start()
        self.fetch_coverage = fetch.start()
        self.addCleanup(mock.patch.stopall)

    def create_temp_sitemap(self):
        """Create a temporary sitemap file and return its path"""
        temp_file = tempfile.NamedTemporaryFile(mode="w", suffix=".xml", delete=False)
        temp_file.write(self.sitemap_xml)
        temp_file.close()
        self.addCleanup(os.unlink, temp_file.name)
        return temp_file.name

    def get_command(self):
        from django_css_coverage.management.commands.analyze_css_coverage import Command

        command = Command()
        command.stdout = StringIO()
        return command

    def test_parse_sitemap(self):
        urls_data = self.get_command().parse_sitemap(self.create_temp_sitemap())

        self.assertEqual(len(urls_data), 3)
        self.assertEqual(urls_data[0]["loc"], "https://example.com/")
        self.assertIsNotNone(urls_data[0]["lastmod"])
        self.assertNotIn("lastmod", urls_data[2])

    def test_parse_sitemap_invalid_xml(self):
        self.sitemap_xml = "<urlset><url>"
        with self.assertRaises(CommandError):
            self.get_command().parse_sitemap(self.create_temp_sitemap())

    def test_parse_lastmod_formats(self):
        command = self.get_command()
        for date_str, should_parse in [
            ("2023-12-01T10:00:00Z", True),
            ("2023-12-01T10:00:00+00:00", True),
            ("2023-12-01", True),
            ("invalid-date", False),
            ("", False),
        ]:
            result = command.parse_lastmod(date_str)
            self.assertEqual(result is not None, should_parse, date_str)

    def test_should_process_url(self):
        command = self.get_command()
        old_date = timezone.now() - timedelta(days=5)
        CSSCoverageReport.objects.create(url="https://example.com/", source_last_modified=old_date)

        self.assertTrue(command.should_process_url("https://new.example.com/", None, False))
        self.assertTrue(command.should_process_url("https://example.com/", None, True))
        self.assertFalse(command.should_process_url("https://example.com/", None, False))
        self.assertTrue(
            command.should_process_url("https://example.com/", old_date + timedelta(days=1), False)
        )
        self.assertFalse(
            command.should_process_url("https://example.com/", old_date - timedelta(days=1), False)
        )

    def test_analyzes_and_stores_reports(self):
        out = StringIO()
        call_command("analyze_css_coverage", self.create_temp_sitemap(), stdout=out)

        self.assertEqual(CSSCoverageReport.objects.count(), 3)
        report = CSSCoverageReport.objects.get(url="https://example.com/about/")
        self.assertEqual(report.used_bytes, 7)
        self.assertEqual(report.as_result().files[0].unused_rules[0].selector, ".b")
        self.assertIsNotNone(report.source_last_modified)
        self.assertIn("Processed: 3, Skipped: 0, Errors: 0", out.getvalue())

    def test_dry_run(self):
        out = StringIO()
        call_command("analyze_css_coverage", self.create_temp_sitemap(), "--dry-run", stdout=out)

        self.assertEqual(CSSCoverageReport.objects.count(), 0)
        self.assertIn("dry-run mode", out.getvalue())
        self.assertIn("Would process:", out.getvalue())
        self.fetch_coverage.assert_not_called()

    def test_limit(self):
        out = StringIO()
        call_command("analyze_css_coverage", self.create_temp_sitemap(), "--limit", "1", stdout=out)

        self.assertEqual(CSSCoverageReport.objects.count(), 1)
        self.assertIn("limited to 1 URLs", out.getvalue())

    def test_errors_are_counted(self):
        self.fetch_coverage.side_effect = CoverageFetchError("https://example.com/", "boom")
        out = StringIO()
        call_command("analyze_css_coverage", self.create_temp_sitemap(), stdout=out)

        self.assertEqual(CSSCoverageReport.objects.count(), 0)
        self.assertIn("Errors: 3", out.getvalue())

    def test_database_errors_are_counted_per_url(self):
        out = StringIO()
        with mock.patch(
            "django_css_coverage.management.commands.analyze_css_coverage.store_report",
            side_effect=[DataError("value too long"), (mock.Mock(), True), (mock.Mock(), True)],
        ):
            call_command("analyze_css_coverage", self.create_temp_sitemap(), stdout=out)

        self.assertIn("Processed: 2, Skipped: 0, Errors: 1", out.getvalue())
        self.assertIn("value too long", out.getvalue())

    def test_sitemap_over_http(self):
        response = make_response(payload=None)
        response.content = self.sitemap_xml.encode("utf-8")
        with mock.patch(
            "django_css_coverage.management.commands.analyze_css_coverage.requests.get",
            return_value=response,
        ) as get:
            urls_data = self.get_command().parse_sitemap("https://example.com/sitemap.xml")

        get.assert_called_once_with("https://example.com/sitemap.xml", timeout=30)
        self.assertEqual(len(urls_data), 3)

    def test_service_unavailable(self):
        self.check_health.return_value = None
        with self.assertRaises(CommandError):
            call_command("analyze_css_coverage", self.create_temp_sitemap(), stdout=StringIO())

    def test_export(self):
        handle, export_path = tempfile.mkstemp(suffix=".csv")
        os.close(handle)
        self.addCleanup(os.unlink, export_path)

        out = StringIO()
        call_command(
            "analyze_css_coverage", self.create_temp_sitemap(), "--export", export_path, stdout=out
        )

        with open(export_path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        self.assertEqual(len(rows), 3)
        self.assertEqual(rows[0]["Unused Selector"], ".b")
        self.assertIn("Exported 3 rows", out.getvalue())


class ClearCSSCoverageCommandTest(TestCase):
    def setUp(self):
        CSSCoverageReport.objects.create(url="https://example.com/")
        CSSCoverageReport.objects.create(url="https://example.com/about/")

    def test_clear_with_no_confirm(self):
        get_result_cache().put("https://example.com/", aggregate_report([]))
        out = StringIO()
        call_command("clear_css_coverage", "--no-confirm", stdout=out)

        self.assertEqual(CSSCoverageReport.objects.count(), 0)
        self.assertIsNone(get_result_cache().get("https://example.com/"))
        self.assertIn("Successfully removed 2 CSS coverage reports", out.getvalue())

    @mock.patch("builtins.input", return_value="n")
    def test_clear_cancelled(self, _input):
        cached = aggregate_report([])
        get_result_cache().put("https://example.com/", cached)
        out = StringIO()
        call_command("clear_css_coverage", stdout=out)

        self.assertEqual(CSSCoverageReport.objects.count(), 2)
        self.assertIs(get_result_cache().get("https://example.com/"), cached)
        self.assertIn("Operation cancelled", out.getvalue())

    def test_clear_no_entries(self):
        CSSCoverageReport.objects.all().delete()
        out = StringIO()
        call_command("clear_css_coverage", "--no-confirm", stdout=out)
        self.assertIn("No CSS coverage reports found to remove", out.getvalue())

    def test_command_help_text(self):
        from django_css_coverage.management.commands.clear_css_coverage import Command

        self.assertEqual(
            Command().help,
            "Remove all stored CSS coverage reports from the database "
            "(also empties the result cache of the current process only)",
        )
