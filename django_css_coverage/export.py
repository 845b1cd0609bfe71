import csv

COLUMNS = [
    "File URL",
    "Total Bytes",
    "Used Bytes",
    "Usage Percentage",
    "Unused Selector",
    "Unused Bytes",
]


def format_percent(value):
    return f"{value:.2f}%"


def report_rows(result, page_url=None):
    """
    Flatten an analysis result into table rows.

    Each file produces one row per unused rule, or a single row with empty
    rule columns when all of its rules were used. When page_url is given it
    is added as a leading "Page URL" column.
    """
    for file in result.files:
        base = {
            "File URL": file.url,
            "Total Bytes": file.total,
            "Used Bytes": file.used,
            "Usage Percentage": format_percent(file.usage_percent),
        }
        if page_url is not None:
            base = {"Page URL": page_url, **base}

        if not file.unused_rules:
            yield {**base, "Unused Selector": "", "Unused Bytes": ""}
            continue

        for rule in file.unused_rules:
            yield {**base, "Unused Selector": rule.selector, "Unused Bytes": rule.bytes}


def write_csv(results, fileobj):
    """
    Write one or more analysis results as CSV.

    Args:
        results: an AnalysisResult, or a dict of page URL -> AnalysisResult
        fileobj: text file opened with newline=""

    Returns the number of data rows written.
    """
    if isinstance(results, dict):
        fieldnames = ["Page URL"] + COLUMNS
        rows = (
            row
            for page_url, result in results.items()
            for row in report_rows(result, page_url=page_url)
        )
    else:
        fieldnames = COLUMNS
        rows = report_rows(results)

    writer = csv.DictWriter(fileobj, fieldnames=fieldnames)
    writer.writeheader()
    count = 0
    for row in rows:
        writer.writerow(row)
        count += 1
    return count
