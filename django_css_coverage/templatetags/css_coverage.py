from django import template

register = template.Library()


@register.filter
def percent(value):
    """Format a usage percentage with two decimals, e.g. 62.5 -> "62.50"."""
    try:
        return f"{float(value):.2f}"
    except (TypeError, ValueError):
        return ""


@register.filter
def file_usage_percent(file):
    """
    Usage percentage of one stylesheet, accepting either a FileResult or the
    dict form stored in reports.
    """
    if isinstance(file, dict):
        total, used = file.get("total", 0), file.get("used", 0)
    else:
        total, used = file.total, file.used
    return percent((used / total) * 100 if total else 0)
