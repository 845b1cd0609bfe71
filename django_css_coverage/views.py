import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt

from .analyzer import analyze_url
from .exceptions import CoverageFetchError, InvalidURLError

logger = logging.getLogger(__name__)


@csrf_exempt
def check_css(request):
    """
    Analyze the CSS usage of a page.

    Expects a POST with a JSON body {"url": "https://..."} and responds with
    the analysis result, or {"error": "..."} with a 4xx/5xx status.
    """
    if request.method != "POST":
        return JsonResponse({"error": "Method Not Allowed"}, status=405)

    try:
        body = json.loads(request.body or b"{}")
    except ValueError:
        return JsonResponse({"error": "Invalid URL"}, status=400)

    url = body.get("url") if isinstance(body, dict) else None

    try:
        result = analyze_url(url)
    except InvalidURLError:
        return JsonResponse({"error": "Invalid URL"}, status=400)
    except CoverageFetchError as e:
        logger.error("CSS analysis error for %s", url, exc_info=True)
        return JsonResponse({"error": f"CSS analysis failed: {e!s}"}, status=500)

    return JsonResponse(result.to_dict())
