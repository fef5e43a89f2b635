import json
import logging

from django.apps import apps
from django.http import JsonResponse, StreamingHttpResponse
from django.views.decorators.cache import cache_control
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from .decorators import trim_memory_after
from .errors import ProxyTokenError, UnsafeTargetError, UserFacingError
from .font_proxy import PROXY_CACHE_CONTROL, fetch_font
from .forms import ExtractRequestForm, FontProxyForm, MatchRequestForm, first_error
from .match_utils import build_match_response
from .response_utils import extract_api_response, extract_fonts_response

logger = logging.getLogger(__name__)


def _services():
    """The app config owns the catalog, SSRF guard and proxy signer."""
    return apps.get_app_config("font_snatcher")


def _error(message: str, status: int) -> JsonResponse:
    return JsonResponse({"error": message}, status=status)


def _json_body(request):
    """Decoded JSON object body, or raise ValueError."""
    return json.loads(request.body.decode("utf-8"))


def _validated_extract_url(request):
    """
    Returns ``(url, None)`` for a valid, safe target or ``(None, JsonResponse)``.
    """
    try:
        body = _json_body(request)
    except (ValueError, UnicodeDecodeError):
        return None, _error("Request body must be valid JSON.", 400)
    if not isinstance(body, dict):
        return None, _error("Invalid request payload.", 400)

    form = ExtractRequestForm(data=body)
    if not form.is_valid():
        return None, _error(first_error(form), 400)

    url = form.cleaned_data["url"]
    try:
        _services().guard.assert_safe_target_url(url)
    except UnsafeTargetError as exc:
        return None, _error(str(exc), 400)
    return url, None


def _run_extraction(builder, url):
    services = _services()
    try:
        payload = builder(url, catalog=services.catalog, signer=services.signer, guard=services.guard)
    except UnsafeTargetError as exc:
        # A redirect hop led somewhere private.
        return _error(str(exc), 400)
    except UserFacingError as exc:
        return _error(f"Failed to extract fonts: {exc}", 500)
    except Exception as exc:
        logger.exception("Font extraction crashed for %s", url)
        return _error(f"Failed to extract fonts: {exc}", 500)
    return JsonResponse(payload)


# Font Snatcher: flat list
@csrf_exempt
@trim_memory_after
@cache_control(no_cache=True, must_revalidate=True, no_store=True)
@require_POST
def extract(request):
    url, failure = _validated_extract_url(request)
    if failure:
        return failure
    return _run_extraction(extract_api_response, url)


# Font Snatcher: rich report with alternatives
@csrf_exempt
@trim_memory_after
@cache_control(no_cache=True, must_revalidate=True, no_store=True)
@require_POST
def extract_fonts(request):
    url, failure = _validated_extract_url(request)
    if failure:
        return failure
    return _run_extraction(extract_fonts_response, url)


@csrf_exempt
@trim_memory_after
@cache_control(no_cache=True, must_revalidate=True, no_store=True)
@require_POST
def match(request):
    try:
        body = _json_body(request)
    except (ValueError, UnicodeDecodeError):
        return _error("Request body must be valid JSON.", 400)
    if not isinstance(body, dict):
        return _error("Invalid match request payload.", 400)

    form = MatchRequestForm(data=body)
    if not form.is_valid():
        return _error(first_error(form), 400)

    data = form.cleaned_data
    try:
        payload = build_match_response(
            family=data["family"],
            style=data["style"],
            weight=data["weight"],
            catalog=_services().catalog,
        )
    except Exception as exc:
        logger.exception("Match failed for %r", data["family"])
        return _error(f"Failed to match alternatives: {exc}", 500)
    return JsonResponse(payload)


@trim_memory_after
@require_GET
def font_proxy(request):
    """
    Stream a font through the server.

    Only URLs this app signed are accepted; see `proxy_signing`.
    """
    form = FontProxyForm(data=request.GET)
    if not form.is_valid():
        return _error(first_error(form), 400)

    services = _services()
    data = form.cleaned_data
    try:
        font = fetch_font(
            data["u"], data["r"], data["d"], data["t"],
            signer=services.signer,
            guard=services.guard,
        )
    except ProxyTokenError as exc:
        logger.info("Rejected font token: %s", exc)
        return _error("Invalid or expired font token.", 403)
    except UserFacingError as exc:
        return _error(str(exc), exc.status_code)

    response = StreamingHttpResponse(font.iter_bytes(), content_type=font.content_type)
    response["Cache-Control"] = PROXY_CACHE_CONTROL
    if font.content_length:
        response["Content-Length"] = font.content_length
    if font.filename:
        response["Content-Disposition"] = f'attachment; filename="{font.filename}"'
    return response
