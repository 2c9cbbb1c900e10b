"""HTTP access to the NuGet V3 registration and catalog documents.

The dependency resolver only falls back to the network when a package's
nuspec is not on disk. Responses are returned as ``(status, headers, body)``
tuples and cached in memory, keyed by URL and headers, so several projects
of one repository converted in parallel fetch each leaf and catalog entry
once. Nothing here raises for HTTP or transport failures; the resolver turns
a non-200 status into a ResolutionError.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

import requests

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)

Response = Tuple[int, Dict[str, str], str]

_http_cache: Dict[str, Tuple[Response, float]] = {}
_http_cache_lock = threading.Lock()


def _cache_key(url: str, headers: Optional[Dict[str, str]]) -> str:
    return f"GET:{url}:{sorted(headers.items()) if headers else ''}"


def _cached(key: str) -> Optional[Response]:
    with _http_cache_lock:
        entry = _http_cache.get(key)
    if entry is None:
        return None
    response, stored_at = entry
    if time.time() - stored_at >= Constants.HTTP_CACHE_TTL_SEC:
        return None
    return response


def _trace(message: str, target: str, **fields: Any) -> None:
    if is_debug_enabled(logger):
        logger.debug(message, extra=extra_context(component="http_client", target=target, **fields))


def clear_cache() -> None:
    """Drop every cached response."""
    with _http_cache_lock:
        _http_cache.clear()


def robust_get(url: str, *, headers: Optional[Dict[str, str]] = None, **kwargs: Any) -> Response:
    """GET a registration or catalog URL.

    Transport errors and 5xx answers are retried up to
    ``Constants.HTTP_RETRY_MAX`` times with exponential backoff. Any other
    status, 404 included, is final and cached, so a package missing from the
    feed is asked for once per run.

    Returns:
        ``(status_code, headers, text)``. Status 0 means every attempt
        failed; the text then describes the last failure.
    """
    key = _cache_key(url, headers)
    target = safe_url(url)
    cached = _cached(key)
    if cached is not None:
        _trace("HTTP cache hit", target, event="cache_hit", action="GET")
        return cached

    failure = None
    for attempt in range(1, Constants.HTTP_RETRY_MAX + 1):
        if attempt > 1:
            time.sleep(Constants.HTTP_RETRY_BASE_DELAY_SEC * (2 ** (attempt - 2)))
        _trace("HTTP request", target, event="http_request", action="GET", attempt=attempt)
        response = None
        with Timer() as t:
            try:
                response = requests.get(url, timeout=Constants.REQUEST_TIMEOUT, headers=headers, **kwargs)
            except requests.Timeout:
                failure = "timeout"
            except requests.RequestException as exc:
                failure = str(exc)
        if response is None:
            _trace("HTTP request failed", target, event="http_exception", action="GET",
                   outcome=failure, attempt=attempt)
            continue
        if response.status_code >= 500:
            failure = f"HTTP {response.status_code}"
            _trace("HTTP server error", target, event="http_response", action="GET",
                   outcome="retry", status_code=response.status_code, attempt=attempt)
            continue

        result = (response.status_code, dict(response.headers), response.text)
        with _http_cache_lock:
            _http_cache[key] = (result, time.time())
        _trace("HTTP response", target, event="http_response", action="GET",
               status_code=response.status_code, duration_ms=t.duration_ms())
        return result

    return 0, {}, f"Request failed after {Constants.HTTP_RETRY_MAX} attempts: {failure}"


def get_json(url: str, *, headers: Optional[Dict[str, str]] = None,
             **kwargs: Any) -> Tuple[int, Dict[str, str], Optional[Any]]:
    """GET a registration leaf or catalog entry and decode it.

    The body is None unless the status is 200 and the text is valid JSON.
    """
    status, response_headers, text = robust_get(url, headers=headers, **kwargs)
    if status != 200 or not text:
        return status, response_headers, None
    try:
        return status, response_headers, json.loads(text)
    except json.JSONDecodeError:
        _trace("Response is not JSON", safe_url(url), event="parse", action="get_json",
               outcome="json_decode_error", status_code=status)
        return status, response_headers, None
