"""Resolve the response language (Thai or English) for each request."""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

SUPPORTED_LANGUAGES = ("th", "en")
DEFAULT_LANGUAGE = "th"


class LanguageMiddleware(BaseHTTPMiddleware):
    """Set ``request.state.language`` and echo it as ``Content-Language``.

    A ``lang`` query parameter wins; otherwise the highest-weighted
    supported tag in ``Accept-Language`` is used, falling back to Thai.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        override = request.query_params.get("lang", "").lower()
        if override in SUPPORTED_LANGUAGES:
            language = override
        else:
            language = negotiate_language(request.headers.get("Accept-Language", ""))
        request.state.language = language

        response = await call_next(request)
        response.headers["Content-Language"] = language
        return response


def negotiate_language(header: str) -> str:
    """Pick a supported language from an ``Accept-Language`` value.

    >>> negotiate_language("en-US,en;q=0.9,th;q=0.8")
    'en'
    >>> negotiate_language("fr, th-TH;q=0.5")
    'th'
    """
    best, best_q = DEFAULT_LANGUAGE, -1.0
    for part in header.split(","):
        tag, _, params = part.strip().partition(";")
        primary = tag.strip().lower().split("-")[0]
        if primary not in SUPPORTED_LANGUAGES:
            continue
        q = 1.0
        params = params.strip()
        if params.startswith("q="):
            try:
                q = float(params[2:])
            except ValueError:
                continue
        # Earlier entries win ties
        if q > best_q:
            best, best_q = primary, q
    return best
