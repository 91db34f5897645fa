"""
api/middleware/api_key.py -- Stateless API key gate for /api/... routes.

Machine-to-machine callers never get a session or CSRF token; they present a
static key on every request. The gate never reads request.state.session.

Request handling:
  OPTIONS  -> 204 preflight with CORS headers, no credential check.
  other    -> candidate key from, in order:
                1. X-API-Key header
                2. Authorization: Bearer <key>
                3. ?api_key= query parameter
              accepted iff non-empty AND allow-list non-empty AND exact member.

Fail closed: an empty allow-list rejects every request, including ones that
send an empty key. Success and failure responses both carry CORS headers so
browser clients can read the 401 body.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware

from api.middleware.common import path_matches
from api.models import FailureResponse
from auth.models import Principal
from auth.tokens import is_valid_api_key

logger = logging.getLogger("rackguard.api.auth")

CORS_HEADERS: dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-API-Key",
    "Access-Control-Max-Age": "86400",
}


def extract_api_key(request: Request) -> str | None:
    """Return the first candidate key found, or None."""
    header_key = request.headers.get("X-API-Key", "")
    if header_key:
        return header_key
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return request.query_params.get("api_key")


def with_cors(response: Response) -> Response:
    """Set the fixed CORS headers on `response` and return it."""
    for name, value in CORS_HEADERS.items():
        response.headers[name] = value
    return response


class ApiKeyMiddleware(BaseHTTPMiddleware):
    """Require an allow-listed API key on every path under `prefixes`.

    Args:
        api_keys:      The configured allow-list (Settings.api_key_list).
        prefixes:      Path prefixes this gate guards (default "/api").
        public_paths:  Paths under those prefixes that skip the key check
                       (the health probe). They still receive CORS headers.
    """

    def __init__(
        self,
        app,
        api_keys: Iterable[str],
        prefixes: Iterable[str] = ("/api",),
        public_paths: Iterable[str] = (),
    ) -> None:
        super().__init__(app)
        self.api_keys = list(api_keys)
        self.prefixes = tuple(prefixes)
        self.public_paths = tuple(public_paths)
        if not self.api_keys:
            logger.warning("API_KEYS is empty -- every API request will be rejected")

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not path_matches(path, self.prefixes):
            return await call_next(request)

        if request.method == "OPTIONS":
            return with_cors(Response(status_code=204))

        if path not in self.public_paths:
            candidate = extract_api_key(request)
            if not is_valid_api_key(candidate, self.api_keys):
                logger.warning("Rejected API request %s %s: invalid or missing API key", request.method, path)
                return with_cors(
                    JSONResponse(
                        status_code=401,
                        content=FailureResponse(
                            error="Invalid or missing API key",
                            message="Please provide a valid API key via X-API-Key header",
                        ).payload(),
                    )
                )
            request.state.principal = Principal(username="api", method="api_key", key_prefix=candidate[:8])

        response = await call_next(request)
        return with_cors(response)
