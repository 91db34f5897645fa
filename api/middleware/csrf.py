"""
api/middleware/csrf.py -- Anti-forgery enforcement for web routes.

Only state-changing methods (POST, PUT, DELETE, PATCH) are checked. The
candidate token is looked up in this order, first hit wins:

  1. X-CSRF-Token header         (script-driven calls)
  2. header named CSRF_TOKEN_NAME
  3. body field CSRF_TOKEN_NAME  (form posts or a JSON object body)
  4. query parameter CSRF_TOKEN_NAME

Failure -> 403. AJAX callers get
  {"success": false, "error": "CSRF token validation failed",
   "errors": {"csrf": "..."}}
everyone else gets a plain-text body, except a browser POST to the login
path, which is redirected back to the form with a flash error.

A body that cannot be parsed counts as one without a token.

On every request the gate passes through -- safe methods included -- the
live token is left on request.state.csrf ({"name", "value"}) and the guard on
request.state.csrf_guard, so templates can render the next form without a
separate round-trip.

Body handling: request.body() is awaited before request.form()/json() so the
bytes are cached and replayed to the route handler downstream.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from fastapi import Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException
from starlette.middleware.base import BaseHTTPMiddleware

from api.middleware.common import is_ajax, path_matches
from api.models import FailureResponse
from auth.csrf import CsrfGuard
from core.config import Settings

logger = logging.getLogger("rackguard.csrf")

UNSAFE_METHODS = frozenset({"POST", "PUT", "DELETE", "PATCH"})
CSRF_HEADER = "X-CSRF-Token"

_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def extract_csrf_token(request: Request, token_name: str) -> str | None:
    """Return the first candidate token found on the request, or None."""
    header_token = request.headers.get(CSRF_HEADER) or request.headers.get(token_name)
    if header_token:
        return header_token

    content_type = request.headers.get("Content-Type", "")
    if content_type.startswith(_FORM_TYPES):
        await request.body()
        try:
            form = await request.form()
        except (KeyError, ValueError, MultiPartException, HTTPException):
            # Unparseable body (e.g. multipart without a boundary) carries no token.
            logger.info("Unparseable form body on %s %s", request.method, request.url.path)
            return request.query_params.get(token_name) or None
        value = form.get(token_name)
        if isinstance(value, str) and value:
            return value
    elif content_type.startswith("application/json"):
        body = await request.body()
        try:
            parsed = json.loads(body) if body else None
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            value = parsed.get(token_name)
            if isinstance(value, str) and value:
                return value

    return request.query_params.get(token_name) or None


class CsrfMiddleware(BaseHTTPMiddleware):
    """Reject unsafe-method requests that lack a valid session CSRF token."""

    def __init__(self, app, settings: Settings, exempt_prefixes: Iterable[str] = ()) -> None:
        super().__init__(app)
        self.settings = settings
        self.exempt_prefixes = tuple(exempt_prefixes)

    async def dispatch(self, request: Request, call_next):
        if path_matches(request.url.path, self.exempt_prefixes):
            return await call_next(request)

        guard = CsrfGuard(
            request.state.session,
            token_lifetime=self.settings.csrf_token_lifetime,
            token_name=self.settings.csrf_token_name,
        )

        if request.method in UNSAFE_METHODS:
            candidate = await extract_csrf_token(request, guard.get_token_name())
            if not guard.validate_token(candidate):
                logger.warning("CSRF validation failed for %s %s", request.method, request.url.path)
                return self._forbidden(request)
            if self.settings.csrf_rotate_on_validate:
                guard.regenerate_token()

        request.state.csrf_guard = guard
        request.state.csrf = guard.token_data()
        return await call_next(request)

    def _forbidden(self, request: Request):
        if is_ajax(request):
            return JSONResponse(
                status_code=403,
                content=FailureResponse(
                    error="CSRF token validation failed",
                    errors={"csrf": "Security validation failed. Please refresh the page and try again."},
                ).payload(),
            )
        if request.url.path == self.settings.login_path:
            # A stale login form gets sent back to a fresh one.
            request.state.session.flash("error", "Security validation failed. Please try again.")
            return RedirectResponse(self.settings.login_path, status_code=302)
        return PlainTextResponse("CSRF token validation failed. Please go back and try again.", status_code=403)
