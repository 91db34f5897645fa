"""
api/middleware/session_auth.py -- Login gate for the web UI and AJAX routes.

Per-request state machine:

  UNKNOWN
    |-- session "authenticated" is True ------------------> AUTHENTICATED (session)
    |-- remember cookie decodes to the configured username
    |     -> mark session authenticated, rotate session ID -> AUTHENTICATED (remember)
    '-- otherwise -----------------------------------------> UNAUTHENTICATED

UNAUTHENTICATED is terminal for the request:
  AJAX caller -> 401 {"success": false, "error": "Authentication required",
                      "redirect": "<login path>"}
  browser     -> 302 to the login path

Security:
  [A1] Decoding successfully is not enough. The username inside the token
       must equal AUTH_USERNAME exactly -- a token minted for some other
       name (e.g. before the operator was renamed) is rejected.

  [A2] Promotion is a privilege change, so the session ID is regenerated
       before the handler runs (see session/manager.py [S2]).

  [A3] A remember cookie that was present but failed is expired on the
       response, whatever the failure reason. The response itself is the same
       as for a caller who sent no cookie at all.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from api.middleware.common import is_ajax, path_matches
from api.models import FailureResponse
from auth.models import Principal
from auth.remember import RememberCookie
from core.config import Settings

logger = logging.getLogger("rackguard.auth.gate")


class SessionAuthMiddleware(BaseHTTPMiddleware):
    """Require an authenticated session on every path except the exempt ones.

    Args:
        settings:        AUTH_USERNAME / AUTH_PASSWORD_HASH / LOGIN_PATH source.
        remember:        Cookie adapter for the remember-me fallback.
        exempt_prefixes: Paths this gate never touches (login page, static
                         assets, the API tree which has its own gate).
    """

    def __init__(
        self,
        app,
        settings: Settings,
        remember: RememberCookie,
        exempt_prefixes: Iterable[str] = (),
    ) -> None:
        super().__init__(app)
        self.settings = settings
        self.remember = remember
        self.exempt_prefixes = tuple(exempt_prefixes)

    async def dispatch(self, request: Request, call_next):
        if path_matches(request.url.path, self.exempt_prefixes):
            return await call_next(request)

        session = request.state.session

        if session.get("authenticated") is True:
            request.state.principal = Principal(username=session.get("username", ""), method="session")
            return await call_next(request)

        clear_remember = False
        if self.remember.has_remember_token(request):
            username = self._promote_from_remember(request)
            if username is not None:
                request.state.principal = Principal(username=username, method="remember")
                return await call_next(request)
            clear_remember = True

        response = self._unauthenticated(request)
        if clear_remember:
            self.remember.clear_remember_token(response)
        return response

    def _promote_from_remember(self, request: Request) -> str | None:
        password_hash = self.settings.auth_password_hash
        if not password_hash:
            return None
        username = self.remember.validate_remember_token(request, password_hash)
        if username is None or username != self.settings.auth_username:  # [A1]
            logger.warning("Rejected remember-me cookie from %s", request.client.host if request.client else "unknown")
            return None

        session = request.state.session
        session.set("authenticated", True)
        session.set("username", username)
        session.regenerate()  # [A2]
        logger.info("Session re-established from remember-me cookie for %s", username)
        return username

    def _unauthenticated(self, request: Request):
        login_path = self.settings.login_path
        if is_ajax(request):
            return JSONResponse(
                status_code=401,
                content=FailureResponse(error="Authentication required", redirect=login_path).payload(),
            )
        return RedirectResponse(login_path, status_code=302)
