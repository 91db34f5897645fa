"""
api/middleware/session.py -- Session activation for every request.

Runs outside every other gate so the session is loaded, fixation-checked and
fingerprint-checked before anything reads it, and is persisted after the
innermost handler (or a short-circuiting gate) has produced a response.

Paths under `lazy_prefixes` (the stateless /api tree) still get a Session on
request.state.session, but it is not started up front. Session accessors
start it on first use, and commit() writes nothing for a session nobody
touched, so keyed API calls neither create records nor receive a cookie.

The store comes from request.app.state.session_store (created in the app
lifespan), so tests can swap it the same way they swap the other stores.
"""

from __future__ import annotations

from collections.abc import Iterable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from api.middleware.common import path_matches
from core.config import Settings
from session.manager import Session


class SessionMiddleware(BaseHTTPMiddleware):
    """Attach a Session to request.state.session and commit it afterwards."""

    def __init__(self, app, settings: Settings, lazy_prefixes: Iterable[str] = ()) -> None:
        super().__init__(app)
        self.settings = settings
        self.lazy_prefixes = tuple(lazy_prefixes)

    async def dispatch(self, request: Request, call_next):
        session = Session(
            request.app.state.session_store,
            self.settings,
            session_id=request.cookies.get(self.settings.session_name),
            user_agent=request.headers.get("User-Agent", ""),
        )
        if not path_matches(request.url.path, self.lazy_prefixes):
            session.start()
        request.state.session = session

        response = await call_next(request)

        session.commit(response)
        return response
