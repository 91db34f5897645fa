"""
auth/dependencies.py -- FastAPI Depends() helpers for the per-request auth context.

The middleware in api/middleware/ does the actual enforcement and leaves its
results on request.state:

  request.state.session     -- session.manager.Session (every request)
  request.state.csrf_guard  -- auth.csrf.CsrfGuard (web routes)
  request.state.csrf        -- {"name": ..., "value": ...} for templates
  request.state.principal   -- auth.models.Principal once a gate accepted

These helpers give route handlers typed access to those objects. If one is
missing the route was mounted outside the gate that should have produced it,
which is a wiring bug -- get_principal() turns that into a 401 rather than
letting the handler run anonymously.

Layer rule: auth/dependencies.py may import from fastapi (for HTTPException/
Request) because this module is part of the FastAPI dependency injection
system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.csrf import CsrfGuard
from auth.models import Principal
from session.manager import Session


def get_session(request: Request) -> Session:
    return request.state.session


def get_csrf_guard(request: Request) -> CsrfGuard:
    return request.state.csrf_guard


def try_get_principal(request: Request) -> Principal | None:
    """Return the Principal established by a gate, or None. Never raises."""
    return getattr(request.state, "principal", None)


def get_principal(request: Request) -> Principal:
    """Require a gate-established identity. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_principal)): ...
    """
    principal = try_get_principal(request)
    if principal is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return principal
