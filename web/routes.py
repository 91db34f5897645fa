"""
web/routes.py -- Browser-facing routes for the RackGuard web UI.

These routes sit behind SessionMiddleware, SessionAuthMiddleware and
CsrfMiddleware (see api/main.py). By the time a handler runs:
  - request.state.session is started,
  - request.state.principal is set (except on the public /login routes),
  - unsafe methods have passed the CSRF check and request.state.csrf_guard
    holds the guard that renders the next form's token.
Handlers reach these through the auth.dependencies helpers.

Routes:
  GET    /login                  -- login form (public)
  POST   /login                  -- handle password login (public, CSRF-checked)
  POST   /logout                 -- clear remember cookie, destroy session
  GET    /                       -- machine overview
  GET    /ajax/csrf-token        -- current token for script-driven callers
  GET    /ajax/machines          -- JSON machine list
  POST   /ajax/machines          -- JSON create
  DELETE /ajax/machines/{id}     -- JSON delete

Security:
  [H2] POST /login is rate-limited (LOGIN_RATE_LIMIT, default 10/minute per IP).
       @router.post must stay above @limiter.limit so FastAPI registers the
       limited wrapper rather than the bare function.
  [C1] authenticate_operator() provides timing equalization -- use it, never inline.
  [S2] A successful login regenerates the session ID and the CSRF token.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from api.limiter import limiter, login_rate_limit
from api.models import (
    MachineCreate,
    MachineCreatedData,
    MachineCreatedResponse,
    MachineListData,
    MachineListResponse,
    MachineResponse,
    MessageData,
    MessageResponse,
)
from auth.csrf import CsrfGuard
from auth.dependencies import get_csrf_guard, get_principal, get_session
from auth.models import Principal
from auth.remember import RememberCookie
from auth.tokens import authenticate_operator, is_valid_username
from core.config import Settings
from inventory.store import MachineStore
from session.manager import Session

logger = logging.getLogger("rackguard.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()


def _redirect_with_error(request: Request, session: Session, message: str) -> RedirectResponse:
    session.flash("error", message)
    return RedirectResponse(request.app.state.settings.login_path, status_code=302)


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(
    request: Request,
    session: Session = Depends(get_session),
    csrf_guard: CsrfGuard = Depends(get_csrf_guard),
) -> HTMLResponse:
    if session.get("authenticated") is True:
        return RedirectResponse("/", status_code=302)
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "error": session.get_flash("error"),
            "csrf_field": csrf_guard.token_field(),
        },
    )


@router.post("/login", response_class=HTMLResponse)
@limiter.limit(login_rate_limit)  # [H2]
def login_post(
    request: Request,
    username: str = Form(""),
    password: str = Form(""),
    remember: Optional[str] = Form(None),
    session: Session = Depends(get_session),
    csrf_guard: CsrfGuard = Depends(get_csrf_guard),
) -> RedirectResponse:
    """Authenticate the operator; optionally issue a remember-me cookie.

    Every failure redirects back to /login with a flash message. Wrong
    username and wrong password share one message so the form does not
    confirm which half was right.
    """
    settings: Settings = request.app.state.settings
    username = username.strip()

    if not username or not password:
        return _redirect_with_error(request, session, "Please enter username and password.")
    if not is_valid_username(username):
        return _redirect_with_error(request, session, "Invalid username format.")
    if not authenticate_operator(settings, username, password):
        logger.warning("Failed login for %r from %s", username, request.client.host if request.client else "unknown")
        return _redirect_with_error(request, session, "Invalid username or password.")

    session.regenerate()  # [S2]
    session.set("authenticated", True)
    session.set("username", username)
    csrf_guard.regenerate_token()
    logger.info("Operator %s logged in", username)

    response = RedirectResponse("/", status_code=302)
    if remember:
        remember_cookie: RememberCookie = request.app.state.remember
        remember_cookie.create_remember_token(response, username, settings.auth_password_hash)
    return response


@router.post("/logout")
def logout(request: Request, session: Session = Depends(get_session)) -> RedirectResponse:
    response = RedirectResponse(request.app.state.settings.login_path, status_code=302)
    request.app.state.remember.clear_remember_token(response)
    session.destroy()
    return response


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(
    request: Request,
    principal: Principal = Depends(get_principal),
    csrf_guard: CsrfGuard = Depends(get_csrf_guard),
) -> HTMLResponse:
    store: MachineStore = request.app.state.inventory
    return templates.TemplateResponse(
        request,
        "home.html",
        {
            "username": principal.username,
            "machines": store.list_machines(),
            "csrf_field": csrf_guard.token_field(),
        },
    )


# ---------------------------------------------------------------------------
# AJAX (JSON) routes -- same session auth and CSRF rules as the pages
# ---------------------------------------------------------------------------


@router.get("/ajax/csrf-token")
def ajax_csrf_token(
    principal: Principal = Depends(get_principal), csrf_guard: CsrfGuard = Depends(get_csrf_guard)
) -> dict:
    return {"success": True, "data": csrf_guard.token_data()}


@router.get("/ajax/machines", response_model=MachineListResponse)
def ajax_list_machines(
    request: Request, include_hidden: bool = False, principal: Principal = Depends(get_principal)
) -> MachineListResponse:
    store: MachineStore = request.app.state.inventory
    machines = [MachineResponse.from_machine(m) for m in store.list_machines(include_hidden=include_hidden)]
    return MachineListResponse(data=MachineListData(machines=machines, total=len(machines)))


@router.post("/ajax/machines", response_model=MachineCreatedResponse, status_code=201)
def ajax_create_machine(
    request: Request, body: MachineCreate, principal: Principal = Depends(get_principal)
) -> MachineCreatedResponse:
    store: MachineStore = request.app.state.inventory
    machine_id = store.create_machine(body.to_machine())
    logger.info("Machine %d created by %s", machine_id, principal.username)
    return MachineCreatedResponse(data=MachineCreatedData(machine_id=machine_id))


@router.delete("/ajax/machines/{machine_id}", response_model=MessageResponse)
def ajax_delete_machine(
    request: Request, machine_id: int, principal: Principal = Depends(get_principal)
) -> MessageResponse:
    store: MachineStore = request.app.state.inventory
    if not store.delete_machine(machine_id):
        raise HTTPException(status_code=404, detail="Machine not found")
    logger.info("Machine %d deleted by %s", machine_id, principal.username)
    return MessageResponse(data=MessageData(message="Machine deleted successfully"))
