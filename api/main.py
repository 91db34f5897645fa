"""
api/main.py -- FastAPI application factory for RackGuard.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests            -- method, path, status, latency, client
  2. TrustedHostMiddleware   -- rejects requests with unexpected Host headers
  3. SessionMiddleware       -- loads + starts the session (lazily under /api), commits it
  4. SlowAPIMiddleware       -- enforces per-route rate limits from api.limiter
  5. ApiKeyMiddleware        -- /api/... only: API key + CORS
  6. SessionAuthMiddleware   -- everything else except /login and /static/
  7. CsrfMiddleware          -- unsafe methods outside /api/ and /static/

Starlette wraps middleware in reverse registration order: the LAST
add_middleware() call is the OUTERMOST layer. The calls in create_app() are
therefore written innermost-first.

Lifespan handles startup (session store, inventory store, purge task) and
shutdown (cancel purge task, close stores) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.middleware import ApiKeyMiddleware, CsrfMiddleware, SessionAuthMiddleware, SessionMiddleware
from api.middleware.api_key import with_cors
from api.middleware.common import path_matches
from api.models import ApiIndexResponse, ApiInfo, FailureResponse, HealthResponse
from api.routes.v1.machines import router as machines_router
from auth.remember import build_remember_cookie
from core.config import Settings, get_settings
from inventory.store import MachineStore
from session.store import create_session_store

__version__ = "0.3.0"

API_PREFIX = "/api"
HEALTH_PATH = "/api/v1/health"
PURGE_INTERVAL = 15 * 60

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("rackguard.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Drop expired session records every PURGE_INTERVAL seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(PURGE_INTERVAL)
        removed = app.state.session_store.purge_expired()
        if removed:
            logger.info("Purged %d expired sessions", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the stores before the first request and close them on shutdown.

    The purge task references app.state.session_store, so the store must
    exist before the task is started.
    """
    settings: Settings = app.state.settings
    logger.info("RackGuard starting up")
    app.state.session_store = create_session_store(settings)
    logger.info("Session store initialized (backend=%s)", settings.session_backend)
    app.state.inventory = MachineStore(db_url=settings.inventory_db_url)
    logger.info("Inventory initialized")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.session_store.close()
    app.state.inventory.close()
    logger.info("RackGuard shutdown complete")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the FailureResponse envelope so API and AJAX clients can
# parse errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=FailureResponse(error="Too many requests.", message=str(exc.detail)).payload(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with one message per offending field.

    Field keys drop the request part ("body", "query", "path") so clients get
    "label" rather than "body.label".
    """
    errors: dict[str, str] = {}
    for err in exc.errors():
        loc = tuple(err.get("loc", ()))
        if loc and loc[0] in ("body", "query", "path", "header", "cookie"):
            loc = loc[1:]
        field = ".".join(str(part) for part in loc) or "request"
        errors.setdefault(field, err.get("msg", "Invalid value"))
    return JSONResponse(
        status_code=422,
        content=FailureResponse(error="Request validation failed.", errors=errors).payload(),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=FailureResponse(error=str(exc.detail)).payload(),
        headers=getattr(exc, "headers", None),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    This response is built by ServerErrorMiddleware, outside ApiKeyMiddleware,
    so /api errors get their CORS headers here.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    response = JSONResponse(
        status_code=500,
        content=FailureResponse(error="An unexpected error occurred.").payload(),
    )
    if path_matches(request.url.path, (API_PREFIX,)):
        with_cors(response)
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the RackGuard ASGI app around `settings` (default: environment).

    The web UI router is NOT mounted here; asgi.py joins api/ and web/.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="RackGuard API",
        description="Server inventory with session, CSRF and API key protection.",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.state.settings = settings
    app.state.remember = build_remember_cookie(settings)
    # SlowAPI looks for app.state.limiter by convention.
    app.state.limiter = limiter

    # Innermost first -- see module docstring.
    app.add_middleware(CsrfMiddleware, settings=settings, exempt_prefixes=(API_PREFIX, "/static/"))
    app.add_middleware(
        SessionAuthMiddleware,
        settings=settings,
        remember=app.state.remember,
        exempt_prefixes=(settings.login_path, "/static/", API_PREFIX),
    )
    app.add_middleware(ApiKeyMiddleware, api_keys=settings.api_key_list, prefixes=(API_PREFIX,), public_paths=(HEALTH_PATH,))
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(SessionMiddleware, settings=settings, lazy_prefixes=(API_PREFIX,))
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_host_list)
    app.middleware("http")(log_requests)

    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    @app.get("/api/v1", response_model=ApiIndexResponse, tags=["Meta"])
    async def api_index() -> ApiIndexResponse:
        return ApiIndexResponse(data=ApiInfo(version=__version__))

    # Health is public on the API gate and never rate-limited so load
    # balancers and monitors are not throttled.
    @app.get(HEALTH_PATH, response_model=HealthResponse, tags=["Health"])
    async def health(request: Request) -> HealthResponse:
        """Return liveness, version and the configured security components."""
        return HealthResponse(
            version=__version__,
            components={
                "session_backend": settings.session_backend,
                "remember_me": "enabled" if request.app.state.remember.codec.enabled else "disabled",
                "api_keys": "configured" if settings.api_key_list else "none",
            },
        )

    app.include_router(machines_router, prefix="/api/v1", tags=["Machines"])
    return app
