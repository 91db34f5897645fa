"""api/middleware/ -- Request gates, outermost first:

  SessionMiddleware      -- loads/starts/commits request.state.session
  ApiKeyMiddleware       -- /api/... : stateless API key check + CORS
  SessionAuthMiddleware  -- web routes: session or remember-me login
  CsrfMiddleware         -- web routes: token check on unsafe methods
"""

from api.middleware.api_key import ApiKeyMiddleware
from api.middleware.csrf import CsrfMiddleware
from api.middleware.session import SessionMiddleware
from api.middleware.session_auth import SessionAuthMiddleware

__all__ = ["ApiKeyMiddleware", "CsrfMiddleware", "SessionAuthMiddleware", "SessionMiddleware"]
