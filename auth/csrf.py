"""
auth/csrf.py -- Per-session anti-forgery tokens.

Security design decisions:
  Token: secrets.token_hex(32) -- 32 random bytes, 64 hex chars. Stored in
       the session's SessionData (csrf_token / csrf_issued_at), never in a
       cookie of its own.

  Expiry: a token older than token_lifetime seconds (default 3600) is dead.
       get_token() silently mints a replacement; validate_token() fails.

  Comparison: hmac.compare_digest so response time does not reveal how many
       leading characters of a guess were right.

  Reuse: a token stays valid for any number of submissions until it expires
       or regenerate_token() is called. Rotation after every successful check
       is available as a policy switch (CSRF_ROTATE_ON_VALIDATE) and is
       applied by the enforcement gate, not here.

Layer rule: may import from session/ and core/. No imports from api/ or web/.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import time

from markupsafe import Markup

from session.manager import Session

logger = logging.getLogger("rackguard.csrf")

DEFAULT_TOKEN_LIFETIME = 3600
DEFAULT_TOKEN_NAME = "_csrf_token"


def _now() -> int:
    return int(time.time())


class CsrfGuard:
    """Issue and check the anti-forgery token for one session.

    Usage:
        guard = CsrfGuard(request.state.session, token_lifetime=3600)
        token = guard.get_token()
        guard.validate_token(submitted)  # -> bool
    """

    def __init__(
        self,
        session: Session,
        token_lifetime: int = DEFAULT_TOKEN_LIFETIME,
        token_name: str = DEFAULT_TOKEN_NAME,
    ) -> None:
        self._session = session
        self._lifetime = token_lifetime
        self._token_name = token_name

    def generate_token(self) -> str:
        """Mint a fresh token, replacing any previous one outright."""
        token = secrets.token_hex(32)
        data = self._session.data
        data.csrf_token = token
        data.csrf_issued_at = _now()
        logger.debug("Issued new CSRF token")
        return token

    def get_token(self) -> str:
        """Return the live token, minting one if none exists or it expired."""
        data = self._session.data
        if not data.csrf_token or self._is_expired(data.csrf_issued_at):
            return self.generate_token()
        return data.csrf_token

    def validate_token(self, token: str | None) -> bool:
        """Return True only for an exact, unexpired match. Fails closed."""
        if not token:
            return False
        data = self._session.data
        stored = data.csrf_token
        if not stored:
            return False
        if not hmac.compare_digest(stored.encode("utf-8"), token.encode("utf-8")):
            return False
        if self._is_expired(data.csrf_issued_at):
            return False
        return True

    def regenerate_token(self) -> str:
        """Force a new token, e.g. after an action that should void a captured one."""
        return self.generate_token()

    def clear_token(self) -> None:
        data = self._session.data
        data.csrf_token = None
        data.csrf_issued_at = 0

    def get_token_name(self) -> str:
        return self._token_name

    def token_field(self) -> Markup:
        """Hidden <input> carrying the token, safe to drop into a template."""
        return Markup('<input type="hidden" name="{}" value="{}">').format(
            self.get_token_name(), self.get_token()
        )

    def token_data(self) -> dict[str, str]:
        """Name/value pair for script-driven callers and template contexts."""
        return {"name": self.get_token_name(), "value": self.get_token()}

    def _is_expired(self, issued_at: int) -> bool:
        return _now() - issued_at > self._lifetime
