"""
session/manager.py -- Per-request session context with fixation and hijack defenses.

One Session object is built per request by api/middleware/session.py and
placed on request.state.session. Gates and handlers receive it explicitly;
there is no module-level "current session".

Lifecycle of a request:
  1. Session(store, settings, cookie_id, user_agent) -- nothing loaded yet.
  2. start()  -- load by cookie ID or mint a new ID, then run the two
                 integrity checks below. Idempotent.
  3. get/set/flash/... -- any accessor auto-starts, so "created on first
                 access" holds even if middleware never called start().
  4. commit(response) -- persist the record and write (or expire) the cookie.

Security design:
  [S1] Strict mode: an unknown or expired cookie ID is never adopted. The
       caller gets a freshly generated ID, so an attacker cannot plant a
       chosen ID in a victim's browser and wait for them to log in.

  [S2] Fixation defense: the ID is rotated on first start and again whenever
       more than FIXATION_WINDOW seconds have passed since the last rotation.
       Login and remember-me promotion call regenerate() explicitly.

  [S3] Fingerprint: SHA-256 of the User-Agent is stored on first start. A
       different fingerprint on a later request is treated as a hijack
       signal: the session is destroyed and a fresh anonymous one started.
       The caller is never told why -- it simply is not logged in any more.

Layer rule: no imports from api/, web/, auth/, or inventory/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from typing import Any

from core.config import Settings
from session.models import SessionData
from session.store import SessionStore

logger = logging.getLogger("rackguard.session")

# Maximum age of a session ID before start() rotates it [S2].
FIXATION_WINDOW = 1800


def _now() -> int:
    return int(time.time())


def _new_session_id() -> str:
    # 32 bytes -> 43 URL-safe chars, 256 bits of entropy.
    return secrets.token_urlsafe(32)


def fingerprint(user_agent: str) -> str:
    """Return the SHA-256 hex digest of a User-Agent string [S3]."""
    return hashlib.sha256(user_agent.encode("utf-8")).hexdigest()


class Session:
    """Server-side session bound to one request.

    Usage (handler side):
        session = request.state.session
        session.set("username", "alice")
        session.flash("error", "Invalid username or password.")
        msg = session.get_flash("error")
    """

    def __init__(
        self,
        store: SessionStore,
        settings: Settings,
        session_id: str | None = None,
        user_agent: str = "",
    ) -> None:
        self._store = store
        self._cookie_name = settings.session_name
        self._max_age = settings.session_lifetime * 60
        self._secure = settings.cookie_secure
        self._httponly = settings.cookie_httponly
        self._incoming_id = session_id or None
        self._user_agent = user_agent
        self._id: str | None = None
        self._data = SessionData()
        self._started = False
        self._destroyed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Activate the session for this request. Safe to call repeatedly."""
        if self._started:
            return True

        data = self._store.load(self._incoming_id) if self._incoming_id else None
        if data is None:
            # [S1] never adopt an ID the store does not know
            self._id = _new_session_id()
            self._data = SessionData()
        else:
            self._id = self._incoming_id
            self._data = data
        self._started = True

        self._prevent_fixation()
        self._validate_fingerprint()
        return True

    def _prevent_fixation(self) -> None:
        now = _now()
        if self._data.regenerated_at == 0 or now - self._data.regenerated_at > FIXATION_WINDOW:
            self.regenerate(delete_old=True)
            self._data.regenerated_at = now

    def _validate_fingerprint(self) -> None:
        current = fingerprint(self._user_agent)
        if self._data.fingerprint is None:
            self._data.fingerprint = current
            return
        if not hmac.compare_digest(self._data.fingerprint, current):
            logger.warning("Session fingerprint mismatch; discarding session and starting a new one")
            self.destroy()
            self.start()

    def regenerate(self, delete_old: bool = True) -> bool:
        """Move the session data to a new random ID.

        With delete_old=True the previous ID stops resolving immediately, so
        at most one ID is ever live for this session's data.
        """
        if not self._started:
            self.start()
        old_id = self._id
        self._id = _new_session_id()
        if delete_old and old_id:
            self._store.delete(old_id)
        self._store.save(self._id, self._data)
        return True

    def destroy(self) -> None:
        """Wipe every key (system keys included), drop the record, expire the cookie."""
        if self._id:
            self._store.delete(self._id)
        self._data = SessionData()
        self._id = None
        self._incoming_id = None
        self._started = False
        self._destroyed = True

    def commit(self, response) -> None:
        """Persist the record and write the session cookie onto `response`.

        A session that was destroyed and never restarted gets its cookie
        expired instead. A session that was never touched writes nothing.
        """
        if self._started and self._id:
            self._store.save(self._id, self._data)
            response.set_cookie(
                self._cookie_name,
                value=self._id,
                max_age=self._max_age,
                path="/",
                secure=self._secure,
                httponly=self._httponly,
                samesite="lax",
            )
        elif self._destroyed:
            response.delete_cookie(
                self._cookie_name,
                path="/",
                secure=self._secure,
                httponly=self._httponly,
                samesite="lax",
            )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def id(self) -> str | None:
        return self._id

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def data(self) -> SessionData:
        """The live SessionData. Used by auth/csrf.py for the token fields."""
        self.start()
        return self._data

    # ------------------------------------------------------------------
    # Application keys
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        self.start()
        return self._data.values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.start()
        self._data.values[key] = value

    def has(self, key: str) -> bool:
        self.start()
        return self._data.values.get(key) is not None

    def remove(self, key: str) -> None:
        self.start()
        self._data.values.pop(key, None)

    def all(self) -> dict[str, Any]:
        """Return a shallow copy of the application keys."""
        self.start()
        return dict(self._data.values)

    def clear(self) -> None:
        """Remove all application keys and pending flash values.

        Fingerprint, rotation time and the CSRF token survive, so clearing
        does not weaken the session's integrity checks.
        """
        self.start()
        self._data.values.clear()
        self._data.flash.clear()

    # ------------------------------------------------------------------
    # Flash values (read at most once)
    # ------------------------------------------------------------------

    def flash(self, key: str, value: Any) -> None:
        self.start()
        self._data.flash[key] = value

    def get_flash(self, key: str, default: Any = None) -> Any:
        self.start()
        if key not in self._data.flash:
            return default
        return self._data.flash.pop(key)

    def has_flash(self, key: str) -> bool:
        self.start()
        return key in self._data.flash
