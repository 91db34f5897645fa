"""
session/models.py -- Domain dataclass for server-side session state.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in auth/models.py and inventory/models.py -- the dataclass owns the shape;
session/store.py persists it and session/manager.py does the work.

System fields (fingerprint, rotation time, CSRF token, flash) are typed
attributes rather than reserved keys inside `values`. Application code can
therefore never clobber them with session.set(...), and clear() can wipe
`values` wholesale without a reserved-key list.

Layer rule: no imports from api/, web/, auth/, or inventory/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class SessionData:
    """Everything persisted for one session ID.

    values          -- application keys ("authenticated", "username", ...).
                       Must be JSON-serializable (str/bool/int/float/list/dict).
    flash           -- one-shot values, removed on first read.
    fingerprint     -- SHA-256 hex of the User-Agent that created the session.
    regenerated_at  -- epoch seconds of the last ID rotation; 0 = never.
    csrf_token      -- current anti-forgery token (64 hex chars) or None.
    csrf_issued_at  -- epoch seconds when csrf_token was minted.
    """

    values: dict[str, Any] = field(default_factory=dict)
    flash: dict[str, Any] = field(default_factory=dict)
    fingerprint: str | None = None
    regenerated_at: int = 0
    csrf_token: str | None = None
    csrf_issued_at: int = 0
