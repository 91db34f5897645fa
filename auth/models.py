"""
auth/models.py -- Domain dataclasses for authentication results.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in session/models.py and inventory/models.py.

Layer rule: no imports from api/, web/, session/, or inventory/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Principal:
    """Who the current request is acting as, and how that was established.

    The gates put one of these on request.state.principal after a successful
    check; handlers read it through auth.dependencies.get_principal().

    method:
      "session"  -- session already marked authenticated
      "remember" -- promoted from a valid remember-me cookie this request
      "api_key"  -- REST caller presenting a key from the allow-list
    """

    username: str
    method: str  # "session" | "remember" | "api_key"
    key_prefix: str | None = None  # first 8 chars of the API key, display only
