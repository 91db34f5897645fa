"""
auth/tokens.py -- Password verification and API key utilities.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper). RackGuard has a single
       operator account whose bcrypt hash lives in AUTH_PASSWORD_HASH. The
       _DUMMY_HASH constant enables timing equalization in
       authenticate_operator() so response time does not reveal whether the
       submitted username was the configured one [C1].

  Username format: 6-20 ASCII letters/digits, checked before any bcrypt work
       so garbage input is rejected cheaply. The check runs for every
       attempt, so it leaks nothing about the configured name.

  API keys: static allow-list from API_KEYS. Each candidate is compared
       against every configured key with hmac.compare_digest; membership is
       the only predicate -- no expiry, no per-key state. An empty allow-list
       denies everything [K3].

Layer rule: no imports from api/, web/, session/, or inventory/. Import from
core/ is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hmac
import logging
import re
import secrets

import bcrypt

from core.config import Settings

logger = logging.getLogger("rackguard.auth")

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9]{6,20}$")

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Used by the CLI (`python main.py hash-password`) to produce the value an
    operator puts in AUTH_PASSWORD_HASH.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed or empty hash in configuration
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("rackguard_timing_dummy")


def is_valid_username(username: str) -> bool:
    return bool(USERNAME_PATTERN.fullmatch(username))


def authenticate_operator(settings: Settings, username: str, password: str) -> bool:
    """Check a username/password pair against the configured operator account.

    Always runs bcrypt exactly once:
    - Wrong username: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash
    """
    if username != settings.auth_username or not settings.auth_password_hash:
        verify_password(password, _DUMMY_HASH)
        return False
    return verify_password(password, settings.auth_password_hash)


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


def generate_api_key() -> str:
    """Generate a new API key in the format: rg_<64 hex chars>.

    The operator appends the printed value to API_KEYS.
    """
    return f"rg_{secrets.token_hex(32)}"


def is_valid_api_key(candidate: str | None, allowed: list[str]) -> bool:
    """Return True iff candidate is non-empty and exactly matches an allowed key.

    Every configured key is compared (no early exit) so timing does not
    reveal which key, if any, shared a prefix with the candidate.
    """
    if not candidate or not allowed:
        return False
    encoded = candidate.encode("utf-8")
    matched = False
    for key in allowed:
        if hmac.compare_digest(encoded, key.encode("utf-8")):
            matched = True
    return matched
