"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for RackGuard happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. app_key -> APP_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Implements the DEBUG-conditional APP_KEY policy.

Security notes:
  [K1] APP_KEY keys both the remember-me HMAC and (via SHA-256) the AES-256-CTR
       cipher. A non-empty key shorter than 32 chars is rejected outright.

  [K2] A missing APP_KEY outside debug mode does NOT stop the server. The
       remember-me codec is disabled instead (every token fails validation and
       none are issued). Password login and sessions keep working.

  [K3] An empty API_KEYS list denies every API request. There is no "open"
       mode for the REST API.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, session/, or inventory/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("rackguard.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured" [K2].
    app_key: str = ""
    # Comma-separated list so hosts can be set from a single env var.
    allowed_hosts: str = "*"

    # ------------------------------------------------------------------
    # Single-operator credentials
    # ------------------------------------------------------------------

    # Must pass is_valid_username(): 6-20 letters or digits.
    auth_username: str = "operator"
    # bcrypt hash. Empty means nobody can log in with a password and no
    # remember token can ever match.
    auth_password_hash: str = ""
    login_path: str = "/login"
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # REST API
    # ------------------------------------------------------------------

    api_keys: str = ""

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    session_name: str = "rackguard_session"
    session_lifetime: int = 120  # minutes
    session_backend: str = "memory"  # "memory" | "sql"
    session_db_url: str = "sqlite:///rackguard_sessions.db"

    # ------------------------------------------------------------------
    # Cookies (shared by the session cookie and the remember cookie)
    # ------------------------------------------------------------------

    cookie_secure: bool = False
    cookie_httponly: bool = True
    cookie_lifetime: int = 30  # days, remember cookie only

    # ------------------------------------------------------------------
    # CSRF
    # ------------------------------------------------------------------

    csrf_token_lifetime: int = 3600
    csrf_token_name: str = "_csrf_token"
    csrf_rotate_on_validate: bool = False

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    inventory_db_url: str = "sqlite:///rackguard_inventory.db"

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def api_key_list(self) -> list[str]:
        """API_KEYS split on commas with blanks dropped."""
        return [k.strip() for k in self.api_keys.split(",") if k.strip()]

    @property
    def allowed_host_list(self) -> list[str]:
        return [h.strip() for h in self.allowed_hosts.split(",") if h.strip()] or ["*"]

    @property
    def cookie_prefix(self) -> str:
        """Prefix shared by the session and remember cookies ("rackguard")."""
        name = self.session_name
        return name[: -len("_session")] if name.endswith("_session") else name

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_app_key(self) -> "Settings":
        """Enforce the APP_KEY policy [K1][K2].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Remember-me cookies will not survive a restart.

        Production mode: a missing key disables remember-me (fail closed).

        Both modes: reject keys shorter than 32 characters.
        """
        if self.session_backend not in ("memory", "sql"):
            raise ValueError(f"Unknown SESSION_BACKEND {self.session_backend!r}; expected 'memory' or 'sql'.")
        if not self.app_key:
            if self.debug:
                self.app_key = secrets.token_hex(32)
                logger.warning("Using auto-generated APP_KEY. Remember-me cookies will not persist across restarts.")
            else:
                logger.error("APP_KEY is not set. Remember-me authentication is disabled until it is configured.")
                return self
        if len(self.app_key) < 32:
            raise ValueError("APP_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
