"""Unit tests for core/config.py -- Settings parsing and the APP_KEY policy.

Covers:
- comma-separated API_KEYS / ALLOWED_HOSTS parsing
- cookie prefix derived from SESSION_NAME
- debug mode auto-generates a missing APP_KEY
- production mode leaves APP_KEY empty (remember-me disabled) without raising
- short APP_KEY and unknown SESSION_BACKEND raise
- the default AUTH_USERNAME is one the login form accepts
"""

import pytest
from pydantic import ValidationError

from auth.tokens import is_valid_username
from core.config import Settings


def test_api_key_list_strips_blanks():
    s = Settings(api_keys=" one, ,two ,")
    assert s.api_key_list == ["one", "two"]


def test_empty_api_keys_is_empty_list():
    assert Settings(api_keys="").api_key_list == []


def test_allowed_hosts():
    assert Settings(allowed_hosts="rack.example.com, localhost").allowed_host_list == ["rack.example.com", "localhost"]
    assert Settings(allowed_hosts="").allowed_host_list == ["*"]


@pytest.mark.parametrize(
    "name,prefix",
    [("rackguard_session", "rackguard"), ("rg_session", "rg"), ("custom", "custom")],
)
def test_cookie_prefix(name, prefix):
    assert Settings(session_name=name).cookie_prefix == prefix


def test_debug_generates_app_key():
    s = Settings(debug=True, app_key="")
    assert len(s.app_key) == 64


def test_production_missing_app_key_fails_closed():
    s = Settings(debug=False, app_key="")
    assert s.app_key == ""


def test_short_app_key_rejected():
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(app_key="too-short")


def test_unknown_session_backend_rejected():
    with pytest.raises(ValidationError, match="SESSION_BACKEND"):
        Settings(session_backend="redis")


def test_default_username_passes_login_format_check():
    default = Settings.model_fields["auth_username"].default
    assert is_valid_username(default)
