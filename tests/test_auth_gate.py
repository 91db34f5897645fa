"""
tests/test_auth_gate.py -- Integration tests for the session-auth gate and
the login/logout routes.

These tests run end-to-end through the real ASGI stack using the web_client
fixture (follow_redirects=False). We assert on redirect Location headers and
Set-Cookie headers directly -- following the redirect would hide them.

Coverage:
  - Unauthenticated browser -> 302 /login; AJAX caller -> 401 JSON
  - Public paths (/login) reachable without a session
  - Password login: success, each failure flash message, ID rotation
  - Remember-me: cookie issued on request, promotes a fresh session and
    rotates its ID, tampered / foreign-user cookies are rejected and cleared
  - Logout: session destroyed, both cookies expired, CSRF still required
  - Login attempts beyond LOGIN_RATE_LIMIT get 429
  - A stale login form is sent back to /login with a flash message
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

import api.limiter as limiter_module
from api.limiter import limiter
from conftest import OPERATOR_USERNAME, csrf_token_from
from core.config import Settings

SESSION_COOKIE = "rackguard_session"
REMEMBER_COOKIE = "rackguard_remember"


def _set_cookies(resp) -> list[str]:
    return resp.headers.get_list("set-cookie")


def _expires(resp, name: str) -> bool:
    return any(h.startswith(f"{name}=") and "max-age=0" in h.lower() for h in _set_cookies(resp))


class TestUnauthenticated:
    def test_browser_redirected_to_login(self, web_client: TestClient) -> None:
        resp = web_client.get("/")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"

    def test_ajax_gets_401_json(self, web_client: TestClient) -> None:
        resp = web_client.get("/ajax/machines", headers={"X-Requested-With": "XMLHttpRequest"})
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "error": "Authentication required", "redirect": "/login"}

    def test_accept_json_counts_as_ajax(self, web_client: TestClient) -> None:
        resp = web_client.get("/ajax/csrf-token", headers={"Accept": "application/json"})
        assert resp.status_code == 401
        assert resp.json()["redirect"] == "/login"

    def test_unknown_path_still_gated(self, web_client: TestClient) -> None:
        resp = web_client.get("/no-such-page")
        assert resp.status_code == 302

    def test_login_page_is_public(self, web_client: TestClient) -> None:
        resp = web_client.get("/login")
        assert resp.status_code == 200
        assert csrf_token_from(resp.text)
        assert SESSION_COOKIE in web_client.cookies


class TestPasswordLogin:
    def test_success_redirects_home(self, web_client: TestClient, login) -> None:
        resp = login(web_client)
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"

        home = web_client.get("/")
        assert home.status_code == 200
        assert OPERATOR_USERNAME in home.text

    def test_success_rotates_session_id(self, web_client: TestClient, login) -> None:
        web_client.get("/login")
        before = web_client.cookies.get(SESSION_COOKIE)
        login(web_client)
        after = web_client.cookies.get(SESSION_COOKIE)
        assert before and after and before != after
        assert web_client.app.state.session_store.load(before) is None

    def test_logged_in_user_skips_login_form(self, web_client: TestClient, login) -> None:
        login(web_client)
        resp = web_client.get("/login")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"

    def test_wrong_password(self, web_client: TestClient, login) -> None:
        resp = login(web_client, password="not-the-password")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        assert "Invalid username or password." in web_client.get("/login").text
        assert web_client.get("/").status_code == 302

    def test_wrong_username_same_message(self, web_client: TestClient, login) -> None:
        login(web_client, username="someoneelse")
        assert "Invalid username or password." in web_client.get("/login").text

    def test_bad_username_format(self, web_client: TestClient, login) -> None:
        login(web_client, username="x!")
        assert "Invalid username format." in web_client.get("/login").text

    def test_missing_fields(self, web_client: TestClient, login) -> None:
        login(web_client, username="", password="")
        page = web_client.get("/login").text
        assert "Please enter username and password." in page

    def test_flash_shown_once(self, web_client: TestClient, login) -> None:
        login(web_client, password="nope-nope")
        assert "Invalid username or password." in web_client.get("/login").text
        assert "Invalid username or password." not in web_client.get("/login").text

    def test_no_remember_cookie_by_default(self, web_client: TestClient, login) -> None:
        resp = login(web_client)
        assert not any(h.startswith(f"{REMEMBER_COOKIE}=") for h in _set_cookies(resp))


class TestRememberMe:
    def test_cookie_issued_on_request(self, web_client: TestClient, login) -> None:
        resp = login(web_client, remember=True)
        headers = [h for h in _set_cookies(resp) if h.startswith(f"{REMEMBER_COOKIE}=")]
        assert len(headers) == 1
        assert "max-age=2592000" in headers[0].lower()
        assert "httponly" in headers[0].lower()

    def test_promotes_fresh_session_and_rotates_id(self, web_client: TestClient, login) -> None:
        login(web_client, remember=True)

        # Simulate a browser restart: the session cookie is gone, the
        # remember cookie survives. A new anonymous session is started first.
        web_client.cookies.delete(SESSION_COOKIE)
        web_client.get("/login")
        anonymous = web_client.cookies.get(SESSION_COOKIE)

        resp = web_client.get("/")
        assert resp.status_code == 200
        assert OPERATOR_USERNAME in resp.text

        promoted = web_client.cookies.get(SESSION_COOKIE)
        assert promoted != anonymous
        store = web_client.app.state.session_store
        assert store.load(anonymous) is None
        assert store.load(promoted).values["authenticated"] is True

    def test_tampered_cookie_rejected_and_cleared(self, web_client: TestClient) -> None:
        web_client.cookies.set(REMEMBER_COOKIE, "dGhpcyBpcyBub3QgYSByZWFsIHRva2VuIGF0IGFsbA==")
        resp = web_client.get("/")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        assert _expires(resp, REMEMBER_COOKIE)

    def test_tampered_cookie_ajax_gets_401_and_clear(self, web_client: TestClient) -> None:
        web_client.cookies.set(REMEMBER_COOKIE, "garbage")
        resp = web_client.get("/ajax/machines", headers={"X-Requested-With": "XMLHttpRequest"})
        assert resp.status_code == 401
        assert _expires(resp, REMEMBER_COOKIE)

    def test_token_for_other_user_rejected(self, web_client: TestClient, settings) -> None:
        codec = web_client.app.state.remember.codec
        web_client.cookies.set(REMEMBER_COOKIE, codec.encode("someoneelse", settings.auth_password_hash))
        resp = web_client.get("/")
        assert resp.status_code == 302
        assert _expires(resp, REMEMBER_COOKIE)

    def test_token_for_old_password_rejected(self, web_client: TestClient, settings) -> None:
        codec = web_client.app.state.remember.codec
        stale = codec.encode(settings.auth_username, "$2b$12$" + "x" * 53)
        web_client.cookies.set(REMEMBER_COOKIE, stale)
        resp = web_client.get("/")
        assert resp.status_code == 302
        assert _expires(resp, REMEMBER_COOKIE)


class TestLogout:
    def test_logout_destroys_session(self, web_client: TestClient, login) -> None:
        login(web_client, remember=True)
        sid = web_client.cookies.get(SESSION_COOKIE)
        token = csrf_token_from(web_client.get("/").text)

        resp = web_client.post("/logout", data={"_csrf_token": token})

        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        assert _expires(resp, SESSION_COOKIE)
        assert _expires(resp, REMEMBER_COOKIE)
        assert web_client.app.state.session_store.load(sid) is None
        assert web_client.get("/").status_code == 302

    def test_logout_requires_csrf(self, web_client: TestClient, login) -> None:
        login(web_client)
        resp = web_client.post("/logout")
        assert resp.status_code == 403
        assert web_client.get("/").status_code == 200


class TestLoginRateLimit:
    @pytest.fixture
    def strict_limit(self, monkeypatch):
        monkeypatch.setattr(limiter_module, "get_settings", lambda: Settings(login_rate_limit="2/minute"))
        limiter.reset()
        yield
        limiter.reset()

    def test_attempts_beyond_limit_get_429(self, web_client: TestClient, strict_limit) -> None:
        token = csrf_token_from(web_client.get("/login").text)
        form = {"_csrf_token": token, "username": OPERATOR_USERNAME, "password": "not-the-password"}

        codes = [web_client.post("/login", data=form).status_code for _ in range(4)]

        assert codes == [302, 302, 429, 429]

    def test_429_body_and_retry_after(self, web_client: TestClient, strict_limit) -> None:
        token = csrf_token_from(web_client.get("/login").text)
        form = {"_csrf_token": token, "username": OPERATOR_USERNAME, "password": "not-the-password"}
        for _ in range(2):
            web_client.post("/login", data=form)

        resp = web_client.post("/login", data=form)

        assert resp.status_code == 429
        assert resp.json()["error"] == "Too many requests."
        assert "retry-after" in resp.headers


class TestStaleLoginForm:
    def test_redirects_back_with_flash(self, web_client: TestClient) -> None:
        web_client.get("/login")
        resp = web_client.post("/login", data={"_csrf_token": "0" * 64, "username": OPERATOR_USERNAME, "password": "x"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        assert "Security validation failed. Please try again." in web_client.get("/login").text

    def test_ajax_login_post_still_403(self, web_client: TestClient) -> None:
        resp = web_client.post("/login", data={"username": "rackadmin"}, headers={"X-Requested-With": "XMLHttpRequest"})
        assert resp.status_code == 403
        assert resp.json()["error"] == "CSRF token validation failed"
