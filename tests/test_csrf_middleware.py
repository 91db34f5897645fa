"""
tests/test_csrf_middleware.py -- Integration tests for CSRF enforcement.

Every test logs in first: the session-auth gate sits outside the CSRF gate,
so an anonymous POST would be answered with 401/302 before any token check.

Coverage:
  - Safe methods pass without a token
  - Unsafe methods without / with a wrong token -> 403 (JSON for AJAX,
    plain text otherwise, a redirect back to the form for POST /login)
  - A body that cannot be parsed is treated as carrying no token
  - Token accepted from X-CSRF-Token, the token-name header, a form field,
    a JSON body field and the query string
  - The body stays readable by the route after the gate inspected it
  - /api/... is exempt
  - CSRF_ROTATE_ON_VALIDATE=true voids a token after one use
"""

from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from asgi import build_app
from conftest import API_KEY, csrf_token_from, start_client
from core.config import Settings

AJAX = {"X-Requested-With": "XMLHttpRequest"}


def _token(client: TestClient) -> str:
    return client.get("/ajax/csrf-token").json()["data"]["value"]


@pytest.fixture
def authed(web_client: TestClient, login) -> TestClient:
    login(web_client)
    return web_client


class TestSafeMethods:
    def test_get_needs_no_token(self, authed: TestClient) -> None:
        resp = authed.get("/ajax/machines", headers=AJAX)
        assert resp.status_code == 200
        assert resp.json()["success"] is True

    def test_csrf_token_endpoint(self, authed: TestClient) -> None:
        data = authed.get("/ajax/csrf-token").json()["data"]
        assert data["name"] == "_csrf_token"
        assert len(data["value"]) == 64

    def test_pages_render_same_token(self, authed: TestClient) -> None:
        assert csrf_token_from(authed.get("/").text) == _token(authed)


class TestRejection:
    def test_missing_token_ajax(self, authed: TestClient) -> None:
        resp = authed.post("/ajax/machines", json={"label": "web-01"}, headers=AJAX)
        assert resp.status_code == 403
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "CSRF token validation failed"
        assert body["errors"]["csrf"] == "Security validation failed. Please refresh the page and try again."

    def test_wrong_token_ajax(self, authed: TestClient) -> None:
        resp = authed.post("/ajax/machines", json={"label": "web-01"}, headers={**AJAX, "X-CSRF-Token": "0" * 64})
        assert resp.status_code == 403

    def test_missing_token_plain(self, authed: TestClient) -> None:
        resp = authed.post("/logout")
        assert resp.status_code == 403
        assert resp.text == "CSRF token validation failed. Please go back and try again."

    def test_delete_checked_too(self, authed: TestClient) -> None:
        resp = authed.delete("/ajax/machines/1", headers=AJAX)
        assert resp.status_code == 403

    def test_login_post_checked(self, web_client: TestClient) -> None:
        resp = web_client.post("/login", data={"username": "rackadmin", "password": "whatever"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        assert web_client.get("/").status_code == 302

    def test_unparseable_multipart_body(self, authed: TestClient) -> None:
        resp = authed.post("/logout", content=b"garbage", headers={"Content-Type": "multipart/form-data"})
        assert resp.status_code == 403
        assert authed.get("/").status_code == 200

    def test_unparseable_multipart_login_post(self, web_client: TestClient) -> None:
        resp = web_client.post("/login", content=b"garbage", headers={"Content-Type": "multipart/form-data"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"

    def test_token_from_other_session_rejected(self, authed: TestClient, login) -> None:
        stolen = _token(authed)
        authed.cookies.clear()
        login(authed)
        resp = authed.post("/ajax/machines", json={"label": "web-01"}, headers={**AJAX, "X-CSRF-Token": stolen})
        assert resp.status_code == 403


class TestTokenSources:
    def test_x_csrf_token_header(self, authed: TestClient) -> None:
        resp = authed.post("/ajax/machines", json={"label": "web-01"}, headers={**AJAX, "X-CSRF-Token": _token(authed)})
        assert resp.status_code == 201
        assert resp.json()["data"]["machine_id"] >= 1

    def test_token_name_header(self, authed: TestClient) -> None:
        resp = authed.post("/ajax/machines", json={"label": "web-02"}, headers={**AJAX, "_csrf_token": _token(authed)})
        assert resp.status_code == 201

    def test_json_body_field(self, authed: TestClient) -> None:
        token = _token(authed)
        resp = authed.post("/ajax/machines", json={"label": "web-03", "_csrf_token": token}, headers=AJAX)
        assert resp.status_code == 201
        machine_id = resp.json()["data"]["machine_id"]
        assert authed.app.state.inventory.get_machine(machine_id).label == "web-03"

    def test_query_parameter(self, authed: TestClient) -> None:
        token = _token(authed)
        resp = authed.post(f"/ajax/machines?_csrf_token={token}", json={"label": "web-04"}, headers=AJAX)
        assert resp.status_code == 201

    def test_form_field(self, authed: TestClient) -> None:
        token = csrf_token_from(authed.get("/").text)
        resp = authed.post("/logout", data={"_csrf_token": token})
        assert resp.status_code == 302

    def test_header_wins_over_body(self, authed: TestClient) -> None:
        token = _token(authed)
        resp = authed.post(
            "/ajax/machines",
            json={"label": "web-05", "_csrf_token": token},
            headers={**AJAX, "X-CSRF-Token": "0" * 64},
        )
        assert resp.status_code == 403

    def test_token_is_reusable_by_default(self, authed: TestClient) -> None:
        token = _token(authed)
        headers = {**AJAX, "X-CSRF-Token": token}
        assert authed.post("/ajax/machines", json={"label": "a-01"}, headers=headers).status_code == 201
        assert authed.post("/ajax/machines", json={"label": "a-02"}, headers=headers).status_code == 201

    def test_ajax_delete(self, authed: TestClient) -> None:
        headers = {**AJAX, "X-CSRF-Token": _token(authed)}
        created = authed.post("/ajax/machines", json={"label": "gone-01"}, headers=headers)
        machine_id = created.json()["data"]["machine_id"]

        assert authed.delete(f"/ajax/machines/{machine_id}", headers=headers).status_code == 200
        missing = authed.delete(f"/ajax/machines/{machine_id}", headers=headers)
        assert missing.status_code == 404
        assert missing.json() == {"success": False, "error": "Machine not found"}

    def test_api_tree_exempt(self, authed: TestClient) -> None:
        resp = authed.post("/api/v1/machines", json={"label": "api-01"}, headers={"X-API-Key": API_KEY})
        assert resp.status_code == 201


@pytest.fixture
def rotating_client(login) -> Generator[TestClient, None, None]:
    running = start_client(build_app(Settings(csrf_rotate_on_validate=True)), follow_redirects=False)
    client = next(running)
    login(client)
    yield client
    next(running, None)


def test_rotation_voids_used_token(rotating_client: TestClient) -> None:
    token = _token(rotating_client)
    headers = {**AJAX, "X-CSRF-Token": token}
    assert rotating_client.post("/ajax/machines", json={"label": "r-01"}, headers=headers).status_code == 201
    assert rotating_client.post("/ajax/machines", json={"label": "r-02"}, headers=headers).status_code == 403
    assert _token(rotating_client) != token
