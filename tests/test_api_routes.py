"""
tests/test_api_routes.py -- Integration tests for the AccountGuard REST API.

These tests exercise the full stack: FastAPI routing -> auth dependency
injection -> AuthService and stores -> error envelope / response model
serialization.

Coverage:
  - Auth failures: 401 without a token, 403 for non-admin on admin routes
  - Register/login happy path, policy violations in the error envelope
  - Lockout over HTTP: 401 with attempts_remaining, then 423 with locked_until
  - Session header: revoked X-Session-Id is refused, logout revokes
  - Session, lockout and audit admin endpoints
  - Database failure: 500 storage_error envelope without the driver message

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- TestClient with an admin JWT.
    The admin is "testadmin" / ADMIN_PASSWORD.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from conftest import ADMIN_NAME, ADMIN_PASSWORD, bearer, login

PASSWORD = "Str0ng!Pass"


def _register(client: TestClient, name: str, password: str = PASSWORD):
    resp = client.post("/api/v1/auth/register", json={"name": name, "password": password, "profession": "tester"})
    client.cookies.clear()
    return resp


class TestApiAuthFailure:
    """Unauthenticated or under-privileged requests must be refused."""

    def test_get_me_unauthenticated(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_garbage_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/me", headers=bearer("not-a-jwt"))
        assert resp.status_code == 401

    def test_admin_route_as_user(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        user_token = _register(client, "plainuser").json()["access_token"]
        resp = client.get("/api/v1/auth/users", headers=bearer(user_token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_audit_requires_admin(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        assert client.get("/api/v1/audit").status_code == 401


class TestRegisterAndLogin:
    def test_register_returns_token_and_user(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = _register(client, "newbie")
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["user"]["name"] == "newbie"
        assert data["user"]["role"] == "user"
        assert "password_hash" not in data["user"]
        assert resp.headers["Cache-Control"] == "no-store"

    def test_register_weak_password_lists_violations(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = _register(client, "alice", "Weak1!")
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert error["violations"] == ["min_length"]

    def test_register_duplicate_name(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _register(client, "twin")
        resp = _register(client, "TWIN")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_login_success(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, uid = api_client
        resp = login(client, ADMIN_NAME, ADMIN_PASSWORD)
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["user"]["id"] == uid
        assert len(data["session_id"]) == 64
        assert data["password_expired"] is False
        assert resp.headers["Cache-Control"] == "no-store"
        assert "access_token" in resp.cookies

    def test_login_missing_fields(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = login(client, "", "")
        assert resp.status_code == 400

    def test_unknown_user_and_wrong_password_look_alike(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _register(client, "dana")
        unknown = login(client, "nobody-here", PASSWORD).json()["error"]
        wrong = login(client, "dana", "Wr0ng!Pass").json()["error"]
        assert unknown["code"] == wrong["code"] == "bad_credentials"
        assert unknown["message"] == wrong["message"]

    def test_bob_is_locked_out(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        bob_id = _register(client, "bob").json()["user"]["id"]

        for expected in (4, 3, 2, 1):
            resp = login(client, "bob", "Wr0ng!Pass")
            assert resp.status_code == 401
            assert resp.json()["error"]["attempts_remaining"] == expected

        resp = login(client, "bob", "Wr0ng!Pass")
        assert resp.status_code == 423
        assert resp.json()["error"]["code"] == "account_locked"
        assert "locked_until" in resp.json()["error"]

        assert login(client, "bob", PASSWORD).status_code == 423

        locked = client.get("/api/v1/lockout", headers=bearer(token)).json()
        assert bob_id in [a["user_id"] for a in locked["accounts"]]
        status = client.get(f"/api/v1/lockout/{bob_id}", headers=bearer(token)).json()
        assert status["is_locked"] is True

        resp = client.post(f"/api/v1/lockout/{bob_id}/unlock", headers=bearer(token))
        assert resp.status_code == 200
        assert login(client, "bob", PASSWORD).status_code == 200


class TestAuthenticatedRoutes:
    def test_me_with_session(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _register(client, "erin")
        data = login(client, "erin", PASSWORD).json()
        resp = client.get("/api/v1/auth/me", headers=bearer(data["access_token"], data["session_id"]))
        assert resp.status_code == 200
        assert resp.json()["name"] == "erin"

    def test_logout_revokes_session(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _register(client, "frank")
        data = login(client, "frank", PASSWORD).json()
        headers = bearer(data["access_token"], data["session_id"])

        assert client.post("/api/v1/auth/logout", headers=headers).status_code == 200
        client.cookies.clear()
        assert client.get("/api/v1/auth/me", headers=headers).status_code == 401

    def test_foreign_session_header_is_refused(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        _register(client, "gina")
        gina = login(client, "gina", PASSWORD).json()
        resp = client.get("/api/v1/auth/me", headers=bearer(token, gina["session_id"]))
        assert resp.status_code == 401

    def test_change_password(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _register(client, "hank")
        first = login(client, "hank", PASSWORD).json()
        second = login(client, "hank", PASSWORD).json()
        headers = bearer(second["access_token"], second["session_id"])

        resp = client.post(
            "/api/v1/auth/password",
            json={"current_password": PASSWORD, "new_password": "N3w!Password"},
            headers=headers,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["count"] == 1
        assert client.get("/api/v1/auth/me", headers=bearer(first["access_token"], first["session_id"])).status_code == 401
        assert login(client, "hank", "N3w!Password").status_code == 200

        reuse = client.post(
            "/api/v1/auth/password",
            json={"current_password": "N3w!Password", "new_password": PASSWORD},
            headers=headers,
        )
        assert reuse.status_code == 400
        assert reuse.json()["error"]["violations"] == ["reuse"]


class TestSessionRoutes:
    def test_my_sessions_and_revoke_all(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _register(client, "ivan")
        sessions = [login(client, "ivan", PASSWORD).json() for _ in range(3)]
        current = sessions[-1]
        headers = bearer(current["access_token"], current["session_id"])

        listing = client.get("/api/v1/sessions/my", headers=headers).json()
        assert listing["count"] == 3

        resp = client.delete("/api/v1/sessions", headers=headers)
        assert resp.json()["count"] == 2
        remaining = client.get("/api/v1/sessions/my", headers=headers).json()["sessions"]
        assert [s["session_id"] for s in remaining] == [current["session_id"]]

    def test_session_cap_over_http(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        carol_id = _register(client, "carol").json()["user"]["id"]
        first = login(client, "carol", PASSWORD).json()
        for _ in range(5):
            login(client, "carol", PASSWORD)

        active = client.get(f"/api/v1/sessions/users/{carol_id}", headers=bearer(token)).json()
        assert active["count"] == 5
        assert first["session_id"] not in [s["session_id"] for s in active["sessions"]]

    def test_cannot_revoke_someone_elses_session(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        _register(client, "jane")
        _register(client, "kurt")
        jane = login(client, "jane", PASSWORD).json()
        kurt = login(client, "kurt", PASSWORD).json()

        resp = client.delete(f"/api/v1/sessions/{jane['session_id']}", headers=bearer(kurt["access_token"]))
        assert resp.status_code == 404

        resp = client.delete(f"/api/v1/sessions/{jane['session_id']}", headers=bearer(token))
        assert resp.status_code == 200
        assert resp.json()["status"] == "revoked"

    def test_cleanup(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post("/api/v1/sessions/cleanup", headers=bearer(token))
        assert resp.status_code == 200
        assert resp.json()["count"] >= 0


class TestAdminAndPolicyRoutes:
    def test_password_policy_is_public(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        data = client.get("/api/v1/password-policy").json()
        assert data["min_length"] == 8
        assert data["prevent_reuse"] == 5

    def test_lockout_policy_is_public(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        assert client.get("/api/v1/lockout/policy").json() == {
            "max_attempts": 5,
            "lockout_duration_minutes": 15,
            "attempt_window_minutes": 30,
        }

    def test_admin_creates_and_deletes_user(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post(
            "/api/v1/auth/users",
            json={"name": "opsadmin", "password": PASSWORD, "role": "admin"},
            headers=bearer(token),
        )
        assert resp.status_code == 201, resp.text
        new_id = resp.json()["id"]
        assert resp.json()["role"] == "admin"

        assert client.delete(f"/api/v1/auth/users/{new_id}", headers=bearer(token)).status_code == 204
        assert client.delete(f"/api/v1/auth/users/{new_id}", headers=bearer(token)).status_code == 404

        history = client.get(f"/api/v1/audit/resources/user/{new_id}", headers=bearer(token)).json()
        assert {e["action"] for e in history["logs"]} >= {"register", "delete"}

    def test_last_admin_is_protected(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, uid = api_client
        resp = client.delete(f"/api/v1/auth/users/{uid}", headers=bearer(token))
        assert resp.status_code == 400

    def test_audit_query_filters_and_pages(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        login(client, "no-such-user", PASSWORD)
        resp = client.get("/api/v1/audit", params={"action": "login", "status": "failure", "limit": 2}, headers=bearer(token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["limit"] == 2
        assert len(data["logs"]) <= 2
        assert all(e["status"] == "failure" and e["action"] == "login" for e in data["logs"])

    def test_my_audit(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        token = _register(client, "lena").json()["access_token"]
        data = client.get("/api/v1/audit/my", headers=bearer(token)).json()
        assert [e["action"] for e in data["logs"]] == ["register"]


class TestStorageFailure:
    def test_database_error_is_a_500_envelope(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        lockouts = client.app.state.auth_service.lockouts
        broken = MagicMock()
        broken.begin.side_effect = OperationalError(
            "SELECT * FROM secret_table", {}, Exception("disk I/O error")
        )
        with patch.object(lockouts, "engine", broken):
            resp = client.get("/api/v1/lockout", headers=bearer(token))

        assert resp.status_code == 500
        assert resp.headers["cache-control"] == "no-store"
        error = resp.json()["error"]
        assert error["code"] == "storage_error"
        assert error["message"] == "A storage error occurred."
        assert "secret_table" not in resp.text
        assert "disk I/O" not in resp.text

        # The store recovers once the database does.
        assert client.get("/api/v1/lockout", headers=bearer(token)).status_code == 200
