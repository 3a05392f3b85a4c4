"""
tests/test_auth_routes.py -- Integration tests for /api/auth/*.

These tests exercise the full stack: FastAPI routing -> auth dependency
injection -> UserStore -> response model serialization -> error envelope.

Fixtures used (from conftest.py):
  - api_client: ApiHarness with testanalyst / testresearcher / testadmin,
    all sharing api_client.password.
"""

from __future__ import annotations

import uuid

from auth.models import Role
from core.config import get_settings


def _register(api, **overrides) -> dict:
    name = f"user{uuid.uuid4().hex[:8]}"
    body = {"username": name, "email": f"{name}@example.com", "password": "pw123456"}
    body.update(overrides)
    resp = api.client.post("/api/auth/register", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestRegister:
    def test_register_returns_user_and_token(self, api_client) -> None:
        resp = api_client.client.post(
            "/api/auth/register",
            json={"username": "newbie", "email": "newbie@example.com", "password": "pw123456"},
        )
        assert resp.status_code == 201
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["message"] == "User registered successfully"
        assert data["user"]["username"] == "newbie"
        assert data["user"]["role"] == "analyst"
        assert "password" not in data["user"]
        assert "hashed_password" not in data["user"]
        claims = api_client.tokens.verify(data["token"])
        assert claims.user_id == data["user"]["id"]
        assert claims.role is Role.ANALYST

    def test_register_ignores_requested_role(self, api_client) -> None:
        data = _register(api_client, role="admin")
        assert data["user"]["role"] == "analyst"

    def test_email_is_normalized(self, api_client) -> None:
        data = _register(api_client, email="Mixed.Case@Example.COM", username="mixedcase")
        assert data["user"]["email"] == "mixed.case@example.com"

    def test_duplicate_email_is_409(self, api_client) -> None:
        first = _register(api_client)
        resp = api_client.client.post(
            "/api/auth/register",
            json={"username": "someoneelse", "email": first["user"]["email"], "password": "pw123456"},
        )
        assert resp.status_code == 409
        assert resp.json() == {
            "error": "duplicate_entry",
            "message": "User with this email or username already exists.",
        }

    def test_duplicate_username_is_409(self, api_client) -> None:
        first = _register(api_client)
        resp = api_client.client.post(
            "/api/auth/register",
            json={"username": first["user"]["username"], "email": "fresh@example.com", "password": "pw123456"},
        )
        assert resp.status_code == 409

    def test_invalid_body_is_400(self, api_client) -> None:
        client = api_client.client
        for body in (
            {"username": "x1", "email": "not-an-email", "password": "pw123456"},
            {"username": "shortpw", "email": "shortpw@example.com", "password": "123"},
            {"email": "nouser@example.com", "password": "pw123456"},
        ):
            resp = client.post("/api/auth/register", json=body)
            assert resp.status_code == 400, body
            assert resp.json()["error"] == "validation_error"


class TestLogin:
    def test_login_valid_credentials(self, api_client) -> None:
        resp = api_client.client.post(
            "/api/auth/login",
            json={"email": "testresearcher@example.com", "password": api_client.password},
        )
        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["message"] == "Login successful"
        claims = api_client.tokens.verify(data["token"])
        assert claims.user_id == api_client.user_ids[Role.RESEARCHER]
        assert claims.role is Role.RESEARCHER

    def test_login_email_is_case_insensitive(self, api_client) -> None:
        resp = api_client.client.post(
            "/api/auth/login",
            json={"email": "TestAnalyst@Example.com", "password": api_client.password},
        )
        assert resp.status_code == 200

    def test_wrong_password_and_unknown_email_look_identical(self, api_client) -> None:
        client = api_client.client
        wrong_pw = client.post("/api/auth/login", json={"email": "testanalyst@example.com", "password": "nope"})
        unknown = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "nope"})
        assert wrong_pw.status_code == unknown.status_code == 401
        assert wrong_pw.json() == unknown.json()
        assert wrong_pw.headers["WWW-Authenticate"] == "Bearer"

    def test_missing_fields_is_400(self, api_client) -> None:
        resp = api_client.client.post("/api/auth/login", json={"email": "testanalyst@example.com"})
        assert resp.status_code == 400
        assert "password" in resp.json()["message"]


class TestMe:
    def test_me_returns_current_user(self, api_client) -> None:
        resp = api_client.client.get("/api/auth/me", headers=api_client.headers(Role.ANALYST))
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == api_client.user_ids[Role.ANALYST]
        assert data["role"] == "analyst"
        assert "hashed_password" not in data

    def test_no_token(self, api_client) -> None:
        resp = api_client.client.get("/api/auth/me")
        assert resp.status_code == 401
        assert resp.json() == {"error": "unauthenticated", "message": "No token provided. Please login."}

    def test_non_bearer_scheme_counts_as_missing(self, api_client) -> None:
        resp = api_client.client.get("/api/auth/me", headers={"Authorization": "Basic abc"})
        assert resp.json()["message"] == "No token provided. Please login."

    def test_invalid_and_expired_tokens(self, api_client) -> None:
        expired = api_client.tokens.issue(api_client.user_ids[Role.ANALYST], Role.ANALYST, expire_seconds=-5)
        for token in ("garbage", expired):
            resp = api_client.client.get("/api/auth/me", headers=_bearer(token))
            assert resp.status_code == 401
            assert resp.json()["message"] == "Invalid or expired token."

    def test_token_for_unknown_user(self, api_client) -> None:
        token = api_client.tokens.issue(987654, Role.ADMIN)
        resp = api_client.client.get("/api/auth/me", headers=_bearer(token))
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid or expired token."

    def test_update_profile(self, api_client) -> None:
        data = _register(api_client)
        headers = _bearer(data["token"])
        resp = api_client.client.put("/api/auth/me", json={"username": "renamed-user", "email": ""}, headers=headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Profile updated successfully"
        assert body["user"]["username"] == "renamed-user"
        assert body["user"]["email"] == data["user"]["email"]

    def test_update_profile_collision_is_409(self, api_client) -> None:
        data = _register(api_client)
        resp = api_client.client.put(
            "/api/auth/me",
            json={"email": "testadmin@example.com"},
            headers=_bearer(data["token"]),
        )
        assert resp.status_code == 409


class TestChangePassword:
    def test_change_password_flow(self, api_client) -> None:
        data = _register(api_client)
        headers = _bearer(data["token"])
        email = data["user"]["email"]
        client = api_client.client

        resp = client.put(
            "/api/auth/change-password",
            json={"currentPassword": "pw123456", "newPassword": "brandnew99"},
            headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json() == {"message": "Password changed successfully"}

        assert client.post("/api/auth/login", json={"email": email, "password": "pw123456"}).status_code == 401
        assert client.post("/api/auth/login", json={"email": email, "password": "brandnew99"}).status_code == 200

    def test_wrong_current_password_is_401(self, api_client) -> None:
        data = _register(api_client)
        resp = api_client.client.put(
            "/api/auth/change-password",
            json={"currentPassword": "wrongwrong", "newPassword": "brandnew99"},
            headers=_bearer(data["token"]),
        )
        assert resp.status_code == 401
        assert resp.json()["message"] == "Current password is incorrect."

    def test_missing_fields_is_400(self, api_client) -> None:
        resp = api_client.client.put(
            "/api/auth/change-password",
            json={"currentPassword": api_client.password},
            headers=api_client.headers(Role.ANALYST),
        )
        assert resp.status_code == 400

    def test_requires_auth(self, api_client) -> None:
        resp = api_client.client.put(
            "/api/auth/change-password",
            json={"currentPassword": "a", "newPassword": "bbbbbb"},
        )
        assert resp.status_code == 401


class TestUserManagement:
    def test_list_users_admin_only(self, api_client) -> None:
        client = api_client.client
        resp = client.get("/api/auth/users", headers=api_client.headers(Role.ADMIN))
        assert resp.status_code == 200
        usernames = {u["username"] for u in resp.json()}
        assert {"testanalyst", "testresearcher", "testadmin"} <= usernames

        for role in (Role.ANALYST, Role.RESEARCHER):
            resp = client.get("/api/auth/users", headers=api_client.headers(role))
            assert resp.status_code == 403
            assert resp.json() == {"error": "forbidden", "message": "Access denied. Required role: admin"}

        assert client.get("/api/auth/users").status_code == 401

    def test_promote_user(self, api_client) -> None:
        data = _register(api_client)
        uid = data["user"]["id"]
        resp = api_client.client.patch(
            f"/api/auth/users/{uid}", json={"role": "researcher"}, headers=api_client.headers(Role.ADMIN)
        )
        assert resp.status_code == 200
        assert resp.json()["role"] == "researcher"

        # Existing tokens keep the role they were issued with; a fresh login picks up the new one.
        login = api_client.client.post(
            "/api/auth/login", json={"email": data["user"]["email"], "password": "pw123456"}
        )
        assert api_client.tokens.verify(login.json()["token"]).role is Role.RESEARCHER

    def test_unknown_role_is_400(self, api_client) -> None:
        uid = api_client.user_ids[Role.ANALYST]
        resp = api_client.client.patch(
            f"/api/auth/users/{uid}", json={"role": "superuser"}, headers=api_client.headers(Role.ADMIN)
        )
        assert resp.status_code == 400

    def test_deactivated_user_is_locked_out(self, api_client) -> None:
        data = _register(api_client)
        uid = data["user"]["id"]
        resp = api_client.client.patch(
            f"/api/auth/users/{uid}", json={"is_active": False}, headers=api_client.headers(Role.ADMIN)
        )
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False

        me = api_client.client.get("/api/auth/me", headers=_bearer(data["token"]))
        assert me.status_code == 401
        assert me.json()["message"] == "Invalid or expired token."
        login = api_client.client.post(
            "/api/auth/login", json={"email": data["user"]["email"], "password": "pw123456"}
        )
        assert login.status_code == 401

    def test_admin_cannot_deactivate_self(self, api_client) -> None:
        uid = api_client.user_ids[Role.ADMIN]
        resp = api_client.client.patch(
            f"/api/auth/users/{uid}", json={"is_active": False}, headers=api_client.headers(Role.ADMIN)
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "You cannot deactivate your own account."

    def test_last_admin_cannot_be_demoted(self, api_client) -> None:
        assert api_client.user_store.count_active_admins() == 1
        uid = api_client.user_ids[Role.ADMIN]
        resp = api_client.client.patch(
            f"/api/auth/users/{uid}", json={"role": "analyst"}, headers=api_client.headers(Role.ADMIN)
        )
        assert resp.status_code == 400
        assert api_client.user_store.get_by_id(uid).role is Role.ADMIN

    def test_empty_patch_is_400(self, api_client) -> None:
        uid = api_client.user_ids[Role.ANALYST]
        resp = api_client.client.patch(f"/api/auth/users/{uid}", json={}, headers=api_client.headers(Role.ADMIN))
        assert resp.status_code == 400

    def test_unknown_user_is_404(self, api_client) -> None:
        resp = api_client.client.patch(
            "/api/auth/users/99999", json={"role": "researcher"}, headers=api_client.headers(Role.ADMIN)
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

    def test_out_of_range_user_id_is_404(self, api_client) -> None:
        resp = api_client.client.patch(
            f"/api/auth/users/{10**20}", json={"role": "researcher"}, headers=api_client.headers(Role.ADMIN)
        )
        assert resp.status_code == 404
        assert resp.json()["message"] == "User not found."


class TestRateLimit:
    def test_login_is_rate_limited(self, api_client, monkeypatch) -> None:
        monkeypatch.setattr(get_settings(), "login_rate_limit", "2/minute")
        body = {"email": "testanalyst@example.com", "password": "wrong-password"}
        statuses = [api_client.client.post("/api/auth/login", json=body).status_code for _ in range(3)]
        assert statuses == [401, 401, 429]

        resp = api_client.client.post("/api/auth/login", json=body)
        assert resp.json()["error"] == "rate_limited"
        assert int(resp.headers["Retry-After"]) > 0
