"""
tests/test_api_routes.py -- Integration tests for the auth and user-management routes.

These tests exercise the full stack: FastAPI routing -> session cookie ->
dependency injection -> Authority -> UserStore/SessionStore -> response model
serialization. Unit testing route functions alone would miss middleware,
cookie handling, exception handlers, and alias serialization.

Coverage:
  - register/login/logout/me happy paths and the session cookie
  - 401 / 403 / 400 envelopes with stable error codes
  - no password or credential material in any response body
  - admin user management: list, create, patch, [M4] guards
  - /me/permissions, /me/password, first-run /setup
  - per-IP rate limit on /login

Fixtures used (from conftest.py):
  - client: TestClient over the app with an isolated database
  - admin_client: same client, signed in as admin 'root' / 'rootpass1'
  - make_user: seeds users (default password 'secret1')
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from auth.models import Role
from core.config import get_settings

_COOKIE = get_settings().session_cookie_name

_ALICE = {
    "username": "alice",
    "password": "secret1",
    "email": "alice@example.org",
    "displayName": "Alice A.",
    "organization": "Data Lab",
}


def _assert_error(resp, status: int, code: str) -> None:
    assert resp.status_code == status, f"Expected {status}, got {resp.status_code}: {resp.text}"
    assert resp.json()["error"]["code"] == code


def _assert_no_credentials(payload) -> None:
    """Recursively check that no password-ish key appears in a response body."""
    if isinstance(payload, dict):
        for key, value in payload.items():
            assert "password" not in key.lower(), f"credential key {key!r} leaked"
            _assert_no_credentials(value)
    elif isinstance(payload, list):
        for item in payload:
            _assert_no_credentials(item)


class TestRegister:
    def test_register_binds_session(self, client: TestClient) -> None:
        """POST /register returns 201 with the new user and a session cookie; /me then works."""
        resp = client.post("/api/register", json=_ALICE)
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["username"] == "alice"
        assert data["role"] == "user"
        assert data["displayName"] == "Alice A."
        assert data["organization"] == "Data Lab"
        assert data["isActive"] is True
        assert "createdAt" in data and "lastLogin" in data
        _assert_no_credentials(data)

        assert _COOKIE in resp.cookies
        set_cookie = resp.headers["set-cookie"].lower()
        assert "httponly" in set_cookie
        assert "samesite=lax" in set_cookie
        assert resp.headers["cache-control"] == "no-store"

        me = client.get("/api/me")
        assert me.status_code == 200
        assert me.json()["username"] == "alice"

    def test_register_duplicate(self, client: TestClient) -> None:
        client.post("/api/register", json=_ALICE)
        client.cookies.clear()
        resp = client.post("/api/register", json={**_ALICE, "email": "other@example.org"})
        _assert_error(resp, 400, "username_taken")
        assert _COOKIE not in resp.cookies

    def test_register_validation(self, client: TestClient) -> None:
        resp = client.post("/api/register", json={**_ALICE, "email": "not-an-email"})
        _assert_error(resp, 422, "validation_error")
        assert "secret1" not in resp.text

    def test_register_ignores_role_field(self, client: TestClient) -> None:
        resp = client.post("/api/register", json={**_ALICE, "role": "admin"})
        assert resp.status_code == 201
        assert resp.json()["role"] == "user"

    def test_register_disabled(self, client: TestClient) -> None:
        client.app.state.authority.self_registration_enabled = False
        _assert_error(client.post("/api/register", json=_ALICE), 403, "registration_disabled")


class TestLogin:
    def test_login_success(self, client: TestClient, make_user) -> None:
        make_user("bob", password="hunter22")
        resp = client.post("/api/login", json={"username": "bob", "password": "hunter22"})
        assert resp.status_code == 200, resp.text
        assert resp.json()["username"] == "bob"
        assert resp.json()["lastLogin"] is not None
        assert _COOKIE in resp.cookies
        _assert_no_credentials(resp.json())

    def test_login_failures_are_indistinguishable(self, client: TestClient, make_user) -> None:
        make_user("bob", password="hunter22")
        wrong = client.post("/api/login", json={"username": "bob", "password": "nope-nope"})
        unknown = client.post("/api/login", json={"username": "ghost", "password": "hunter22"})
        _assert_error(wrong, 401, "invalid_credentials")
        _assert_error(unknown, 401, "invalid_credentials")
        assert wrong.json() == unknown.json()
        assert _COOKIE not in wrong.cookies

    def test_login_inactive(self, client: TestClient, make_user) -> None:
        make_user("bob", password="hunter22", is_active=False)
        resp = client.post("/api/login", json={"username": "bob", "password": "hunter22"})
        _assert_error(resp, 403, "account_inactive")

    def test_no_builtin_admin(self, client: TestClient) -> None:
        resp = client.post("/api/login", json={"username": "admin", "password": "admin1234"})
        _assert_error(resp, 401, "invalid_credentials")

    def test_login_rate_limited(self, client: TestClient) -> None:
        limit = int(get_settings().login_rate_limit.split("/")[0])
        for _ in range(limit):
            client.post("/api/login", json={"username": "ghost", "password": "whatever"})
        resp = client.post("/api/login", json={"username": "ghost", "password": "whatever"})
        _assert_error(resp, 429, "rate_limited")
        assert 1 <= int(resp.headers["retry-after"]) <= 60

    def test_register_rate_limited(self, client: TestClient) -> None:
        """Registration draws from its own per-IP budget and is throttled the same way."""
        limit = int(get_settings().login_rate_limit.split("/")[0])
        for i in range(limit):
            client.cookies.clear()
            client.post("/api/register", json={**_ALICE, "username": f"user{i}"})
        client.cookies.clear()
        resp = client.post("/api/register", json={**_ALICE, "username": "one-too-many"})
        _assert_error(resp, 429, "rate_limited")
        assert client.app.state.authority.users.get_by_username("one-too-many") is None

    def test_logout_is_not_rate_limited(self, client: TestClient) -> None:
        limit = int(get_settings().login_rate_limit.split("/")[0])
        for _ in range(limit + 2):
            assert client.post("/api/logout").status_code == 200


class TestLogoutAndMe:
    def test_me_unauthenticated(self, client: TestClient) -> None:
        resp = client.get("/api/me")
        _assert_error(resp, 401, "not_authenticated")
        assert resp.headers["cache-control"] == "no-store"

    def test_me_with_bogus_cookie(self, client: TestClient) -> None:
        client.cookies.set(_COOKIE, "forged-token")
        _assert_error(client.get("/api/me"), 401, "not_authenticated")

    def test_logout_then_me(self, client: TestClient) -> None:
        client.post("/api/register", json=_ALICE)
        token = client.cookies.get(_COOKIE)
        resp = client.post("/api/logout")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Logged out successfully."}
        _assert_error(client.get("/api/me"), 401, "not_authenticated")

        # The old cookie value is dead server-side too.
        client.cookies.clear()
        client.cookies.set(_COOKIE, token)
        _assert_error(client.get("/api/me"), 401, "not_authenticated")

    def test_logout_without_session(self, client: TestClient) -> None:
        assert client.post("/api/logout").status_code == 200

    def test_permissions(self, client: TestClient, make_user) -> None:
        make_user("up", role=Role.UPLOADER)
        client.post("/api/login", json={"username": "up", "password": "secret1"})
        resp = client.get("/api/me/permissions")
        assert resp.status_code == 200
        assert resp.json() == {"role": "uploader", "uploadDataset": True, "userManagement": False}


class TestChangePassword:
    def test_change_password_rotates_session(self, client: TestClient) -> None:
        client.post("/api/register", json=_ALICE)
        old_token = client.cookies.get(_COOKIE)
        resp = client.post("/api/me/password", json={"currentPassword": "secret1", "newPassword": "better-secret"})
        assert resp.status_code == 200, resp.text
        assert resp.json() == {"message": "Password changed."}
        new_token = resp.cookies.get(_COOKIE)
        assert new_token and new_token != old_token
        assert client.get("/api/me").status_code == 200

        client.cookies.clear()
        resp = client.post("/api/login", json={"username": "alice", "password": "secret1"})
        _assert_error(resp, 401, "invalid_credentials")
        assert client.post("/api/login", json={"username": "alice", "password": "better-secret"}).status_code == 200

    def test_change_password_wrong_current(self, client: TestClient) -> None:
        client.post("/api/register", json=_ALICE)
        resp = client.post("/api/me/password", json={"currentPassword": "wrong", "newPassword": "better-secret"})
        _assert_error(resp, 401, "invalid_credentials")


class TestUserManagement:
    def test_requires_session(self, client: TestClient) -> None:
        _assert_error(client.get("/api/users"), 401, "not_authenticated")

    def test_requires_admin(self, client: TestClient) -> None:
        client.post("/api/register", json=_ALICE)
        _assert_error(client.get("/api/users"), 403, "forbidden")
        _assert_error(client.post("/api/users", json={**_ALICE, "username": "x"}), 403, "forbidden")

    def test_list_users(self, admin_client: TestClient, make_user) -> None:
        make_user("bob", role=Role.UPLOADER)
        resp = admin_client.get("/api/users")
        assert resp.status_code == 200
        rows = resp.json()
        assert [r["username"] for r in rows] == ["bob", "root"]
        assert set(rows[0]) == {"id", "username", "email", "role"}
        assert rows[0]["role"] == "uploader"

    def test_create_user(self, admin_client: TestClient) -> None:
        resp = admin_client.post("/api/users", json={**_ALICE, "role": "uploader"})
        assert resp.status_code == 201, resp.text
        assert resp.json()["role"] == "uploader"
        _assert_no_credentials(resp.json())
        # The admin's own session is untouched.
        assert admin_client.get("/api/me").json()["username"] == "root"

    def test_create_user_duplicate(self, admin_client: TestClient) -> None:
        admin_client.post("/api/users", json=_ALICE)
        _assert_error(admin_client.post("/api/users", json=_ALICE), 400, "username_taken")

    def test_create_user_unknown_role(self, admin_client: TestClient) -> None:
        _assert_error(admin_client.post("/api/users", json={**_ALICE, "role": "superuser"}), 422, "validation_error")

    def test_patch_user(self, admin_client: TestClient, make_user) -> None:
        bob = make_user("bob")
        resp = admin_client.patch(f"/api/users/{bob.id}", json={"role": "uploader"})
        assert resp.status_code == 200, resp.text
        assert resp.json()["role"] == "uploader"

        resp = admin_client.patch(f"/api/users/{bob.id}", json={"isActive": False})
        assert resp.json()["isActive"] is False

    def test_patch_guards(self, admin_client: TestClient) -> None:
        me = admin_client.get("/api/me").json()
        _assert_error(admin_client.patch(f"/api/users/{me['id']}", json={"isActive": False}), 400, "self_deactivation")
        _assert_error(admin_client.patch(f"/api/users/{me['id']}", json={"role": "user"}), 400, "last_admin")
        _assert_error(admin_client.patch(f"/api/users/{me['id']}", json={}), 400, "no_changes")
        _assert_error(admin_client.patch("/api/users/9999", json={"role": "user"}), 404, "user_not_found")

    def test_deactivated_user_is_signed_out(self, client: TestClient, make_user) -> None:
        make_user("root", password="rootpass1", role=Role.ADMIN)
        bob = make_user("bob")
        bob_token = client.app.state.authority.login("bob", "secret1").token

        client.post("/api/login", json={"username": "root", "password": "rootpass1"})
        assert client.patch(f"/api/users/{bob.id}", json={"isActive": False}).status_code == 200

        client.cookies.clear()
        client.cookies.set(_COOKIE, bob_token)
        _assert_error(client.get("/api/me"), 401, "not_authenticated")


class TestSetup:
    def test_first_run(self, client: TestClient) -> None:
        assert client.get("/api/setup").json() == {"setupRequired": True}
        body = {"username": "root", "password": "rootpass1", "email": "root@example.org"}
        resp = client.post("/api/setup", json=body)
        assert resp.status_code == 201, resp.text
        assert resp.json()["role"] == "admin"
        assert client.get("/api/setup").json() == {"setupRequired": False}
        _assert_error(client.post("/api/setup", json={**body, "username": "root2"}), 409, "setup_complete")
