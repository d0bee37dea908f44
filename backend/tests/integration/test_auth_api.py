"""
tests/integration/test_auth_api.py — Registration, login and profile endpoints.

Endpoints covered:
  POST  /auth/register  → 201 / 400 / 409
  POST  /auth/login     → 200 / 401
  GET   /auth/me        → 200 / 401
  GET   /users          → 200
  PATCH /users/me       → 200 / 422
"""

from __future__ import annotations

import jwt

from .conftest import auth_headers, login, register


# ═══════════════════════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════════════════════

class TestRegister:

    def test_register_returns_user_and_token(self, client):
        data = register(client, "alice")

        assert data["user"]["email"] == "alice@test.com"
        assert data["user"]["display_name"] == "Alice"
        assert data["user"]["preferred_currency"] == "USD"
        assert data["access_token"]
        assert "password" not in data["user"]
        assert "password_hash" not in data["user"]

    def test_email_is_normalised_to_lower_case(self, client):
        data = register(client, "alice", email="Alice@Test.com")
        assert data["user"]["email"] == "alice@test.com"

    def test_duplicate_email_rejected(self, client):
        register(client, "alice")
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "ALICE@test.com", "display_name": "Other", "password": "Password1"},
        )
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "DUPLICATE_EMAIL"

    def test_missing_field_reports_missing_field(self, client):
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "alice@test.com", "password": "Password1"},
        )
        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "MISSING_FIELD"
        assert error["field"] == "display_name"

    def test_weak_password_is_invalid_field(self, client):
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "alice@test.com", "display_name": "Alice", "password": "password"},
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_FIELD"


# ═══════════════════════════════════════════════════════════════════════════
# Login and token handling
# ═══════════════════════════════════════════════════════════════════════════

class TestLogin:

    def test_login_returns_token_for_the_same_user(self, client):
        registered = register(client, "alice")
        data = login(client, "alice@test.com")
        assert data["user"]["id"] == registered["user"]["id"]

    def test_wrong_password_is_invalid_credentials(self, client):
        register(client, "alice")
        resp = client.post(
            "/api/v1/auth/login",
            json={"email": "alice@test.com", "password": "Wrong1234"},
        )
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "INVALID_CREDENTIALS"

    def test_unknown_email_is_invalid_credentials(self, client):
        resp = client.post(
            "/api/v1/auth/login",
            json={"email": "nobody@test.com", "password": "Password1"},
        )
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "INVALID_CREDENTIALS"

    def test_soft_deleted_account_cannot_log_in(self, client):
        alice = register(client, "alice")
        client.delete(
            f"/api/v1/users/{alice['user']['id']}",
            headers=auth_headers(alice["access_token"]),
        )
        resp = client.post(
            "/api/v1/auth/login",
            json={"email": "alice@test.com", "password": "Password1"},
        )
        assert resp.status_code == 401


class TestMe:

    def test_me_returns_profile(self, client):
        alice = register(client, "alice")
        resp = client.get("/api/v1/auth/me", headers=auth_headers(alice["access_token"]))
        assert resp.status_code == 200
        assert resp.get_json()["data"]["id"] == alice["user"]["id"]

    def test_missing_token(self, client):
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_MISSING"

    def test_tampered_token(self, client):
        resp = client.get("/api/v1/auth/me", headers=auth_headers("not-a-jwt"))
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_INVALID"

    def test_token_signed_with_other_key(self, client):
        token = jwt.encode({"sub": "1"}, "some-other-secret", algorithm="HS256")
        resp = client.get("/api/v1/auth/me", headers=auth_headers(token))
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_INVALID"


# ═══════════════════════════════════════════════════════════════════════════
# User directory and profile
# ═══════════════════════════════════════════════════════════════════════════

class TestUsers:

    def test_list_users_hides_soft_deleted(self, client):
        alice = register(client, "alice")
        bob = register(client, "bob")
        client.delete(
            f"/api/v1/users/{bob['user']['id']}",
            headers=auth_headers(bob["access_token"]),
        )

        resp = client.get("/api/v1/users", headers=auth_headers(alice["access_token"]))
        assert resp.status_code == 200
        assert [u["id"] for u in resp.get_json()["data"]] == [alice["user"]["id"]]

    def test_update_profile(self, client):
        alice = register(client, "alice")
        resp = client.patch(
            "/api/v1/users/me",
            json={"display_name": "Alice Liddell", "preferred_currency": "EUR"},
            headers=auth_headers(alice["access_token"]),
        )
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["display_name"] == "Alice Liddell"
        assert data["preferred_currency"] == "EUR"

    def test_unsupported_currency_rejected(self, client):
        alice = register(client, "alice")
        resp = client.patch(
            "/api/v1/users/me",
            json={"preferred_currency": "XYZ"},
            headers=auth_headers(alice["access_token"]),
        )
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "INVALID_CURRENCY"
