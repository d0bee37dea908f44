"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing"), which
    points at in-memory SQLite unless TEST_DATABASE_URL names a real
    database.
  - Every test starts from freshly created tables. Rows cannot simply be
    deleted between tests: the audit log triggers reject DELETE on
    audit_log_entries, so the tables are dropped and recreated instead.
  - Requests run in their own app context, so each one gets its own
    session and rolls back on teardown the way production does.

Helper functions (not fixtures) are provided for common operations:
  - register(client, ...)    → dict with user + access token
  - login(client, ...)       → dict with user + access token
  - auth_headers(token)      → {"Authorization": "Bearer <token>"}
  - make_group(client, ...)  → group dict
  - add_member(...)          → HTTP response
  - make_expense(...)        → HTTP response
  - make_payment(...)        → HTTP response

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

import pytest

from backend.app import create_app
from backend.app.extensions import db as _db


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Creates the Flask application in 'testing' mode once for the session."""
    flask_app = create_app("testing")
    yield flask_app

    with flask_app.app_context():
        _db.session.remove()
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def fresh_tables(app):
    """
    Drops and recreates every table before each test.

    create_all() also fires the after_create hooks that install the audit
    log immutability triggers.
    """
    with app.app_context():
        _db.session.remove()
        _db.drop_all()
        _db.create_all()
    yield
    with app.app_context():
        _db.session.remove()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def register(
    client,
    name: str = "alice",
    email: str | None = None,
    password: str = "Password1",
) -> dict:
    """
    Registers a new user and returns the full response data dict.
    Returns: {"user": {...}, "access_token": "..."}
    """
    if email is None:
        email = f"{name}@test.com"
    resp = client.post(
        "/api/v1/auth/register",
        json={"email": email, "display_name": name.capitalize(), "password": password},
    )
    assert resp.status_code == 201, f"register failed: {resp.get_json()}"
    return resp.get_json()["data"]


def login(client, email: str, password: str = "Password1") -> dict:
    """Logs in a user and returns {"user": {...}, "access_token": "..."}."""
    resp = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def make_group(
    client,
    token: str,
    name: str = "Test Group",
    primary_currency: str | None = None,
) -> dict:
    """
    Creates a group and returns the group data dict.
    The caller (token owner) becomes its first administrator.
    """
    payload: dict = {"name": name}
    if primary_currency is not None:
        payload["primary_currency"] = primary_currency
    resp = client.post(
        "/api/v1/groups/",
        json=payload,
        headers=auth_headers(token),
    )
    assert resp.status_code == 201, f"make_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def add_member(client, token: str, group_id: int, user_id: int, role: str = "editor"):
    """Adds a user to a group (administrator token required). Returns the HTTP response."""
    return client.post(
        f"/api/v1/groups/{group_id}/members",
        json={"user_id": user_id, "role": role},
        headers=auth_headers(token),
    )


def make_expense(
    client,
    token: str,
    group_id: int,
    payer_id: int,
    amount: str,
    split_method: str = "equal",
    participants: list[dict] | None = None,
    currency: str | None = None,
    description: str = "Test Expense",
):
    """
    Creates an expense and returns the HTTP response.
    With split_method='equal' and participants=None the server splits the
    amount across every current member.
    """
    payload: dict = {
        "payer_id": payer_id,
        "description": description,
        "amount": amount,
        "split_method": split_method,
    }
    if participants is not None:
        payload["participants"] = participants
    if currency is not None:
        payload["currency"] = currency

    return client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json=payload,
        headers=auth_headers(token),
    )


def make_payment(
    client,
    token: str,
    group_id: int,
    recipient_id: int,
    amount: str,
    payer_id: int | None = None,
    currency: str | None = None,
):
    """Records a payment and returns the HTTP response. The payer defaults to the caller."""
    payload: dict = {"recipient_id": recipient_id, "amount": amount}
    if payer_id is not None:
        payload["payer_id"] = payer_id
    if currency is not None:
        payload["currency"] = currency

    return client.post(
        f"/api/v1/groups/{group_id}/payments",
        json=payload,
        headers=auth_headers(token),
    )
