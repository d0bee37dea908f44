"""
tests/integration/test_payments_api.py — Payment endpoints.

Endpoints covered:
  POST /groups/:id/payments  → 201 / 403 / 422
  GET  /groups/:id/payments  → 200
  GET  /payments/:id         → 200 / 404
"""

from __future__ import annotations

from decimal import Decimal

from .conftest import (
    add_member,
    auth_headers,
    make_group,
    make_payment,
    register,
)


def _setup(client):
    alice = register(client, "alice")
    bob = register(client, "bob")
    group = make_group(client, alice["access_token"])
    add_member(client, alice["access_token"], group["id"], bob["user"]["id"])
    return alice, bob, group


class TestCreatePayment:

    def test_payer_defaults_to_caller(self, client):
        alice, bob, group = _setup(client)

        resp = make_payment(client, bob["access_token"], group["id"], alice["user"]["id"], "20.00")

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["warnings"] == []
        payment = body["data"]
        assert payment["payer_id"] == bob["user"]["id"]
        assert payment["recipient_id"] == alice["user"]["id"]
        assert payment["recipient_name"] == "Alice"
        assert Decimal(payment["amount"]) == Decimal("20.00")
        assert payment["currency"] == "USD"

    def test_explicit_payer(self, client):
        alice, bob, group = _setup(client)

        resp = make_payment(
            client, alice["access_token"], group["id"],
            recipient_id=alice["user"]["id"], amount="5.00", payer_id=bob["user"]["id"],
        )

        assert resp.status_code == 201
        assert resp.get_json()["data"]["payer_id"] == bob["user"]["id"]

    def test_self_payment_rejected(self, client):
        alice, _, group = _setup(client)
        resp = make_payment(client, alice["access_token"], group["id"], alice["user"]["id"], "5.00")
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "SELF_PAYMENT"

    def test_recipient_must_be_member(self, client):
        alice, _, group = _setup(client)
        outsider = register(client, "dave")

        resp = make_payment(client, alice["access_token"], group["id"], outsider["user"]["id"], "5.00")

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "RECIPIENT_NOT_MEMBER"

    def test_payer_must_be_member(self, client):
        alice, bob, group = _setup(client)
        outsider = register(client, "dave")

        resp = make_payment(
            client, alice["access_token"], group["id"],
            recipient_id=bob["user"]["id"], amount="5.00", payer_id=outsider["user"]["id"],
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "PAYER_NOT_MEMBER"

    def test_foreign_currency_warning(self, client):
        alice, bob, group = _setup(client)

        resp = make_payment(
            client, bob["access_token"], group["id"], alice["user"]["id"], "20.00", currency="GBP",
        )

        assert resp.status_code == 201
        assert [w["code"] for w in resp.get_json()["warnings"]] == ["FOREIGN_CURRENCY"]

    def test_viewer_cannot_record_payments(self, client):
        alice = register(client, "alice")
        bob = register(client, "bob")
        group = make_group(client, alice["access_token"])
        add_member(client, alice["access_token"], group["id"], bob["user"]["id"], role="viewer")

        resp = make_payment(client, bob["access_token"], group["id"], alice["user"]["id"], "5.00")

        assert resp.status_code == 403


class TestReadPayments:

    def test_get_and_list(self, client):
        alice, bob, group = _setup(client)
        created = make_payment(
            client, bob["access_token"], group["id"], alice["user"]["id"], "20.00",
        ).get_json()["data"]

        one = client.get(f"/api/v1/payments/{created['id']}", headers=auth_headers(alice["access_token"]))
        many = client.get(
            f"/api/v1/groups/{group['id']}/payments",
            headers=auth_headers(alice["access_token"]),
        )

        assert one.status_code == 200
        assert one.get_json()["data"]["id"] == created["id"]
        assert [p["id"] for p in many.get_json()["data"]] == [created["id"]]

    def test_unknown_payment(self, client):
        alice = register(client, "alice")
        resp = client.get("/api/v1/payments/999", headers=auth_headers(alice["access_token"]))
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "PAYMENT_NOT_FOUND"

    def test_non_member_cannot_read(self, client):
        alice, bob, group = _setup(client)
        created = make_payment(
            client, bob["access_token"], group["id"], alice["user"]["id"], "20.00",
        ).get_json()["data"]
        outsider = register(client, "dave")

        resp = client.get(f"/api/v1/payments/{created['id']}", headers=auth_headers(outsider["access_token"]))

        assert resp.status_code == 403
