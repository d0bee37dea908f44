"""
tests/integration/test_expenses_api.py — Expense endpoints.

Endpoints covered:
  POST  /groups/:id/expenses          → 201 / 400 / 403 / 422
  GET   /groups/:id/expenses          → 200
  GET   /expenses/:id                 → 200 / 404
  PATCH /expenses/:id                 → 200 / 422
  GET   /expenses/:id/split-validity  → 200

Amounts come back as strings at the column's scale ("30.000"), so they are
compared as Decimal.
"""

from __future__ import annotations

from decimal import Decimal

from .conftest import (
    add_member,
    auth_headers,
    make_expense,
    make_group,
    register,
)


def _setup(client, n_members: int = 3):
    names = ["alice", "bob", "carol"][:n_members]
    users = [register(client, name) for name in names]
    owner = users[0]
    group = make_group(client, owner["access_token"])
    for user in users[1:]:
        add_member(client, owner["access_token"], group["id"], user["user"]["id"])
    return users, group


def _shares(expense: dict) -> dict[int, Decimal]:
    return {s["user_id"]: Decimal(s["share_amount"]) for s in expense["shares"]}


# ═══════════════════════════════════════════════════════════════════════════
# Create: the four split methods
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateExpense:

    def test_equal_split_over_all_members(self, client):
        (alice, bob, carol), group = _setup(client)

        resp = make_expense(
            client, alice["access_token"], group["id"],
            payer_id=alice["user"]["id"], amount="100.00",
        )

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["warnings"] == []
        expense = body["data"]
        assert expense["split_method"] == "equal"
        assert expense["currency"] == "USD"
        assert expense["payer_name"] == "Alice"
        assert _shares(expense) == {
            alice["user"]["id"]: Decimal("33.33"),
            bob["user"]["id"]:   Decimal("33.33"),
            carol["user"]["id"]: Decimal("33.34"),
        }

    def test_equal_split_over_chosen_participants(self, client):
        (alice, bob, _), group = _setup(client)

        resp = make_expense(
            client, bob["access_token"], group["id"],
            payer_id=bob["user"]["id"], amount="60.00",
            participants=[{"user_id": alice["user"]["id"]}, {"user_id": bob["user"]["id"]}],
        )

        assert resp.status_code == 201
        assert _shares(resp.get_json()["data"]) == {
            alice["user"]["id"]: Decimal("30.00"),
            bob["user"]["id"]:   Decimal("30.00"),
        }

    def test_percentage_split(self, client):
        (alice, bob, _), group = _setup(client)

        resp = make_expense(
            client, alice["access_token"], group["id"],
            payer_id=alice["user"]["id"], amount="50.00", split_method="percentage",
            participants=[
                {"user_id": alice["user"]["id"], "share_percentage": "70"},
                {"user_id": bob["user"]["id"], "share_percentage": "30"},
            ],
        )

        assert resp.status_code == 201
        assert _shares(resp.get_json()["data"]) == {
            alice["user"]["id"]: Decimal("35.00"),
            bob["user"]["id"]:   Decimal("15.00"),
        }

    def test_shares_split(self, client):
        (alice, bob, carol), group = _setup(client)

        resp = make_expense(
            client, alice["access_token"], group["id"],
            payer_id=alice["user"]["id"], amount="40.00", split_method="shares",
            participants=[
                {"user_id": alice["user"]["id"], "share_count": 2},
                {"user_id": bob["user"]["id"], "share_count": 1},
                {"user_id": carol["user"]["id"], "share_count": 1},
            ],
        )

        assert resp.status_code == 201
        shares = _shares(resp.get_json()["data"])
        assert shares[alice["user"]["id"]] == Decimal("20.00")
        assert shares[bob["user"]["id"]] == Decimal("10.00")

    def test_exact_split(self, client):
        (alice, bob, _), group = _setup(client)

        resp = make_expense(
            client, alice["access_token"], group["id"],
            payer_id=alice["user"]["id"], amount="25.00", split_method="exact",
            participants=[
                {"user_id": alice["user"]["id"], "share_amount": "5.50"},
                {"user_id": bob["user"]["id"], "share_amount": "19.50"},
            ],
        )

        assert resp.status_code == 201
        assert sum(_shares(resp.get_json()["data"]).values()) == Decimal("25.00")


class TestCreateExpenseRejections:

    def test_exact_split_that_does_not_add_up(self, client):
        (alice, bob, _), group = _setup(client)

        resp = make_expense(
            client, alice["access_token"], group["id"],
            payer_id=alice["user"]["id"], amount="100.00", split_method="exact",
            participants=[
                {"user_id": alice["user"]["id"], "share_amount": "40.00"},
                {"user_id": bob["user"]["id"], "share_amount": "40.00"},
            ],
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "SPLIT_SUM_MISMATCH"

    def test_percentages_must_total_100(self, client):
        (alice, bob, _), group = _setup(client)

        resp = make_expense(
            client, alice["access_token"], group["id"],
            payer_id=alice["user"]["id"], amount="10.00", split_method="percentage",
            participants=[
                {"user_id": alice["user"]["id"], "share_percentage": "50"},
                {"user_id": bob["user"]["id"], "share_percentage": "40"},
            ],
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "PERCENTAGE_SUM_MISMATCH"

    def test_payer_must_be_member(self, client):
        (alice, _, _), group = _setup(client)
        outsider = register(client, "dave")

        resp = make_expense(
            client, alice["access_token"], group["id"],
            payer_id=outsider["user"]["id"], amount="10.00",
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "PAYER_NOT_MEMBER"

    def test_participant_must_be_member(self, client):
        (alice, _, _), group = _setup(client)
        outsider = register(client, "dave")

        resp = make_expense(
            client, alice["access_token"], group["id"],
            payer_id=alice["user"]["id"], amount="10.00",
            participants=[{"user_id": alice["user"]["id"]}, {"user_id": outsider["user"]["id"]}],
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "PARTICIPANT_NOT_MEMBER"

    def test_precision_beyond_currency(self, client):
        (alice, _, _), group = _setup(client)

        resp = make_expense(
            client, alice["access_token"], group["id"],
            payer_id=alice["user"]["id"], amount="10.50", currency="JPY",
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "INVALID_AMOUNT_PRECISION"

    def test_unknown_split_method(self, client):
        (alice, _, _), group = _setup(client)

        resp = make_expense(
            client, alice["access_token"], group["id"],
            payer_id=alice["user"]["id"], amount="10.00", split_method="thirds",
        )

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_SPLIT_METHOD"

    def test_nothing_is_written_when_rejected(self, client):
        (alice, bob, _), group = _setup(client)
        make_expense(
            client, alice["access_token"], group["id"],
            payer_id=alice["user"]["id"], amount="100.00", split_method="exact",
            participants=[
                {"user_id": alice["user"]["id"], "share_amount": "40.00"},
                {"user_id": bob["user"]["id"], "share_amount": "40.00"},
            ],
        )

        resp = client.get(
            f"/api/v1/groups/{group['id']}/expenses",
            headers=auth_headers(alice["access_token"]),
        )
        assert resp.get_json()["data"] == []


# ═══════════════════════════════════════════════════════════════════════════
# Foreign currency
# ═══════════════════════════════════════════════════════════════════════════

def test_foreign_currency_expense_is_accepted_with_warning(client):
    (alice, _, _), group = _setup(client)

    resp = make_expense(
        client, alice["access_token"], group["id"],
        payer_id=alice["user"]["id"], amount="90.00", currency="EUR",
    )

    assert resp.status_code == 201
    body = resp.get_json()
    assert body["data"]["currency"] == "EUR"
    assert [w["code"] for w in body["warnings"]] == ["FOREIGN_CURRENCY"]


# ═══════════════════════════════════════════════════════════════════════════
# Read, edit, split validity
# ═══════════════════════════════════════════════════════════════════════════

class TestReadAndEdit:

    def _create(self, client, alice, group, amount="90.00"):
        resp = make_expense(
            client, alice["access_token"], group["id"],
            payer_id=alice["user"]["id"], amount=amount, description="Groceries",
        )
        assert resp.status_code == 201
        return resp.get_json()["data"]

    def test_get_expense(self, client):
        (alice, _, _), group = _setup(client)
        expense = self._create(client, alice, group)

        resp = client.get(
            f"/api/v1/expenses/{expense['id']}",
            headers=auth_headers(alice["access_token"]),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["description"] == "Groceries"

    def test_unknown_expense(self, client):
        alice = register(client, "alice")
        resp = client.get("/api/v1/expenses/999", headers=auth_headers(alice["access_token"]))
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "EXPENSE_NOT_FOUND"

    def test_edit_description_keeps_shares(self, client):
        (alice, _, _), group = _setup(client)
        expense = self._create(client, alice, group)

        resp = client.patch(
            f"/api/v1/expenses/{expense['id']}",
            json={"description": "Weekly groceries"},
            headers=auth_headers(alice["access_token"]),
        )

        assert resp.status_code == 200
        edited = resp.get_json()["data"]
        assert edited["description"] == "Weekly groceries"
        assert _shares(edited) == _shares(expense)

    def test_edit_amount_recomputes_shares(self, client):
        (alice, bob, carol), group = _setup(client)
        expense = self._create(client, alice, group)

        resp = client.patch(
            f"/api/v1/expenses/{expense['id']}",
            json={"amount": "30.00"},
            headers=auth_headers(alice["access_token"]),
        )

        assert resp.status_code == 200
        assert _shares(resp.get_json()["data"]) == {
            alice["user"]["id"]: Decimal("10.00"),
            bob["user"]["id"]:   Decimal("10.00"),
            carol["user"]["id"]: Decimal("10.00"),
        }

    def test_edit_participants(self, client):
        (alice, bob, _), group = _setup(client)
        expense = self._create(client, alice, group)

        resp = client.patch(
            f"/api/v1/expenses/{expense['id']}",
            json={"participants": [{"user_id": alice["user"]["id"]}, {"user_id": bob["user"]["id"]}]},
            headers=auth_headers(alice["access_token"]),
        )

        assert resp.status_code == 200
        assert set(_shares(resp.get_json()["data"])) == {alice["user"]["id"], bob["user"]["id"]}

    def test_soft_deleted_expense_cannot_be_edited(self, client):
        (alice, _, _), group = _setup(client)
        expense = self._create(client, alice, group)
        client.delete(f"/api/v1/expenses/{expense['id']}", headers=auth_headers(alice["access_token"]))

        resp = client.patch(
            f"/api/v1/expenses/{expense['id']}",
            json={"description": "Too late"},
            headers=auth_headers(alice["access_token"]),
        )
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "EXPENSE_DELETED"

    def test_list_excludes_soft_deleted(self, client):
        (alice, _, _), group = _setup(client)
        kept = self._create(client, alice, group)
        dropped = self._create(client, alice, group)
        client.delete(f"/api/v1/expenses/{dropped['id']}", headers=auth_headers(alice["access_token"]))

        resp = client.get(
            f"/api/v1/groups/{group['id']}/expenses",
            headers=auth_headers(alice["access_token"]),
        )
        assert [e["id"] for e in resp.get_json()["data"]] == [kept["id"]]

    def test_split_validity(self, client):
        (alice, _, _), group = _setup(client)
        expense = self._create(client, alice, group, amount="100.00")

        resp = client.get(
            f"/api/v1/expenses/{expense['id']}/split-validity",
            headers=auth_headers(alice["access_token"]),
        )

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["is_valid"] is True
        assert Decimal(data["share_total"]) == Decimal("100.00")
