"""
Unit tests for balance_service data-access helpers, the zero-sum check and
the response builders.

These tests avoid Flask and real DB access. Every DB interaction is mocked
through a fake SQLAlchemy session object.
"""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from backend.app.errors import AppError, ErrorCode, LedgerValidationError, NotFoundError
from backend.app.services import balance_service

_MODULE = "backend.app.services.balance_service"


def _mock_scalars_all(session: MagicMock, rows: list) -> None:
    session.execute.return_value.scalars.return_value.all.return_value = rows


def test_get_active_expenses_returns_rows():
    session = MagicMock()
    rows = [SimpleNamespace(id=1), SimpleNamespace(id=2)]
    _mock_scalars_all(session, rows)

    result = balance_service.get_active_expenses(group_id=10, currency="USD", session=session)

    assert result == rows
    session.execute.assert_called_once()


def test_get_shares_for_active_expenses_returns_rows():
    session = MagicMock()
    rows = [SimpleNamespace(id=11), SimpleNamespace(id=12)]
    _mock_scalars_all(session, rows)

    result = balance_service.get_shares_for_active_expenses(7, "USD", session)

    assert result == rows


def test_get_active_payments_returns_rows():
    session = MagicMock()
    rows = [SimpleNamespace(id=101)]
    _mock_scalars_all(session, rows)

    assert balance_service.get_active_payments(3, "EUR", session) == rows


def test_get_display_names_skips_query_for_empty_set():
    session = MagicMock()

    assert balance_service.get_display_names(set(), session) == {}
    session.execute.assert_not_called()


def test_get_display_names_maps_ids():
    session = MagicMock()
    session.execute.return_value.all.return_value = [
        SimpleNamespace(id=1, display_name="Alice"),
        SimpleNamespace(id=2, display_name="Bob"),
    ]

    assert balance_service.get_display_names({1, 2}, session) == {1: "Alice", 2: "Bob"}


@pytest.mark.parametrize("group", [None, SimpleNamespace(id=5, is_deleted=True)])
def test_get_active_group_raises_for_missing_or_deleted(group):
    session = MagicMock()
    session.get.return_value = group

    with pytest.raises(NotFoundError) as exc_info:
        balance_service.get_active_group(5, session)

    assert exc_info.value.code == ErrorCode.GROUP_NOT_FOUND
    assert exc_info.value.http_status == 404


def test_check_zero_sum_accepts_balanced_ledger():
    balances = {1: Decimal("10.00"), 2: Decimal("-10.00")}
    assert balance_service.check_zero_sum(1, balances) == Decimal("0.00")


def test_check_zero_sum_rejects_unbalanced_ledger():
    balances = {1: Decimal("10.00"), 2: Decimal("-9.00")}

    with pytest.raises(AppError) as exc_info:
        balance_service.check_zero_sum(4, balances)

    assert exc_info.value.code == ErrorCode.INTERNAL_ERROR
    assert exc_info.value.http_status == 500



def test_require_settled_passes_when_every_balance_is_zero():
    session = MagicMock()
    _mock_scalars_all(session, [SimpleNamespace(id=1, primary_currency="USD")])

    with patch(f"{_MODULE}.compute_balances", return_value={7: Decimal("0.00"), 8: Decimal("0.00")}):
        balance_service.require_settled(7, session)


def test_require_settled_rejects_open_balance():
    session = MagicMock()
    groups = [
        SimpleNamespace(id=1, primary_currency="USD"),
        SimpleNamespace(id=2, primary_currency="EUR"),
    ]
    _mock_scalars_all(session, groups)
    balances = [{7: Decimal("0.00")}, {7: Decimal("-12.50"), 8: Decimal("12.50")}]

    with patch(f"{_MODULE}.compute_balances", side_effect=balances):
        with pytest.raises(LedgerValidationError) as exc_info:
            balance_service.require_settled(7, session)

    assert exc_info.value.code == ErrorCode.OUTSTANDING_BALANCE
    assert exc_info.value.http_status == 422
    assert "group 2" in exc_info.value.message


def test_require_settled_ignores_users_without_activity():
    session = MagicMock()
    _mock_scalars_all(session, [SimpleNamespace(id=1, primary_currency="USD")])

    with patch(f"{_MODULE}.compute_balances", return_value={8: Decimal("0.00")}):
        balance_service.require_settled(7, session, group_id=1)

def test_get_balance_response_combines_balances_and_plan():
    session = MagicMock()
    group = SimpleNamespace(id=3, primary_currency="USD", is_deleted=False)
    members = [
        SimpleNamespace(id=1, display_name="Alice"),
        SimpleNamespace(id=2, display_name="Bob"),
    ]
    balances = {1: Decimal("25.00"), 2: Decimal("-25.00")}

    with patch(f"{_MODULE}.get_active_group", return_value=group), \
         patch(f"{_MODULE}.permission_service.require_permission") as require, \
         patch(f"{_MODULE}.compute_balances", return_value=balances), \
         patch(f"{_MODULE}.get_members", return_value=members), \
         patch(f"{_MODULE}.get_display_names", return_value={1: "Alice", 2: "Bob"}):
        result = balance_service.get_balance_response(3, caller_id=1, session=session)

    require.assert_called_once()
    assert result["group_id"] == 3
    assert result["currency"] == "USD"
    assert result["balance_sum"] == Decimal("0.00")
    assert result["balances"] == [
        {"user_id": 1, "display_name": "Alice", "balance": Decimal("25.00")},
        {"user_id": 2, "display_name": "Bob", "balance": Decimal("-25.00")},
    ]
    assert result["settlement_plan"] == [{
        "payer_id": 2,
        "payer_name": "Bob",
        "recipient_id": 1,
        "recipient_name": "Alice",
        "amount": Decimal("25.00"),
    }]


def test_get_balance_response_propagates_forbidden():
    session = MagicMock()
    group = SimpleNamespace(id=3, primary_currency="USD", is_deleted=False)
    forbidden = AppError(ErrorCode.FORBIDDEN, "no", 403)

    with patch(f"{_MODULE}.get_active_group", return_value=group), \
         patch(f"{_MODULE}.permission_service.require_permission", side_effect=forbidden), \
         patch(f"{_MODULE}.compute_balances") as compute:
        with pytest.raises(AppError) as exc_info:
            balance_service.get_balance_response(3, caller_id=99, session=session)

    assert exc_info.value.http_status == 403
    compute.assert_not_called()


def test_plan_rows_fall_back_to_placeholder_name():
    session = MagicMock()

    with patch(f"{_MODULE}.get_display_names", return_value={}):
        rows = balance_service._plan_rows({1: Decimal("5.00"), 2: Decimal("-5.00")}, session)

    assert rows[0]["payer_name"] == "user_2"
    assert rows[0]["recipient_name"] == "user_1"
