"""
Unit tests for the soft-delete state tag and lifecycle_service branches.

Row loading (_lock_or_404) and authorization (_authorize) are patched; the
integration suite covers them against a real database.
"""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from backend.app.errors import (
    AppError,
    ErrorCode,
    LedgerIntegrityError,
    LedgerValidationError,
    LifecycleError,
)
from backend.app.models.base import LifecycleState
from backend.app.models.expense import Expense
from backend.app.models.user import User
from backend.app.services import lifecycle_service
from backend.app.services.lifecycle_service import EntityKind

_MODULE = "backend.app.services.lifecycle_service"


# ═══════════════════════════════════════════════════════════════════════════
# SoftDeleteMixin
# ═══════════════════════════════════════════════════════════════════════════

class TestSoftDeleteMixin:

    def test_new_row_is_active(self):
        expense = Expense()
        assert expense.lifecycle_state is LifecycleState.ACTIVE
        assert expense.is_deleted is False

    def test_mark_deleted_sets_timestamp_once(self):
        expense = Expense()
        when = datetime(2026, 1, 1, tzinfo=timezone.utc)

        assert expense.mark_deleted(when) is True
        assert expense.deleted_at == when
        assert expense.lifecycle_state is LifecycleState.SOFT_DELETED

        assert expense.mark_deleted() is False
        assert expense.deleted_at == when

    def test_mark_restored_clears_timestamp_once(self):
        expense = Expense()
        expense.mark_deleted()

        assert expense.mark_restored() is True
        assert expense.deleted_at is None
        assert expense.mark_restored() is False

    def test_active_row_cannot_be_hard_deleted(self):
        with pytest.raises(LifecycleError) as exc_info:
            Expense(id=4).require_soft_deleted()

        assert exc_info.value.code == ErrorCode.NOT_SOFT_DELETED
        assert exc_info.value.http_status == 409

    def test_soft_deleted_row_may_be_hard_deleted(self):
        expense = Expense(id=4)
        expense.mark_deleted()
        expense.require_soft_deleted()


# ═══════════════════════════════════════════════════════════════════════════
# Entity kinds
# ═══════════════════════════════════════════════════════════════════════════

@pytest.mark.parametrize("raw, kind", [
    ("user", EntityKind.USER),
    ("group", EntityKind.GROUP),
    ("expense", EntityKind.EXPENSE),
    (EntityKind.PAYMENT, EntityKind.PAYMENT),
])
def test_coerce_kind(raw, kind):
    assert lifecycle_service._coerce_kind(raw) is kind


@pytest.mark.parametrize("raw", ["membership", "audit_log", "expense_participant", ""])
def test_coerce_kind_rejects_entities_without_lifecycle(raw):
    with pytest.raises(LedgerValidationError) as exc_info:
        lifecycle_service._coerce_kind(raw)
    assert exc_info.value.code == ErrorCode.INVALID_ENTITY_TYPE


# ═══════════════════════════════════════════════════════════════════════════
# Transitions
# ═══════════════════════════════════════════════════════════════════════════

def _run(fn, entity, kind=EntityKind.EXPENSE):
    session = MagicMock()
    with patch(f"{_MODULE}._lock_or_404", return_value=entity), \
         patch(f"{_MODULE}._authorize") as authorize:
        result = fn(kind, 1, 10, session)
    authorize.assert_called_once()
    return result, session


def test_soft_delete_active_entity_flushes():
    expense = Expense(id=1)

    changed, session = _run(lifecycle_service.soft_delete, expense)

    assert changed is True
    assert expense.is_deleted
    session.flush.assert_called_once()


def test_soft_delete_twice_is_a_no_op():
    expense = Expense(id=1)
    expense.mark_deleted()

    changed, session = _run(lifecycle_service.soft_delete, expense)

    assert changed is False
    session.flush.assert_not_called()


def test_restore_active_entity_is_a_no_op():
    changed, session = _run(lifecycle_service.restore, Expense(id=1))

    assert changed is False
    session.flush.assert_not_called()


def test_restore_soft_deleted_entity():
    expense = Expense(id=1)
    expense.mark_deleted()

    changed, _ = _run(lifecycle_service.restore, expense)

    assert changed is True
    assert expense.deleted_at is None


def test_hard_delete_of_active_entity_is_rejected():
    session = MagicMock()
    with patch(f"{_MODULE}._lock_or_404", return_value=Expense(id=1)), \
         patch(f"{_MODULE}._authorize"):
        with pytest.raises(LifecycleError):
            lifecycle_service.hard_delete(EntityKind.EXPENSE, 1, 10, session)

    session.delete.assert_not_called()


def test_hard_delete_user_with_history_is_rejected():
    user = User(id=10, email="a@test.com", display_name="A")
    user.mark_deleted()
    session = MagicMock()
    session.execute.return_value.scalar.return_value = True

    with patch(f"{_MODULE}._lock_or_404", return_value=user), \
         patch(f"{_MODULE}._authorize"):
        with pytest.raises(LedgerIntegrityError) as exc_info:
            lifecycle_service.hard_delete(EntityKind.USER, 10, 10, session)

    assert exc_info.value.code == ErrorCode.USER_HAS_LEDGER_HISTORY
    session.delete.assert_not_called()


def test_soft_delete_user_checks_balances_first():
    user = User(id=10, email="a@test.com", display_name="A")

    with patch(f"{_MODULE}.balance_service.require_settled") as settled:
        changed, session = _run(lifecycle_service.soft_delete, user, kind=EntityKind.USER)

    assert changed is True
    settled.assert_called_once_with(10, session)


def test_soft_delete_user_with_open_balance_is_rejected():
    user = User(id=10, email="a@test.com", display_name="A")
    owes = LedgerValidationError(ErrorCode.OUTSTANDING_BALANCE, "owes")
    session = MagicMock()

    with patch(f"{_MODULE}._lock_or_404", return_value=user), \
         patch(f"{_MODULE}._authorize"), \
         patch(f"{_MODULE}.balance_service.require_settled", side_effect=owes):
        with pytest.raises(LedgerValidationError) as exc_info:
            lifecycle_service.soft_delete(EntityKind.USER, 10, 10, session)

    assert exc_info.value.code == ErrorCode.OUTSTANDING_BALANCE
    assert user.is_deleted is False
    session.flush.assert_not_called()


def test_soft_delete_of_deleted_user_skips_balance_check():
    user = User(id=10, email="a@test.com", display_name="A")
    user.mark_deleted()

    with patch(f"{_MODULE}.balance_service.require_settled") as settled:
        changed, _ = _run(lifecycle_service.soft_delete, user, kind=EntityKind.USER)

    assert changed is False
    settled.assert_not_called()


def test_soft_delete_expense_skips_balance_check():
    with patch(f"{_MODULE}.balance_service.require_settled") as settled:
        _run(lifecycle_service.soft_delete, Expense(id=1))

    settled.assert_not_called()


def test_hard_delete_expense_deletes_and_flushes():
    expense = Expense(id=1)
    expense.mark_deleted()
    session = MagicMock()

    with patch(f"{_MODULE}._lock_or_404", return_value=expense), \
         patch(f"{_MODULE}._authorize"), \
         patch(f"{_MODULE}.audit_service.detach_audit_references") as detach:
        assert lifecycle_service.hard_delete(EntityKind.EXPENSE, 1, 10, session) is True

    session.delete.assert_called_once_with(expense)
    session.flush.assert_called_once()
    detach.assert_not_called()


def test_authorize_user_rejects_other_accounts():
    with pytest.raises(AppError) as exc_info:
        lifecycle_service._authorize(
            EntityKind.USER, SimpleNamespace(id=2), actor_id=3, session=MagicMock(),
        )
    assert exc_info.value.code == ErrorCode.FORBIDDEN
    assert exc_info.value.http_status == 403


def test_list_active_rejects_group_scope_for_users():
    with pytest.raises(LedgerValidationError) as exc_info:
        lifecycle_service.list_active(EntityKind.USER, MagicMock(), group_id=1)
    assert exc_info.value.code == ErrorCode.INVALID_FIELD
