"""
services/balance_service.py — Group balances and settlement plans.

This file is the single place where balances are computed. Any change to
how balances work must be made here; settlement plans, the balances
endpoint and the tests all follow from it.

Balance of a member (in the group's primary currency):

    balance = Σ expense.amount        where member paid the expense
            − Σ share.share_amount    where the share is the member's
            + Σ payment.amount        where member received the payment
            − Σ payment.amount        where member sent the payment

Only non-deleted expenses (and their shares) and non-deleted payments whose
currency is the group's primary currency take part. There are no exchange
rates, so other currencies are left out rather than converted.

Zero-sum guarantee:
  Every share belongs to exactly one counted expense and every counted
  payment moves the same amount in and out, so the balances of everyone
  involved sum to zero (up to the split tolerance of exact-amount splits).
  compute_balances() keeps participants who are no longer members or whose
  user is soft-deleted so the guarantee holds over the full map; the public
  balance list shows current, non-deleted members only.
  require_settled() keeps the two views equal: a member cannot leave a group
  or soft-delete their account while their balance there is not zero.

Reads are a single scan of the group's rows inside the caller's transaction,
so a balance list and the plan derived from it describe the same snapshot.

Layer rules:
  - No Flask imports. Receives ids and a SQLAlchemy Session.
  - Returns plain Python dicts and lists; amounts stay Decimal.
"""

from __future__ import annotations

import heapq
from collections import defaultdict
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.currency import quantize_amount
from backend.app.errors import AppError, ErrorCode, LedgerValidationError, NotFoundError
from backend.app.models.expense import Expense
from backend.app.models.expense_share import ExpenseShare
from backend.app.models.group import Group
from backend.app.models.membership import Membership
from backend.app.models.payment import Payment
from backend.app.models.user import User
from backend.app.services import permission_service
from backend.app.services.permission_service import Permission

ZERO = Decimal("0")

# Largest |sum of balances| accepted before the ledger is reported corrupt.
ZERO_SUM_TOLERANCE = Decimal("0.01")


# ── Data access helpers ────────────────────────────────────────────────────
# The only sanctioned way to read ledger rows for balance purposes; each one
# applies the soft-delete and currency filters.

def get_active_group(group_id: int, session: Session) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404) if missing or soft-deleted."""
    group = session.get(Group, group_id)
    if group is None or group.is_deleted:
        raise NotFoundError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
        )
    return group


def get_active_expenses(group_id: int, currency: str, session: Session) -> list[Expense]:
    stmt = select(Expense).where(
        Expense.group_id == group_id,
        Expense.currency == currency,
        Expense.deleted_at.is_(None),
    )
    return list(session.execute(stmt).scalars().all())


def get_shares_for_active_expenses(
        group_id: int,
        currency: str,
        session: Session,
) -> list[ExpenseShare]:
    stmt = (
        select(ExpenseShare)
        .join(Expense, ExpenseShare.expense_id == Expense.id)
        .where(
            Expense.group_id == group_id,
            Expense.currency == currency,
            Expense.deleted_at.is_(None),
        )
    )
    return list(session.execute(stmt).scalars().all())


def get_active_payments(group_id: int, currency: str, session: Session) -> list[Payment]:
    stmt = select(Payment).where(
        Payment.group_id == group_id,
        Payment.currency == currency,
        Payment.deleted_at.is_(None),
    )
    return list(session.execute(stmt).scalars().all())


def get_members(group_id: int, session: Session) -> list[User]:
    """Non-deleted users holding a membership, ordered by display name then id."""
    stmt = (
        select(User)
        .join(Membership, User.id == Membership.user_id)
        .where(
            Membership.group_id == group_id,
            User.deleted_at.is_(None),
        )
        .order_by(User.display_name.asc(), User.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def get_display_names(user_ids: set[int], session: Session) -> dict[int, str]:
    """Display names for any users, soft-deleted ones included."""
    if not user_ids:
        return {}
    rows = session.execute(
        select(User.id, User.display_name).where(User.id.in_(user_ids))
    ).all()
    return {row.id: row.display_name for row in rows}


# ── Core algorithms ────────────────────────────────────────────────────────

def compute_balances(group: Group, session: Session) -> dict[int, Decimal]:
    """
    Returns {user_id: net_balance} for every current member and every user
    with counted activity in the group.

    Members with no activity appear with a zero balance.
    """
    currency = group.primary_currency
    balances: dict[int, Decimal] = defaultdict(Decimal)

    for expense in get_active_expenses(group.id, currency, session):
        balances[expense.payer_id] += expense.amount

    for share in get_shares_for_active_expenses(group.id, currency, session):
        balances[share.user_id] -= share.share_amount

    for payment in get_active_payments(group.id, currency, session):
        balances[payment.recipient_id] += payment.amount
        balances[payment.payer_id] -= payment.amount

    for member in get_members(group.id, session):
        balances.setdefault(member.id, ZERO)

    return {
        user_id: quantize_amount(balance, currency)
        for user_id, balance in balances.items()
    }


def plan_settlements(balances: dict[int, Decimal]) -> list[dict]:
    """
    Greedy debt netting.

    Repeatedly matches the largest debtor with the largest creditor and
    settles min(|debt|, credit) between them. Ties on magnitude go to the
    lower user id, so the plan is deterministic. Every step clears at least
    one party, which bounds the plan at (parties − 1) transactions.

    Args:
        balances: {user_id: net_balance}; positive = owed money, negative = owes.

    Returns:
        [{"from_user_id": int, "to_user_id": int, "amount": Decimal}, ...]
        The debtor pays (from) the creditor (to). Empty when nobody owes.
    """
    creditors = [(-amount, user_id) for user_id, amount in balances.items() if amount > 0]
    debtors = [(amount, user_id) for user_id, amount in balances.items() if amount < 0]
    heapq.heapify(creditors)
    heapq.heapify(debtors)

    transactions: list[dict] = []

    while creditors and debtors:
        neg_credit, creditor_id = heapq.heappop(creditors)
        neg_debt, debtor_id = heapq.heappop(debtors)
        credit, debt = -neg_credit, -neg_debt

        transfer = min(credit, debt)
        transactions.append({
            "from_user_id": debtor_id,
            "to_user_id": creditor_id,
            "amount": transfer,
        })

        if credit > transfer:
            heapq.heappush(creditors, (-(credit - transfer), creditor_id))
        if debt > transfer:
            heapq.heappush(debtors, (-(debt - transfer), debtor_id))

    return transactions


def check_zero_sum(group_id: int, balances: dict[int, Decimal]) -> Decimal:
    """Returns the balance sum; raises INTERNAL_ERROR (500) if the ledger does not net out."""
    balance_sum = sum(balances.values(), ZERO)
    if abs(balance_sum) >= ZERO_SUM_TOLERANCE:
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Balance integrity check failed: sum was {balance_sum} (expected 0). "
            f"Group {group_id} has inconsistent financial data.",
            500,
        )
    return balance_sum


# ── Departure checks ───────────────────────────────────────────────────────

def require_settled(user_id: int, session: Session, group_id: int | None = None) -> None:
    """
    Raises OUTSTANDING_BALANCE (422) if the user's balance is not zero in
    `group_id`, or in any active group they belong to when group_id is None.
    """
    stmt = (
        select(Group)
        .join(Membership, Membership.group_id == Group.id)
        .where(
            Membership.user_id == user_id,
            Group.deleted_at.is_(None),
        )
        .order_by(Group.id.asc())
    )
    if group_id is not None:
        stmt = stmt.where(Group.id == group_id)

    for group in session.execute(stmt).scalars().all():
        balance = compute_balances(group, session).get(user_id, ZERO)
        if balance != ZERO:
            raise LedgerValidationError(
                ErrorCode.OUTSTANDING_BALANCE,
                f"User {user_id} has an outstanding balance of {balance} "
                f"{group.primary_currency} in group {group.id}. Settle it first.",
            )


def _balance_rows(group: Group, balances: dict[int, Decimal], session: Session) -> list[dict]:
    return [
        {
            "user_id": member.id,
            "display_name": member.display_name,
            "balance": balances.get(member.id, ZERO),
        }
        for member in get_members(group.id, session)
    ]


def _plan_rows(balances: dict[int, Decimal], session: Session) -> list[dict]:
    plan = plan_settlements(balances)
    names = get_display_names(
        {t["from_user_id"] for t in plan} | {t["to_user_id"] for t in plan},
        session,
    )
    return [
        {
            "payer_id": t["from_user_id"],
            "payer_name": names.get(t["from_user_id"], f"user_{t['from_user_id']}"),
            "recipient_id": t["to_user_id"],
            "recipient_name": names.get(t["to_user_id"], f"user_{t['to_user_id']}"),
            "amount": t["amount"],
        }
        for t in plan
    ]


# ── Public service functions ───────────────────────────────────────────────

def calculate_group_balances(group_id: int, session: Session) -> list[dict]:
    """
    One row per current, non-deleted member, zero-activity members included:
        [{"user_id", "display_name", "balance"}, ...]

    Raises:
      NotFoundError(GROUP_NOT_FOUND) — group missing or soft-deleted.
    """
    group = get_active_group(group_id, session)
    balances = compute_balances(group, session)
    return _balance_rows(group, balances, session)


def generate_settlement_plan(group_id: int, session: Session) -> list[dict]:
    """
    Transactions that, applied to the balances (payer += amount,
    recipient −= amount), bring every balance to zero:
        [{"payer_id", "payer_name", "recipient_id", "recipient_name", "amount"}, ...]

    Raises:
      NotFoundError(GROUP_NOT_FOUND) — group missing or soft-deleted.
    """
    group = get_active_group(group_id, session)
    balances = compute_balances(group, session)
    return _plan_rows(balances, session)


def get_balance_response(group_id: int, caller_id: int, session: Session) -> dict:
    """
    Payload for GET /groups/:id/balances. The caller needs 'view'.

    Balances and the settlement plan come from one computation, so they
    always agree with each other.

    Raises:
      NotFoundError(GROUP_NOT_FOUND)   — group missing or soft-deleted
      AppError(FORBIDDEN, 403)         — caller lacks 'view'
      AppError(INTERNAL_ERROR, 500)    — balances do not sum to zero
    """
    group = get_active_group(group_id, session)
    permission_service.require_permission(caller_id, group_id, Permission.VIEW, session)

    balances = compute_balances(group, session)
    balance_sum = check_zero_sum(group_id, balances)

    return {
        "group_id": group_id,
        "currency": group.primary_currency,
        "balances": _balance_rows(group, balances, session),
        "settlement_plan": _plan_rows(balances, session),
        "balance_sum": quantize_amount(balance_sum, group.primary_currency),
    }


def get_settlement_plan_response(group_id: int, caller_id: int, session: Session) -> dict:
    """Payload for GET /groups/:id/settlement-plan. The caller needs 'view'."""
    group = get_active_group(group_id, session)
    permission_service.require_permission(caller_id, group_id, Permission.VIEW, session)

    balances = compute_balances(group, session)
    check_zero_sum(group_id, balances)

    return {
        "group_id": group_id,
        "currency": group.primary_currency,
        "transactions": _plan_rows(balances, session),
    }
