"""
services/expense_service.py — Expense business logic and the split validator.

Rules enforced here:
  SPLIT_SUM_MISMATCH (422)      — |Σ share_amount − amount| must stay below the tolerance
  PERCENTAGE_SUM_MISMATCH (422) — percentage splits must total 100 (± the tolerance)
  SPLIT_INPUT_MISSING (422)     — a participant lacks the input its split method needs
  PAYER_NOT_MEMBER (422)        — payer_id must be a current group member
  PARTICIPANT_NOT_MEMBER (422)  — every participant must be a current group member
  DUPLICATE_SHARE_USER (409)    — a user appears twice in one expense
  INVALID_CURRENCY (422)        — currency is not a supported ISO-4217 code
  INVALID_AMOUNT_PRECISION (422)— amount has more decimals than its currency allows
  EXPENSE_DELETED (422)         — a soft-deleted expense cannot be edited
  FORBIDDEN (403)               — reads need 'view', writes need 'edit'

Share computation (compute_shares):
  equal       amount ÷ n
  percentage  amount × pct ÷ 100
  shares      amount × count ÷ Σ counts
  exact       share_amount as supplied; a difference inside the tolerance is
              added to the last share so the stored shares sum exactly
  The first three round each share down to the currency's minor unit and hand
  the leftover units out one each to the last participants in input order, so
  100.00 split three ways is 33.33 / 33.33 / 33.34.

Layer rules:
  - No Flask imports. Receives plain ints and dicts; returns ORM objects or raises AppError.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.currency import has_valid_precision, is_valid_currency, minor_unit
from backend.app.errors import (
    AppError,
    ErrorCode,
    LedgerIntegrityError,
    LedgerValidationError,
    NotFoundError,
)
from backend.app.models.expense import Expense, SplitMethod
from backend.app.models.expense_share import ExpenseShare
from backend.app.models.group import Group
from backend.app.models.membership import Membership
from backend.app.models.user import User
from backend.app.services import audit_service, permission_service
from backend.app.services.permission_service import Permission

ZERO = Decimal("0")
HUNDRED = Decimal("100")

SPLIT_TOLERANCE = Decimal("0.01")

# Fields whose change forces the shares to be recomputed and replaced.
_SPLIT_FIELDS = ("amount", "currency", "split_method", "participants")


# ── Split validator ────────────────────────────────────────────────────────

def split_total(expense: Expense) -> Decimal:
    return sum((share.share_amount for share in expense.shares), ZERO)


def is_split_valid(
        expense_id: int,
        session: Session,
        tolerance: Decimal = SPLIT_TOLERANCE,
) -> bool:
    """
    True if the expense's shares add up to its amount within `tolerance`.

    Raises:
      NotFoundError(EXPENSE_NOT_FOUND) — expense missing or soft-deleted.
    """
    expense = session.get(Expense, expense_id)
    if expense is None or expense.is_deleted:
        raise NotFoundError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
        )
    return abs(split_total(expense) - expense.amount) < tolerance


def _require_split_sum(
        shares: list[dict],
        amount: Decimal,
        tolerance: Decimal,
) -> None:
    total = sum((s["share_amount"] for s in shares), ZERO)
    if abs(total - amount) >= tolerance:
        raise LedgerValidationError(
            ErrorCode.SPLIT_SUM_MISMATCH,
            f"Share amounts ({total}) do not equal expense amount ({amount}).",
            field="participants",
        )


# ── Share computation ──────────────────────────────────────────────────────

def _allocate(amount: Decimal, currency: str, weights: list[Decimal]) -> list[Decimal]:
    """
    Splits `amount` in proportion to `weights`, rounding down to the minor
    unit. Leftover units go one each to the last entries.
    """
    unit = minor_unit(currency)
    total_weight = sum(weights, ZERO)
    portions = [
        (amount * weight / total_weight).quantize(unit, rounding=ROUND_DOWN)
        for weight in weights
    ]
    leftover_units = int((amount - sum(portions, ZERO)) / unit)
    for offset in range(1, leftover_units + 1):
        portions[-offset] += unit
    return portions


def _require_input(participants: list[dict], key: str, split_method: SplitMethod) -> None:
    for participant in participants:
        if participant.get(key) is None:
            raise LedgerValidationError(
                ErrorCode.SPLIT_INPUT_MISSING,
                f"Participant {participant['user_id']} needs '{key}' "
                f"for a '{split_method.value}' split.",
                field="participants",
            )


def _require_unique_participants(participants: list[dict]) -> None:
    seen: set[int] = set()
    for participant in participants:
        if participant["user_id"] in seen:
            raise LedgerIntegrityError(
                ErrorCode.DUPLICATE_SHARE_USER,
                f"User {participant['user_id']} appears more than once in this expense.",
                field="participants",
            )
        seen.add(participant["user_id"])


def compute_shares(
        amount: Decimal,
        currency: str,
        split_method: SplitMethod | str,
        participants: list[dict],
        tolerance: Decimal = SPLIT_TOLERANCE,
) -> list[dict]:
    """
    Turns split inputs into share rows.

    Args:
        amount:       The expense amount (Decimal, already precision-checked).
        currency:     ISO code deciding the rounding unit.
        split_method: equal | percentage | shares | exact.
        participants: [{"user_id", "share_percentage"?, "share_count"?, "share_amount"?}, ...]

    Returns:
        [{"user_id", "share_amount", "share_percentage", "share_count"}, ...]
        in input order. The amounts always pass the split validator.
    """
    split_method = SplitMethod(split_method)

    if not participants:
        raise LedgerValidationError(
            ErrorCode.SPLIT_INPUT_MISSING,
            "An expense needs at least one participant.",
            field="participants",
        )
    _require_unique_participants(participants)

    percentages: list[Decimal | None] = [None] * len(participants)
    counts: list[int | None] = [None] * len(participants)

    if split_method is SplitMethod.EQUAL:
        amounts = _allocate(amount, currency, [Decimal(1)] * len(participants))

    elif split_method is SplitMethod.PERCENTAGE:
        _require_input(participants, "share_percentage", split_method)
        percentages = [Decimal(p["share_percentage"]) for p in participants]
        total_pct = sum(percentages, ZERO)
        if abs(total_pct - HUNDRED) > tolerance:
            raise LedgerValidationError(
                ErrorCode.PERCENTAGE_SUM_MISMATCH,
                f"Percentages total {total_pct}, expected 100.",
                field="participants",
            )
        amounts = _allocate(amount, currency, percentages)

    elif split_method is SplitMethod.SHARES:
        _require_input(participants, "share_count", split_method)
        counts = [int(p["share_count"]) for p in participants]
        amounts = _allocate(amount, currency, [Decimal(c) for c in counts])

    else:
        _require_input(participants, "share_amount", split_method)
        amounts = [Decimal(p["share_amount"]) for p in participants]
        for participant, share_amount in zip(participants, amounts):
            if not has_valid_precision(share_amount, currency):
                raise LedgerValidationError(
                    ErrorCode.INVALID_AMOUNT_PRECISION,
                    f"Share of user {participant['user_id']} has more decimal "
                    f"places than {currency} allows.",
                    field="participants",
                )
        _require_split_sum(
            [{"share_amount": a} for a in amounts], amount, tolerance
        )
        amounts[-1] += amount - sum(amounts, ZERO)

    shares = [
        {
            "user_id": participant["user_id"],
            "share_amount": share_amount,
            "share_percentage": percentage,
            "share_count": count,
        }
        for participant, share_amount, percentage, count
        in zip(participants, amounts, percentages, counts)
    ]

    for share in shares:
        if share["share_amount"] <= ZERO:
            raise LedgerValidationError(
                ErrorCode.INVALID_FIELD,
                f"Share of user {share['user_id']} must be greater than zero.",
                field="participants",
            )

    _require_split_sum(shares, amount, tolerance)
    return shares


# ── Private helpers ────────────────────────────────────────────────────────

def _get_group_or_404(group_id: int, session: Session) -> Group:
    """Returns the active Group or raises GROUP_NOT_FOUND (404)."""
    group = session.get(Group, group_id)
    if group is None or group.is_deleted:
        raise NotFoundError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
        )
    return group


def _get_expense_or_404(expense_id: int, session: Session) -> Expense:
    """Returns the Expense (active or deleted) or raises EXPENSE_NOT_FOUND (404)."""
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise NotFoundError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
        )
    return expense


def _get_member_ids(group_id: int, session: Session) -> list[int]:
    """user_ids of the group's current, non-deleted members in join order."""
    stmt = (
        select(Membership.user_id)
        .join(User, User.id == Membership.user_id)
        .where(
            Membership.group_id == group_id,
            User.deleted_at.is_(None),
        )
        .order_by(Membership.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def _validate_payer_is_member(payer_id: int, group_id: int, member_ids: list[int]) -> None:
    if payer_id not in member_ids:
        raise LedgerValidationError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"User {payer_id} is not a member of group {group_id}.",
            field="payer_id",
        )


def _validate_participants_are_members(
        participants: list[dict],
        group_id: int,
        member_ids: list[int],
) -> None:
    member_set = set(member_ids)
    for participant in participants:
        if participant["user_id"] not in member_set:
            raise LedgerValidationError(
                ErrorCode.PARTICIPANT_NOT_MEMBER,
                f"User {participant['user_id']} is not a member of group {group_id}.",
                field="participants",
            )


def _validate_money(amount: Decimal, currency: str) -> None:
    if not is_valid_currency(currency):
        raise LedgerValidationError(
            ErrorCode.INVALID_CURRENCY,
            f"'{currency}' is not a supported currency.",
            field="currency",
        )
    if not has_valid_precision(amount, currency):
        raise LedgerValidationError(
            ErrorCode.INVALID_AMOUNT_PRECISION,
            f"Amount {amount} has more decimal places than {currency} allows.",
            field="amount",
        )


def _existing_participants(expense: Expense) -> list[dict]:
    return [
        {
            "user_id": share.user_id,
            "share_amount": share.share_amount,
            "share_percentage": share.share_percentage,
            "share_count": share.share_count,
        }
        for share in expense.shares
    ]


def _delete_shares(expense: Expense, session: Session) -> None:
    """Removes all shares of an expense. Flushed so new rows can reuse (expense_id, user_id)."""
    for share in list(expense.shares):
        session.delete(share)
    session.flush()


def _create_share_rows(expense: Expense, shares: list[dict], session: Session) -> None:
    for share in shares:
        session.add(ExpenseShare(expense_id=expense.id, **share))
    session.flush()


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        tolerance: Decimal = SPLIT_TOLERANCE,
) -> Expense:
    """
    Records a new expense and its shares.

    Args:
        group_id:  The group this expense belongs to.
        caller_id: The authenticated user creating the expense (from flask.g).
        data:      Validated dict from CreateExpenseSchema.

    With split_method 'equal' and no participants, the expense is split
    across every current member.

    Returns:
        The newly created Expense ORM object (with shares loaded).
    """
    group = _get_group_or_404(group_id, session)
    permission_service.require_permission(caller_id, group_id, Permission.EDIT, session)
    audit_service.bind_actor(session, caller_id)

    payer_id: int = data["payer_id"]
    amount: Decimal = data["amount"]
    currency: str = data.get("currency") or group.primary_currency
    split_method = SplitMethod(data.get("split_method", SplitMethod.EQUAL))

    _validate_money(amount, currency)

    member_ids = _get_member_ids(group_id, session)
    _validate_payer_is_member(payer_id, group_id, member_ids)

    participants = data.get("participants")
    if not participants and split_method is SplitMethod.EQUAL:
        participants = [{"user_id": uid} for uid in member_ids]
    participants = participants or []

    _validate_participants_are_members(participants, group_id, member_ids)
    shares = compute_shares(amount, currency, split_method, participants, tolerance)

    expense = Expense(
        group_id=group_id,
        payer_id=payer_id,
        amount=amount,
        currency=currency,
        description=data["description"],
        split_method=split_method,
        notes=data.get("notes"),
    )
    if data.get("expense_date") is not None:
        expense.expense_date = data["expense_date"]
    session.add(expense)
    session.flush()  # populate expense.id before creating shares

    _create_share_rows(expense, shares, session)

    session.refresh(expense)
    return expense


def list_expenses(group_id: int, caller_id: int, session: Session) -> list[Expense]:
    """Active expenses of a group, newest expense_date first. Caller needs 'view'."""
    _get_group_or_404(group_id, session)
    permission_service.require_permission(caller_id, group_id, Permission.VIEW, session)

    stmt = (
        select(Expense)
        .where(
            Expense.group_id == group_id,
            Expense.deleted_at.is_(None),
        )
        .order_by(Expense.expense_date.desc(), Expense.id.desc())
    )
    return list(session.execute(stmt).scalars().all())


def get_expense(expense_id: int, caller_id: int, session: Session) -> Expense:
    """
    Returns a single expense including its shares.

    Soft-deleted expenses are returned too; deleted_at tells the client.
    """
    expense = _get_expense_or_404(expense_id, session)
    permission_service.require_permission(caller_id, expense.group_id, Permission.VIEW, session)
    return expense


def check_split_validity(
        expense_id: int,
        caller_id: int,
        session: Session,
        tolerance: Decimal = SPLIT_TOLERANCE,
) -> dict:
    """Payload for GET /expenses/:id/split-validity."""
    expense = _get_expense_or_404(expense_id, session)
    permission_service.require_permission(caller_id, expense.group_id, Permission.VIEW, session)
    valid = is_split_valid(expense_id, session, tolerance)
    return {
        "expense_id": expense.id,
        "amount": expense.amount,
        "share_total": split_total(expense),
        "is_valid": valid,
    }


def edit_expense(
        expense_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        tolerance: Decimal = SPLIT_TOLERANCE,
) -> Expense:
    """
    Partially updates an expense.

    When amount, currency, split_method or participants change, the shares
    are recomputed and replaced. Missing participants default to the
    current ones with their stored split inputs.

    Raises:
      NotFoundError(EXPENSE_NOT_FOUND)            — no such expense
      AppError(FORBIDDEN, 403)                    — caller lacks 'edit'
      LedgerValidationError(EXPENSE_DELETED)      — expense is soft-deleted
      plus every create-time validation error
    """
    expense = _get_expense_or_404(expense_id, session)
    permission_service.require_permission(caller_id, expense.group_id, Permission.EDIT, session)

    if expense.is_deleted:
        raise LedgerValidationError(
            ErrorCode.EXPENSE_DELETED,
            f"Expense {expense_id} has been deleted and cannot be edited.",
        )

    audit_service.bind_actor(session, caller_id)
    member_ids = _get_member_ids(expense.group_id, session)

    if "payer_id" in data:
        _validate_payer_is_member(data["payer_id"], expense.group_id, member_ids)
        expense.payer_id = data["payer_id"]

    for field in ("description", "notes", "expense_date"):
        if field in data:
            setattr(expense, field, data[field])

    if any(field in data for field in _SPLIT_FIELDS):
        amount = data.get("amount", expense.amount)
        currency = data.get("currency") or expense.currency
        split_method = SplitMethod(data.get("split_method", expense.split_method))
        participants = data.get("participants") or _existing_participants(expense)

        _validate_money(amount, currency)
        _validate_participants_are_members(participants, expense.group_id, member_ids)
        shares = compute_shares(amount, currency, split_method, participants, tolerance)

        expense.amount = amount
        expense.currency = currency
        expense.split_method = split_method

        _delete_shares(expense, session)
        _create_share_rows(expense, shares, session)

    session.flush()
    session.refresh(expense)

    if not is_split_valid(expense.id, session, tolerance):
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Expense {expense.id} failed the split check after editing.",
            500,
        )
    return expense
