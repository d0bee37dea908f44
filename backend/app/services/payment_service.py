"""
services/payment_service.py — Payment (settle-up) business logic.

A payment moves money from payer_id to recipient_id inside a group. In the
balance formula the recipient gains the amount and the payer loses it.
Settlement plans are applied the other way round (payer += amount), so a plan
transfer recorded as a payment does not settle it; see balance_service.

Rules enforced here:
  SELF_PAYMENT (422)         — payer and recipient must differ
  PAYER_NOT_MEMBER (422)     — payer must be a current group member
  RECIPIENT_NOT_MEMBER (422) — recipient must be a current group member
  INVALID_CURRENCY (422)     — unsupported ISO code
  INVALID_AMOUNT_PRECISION (422)
  FORBIDDEN (403)            — recording needs 'edit', listing needs 'view'

The database also carries CHECK (payer_id <> recipient_id) as the last line.

A payment in a currency other than the group's primary currency is recorded
with a FOREIGN_CURRENCY warning; balances ignore it.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.currency import foreign_currency_warnings, has_valid_precision, is_valid_currency
from backend.app.errors import ErrorCode, LedgerValidationError, NotFoundError
from backend.app.models.group import Group
from backend.app.models.membership import Membership
from backend.app.models.payment import Payment
from backend.app.models.user import User
from backend.app.services import audit_service, permission_service
from backend.app.services.permission_service import Permission


# ── Private helpers ────────────────────────────────────────────────────────

def _get_group_or_404(group_id: int, session: Session) -> Group:
    group = session.get(Group, group_id)
    if group is None or group.is_deleted:
        raise NotFoundError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
        )
    return group


def _is_active_member(group_id: int, user_id: int, session: Session) -> bool:
    return session.execute(
        select(Membership.id)
        .join(User, User.id == Membership.user_id)
        .where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
            User.deleted_at.is_(None),
        )
    ).scalar_one_or_none() is not None


# ── Public service functions ───────────────────────────────────────────────

def create_payment(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> tuple[Payment, list[dict]]:
    """
    Records a payment from payer_id (default: the caller) to recipient_id.

    Args:
        group_id:  The group this payment belongs to.
        caller_id: The authenticated user recording it (from flask.g).
        data:      Validated dict from CreatePaymentSchema.

    Returns:
        (Payment, warnings). An empty warnings list means no warnings.
    """
    group = _get_group_or_404(group_id, session)
    permission_service.require_permission(caller_id, group_id, Permission.EDIT, session)
    audit_service.bind_actor(session, caller_id)

    payer_id: int = data.get("payer_id") or caller_id
    recipient_id: int = data["recipient_id"]
    amount: Decimal = data["amount"]
    currency: str = data.get("currency") or group.primary_currency

    if payer_id == recipient_id:
        raise LedgerValidationError(
            ErrorCode.SELF_PAYMENT,
            "A payment cannot be made to the payer themself.",
            field="recipient_id",
        )

    if not _is_active_member(group_id, payer_id, session):
        raise LedgerValidationError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"User {payer_id} is not a member of group {group_id}.",
            field="payer_id",
        )

    if not _is_active_member(group_id, recipient_id, session):
        raise LedgerValidationError(
            ErrorCode.RECIPIENT_NOT_MEMBER,
            f"User {recipient_id} is not a member of group {group_id}.",
            field="recipient_id",
        )

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

    payment = Payment(
        group_id=group_id,
        payer_id=payer_id,
        recipient_id=recipient_id,
        amount=amount,
        currency=currency,
        notes=data.get("notes"),
    )
    if data.get("payment_date") is not None:
        payment.payment_date = data["payment_date"]
    session.add(payment)
    session.flush()

    return payment, foreign_currency_warnings(currency, group.primary_currency)


def list_payments(group_id: int, caller_id: int, session: Session) -> list[Payment]:
    """Active payments of a group, newest payment_date first. Caller needs 'view'."""
    _get_group_or_404(group_id, session)
    permission_service.require_permission(caller_id, group_id, Permission.VIEW, session)

    stmt = (
        select(Payment)
        .where(
            Payment.group_id == group_id,
            Payment.deleted_at.is_(None),
        )
        .order_by(Payment.payment_date.desc(), Payment.id.desc())
    )
    return list(session.execute(stmt).scalars().all())


def get_payment(payment_id: int, caller_id: int, session: Session) -> Payment:
    payment = session.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError(
            ErrorCode.PAYMENT_NOT_FOUND,
            f"Payment {payment_id} does not exist.",
        )
    permission_service.require_permission(caller_id, payment.group_id, Permission.VIEW, session)
    return payment
