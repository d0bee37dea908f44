"""
services/lifecycle_service.py — Soft delete, restore and permanent delete.

Applies to users, groups, expenses and payments:

    ACTIVE ──soft_delete──▶ SOFT_DELETED ──hard_delete──▶ (row removed)
       ▲                         │
       └────────restore──────────┘

  - soft_delete / restore return False (and write nothing) when the entity
    is already in the requested state.
  - hard_delete requires SOFT_DELETED first (LifecycleError NOT_SOFT_DELETED).
  - Every transition locks the row (SELECT ... FOR UPDATE) and is audited by
    the flush hooks: soft delete and restore as 'update', hard delete as
    'delete' for the entity and every row its cascade removes.
  - After a hard delete, audit entries keep their snapshots; only their
    user_id / group_id references are cleared.

Who may do what:
  user             the user themself
  group            administrators of the group
  expense/payment  editors and administrators of the owning group

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import enum
import logging

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from backend.app.errors import (
    AppError,
    ErrorCode,
    LedgerIntegrityError,
    LedgerValidationError,
    NotFoundError,
)
from backend.app.models.expense import Expense
from backend.app.models.expense_share import ExpenseShare
from backend.app.models.group import Group
from backend.app.models.membership import MemberRole
from backend.app.models.payment import Payment
from backend.app.models.user import User
from backend.app.services import audit_service, balance_service, permission_service
from backend.app.services.permission_service import Permission

logger = logging.getLogger(__name__)


class EntityKind(str, enum.Enum):
    USER    = "user"
    GROUP   = "group"
    EXPENSE = "expense"
    PAYMENT = "payment"


_MODELS: dict[EntityKind, type] = {
    EntityKind.USER:    User,
    EntityKind.GROUP:   Group,
    EntityKind.EXPENSE: Expense,
    EntityKind.PAYMENT: Payment,
}

_NOT_FOUND_CODES: dict[EntityKind, str] = {
    EntityKind.USER:    ErrorCode.USER_NOT_FOUND,
    EntityKind.GROUP:   ErrorCode.GROUP_NOT_FOUND,
    EntityKind.EXPENSE: ErrorCode.EXPENSE_NOT_FOUND,
    EntityKind.PAYMENT: ErrorCode.PAYMENT_NOT_FOUND,
}


# ── Private helpers ────────────────────────────────────────────────────────

def _coerce_kind(kind: EntityKind | str) -> EntityKind:
    try:
        return EntityKind(kind)
    except ValueError as exc:
        raise LedgerValidationError(
            ErrorCode.INVALID_ENTITY_TYPE,
            f"'{kind}' does not have a lifecycle.",
            field="entity_type",
        ) from exc


def _lock_or_404(kind: EntityKind, entity_id: int, session: Session):
    """Loads the row FOR UPDATE, refreshing any copy already in the session."""
    model = _MODELS[kind]
    entity = session.execute(
        select(model)
        .where(model.id == entity_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()

    if entity is None:
        raise NotFoundError(
            _NOT_FOUND_CODES[kind],
            f"{kind.value.capitalize()} {entity_id} does not exist.",
        )
    return entity


def _forbidden(message: str) -> AppError:
    return AppError(ErrorCode.FORBIDDEN, message, 403)


def _authorize(kind: EntityKind, entity, actor_id: int, session: Session) -> None:
    """Checks the actor may change this entity's lifecycle, then binds them."""
    if kind is EntityKind.USER:
        if entity.id != actor_id:
            raise _forbidden("Users may only change the lifecycle of their own account.")
        audit_service.bind_actor(session, actor_id, allow_deleted=True)
        return

    if kind is EntityKind.GROUP:
        role = permission_service.get_member_role(
            actor_id, entity.id, session, include_deleted_group=True
        )
        if role is not MemberRole.ADMINISTRATOR:
            raise _forbidden(f"Only administrators may delete or restore group {entity.id}.")
    else:
        permission_service.require_permission(
            actor_id, entity.group_id, Permission.EDIT, session
        )

    audit_service.bind_actor(session, actor_id)


def _require_no_ledger_history(user: User, session: Session) -> None:
    # Refuses rather than cascading into expenses and payments, which would
    # change other members' balances.
    has_history = session.execute(
        select(or_(
            select(Expense.id).where(Expense.payer_id == user.id).exists(),
            select(ExpenseShare.id).where(ExpenseShare.user_id == user.id).exists(),
            select(Payment.id).where(
                or_(Payment.payer_id == user.id, Payment.recipient_id == user.id)
            ).exists(),
        ))
    ).scalar()

    if has_history:
        raise LedgerIntegrityError(
            ErrorCode.USER_HAS_LEDGER_HISTORY,
            f"User {user.id} appears in expenses or payments and cannot be "
            "permanently deleted. The account stays soft-deleted.",
        )


# ── Public service functions ───────────────────────────────────────────────

def soft_delete(
        kind: EntityKind | str,
        entity_id: int,
        actor_id: int,
        session: Session,
) -> bool:
    """
    Marks the entity deleted. Returns False if it already was.

    Raises:
      NotFoundError             — no such entity
      AppError(FORBIDDEN, 403)  — actor may not change it
      LedgerValidationError(OUTSTANDING_BALANCE) — a user still owes or is owed
                                                  in an active group
    """
    kind = _coerce_kind(kind)
    entity = _lock_or_404(kind, entity_id, session)
    _authorize(kind, entity, actor_id, session)

    if kind is EntityKind.USER and not entity.is_deleted:
        balance_service.require_settled(entity.id, session)

    if not entity.mark_deleted():
        return False

    session.flush()
    logger.info("Soft-deleted %s %s (actor=%s)", kind.value, entity_id, actor_id)
    return True


def restore(
        kind: EntityKind | str,
        entity_id: int,
        actor_id: int,
        session: Session,
) -> bool:
    """
    Clears the deleted marker. Returns False if the entity was active.

    Every other field is left as it was when the entity was soft-deleted.
    """
    kind = _coerce_kind(kind)
    entity = _lock_or_404(kind, entity_id, session)
    _authorize(kind, entity, actor_id, session)

    if not entity.mark_restored():
        return False

    session.flush()
    logger.info("Restored %s %s (actor=%s)", kind.value, entity_id, actor_id)
    return True


def hard_delete(
        kind: EntityKind | str,
        entity_id: int,
        actor_id: int,
        session: Session,
) -> bool:
    """
    Permanently removes a soft-deleted entity and everything it owns.

    Cascades:
      group    → memberships, expenses (and their shares), payments
      expense  → shares
      user     → memberships; groups they created keep existing with no creator

    Raises:
      NotFoundError                                  — no such entity
      AppError(FORBIDDEN, 403)                       — actor may not remove it
      LifecycleError(NOT_SOFT_DELETED)               — entity is still active
      LedgerIntegrityError(USER_HAS_LEDGER_HISTORY)  — user is referenced by
                                                       expenses, shares or payments
    """
    kind = _coerce_kind(kind)
    entity = _lock_or_404(kind, entity_id, session)
    _authorize(kind, entity, actor_id, session)
    entity.require_soft_deleted()

    if kind is EntityKind.USER:
        _require_no_ledger_history(entity, session)

    session.delete(entity)
    session.flush()

    if kind is EntityKind.USER:
        audit_service.detach_audit_references(session, user_id=entity_id)
        audit_service.clear_actor(session)
    elif kind is EntityKind.GROUP:
        audit_service.detach_audit_references(session, group_id=entity_id)

    logger.info("Hard-deleted %s %s (actor=%s)", kind.value, entity_id, actor_id)
    return True


def list_active(
        kind: EntityKind | str,
        session: Session,
        group_id: int | None = None,
) -> list:
    """
    Entities of `kind` that are not soft-deleted, oldest first.

    group_id scopes expenses and payments to one group.
    """
    kind = _coerce_kind(kind)
    model = _MODELS[kind]
    stmt = select(model).where(model.deleted_at.is_(None))

    if group_id is not None:
        if kind not in (EntityKind.EXPENSE, EntityKind.PAYMENT):
            raise LedgerValidationError(
                ErrorCode.INVALID_FIELD,
                f"Listing {kind.value}s cannot be scoped to a group.",
                field="group_id",
            )
        stmt = stmt.where(model.group_id == group_id)

    return list(session.execute(stmt.order_by(model.id.asc())).scalars().all())
