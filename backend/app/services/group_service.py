"""
services/group_service.py — Group and membership business logic.

Authorization rules (see permission_service for the role table):
  - Reading a group:                 any member ('view')
  - Updating name/description/currency, adding members,
    changing roles, removing others: administrators ('admin')
  - Leaving a group:                 any member may remove themself

Rules enforced here:
  ALREADY_MEMBER (409)      — a user can hold one membership per group
  LAST_ADMINISTRATOR (422)  — a group always keeps at least one administrator
  OUTSTANDING_BALANCE (422) — a member leaves only once their balance is zero
  INVALID_CURRENCY (422)    — primary_currency must be supported

The creator of a group becomes its first administrator.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.currency import DEFAULT_CURRENCY, is_valid_currency
from backend.app.errors import (
    AppError,
    ErrorCode,
    LedgerIntegrityError,
    LedgerValidationError,
    NotFoundError,
)
from backend.app.models.group import Group
from backend.app.models.membership import MemberRole, Membership
from backend.app.models.user import User
from backend.app.services import audit_service, balance_service, permission_service
from backend.app.services.permission_service import Permission


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


def _get_membership_or_404(group_id: int, user_id: int, session: Session) -> Membership:
    membership = session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()

    if membership is None:
        raise NotFoundError(
            ErrorCode.MEMBER_NOT_FOUND,
            f"User {user_id} is not a member of group {group_id}.",
        )
    return membership


def _find_target_user(data: dict, session: Session) -> User:
    """Resolves the user to add by user_id or by email."""
    if data.get("user_id") is not None:
        user = session.get(User, data["user_id"])
        lookup = f"User {data['user_id']}"
    else:
        user = session.execute(
            select(User).where(func.lower(User.email) == data["email"].strip().lower())
        ).scalar_one_or_none()
        lookup = f"User with email {data['email']!r}"

    if user is None or user.is_deleted:
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            f"{lookup} does not exist.",
            field="user_id" if data.get("user_id") is not None else "email",
        )
    return user


def _require_other_administrator(membership: Membership, session: Session) -> None:
    """
    Raises LAST_ADMINISTRATOR (422) if `membership` is the group's only
    administrator.
    """
    if membership.role is not MemberRole.ADMINISTRATOR:
        return

    admin_count = session.execute(
        select(func.count(Membership.id)).where(
            Membership.group_id == membership.group_id,
            Membership.role == MemberRole.ADMINISTRATOR,
        )
    ).scalar_one()

    if admin_count <= 1:
        raise LedgerValidationError(
            ErrorCode.LAST_ADMINISTRATOR,
            f"User {membership.user_id} is the last administrator of group "
            f"{membership.group_id}. Promote another member first.",
        )


def _validate_currency(code: str) -> None:
    if not is_valid_currency(code):
        raise LedgerValidationError(
            ErrorCode.INVALID_CURRENCY,
            f"'{code}' is not a supported currency.",
            field="primary_currency",
        )


def _build_member_dict(membership: Membership) -> dict:
    return {
        "user_id": membership.user_id,
        "display_name": membership.user.display_name,
        "email": membership.user.email,
        "role": membership.role.value,
        "joined_at": membership.joined_at.isoformat() if membership.joined_at else None,
    }


def _build_group_dict(group: Group, memberships: list[Membership] | None = None) -> dict:
    """Serialises a Group (and optionally its member list) to a plain dict."""
    result = {
        "id": group.id,
        "name": group.name,
        "description": group.description,
        "creator_id": group.creator_id,
        "primary_currency": group.primary_currency,
        "created_at": group.created_at.isoformat() if group.created_at else None,
        "deleted_at": group.deleted_at.isoformat() if group.deleted_at else None,
    }
    if memberships is not None:
        result["members"] = [_build_member_dict(m) for m in memberships]
    return result


def _active_memberships(group_id: int, session: Session) -> list[Membership]:
    stmt = (
        select(Membership)
        .join(User, User.id == Membership.user_id)
        .where(
            Membership.group_id == group_id,
            User.deleted_at.is_(None),
        )
        .order_by(Membership.joined_at.asc(), Membership.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


# ── Public service functions ───────────────────────────────────────────────

def create_group(data: dict, creator_id: int, session: Session) -> dict:
    """
    Creates a new group. The creator becomes its first administrator.

    Args:
        data:       Validated dict from CreateGroupSchema
                    (name, description?, primary_currency?).
        creator_id: The authenticated user creating the group.

    Returns: dict with group details and the initial member list.
    """
    audit_service.bind_actor(session, creator_id)

    primary_currency = data.get("primary_currency") or DEFAULT_CURRENCY
    _validate_currency(primary_currency)

    group = Group(
        name=data["name"],
        description=data.get("description"),
        creator_id=creator_id,
        primary_currency=primary_currency,
    )
    session.add(group)
    session.flush()  # populate group.id before creating the membership

    membership = Membership(
        user_id=creator_id,
        group_id=group.id,
        role=MemberRole.ADMINISTRATOR,
    )
    session.add(membership)
    session.flush()

    return _build_group_dict(group, [membership])


def list_groups(user_id: int, session: Session) -> list[dict]:
    """
    Active groups the user belongs to, oldest first.

    Lightweight dicts (no member list); get_group() has the members.
    """
    stmt = (
        select(Group)
        .join(Membership, Group.id == Membership.group_id)
        .where(
            Membership.user_id == user_id,
            Group.deleted_at.is_(None),
        )
        .order_by(Group.created_at.asc(), Group.id.asc())
    )
    return [_build_group_dict(g) for g in session.execute(stmt).scalars().all()]


def get_group(group_id: int, caller_id: int, session: Session) -> dict:
    """Full group details with the current member list. Caller needs 'view'."""
    group = _get_group_or_404(group_id, session)
    permission_service.require_permission(caller_id, group_id, Permission.VIEW, session)
    return _build_group_dict(group, _active_memberships(group_id, session))


def update_group(group_id: int, caller_id: int, data: dict, session: Session) -> dict:
    """Updates name, description and/or primary_currency. Caller needs 'admin'."""
    group = _get_group_or_404(group_id, session)
    permission_service.require_permission(caller_id, group_id, Permission.ADMIN, session)
    audit_service.bind_actor(session, caller_id)

    if "primary_currency" in data:
        _validate_currency(data["primary_currency"])

    for field in ("name", "description", "primary_currency"):
        if field in data:
            setattr(group, field, data[field])

    session.flush()
    return _build_group_dict(group, _active_memberships(group_id, session))


def add_member(group_id: int, caller_id: int, data: dict, session: Session) -> dict:
    """
    Adds a user (by user_id or email) to a group with the given role.

    Raises:
      NotFoundError(GROUP_NOT_FOUND)        — group missing or soft-deleted
      AppError(FORBIDDEN, 403)              — caller is not an administrator
      NotFoundError(USER_NOT_FOUND)         — target user missing or soft-deleted
      LedgerIntegrityError(ALREADY_MEMBER)  — user is already in the group
    """
    _get_group_or_404(group_id, session)
    permission_service.require_permission(caller_id, group_id, Permission.ADMIN, session)
    audit_service.bind_actor(session, caller_id)

    target_user = _find_target_user(data, session)

    existing = session.execute(
        select(Membership.id).where(
            Membership.group_id == group_id,
            Membership.user_id == target_user.id,
        )
    ).scalar_one_or_none()

    if existing is not None:
        raise LedgerIntegrityError(
            ErrorCode.ALREADY_MEMBER,
            f"User {target_user.id} is already a member of group {group_id}.",
        )

    membership = Membership(
        user_id=target_user.id,
        group_id=group_id,
        role=data.get("role") or MemberRole.EDITOR,
    )
    session.add(membership)
    try:
        session.flush()
    except IntegrityError as exc:
        # Lost a race with a concurrent add of the same user.
        raise LedgerIntegrityError(
            ErrorCode.ALREADY_MEMBER,
            f"User {target_user.id} is already a member of group {group_id}.",
        ) from exc

    return _build_member_dict(membership)


def change_member_role(
        group_id: int,
        caller_id: int,
        target_user_id: int,
        role: MemberRole | str,
        session: Session,
) -> dict:
    """
    Changes a member's role. Caller needs 'admin'.

    Demoting the last administrator raises LAST_ADMINISTRATOR (422).
    """
    _get_group_or_404(group_id, session)
    permission_service.require_permission(caller_id, group_id, Permission.ADMIN, session)
    audit_service.bind_actor(session, caller_id)

    role = MemberRole(role)
    membership = _get_membership_or_404(group_id, target_user_id, session)

    if role is not MemberRole.ADMINISTRATOR:
        _require_other_administrator(membership, session)

    membership.role = role
    session.flush()
    return _build_member_dict(membership)


def remove_member(
        group_id: int,
        caller_id: int,
        target_user_id: int,
        session: Session,
) -> None:
    """
    Removes a user from a group.

    Administrators may remove anyone; any member may remove themself.
    The last administrator cannot leave (LAST_ADMINISTRATOR, 422).
    Neither can a member whose balance is not zero (OUTSTANDING_BALANCE, 422).

    Raises:
      NotFoundError(GROUP_NOT_FOUND)     — group missing or soft-deleted
      AppError(FORBIDDEN, 403)           — caller may not remove this user
      NotFoundError(MEMBER_NOT_FOUND)    — target is not a member
    """
    _get_group_or_404(group_id, session)

    if caller_id == target_user_id:
        permission_service.require_permission(caller_id, group_id, Permission.VIEW, session)
    elif not permission_service.check_user_permission(
            caller_id, group_id, Permission.ADMIN, session
    ):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only administrators may remove other members.",
            403,
        )

    audit_service.bind_actor(session, caller_id)
    membership = _get_membership_or_404(group_id, target_user_id, session)
    _require_other_administrator(membership, session)
    balance_service.require_settled(target_user_id, session, group_id=group_id)

    session.delete(membership)
    session.flush()
