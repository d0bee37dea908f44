"""
services/permission_service.py — Role-based group permissions.

  view   any member
  edit   editor or administrator   (expenses, payments)
  admin  administrator only        (members, group settings, group lifecycle)

Soft-deleted users and soft-deleted groups have no permissions.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
"""

from __future__ import annotations

import enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.group import Group
from backend.app.models.membership import MemberRole, Membership
from backend.app.models.user import User


class Permission(str, enum.Enum):
    VIEW  = "view"
    EDIT  = "edit"
    ADMIN = "admin"


_GRANTED_ROLES: dict[Permission, frozenset[MemberRole]] = {
    Permission.VIEW:  frozenset({MemberRole.ADMINISTRATOR, MemberRole.EDITOR, MemberRole.VIEWER}),
    Permission.EDIT:  frozenset({MemberRole.ADMINISTRATOR, MemberRole.EDITOR}),
    Permission.ADMIN: frozenset({MemberRole.ADMINISTRATOR}),
}


def get_member_role(
        user_id: int,
        group_id: int,
        session: Session,
        include_deleted_group: bool = False,
) -> MemberRole | None:
    """
    The user's role in the group, or None if they have none.

    Soft-deleted groups grant nothing unless include_deleted_group is set,
    which only the lifecycle manager uses to restore or purge a group.
    """
    stmt = (
        select(Membership.role)
        .join(User, User.id == Membership.user_id)
        .join(Group, Group.id == Membership.group_id)
        .where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
            User.deleted_at.is_(None),
        )
    )
    if not include_deleted_group:
        stmt = stmt.where(Group.deleted_at.is_(None))
    return session.execute(stmt).scalar_one_or_none()


def check_user_permission(
        user_id: int,
        group_id: int,
        permission: Permission | str,
        session: Session,
) -> bool:
    role = get_member_role(user_id, group_id, session)
    if role is None:
        return False
    return role in _GRANTED_ROLES[Permission(permission)]


def require_permission(
        user_id: int,
        group_id: int,
        permission: Permission | str,
        session: Session,
) -> None:
    """
    Raises FORBIDDEN (403) unless user_id holds `permission` in group_id.

    Non-members get 403 rather than 404 so group ids are not probeable.
    """
    permission = Permission(permission)
    if not check_user_permission(user_id, group_id, permission, session):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You do not have '{permission.value}' permission in group {group_id}.",
            403,
        )
