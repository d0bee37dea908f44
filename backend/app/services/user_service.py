"""
services/user_service.py — Profile reads and updates.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from backend.app.currency import is_valid_currency
from backend.app.errors import ErrorCode, LedgerValidationError
from backend.app.models.user import User
from backend.app.services import audit_service, lifecycle_service
from backend.app.services.auth_service import build_user_dict
from backend.app.services.lifecycle_service import EntityKind

_PROFILE_FIELDS = ("display_name", "avatar_url", "preferred_currency", "preferred_language")


def list_users(session: Session) -> list[dict]:
    """Every active account, oldest first."""
    return [build_user_dict(u) for u in lifecycle_service.list_active(EntityKind.USER, session)]


def update_profile(user_id: int, data: dict, session: Session) -> dict:
    """
    Updates the caller's own profile.

    Args:
        data: Validated partial dict from UpdateProfileSchema.

    Raises:
      NotFoundError(USER_NOT_FOUND)            — account missing or soft-deleted
      LedgerValidationError(INVALID_CURRENCY)  — unsupported preferred_currency
    """
    audit_service.bind_actor(session, user_id)
    user = session.get(User, user_id)

    if "preferred_currency" in data and not is_valid_currency(data["preferred_currency"]):
        raise LedgerValidationError(
            ErrorCode.INVALID_CURRENCY,
            f"'{data['preferred_currency']}' is not a supported currency.",
            field="preferred_currency",
        )

    for field in _PROFILE_FIELDS:
        if field in data:
            setattr(user, field, data[field])

    session.flush()
    return build_user_dict(user)
