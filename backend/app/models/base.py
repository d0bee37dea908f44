"""
models/base.py — Column types and the soft-delete lifecycle shared by models.

No business logic beyond the lifecycle state tag. No imports from services
or routes.

Lifecycle of User, Group, Expense and Payment rows:

    ACTIVE ──soft delete──▶ SOFT_DELETED ──hard delete──▶ (row removed)
       ▲                         │
       └────────restore──────────┘

`deleted_at` is the stored marker; `lifecycle_state` is the tag the service
layer branches on.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Numeric
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.errors import ErrorCode, LifecycleError

# Wide enough for three-decimal currencies (BHD, KWD, ...). Never Float.
Money = Numeric(15, 3)

# Audit snapshots. Python None is stored as SQL NULL, not JSON 'null'.
JSONState = JSON(none_as_null=True).with_variant(
    JSONB(none_as_null=True), "postgresql"
)


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g. 'editor'), not names ('EDITOR')."""
    return [member.value for member in enum_cls]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleState(str, enum.Enum):
    ACTIVE       = "active"
    SOFT_DELETED = "soft_deleted"


class SoftDeleteMixin:
    """
    Adds `deleted_at` and the ACTIVE / SOFT_DELETED state tag.

    The mark_* methods return False when the row is already in the target
    state so callers can report a no-op without raising.
    """

    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    @property
    def lifecycle_state(self) -> LifecycleState:
        if self.deleted_at is None:
            return LifecycleState.ACTIVE
        return LifecycleState.SOFT_DELETED

    @property
    def is_deleted(self) -> bool:
        return self.lifecycle_state is LifecycleState.SOFT_DELETED

    def mark_deleted(self, when: datetime | None = None) -> bool:
        if self.is_deleted:
            return False
        self.deleted_at = when or utcnow()
        return True

    def mark_restored(self) -> bool:
        if not self.is_deleted:
            return False
        self.deleted_at = None
        return True

    def require_soft_deleted(self) -> None:
        """Raises LifecycleError unless the row may be permanently removed."""
        if not self.is_deleted:
            raise LifecycleError(
                ErrorCode.NOT_SOFT_DELETED,
                f"{type(self).__name__} {getattr(self, 'id', None)} is active; "
                "soft-delete it before deleting it permanently.",
            )
