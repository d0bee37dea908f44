"""
models/user.py — User table definition.

No business logic. No imports from services or routes.

`password_hash` belongs to the auth layer and is never written into audit
snapshots (see __audit_fields__).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.base import SoftDeleteMixin


class User(SoftDeleteMixin, db.Model):
    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(display_name)) > 0",
            name="ck_users_display_name_nonempty",
        ),
        CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
    )

    # Columns copied into audit before/after snapshots.
    __audit_fields__ = (
        "id",
        "email",
        "display_name",
        "avatar_url",
        "preferred_currency",
        "preferred_language",
        "deleted_at",
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    display_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    avatar_url: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    # ISO-4217; validated against currency.SUPPORTED_CURRENCIES by the schema.
    preferred_currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
        server_default="USD",
    )

    # ISO-639-1 two-letter code.
    preferred_language: Mapped[str] = mapped_column(
        String(2),
        nullable=False,
        default="en",
        server_default="en",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        onupdate=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    # Removed with the user on hard delete; each removal is audited.
    memberships: Mapped[list["Membership"]] = relationship(  # noqa: F821
        "Membership",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    # Groups keep existing when their creator is removed; the ORM nulls
    # creator_id on hard delete.
    groups_created: Mapped[list["Group"]] = relationship(  # noqa: F821
        "Group",
        back_populates="creator",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} email={self.email!r} deleted={self.is_deleted}>"
