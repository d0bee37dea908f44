"""
models/expense.py — Expense table definition.

No business logic. No imports from services or routes.

Key design points:
  - `deleted_at` (SoftDeleteMixin) is NULL for active expenses.
  - `amount` uses Numeric(15, 3) — never Float. The currency decides how
    many of those digits may be used (app/currency.py).
  - Shares are owned by their expense: hard-deleting the expense removes
    them through the ORM cascade so each removal is audited.
  - SplitMethod is a Python enum so schemas and services can share it
    without repeating string literals.
"""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.base import Money, SoftDeleteMixin, enum_values


class SplitMethod(str, enum.Enum):
    EQUAL      = "equal"
    PERCENTAGE = "percentage"
    EXACT      = "exact"
    SHARES     = "shares"


class Expense(SoftDeleteMixin, db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
        # Active-expense lookups per group (balances, listings).
        Index(
            "idx_expenses_active",
            "group_id",
            postgresql_where="deleted_at IS NULL",
        ),
    )

    __audit_fields__ = (
        "id",
        "group_id",
        "payer_id",
        "amount",
        "currency",
        "description",
        "split_method",
        "expense_date",
        "notes",
        "deleted_at",
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    payer_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
        server_default="USD",
    )

    description: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )

    split_method: Mapped[SplitMethod] = mapped_column(
        Enum(
            SplitMethod,
            name="split_method",
            native_enum=False,
            length=20,
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
        default=SplitMethod.EQUAL,
        server_default=SplitMethod.EQUAL.value,
    )

    expense_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        default=date.today,
    )

    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
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

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="expenses",
    )

    payer: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[payer_id],
    )

    shares: Mapped[list["ExpenseShare"]] = relationship(  # noqa: F821
        "ExpenseShare",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="ExpenseShare.id",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"group_id={self.group_id} "
            f"amount={self.amount} {self.currency} "
            f"deleted={self.is_deleted}>"
        )
