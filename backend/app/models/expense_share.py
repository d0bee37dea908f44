"""
models/expense_share.py — ExpenseShare table definition.

One row per participant of an expense. Audited as entity type
'expense_participant'; shares are replaced, never edited in place, so the
audit trail only ever records their creation and deletion.

Key design points:
  - `share_amount` is what the participant owes; it is the only column the
    balance calculator reads.
  - `share_percentage` / `share_count` keep the input of the percentage and
    shares split methods so the split can be shown back to the user.
  - UNIQUE(expense_id, user_id): a user appears once per expense.

The sum of an expense's share amounts matching the expense amount is checked
by expense_service.is_split_valid(), not by a DB constraint.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Integer,
    Numeric,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.base import Money


class ExpenseShare(db.Model):
    __tablename__ = "expense_shares"

    __table_args__ = (
        UniqueConstraint("expense_id", "user_id", name="uq_expense_shares_expense_user"),
        CheckConstraint("share_amount > 0", name="ck_expense_shares_amount_positive"),
        CheckConstraint(
            "share_percentage IS NULL OR (share_percentage >= 0 AND share_percentage <= 100)",
            name="ck_expense_shares_percentage_range",
        ),
        CheckConstraint(
            "share_count IS NULL OR share_count > 0",
            name="ck_expense_shares_count_positive",
        ),
    )

    __audit_fields__ = (
        "id",
        "expense_id",
        "user_id",
        "share_amount",
        "share_percentage",
        "share_count",
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    share_amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
    )

    share_percentage: Mapped[Decimal | None] = mapped_column(
        Numeric(5, 2),
        nullable=True,
    )

    share_count: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="shares",
    )

    user: Mapped["User"] = relationship("User")  # noqa: F821

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<ExpenseShare id={self.id} "
            f"expense_id={self.expense_id} "
            f"user_id={self.user_id} "
            f"share_amount={self.share_amount}>"
        )
