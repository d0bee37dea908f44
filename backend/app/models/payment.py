"""
models/payment.py — Payment table definition.

A payment is a direct transfer between two members of a group. It has no
shares and is never split.

Key design points:
  - CHECK(payer_id <> recipient_id) backs the SELF_PAYMENT check in
    payment_service.py.
  - Users are ON DELETE RESTRICT: a user with payments on record cannot be
    hard-deleted.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.base import Money, SoftDeleteMixin


class Payment(SoftDeleteMixin, db.Model):
    __tablename__ = "payments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        CheckConstraint(
            "payer_id <> recipient_id",
            name="ck_payments_no_self_payment",
        ),
        Index(
            "idx_payments_active",
            "group_id",
            postgresql_where="deleted_at IS NULL",
        ),
    )

    __audit_fields__ = (
        "id",
        "group_id",
        "payer_id",
        "recipient_id",
        "amount",
        "currency",
        "payment_date",
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
    )

    recipient_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
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

    payment_date: Mapped[date] = mapped_column(
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
        back_populates="payments",
    )

    payer: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[payer_id],
    )

    recipient: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[recipient_id],
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Payment id={self.id} "
            f"group_id={self.group_id} "
            f"payer_id={self.payer_id} "
            f"recipient_id={self.recipient_id} "
            f"amount={self.amount} {self.currency}>"
        )
