"""Initial schema — all tables, constraints and indexes.

Revision: 001_initial_schema
Created:  2026-10-19

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order:
  Tables in FK dependency order (users → groups → memberships → expenses
  → expense_shares → payments → audit_log_entries), then indexes.

Enums (member role, split method, audit entity type / action) are stored as
VARCHAR; the models declare them with native_enum=False so the values can
grow without ALTER TYPE.

ON DELETE policies:
  groups.creator_id                 → SET NULL  (group outlives its creator)
  memberships.*                     → CASCADE   (membership owned by both sides)
  expenses.group_id                 → CASCADE   (removed with a hard-deleted group)
  expenses.payer_id                 → RESTRICT  (ledger history pins the user)
  expense_shares.expense_id         → CASCADE   (shares owned by their expense)
  expense_shares.user_id            → RESTRICT
  payments.group_id                 → CASCADE
  payments.payer_id / recipient_id  → RESTRICT
  audit_log_entries.user_id         → SET NULL  (snapshot survives the user)
  audit_log_entries.group_id        → SET NULL  (snapshot survives the group)
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration — no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None

_JSON_STATE = sa.JSON(none_as_null=True).with_variant(
    postgresql.JSONB(none_as_null=True), "postgresql"
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:

    # ── Step 1: users ──────────────────────────────────────────────────────

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("preferred_currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("preferred_language", sa.String(2), nullable=False, server_default="en"),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint(
            "LENGTH(TRIM(display_name)) > 0",
            name="ck_users_display_name_nonempty",
        ),
        sa.CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
    )

    # ── Step 2: groups ─────────────────────────────────────────────────────

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column(
            "creator_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL", name="fk_groups_creator"),
            nullable=True,
        ),
        sa.Column("primary_currency", sa.String(3), nullable=False, server_default="USD"),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
    )

    # ── Step 3: memberships ────────────────────────────────────────────────

    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_memberships_user"),
            nullable=False,
        ),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_memberships_group"),
            nullable=False,
        ),
        sa.Column("role", sa.String(20), nullable=False, server_default="editor"),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_memberships"),
        sa.UniqueConstraint("group_id", "user_id", name="uq_memberships_group_user"),
        sa.CheckConstraint(
            "role IN ('administrator', 'editor', 'viewer')",
            name="ck_memberships_role",
        ),
    )

    # ── Step 4: expenses ───────────────────────────────────────────────────
    # deleted_at IS NULL = active; non-null = soft-deleted.

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_expenses_group"),
            nullable=False,
        ),
        sa.Column(
            "payer_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_expenses_payer"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(15, 3), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("split_method", sa.String(20), nullable=False, server_default="equal"),
        sa.Column("expense_date", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_expenses"),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
        sa.CheckConstraint(
            "split_method IN ('equal', 'percentage', 'exact', 'shares')",
            name="ck_expenses_split_method",
        ),
    )

    # ── Step 5: expense_shares ─────────────────────────────────────────────

    op.create_table(
        "expense_shares",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE", name="fk_expense_shares_expense"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_expense_shares_user"),
            nullable=False,
        ),
        sa.Column("share_amount", sa.Numeric(15, 3), nullable=False),
        sa.Column("share_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("share_count", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_expense_shares"),
        sa.UniqueConstraint("expense_id", "user_id", name="uq_expense_shares_expense_user"),
        sa.CheckConstraint("share_amount > 0", name="ck_expense_shares_amount_positive"),
        sa.CheckConstraint(
            "share_percentage IS NULL OR (share_percentage >= 0 AND share_percentage <= 100)",
            name="ck_expense_shares_percentage_range",
        ),
        sa.CheckConstraint(
            "share_count IS NULL OR share_count > 0",
            name="ck_expense_shares_count_positive",
        ),
    )

    # ── Step 6: payments ───────────────────────────────────────────────────

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_payments_group"),
            nullable=False,
        ),
        sa.Column(
            "payer_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_payments_payer"),
            nullable=False,
        ),
        sa.Column(
            "recipient_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_payments_recipient"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(15, 3), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_payments"),
        sa.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        sa.CheckConstraint(
            "payer_id <> recipient_id",
            name="ck_payments_no_self_payment",
        ),
    )

    # ── Step 7: audit_log_entries ──────────────────────────────────────────
    # Actor and group are snapshotted by value; the FKs only link while the
    # rows exist.

    op.create_table(
        "audit_log_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(16), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL", name="fk_audit_log_user"),
            nullable=True,
        ),
        sa.Column("user_email", sa.String(255), nullable=False),
        sa.Column("user_display_name", sa.String(100), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="SET NULL", name="fk_audit_log_group"),
            nullable=True,
        ),
        sa.Column("group_name", sa.String(100), nullable=True),
        sa.Column("before_state", _JSON_STATE, nullable=True),
        sa.Column("after_state", _JSON_STATE, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_audit_log_entries"),
        sa.CheckConstraint(
            "(action = 'create' AND before_state IS NULL AND after_state IS NOT NULL) OR "
            "(action = 'update' AND before_state IS NOT NULL AND after_state IS NOT NULL) OR "
            "(action = 'delete' AND before_state IS NOT NULL AND after_state IS NULL)",
            name="ck_audit_log_state_matches_action",
        ),
    )

    # ── Step 8: Indexes ────────────────────────────────────────────────────
    # Names match the ones SQLAlchemy derives from the models.

    op.create_index("ix_groups_creator_id", "groups", ["creator_id"])
    op.create_index("ix_memberships_group_id", "memberships", ["group_id"])
    op.create_index("ix_memberships_user_id", "memberships", ["user_id"])
    op.create_index("ix_expenses_group_id", "expenses", ["group_id"])
    op.create_index("ix_expenses_payer_id", "expenses", ["payer_id"])
    op.create_index("ix_expense_shares_expense_id", "expense_shares", ["expense_id"])
    op.create_index("ix_expense_shares_user_id", "expense_shares", ["user_id"])
    op.create_index("ix_payments_group_id", "payments", ["group_id"])
    op.create_index("ix_audit_log_entries_user_id", "audit_log_entries", ["user_id"])
    op.create_index("idx_audit_log_entity", "audit_log_entries", ["entity_type", "entity_id"])
    op.create_index("idx_audit_log_group_created", "audit_log_entries", ["group_id", "created_at"])

    # Balance scans read only active rows of one group.
    op.create_index(
        "idx_expenses_active",
        "expenses",
        ["group_id"],
        postgresql_where=sa.text("deleted_at IS NULL"),
    )
    op.create_index(
        "idx_payments_active",
        "payments",
        ["group_id"],
        postgresql_where=sa.text("deleted_at IS NULL"),
    )


def downgrade() -> None:
    """Drops everything upgrade() created, in reverse FK order."""
    op.drop_index("idx_payments_active", table_name="payments")
    op.drop_index("idx_expenses_active", table_name="expenses")
    op.drop_index("idx_audit_log_group_created", table_name="audit_log_entries")
    op.drop_index("idx_audit_log_entity", table_name="audit_log_entries")
    op.drop_index("ix_audit_log_entries_user_id", table_name="audit_log_entries")
    op.drop_index("ix_payments_group_id", table_name="payments")
    op.drop_index("ix_expense_shares_user_id", table_name="expense_shares")
    op.drop_index("ix_expense_shares_expense_id", table_name="expense_shares")
    op.drop_index("ix_expenses_payer_id", table_name="expenses")
    op.drop_index("ix_expenses_group_id", table_name="expenses")
    op.drop_index("ix_memberships_user_id", table_name="memberships")
    op.drop_index("ix_memberships_group_id", table_name="memberships")
    op.drop_index("ix_groups_creator_id", table_name="groups")

    op.drop_table("audit_log_entries")
    op.drop_table("payments")
    op.drop_table("expense_shares")
    op.drop_table("expenses")
    op.drop_table("memberships")
    op.drop_table("groups")
    op.drop_table("users")
