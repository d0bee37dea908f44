"""Reject UPDATE and DELETE on audit_log_entries.

Revision: 002_audit_log_immutability
Created:  2026-10-19

Audit entries are append-only. The ORM refuses to change them
(services/audit_service.py); this trigger makes the database refuse too,
whatever client issues the statement.

Trigger design:
  Function : fn_audit_log_immutable()
    - DELETE → always rejected.
    - UPDATE → allowed only when every snapshot column is unchanged and
      user_id / group_id either stay the same or become NULL. That is the
      update ON DELETE SET NULL performs when a user or group is
      hard-deleted; the snapshot columns keep naming them.
    - Rejections raise SQLSTATE 23514 (check_violation).

  Trigger  : trg_audit_log_immutable
    - BEFORE UPDATE OR DELETE ON audit_log_entries
    - FOR EACH ROW

The same DDL is attached to the AuditLogEntry table in models/audit_log.py so
db.create_all() databases match migrated ones.

Append-only:
  This file must NEVER be edited after it has been applied to any database.
"""

from __future__ import annotations

from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "002_audit_log_immutability"
down_revision: str | None = "001_initial_schema"
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:
    op.execute("""
        CREATE OR REPLACE FUNCTION fn_audit_log_immutable() RETURNS trigger AS $$
        BEGIN
            IF TG_OP = 'UPDATE'
               AND NEW.id = OLD.id
               AND NEW.entity_type = OLD.entity_type
               AND NEW.entity_id = OLD.entity_id
               AND NEW.action = OLD.action
               AND NEW.user_email = OLD.user_email
               AND NEW.user_display_name = OLD.user_display_name
               AND NEW.group_name IS NOT DISTINCT FROM OLD.group_name
               AND NEW.before_state IS NOT DISTINCT FROM OLD.before_state
               AND NEW.after_state IS NOT DISTINCT FROM OLD.after_state
               AND NEW.created_at = OLD.created_at
               AND (NEW.user_id IS NOT DISTINCT FROM OLD.user_id OR NEW.user_id IS NULL)
               AND (NEW.group_id IS NOT DISTINCT FROM OLD.group_id OR NEW.group_id IS NULL)
            THEN
                RETURN NEW;
            END IF;
            RAISE EXCEPTION 'audit_log_entries rows are immutable'
                USING ERRCODE = 'check_violation';
        END;
        $$ LANGUAGE plpgsql
    """)

    op.execute("""
        CREATE TRIGGER trg_audit_log_immutable
        BEFORE UPDATE OR DELETE ON audit_log_entries
        FOR EACH ROW EXECUTE FUNCTION fn_audit_log_immutable()
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_audit_log_immutable ON audit_log_entries")
    op.execute("DROP FUNCTION IF EXISTS fn_audit_log_immutable()")
