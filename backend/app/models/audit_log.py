"""
models/audit_log.py — AuditLogEntry table definition.

Append-only record of one create/update/delete on a tracked entity. Rows are
written by services/audit_service.py from inside the flush that performs the
mutation, so an entry commits or rolls back together with its mutation.

Key design points:
  - The acting user and the group are captured by value (user_email,
    user_display_name, group_name). user_id / group_id are ON DELETE SET
    NULL, so the snapshot outlives the rows it describes.
  - before_state / after_state presence is fixed by the action and enforced
    by a CHECK constraint:
        create → after only, update → both, delete → before only.
  - Rows never change once written. The database rejects UPDATE and DELETE
    with a trigger; the only UPDATE let through is the FK detach that nulls
    user_id and/or group_id and leaves every other column untouched.
    The same triggers are created by migration 002 for PostgreSQL; the DDL
    hooks below install them on tables built with db.create_all().
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    DDL,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    event,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.extensions import db
from backend.app.models.base import JSONState, enum_values


class AuditEntityType(str, enum.Enum):
    USER                = "user"
    GROUP               = "group"
    GROUP_MEMBER        = "group_member"
    EXPENSE             = "expense"
    EXPENSE_PARTICIPANT = "expense_participant"
    PAYMENT             = "payment"


class AuditAction(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class AuditLogEntry(db.Model):
    __tablename__ = "audit_log_entries"

    __table_args__ = (
        CheckConstraint(
            "(action = 'create' AND before_state IS NULL AND after_state IS NOT NULL) OR "
            "(action = 'update' AND before_state IS NOT NULL AND after_state IS NOT NULL) OR "
            "(action = 'delete' AND before_state IS NOT NULL AND after_state IS NULL)",
            name="ck_audit_log_state_matches_action",
        ),
        Index("idx_audit_log_entity", "entity_type", "entity_id"),
        Index("idx_audit_log_group_created", "group_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    entity_type: Mapped[AuditEntityType] = mapped_column(
        Enum(
            AuditEntityType,
            name="audit_entity_type",
            native_enum=False,
            length=32,
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )

    entity_id: Mapped[int] = mapped_column(nullable=False)

    action: Mapped[AuditAction] = mapped_column(
        Enum(
            AuditAction,
            name="audit_action",
            native_enum=False,
            length=16,
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )

    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    user_email: Mapped[str] = mapped_column(String(255), nullable=False)

    user_display_name: Mapped[str] = mapped_column(String(100), nullable=False)

    group_id: Mapped[int | None] = mapped_column(
        ForeignKey("groups.id", ondelete="SET NULL"),
        nullable=True,
    )

    group_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    before_state: Mapped[dict | None] = mapped_column(JSONState, nullable=True)

    after_state: Mapped[dict | None] = mapped_column(JSONState, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<AuditLogEntry id={self.id} "
            f"{self.entity_type}:{self.entity_id} "
            f"action={self.action} "
            f"user={self.user_email!r}>"
        )


# ── Immutability triggers ──────────────────────────────────────────────────

_PG_IMMUTABLE_FUNCTION = DDL("""
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

_PG_IMMUTABLE_TRIGGER = DDL("""
CREATE TRIGGER trg_audit_log_immutable
BEFORE UPDATE OR DELETE ON audit_log_entries
FOR EACH ROW EXECUTE FUNCTION fn_audit_log_immutable()
""")

_SQLITE_NO_UPDATE_TRIGGER = DDL("""
CREATE TRIGGER trg_audit_log_no_update
BEFORE UPDATE ON audit_log_entries
WHEN NOT (
    NEW.id IS OLD.id
    AND NEW.entity_type IS OLD.entity_type
    AND NEW.entity_id IS OLD.entity_id
    AND NEW.action IS OLD.action
    AND NEW.user_email IS OLD.user_email
    AND NEW.user_display_name IS OLD.user_display_name
    AND NEW.group_name IS OLD.group_name
    AND NEW.before_state IS OLD.before_state
    AND NEW.after_state IS OLD.after_state
    AND NEW.created_at IS OLD.created_at
    AND (NEW.user_id IS OLD.user_id OR NEW.user_id IS NULL)
    AND (NEW.group_id IS OLD.group_id OR NEW.group_id IS NULL)
)
BEGIN
    SELECT RAISE(ABORT, 'audit_log_entries rows are immutable');
END
""")

_SQLITE_NO_DELETE_TRIGGER = DDL("""
CREATE TRIGGER trg_audit_log_no_delete
BEFORE DELETE ON audit_log_entries
BEGIN
    SELECT RAISE(ABORT, 'audit_log_entries rows are immutable');
END
""")

_table = AuditLogEntry.__table__
event.listen(_table, "after_create", _PG_IMMUTABLE_FUNCTION.execute_if(dialect="postgresql"))
event.listen(_table, "after_create", _PG_IMMUTABLE_TRIGGER.execute_if(dialect="postgresql"))
event.listen(_table, "after_create", _SQLITE_NO_UPDATE_TRIGGER.execute_if(dialect="sqlite"))
event.listen(_table, "after_create", _SQLITE_NO_DELETE_TRIGGER.execute_if(dialect="sqlite"))
