"""
services/audit_service.py — Audit recorder.

Every create, update and delete of a tracked entity writes exactly one
AuditLogEntry inside the flush that performs it:

    session.flush()
      └─ mapper after_insert / after_update / after_delete   (per row)
           └─ record_mutation(connection, ...)   INSERT on the flush's connection

Because the entry is written on the same connection and transaction as the
row change, both commit or neither does. A failure while recording (bad
entity/action pair, no bound actor) raises out of the flush and rolls the
whole transaction back.

Tracked entities and their audit names:
  User → user            Group → group              Membership → group_member
  Expense → expense      ExpenseShare → expense_participant
  Payment → payment

Actor:
  The acting user is bound explicitly with bind_actor(session, user_id)
  before any write. It is captured by value (id, email, display name) so the
  entry still says who acted after that user is deleted. A User created with
  no actor bound is a self sign-up and is recorded as its own actor.

Invariants:
  - create → after_state only; update → both; delete → before_state only.
  - expense_participant rows are only ever created or deleted.
  - Updates that touch no audited column (e.g. only updated_at or
    password_hash) produce no entry.
  - Entries are never changed. ORM updates/deletes of AuditLogEntry raise
    ImmutabilityError; the database triggers reject everything else except
    detach_audit_references().

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import event, inspect, insert, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session, object_session

from backend.app.errors import (
    ErrorCode,
    ImmutabilityError,
    LedgerValidationError,
    NotFoundError,
)
from backend.app.events import ChangeEvent, queue_change_event
from backend.app.models.audit_log import AuditAction, AuditEntityType, AuditLogEntry
from backend.app.models.expense import Expense
from backend.app.models.expense_share import ExpenseShare
from backend.app.models.group import Group
from backend.app.models.membership import Membership
from backend.app.models.payment import Payment
from backend.app.models.user import User
from backend.app.services import permission_service
from backend.app.services.permission_service import Permission

logger = logging.getLogger(__name__)

DELETED_GROUP_NAME = "Deleted Group"

_ACTOR_KEY = "audit_actor"

_ALL_ACTIONS = frozenset(AuditAction)

ALLOWED_ACTIONS: dict[AuditEntityType, frozenset[AuditAction]] = {
    AuditEntityType.USER:                _ALL_ACTIONS,
    AuditEntityType.GROUP:               _ALL_ACTIONS,
    AuditEntityType.GROUP_MEMBER:        _ALL_ACTIONS,
    AuditEntityType.EXPENSE:             _ALL_ACTIONS,
    AuditEntityType.EXPENSE_PARTICIPANT: frozenset({AuditAction.CREATE, AuditAction.DELETE}),
    AuditEntityType.PAYMENT:             _ALL_ACTIONS,
}

TRACKED_MODELS: dict[type, AuditEntityType] = {
    User:         AuditEntityType.USER,
    Group:        AuditEntityType.GROUP,
    Membership:   AuditEntityType.GROUP_MEMBER,
    Expense:      AuditEntityType.EXPENSE,
    ExpenseShare: AuditEntityType.EXPENSE_PARTICIPANT,
    Payment:      AuditEntityType.PAYMENT,
}


@dataclass(frozen=True)
class ActorSnapshot:
    """The acting user, captured by value at the time of the mutation."""
    user_id: int | None
    email: str
    display_name: str


@dataclass(frozen=True)
class GroupContext:
    group_id: int | None
    name: str | None


NO_GROUP = GroupContext(group_id=None, name=None)


# ── Actor binding ──────────────────────────────────────────────────────────

def bind_actor(session: Session, user_id: int, allow_deleted: bool = False) -> ActorSnapshot:
    """
    Resolves user_id to an ActorSnapshot and binds it to the session.

    Every audited write flushed by this session afterwards is attributed to
    this user. allow_deleted lets a soft-deleted user act on their own
    account (restore or permanent delete).

    Raises:
      NotFoundError(USER_NOT_FOUND) — the user does not exist or is soft-deleted.
    """
    user = session.get(User, user_id)
    if user is None or (user.is_deleted and not allow_deleted):
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} does not exist.",
        )
    actor = ActorSnapshot(
        user_id=user.id,
        email=user.email,
        display_name=user.display_name,
    )
    session.info[_ACTOR_KEY] = actor
    return actor


def current_actor(session: Session) -> ActorSnapshot | None:
    return session.info.get(_ACTOR_KEY)


def clear_actor(session: Session) -> None:
    session.info.pop(_ACTOR_KEY, None)


# ── Recording ──────────────────────────────────────────────────────────────

def validate_mutation(
        entity_type: AuditEntityType | str,
        action: AuditAction | str,
        before_state: dict | None,
        after_state: dict | None,
) -> tuple[AuditEntityType, AuditAction]:
    """
    Checks an (entity_type, action, states) combination before it is written.

    Returns the coerced (AuditEntityType, AuditAction) pair.

    Raises:
      LedgerValidationError(INVALID_AUDIT_ACTION) — unknown type or action,
                                                    or a disallowed pair
      LedgerValidationError(MISSING_AUDIT_STATE)  — state presence does not
                                                    match the action
    """
    try:
        entity_type = AuditEntityType(entity_type)
        action = AuditAction(action)
    except ValueError as exc:
        raise LedgerValidationError(
            ErrorCode.INVALID_AUDIT_ACTION,
            f"Unrecognised audit entity type or action: {exc}.",
        ) from exc

    if action not in ALLOWED_ACTIONS[entity_type]:
        raise LedgerValidationError(
            ErrorCode.INVALID_AUDIT_ACTION,
            f"Action '{action.value}' is not recorded for '{entity_type.value}'.",
        )

    wants_before = action in (AuditAction.UPDATE, AuditAction.DELETE)
    wants_after = action in (AuditAction.CREATE, AuditAction.UPDATE)
    if (before_state is not None) != wants_before or (after_state is not None) != wants_after:
        raise LedgerValidationError(
            ErrorCode.MISSING_AUDIT_STATE,
            f"A '{action.value}' entry needs "
            f"{'a before-state' if wants_before else 'no before-state'} and "
            f"{'an after-state' if wants_after else 'no after-state'}.",
        )

    return entity_type, action


def record_mutation(
        connection: Connection,
        entity_type: AuditEntityType | str,
        entity_id: int,
        action: AuditAction | str,
        actor: ActorSnapshot | None,
        group: GroupContext = NO_GROUP,
        before_state: dict | None = None,
        after_state: dict | None = None,
) -> AuditLogEntry:
    """
    Validates and inserts one audit entry on `connection`.

    Called from the flush hooks below with the flush's own connection, so the
    INSERT belongs to the mutation's transaction. Returns a transient
    AuditLogEntry mirroring the inserted row (created_at is set by the
    database and is not populated on the returned object).
    """
    entity_type, action = validate_mutation(entity_type, action, before_state, after_state)

    if actor is None:
        raise LedgerValidationError(
            ErrorCode.NO_ACTOR,
            "No acting user is bound to this session; call bind_actor() first.",
        )

    values = {
        "entity_type":       entity_type,
        "entity_id":         entity_id,
        "action":            action,
        "user_id":           actor.user_id,
        "user_email":        actor.email,
        "user_display_name": actor.display_name,
        "group_id":          group.group_id,
        "group_name":        group.name,
        "before_state":      before_state,
        "after_state":       after_state,
    }
    result = connection.execute(insert(AuditLogEntry.__table__).values(**values))
    return AuditLogEntry(id=result.inserted_primary_key[0], **values)


def detach_audit_references(
        session: Session,
        *,
        user_id: int | None = None,
        group_id: int | None = None,
) -> int:
    """
    Nulls user_id / group_id on entries that point at a removed user or group.

    Snapshot columns (user_email, user_display_name, group_name, states) are
    left untouched. This is the only UPDATE the immutability triggers allow.
    On PostgreSQL the ON DELETE SET NULL foreign keys have usually done this
    already and the statements match no rows.
    """
    detached = 0
    if user_id is not None:
        result = session.execute(
            update(AuditLogEntry)
            .where(AuditLogEntry.user_id == user_id)
            .values(user_id=None)
            .execution_options(synchronize_session=False, audit_detach=True)
        )
        detached += result.rowcount or 0
    if group_id is not None:
        result = session.execute(
            update(AuditLogEntry)
            .where(AuditLogEntry.group_id == group_id)
            .values(group_id=None)
            .execution_options(synchronize_session=False, audit_detach=True)
        )
        detached += result.rowcount or 0
    if detached:
        logger.info(
            "Detached %d audit entries (user_id=%s, group_id=%s)",
            detached, user_id, group_id,
        )
    return detached


# ── Reads ──────────────────────────────────────────────────────────────────

def list_group_audit_log(
        group_id: int,
        session: Session,
        limit: int = 100,
) -> list[AuditLogEntry]:
    """Entries recorded with this group as context, newest first."""
    stmt = (
        select(AuditLogEntry)
        .where(AuditLogEntry.group_id == group_id)
        .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .limit(limit)
    )
    return list(session.execute(stmt).scalars().all())


def get_group_audit_log(
        group_id: int,
        caller_id: int,
        session: Session,
        limit: int = 100,
) -> list[AuditLogEntry]:
    """
    Audit log of a group for its administrators, newest first.

    Raises:
      NotFoundError(GROUP_NOT_FOUND) — group missing or soft-deleted
      AppError(FORBIDDEN, 403)       — caller is not an administrator
    """
    group = session.get(Group, group_id)
    if group is None or group.is_deleted:
        raise NotFoundError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
        )
    permission_service.require_permission(caller_id, group_id, Permission.ADMIN, session)
    return list_group_audit_log(group_id, session, limit=limit)


def list_entity_history(
        entity_type: AuditEntityType | str,
        entity_id: int,
        session: Session,
) -> list[AuditLogEntry]:
    """Every entry for one entity, oldest first."""
    try:
        entity_type = AuditEntityType(entity_type)
    except ValueError as exc:
        raise LedgerValidationError(
            ErrorCode.INVALID_ENTITY_TYPE,
            f"'{entity_type}' is not an audited entity type.",
            field="entity_type",
        ) from exc

    stmt = (
        select(AuditLogEntry)
        .where(
            AuditLogEntry.entity_type == entity_type,
            AuditLogEntry.entity_id == entity_id,
        )
        .order_by(AuditLogEntry.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


# ── Snapshots ──────────────────────────────────────────────────────────────

def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    return value


def snapshot(target, previous: bool = False) -> dict:
    """
    JSON-safe dict of the target's __audit_fields__.

    previous=False gives the values being written; previous=True gives the
    values as they were loaded, before this flush. Only attribute history and
    already-loaded values are read, so no SQL is emitted mid-flush.
    """
    state = inspect(target)
    result = {}
    for key in target.__audit_fields__:
        history = state.attrs[key].history
        if history.has_changes():
            # A NULL original leaves history.deleted empty.
            if previous:
                value = history.deleted[0] if history.deleted else None
            else:
                value = history.added[0] if history.added else None
        elif history.unchanged:
            value = history.unchanged[0]
        else:
            value = state.dict.get(key)
        result[key] = _jsonable(value)
    return result


def has_audited_changes(target) -> bool:
    state = inspect(target)
    return any(state.attrs[key].history.has_changes() for key in target.__audit_fields__)


def _user_fields(connection: Connection, user_id: int | None) -> tuple[str | None, str | None]:
    if user_id is None:
        return None, None
    row = connection.execute(
        select(User.__table__.c.email, User.__table__.c.display_name)
        .where(User.__table__.c.id == user_id)
    ).first()
    if row is None:
        return None, None
    return row.email, row.display_name


def _with_related_fields(connection: Connection, target, state: dict | None) -> dict | None:
    """Adds the display fields a reader needs without joining live rows."""
    if state is None:
        return None
    if isinstance(target, Membership):
        state["user_email"], state["user_display_name"] = _user_fields(connection, state["user_id"])
    elif isinstance(target, Payment):
        state["recipient_email"], state["recipient_display_name"] = _user_fields(
            connection, state["recipient_id"]
        )
    return state


def _group_by_id(connection: Connection, group_id: int | None) -> GroupContext:
    if group_id is None:
        return NO_GROUP
    groups = Group.__table__
    name = connection.execute(
        select(groups.c.name).where(groups.c.id == group_id)
    ).scalar()
    if name is None:
        return GroupContext(group_id=None, name=DELETED_GROUP_NAME)
    return GroupContext(group_id=group_id, name=name)


def _group_context(connection: Connection, target, action: AuditAction) -> GroupContext:
    if isinstance(target, User):
        return NO_GROUP
    if isinstance(target, Group):
        if action is AuditAction.DELETE:
            # The row is already gone; keep the name, drop the reference.
            return GroupContext(group_id=None, name=target.name)
        return GroupContext(group_id=target.id, name=target.name)
    if isinstance(target, ExpenseShare):
        expenses = Expense.__table__
        group_id = connection.execute(
            select(expenses.c.group_id).where(expenses.c.id == target.expense_id)
        ).scalar()
        return _group_by_id(connection, group_id)
    return _group_by_id(connection, target.group_id)


def _resolve_actor(session: Session | None, target, action: AuditAction) -> ActorSnapshot | None:
    actor = current_actor(session) if session is not None else None

    if actor is None and isinstance(target, User) and action is AuditAction.CREATE:
        # Self sign-up: the new user is the actor.
        return ActorSnapshot(target.id, target.email, target.display_name)

    if (
        actor is not None
        and isinstance(target, User)
        and action is AuditAction.DELETE
        and actor.user_id == target.id
    ):
        # The actor's own row is gone; keep the snapshot without the reference.
        return ActorSnapshot(None, actor.email, actor.display_name)

    return actor


# ── Flush hooks ────────────────────────────────────────────────────────────

def _capture(connection: Connection, target, action: AuditAction) -> AuditLogEntry:
    session = object_session(target)
    entity_type = TRACKED_MODELS[type(target)]

    before_state = snapshot(target, previous=True) if action is not AuditAction.CREATE else None
    after_state = snapshot(target) if action is not AuditAction.DELETE else None

    entry = record_mutation(
        connection,
        entity_type,
        target.id,
        action,
        _resolve_actor(session, target, action),
        group=_group_context(connection, target, action),
        before_state=_with_related_fields(connection, target, before_state),
        after_state=_with_related_fields(connection, target, after_state),
    )

    if session is not None:
        queue_change_event(session, ChangeEvent(
            entity_type=entity_type.value,
            entity_id=target.id,
            action=action.value,
            group_id=entry.group_id,
            audit_entry_id=entry.id,
        ))
    return entry


def _after_insert(mapper, connection, target) -> None:
    _capture(connection, target, AuditAction.CREATE)


def _after_update(mapper, connection, target) -> None:
    if has_audited_changes(target):
        _capture(connection, target, AuditAction.UPDATE)


def _after_delete(mapper, connection, target) -> None:
    _capture(connection, target, AuditAction.DELETE)


def _reject_entry_update(mapper, connection, target) -> None:
    state = inspect(target)
    if any(attr.history.has_changes() for attr in state.attrs):
        raise ImmutabilityError(
            f"Audit log entry {target.id} cannot be modified."
        )


def _reject_entry_delete(mapper, connection, target) -> None:
    raise ImmutabilityError(f"Audit log entry {target.id} cannot be deleted.")


def _reject_bulk_entry_writes(orm_execute_state) -> None:
    """Blocks session.execute(update/delete(AuditLogEntry)) except the FK detach."""
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    mapper = orm_execute_state.bind_mapper
    if mapper is None or mapper.class_ is not AuditLogEntry:
        return
    if orm_execute_state.is_update and orm_execute_state.execution_options.get("audit_detach"):
        return
    raise ImmutabilityError("Audit log entries cannot be modified or deleted.")


_HOOKS = (
    ("after_insert", _after_insert),
    ("after_update", _after_update),
    ("after_delete", _after_delete),
)

_GUARDS = (
    ("before_update", _reject_entry_update),
    ("before_delete", _reject_entry_delete),
)


def install_audit_hooks() -> None:
    """
    Registers the flush hooks and immutability guards. Safe to call more
    than once (each create_app() calls it).
    """
    for model in TRACKED_MODELS:
        for identifier, fn in _HOOKS:
            if not event.contains(model, identifier, fn):
                event.listen(model, identifier, fn)
    for identifier, fn in _GUARDS:
        if not event.contains(AuditLogEntry, identifier, fn):
            event.listen(AuditLogEntry, identifier, fn)
    if not event.contains(Session, "do_orm_execute", _reject_bulk_entry_writes):
        event.listen(Session, "do_orm_execute", _reject_bulk_entry_writes)
