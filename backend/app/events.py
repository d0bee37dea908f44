"""
events.py — Change notifications for committed ledger mutations.

Every audited mutation queues one ChangeEvent on the session that made it.
When that session commits, each event is sent on the `ledger_changed` signal,
one send per mutation, in the order the mutations were flushed. Events
queued by a transaction that rolls back are dropped.

Subscribe with blinker's usual API:

    from backend.app.events import ledger_changed

    @ledger_changed.connect
    def on_change(sender, event):
        ...

Senders are the entity type string (e.g. "expense"), so a receiver can also
subscribe to a single entity type with ledger_changed.connect(fn, sender="expense").
"""

from __future__ import annotations

from dataclasses import dataclass

from blinker import Namespace
from sqlalchemy import event
from sqlalchemy.orm import Session

_signals = Namespace()

ledger_changed = _signals.signal("ledger-changed")

_PENDING_KEY = "pending_change_events"


@dataclass(frozen=True)
class ChangeEvent:
    entity_type: str
    entity_id: int
    action: str
    group_id: int | None
    audit_entry_id: int | None = None


def queue_change_event(session: Session, change: ChangeEvent) -> None:
    session.info.setdefault(_PENDING_KEY, []).append(change)


def pending_change_events(session: Session) -> list[ChangeEvent]:
    return list(session.info.get(_PENDING_KEY, []))


@event.listens_for(Session, "after_commit")
def _publish_after_commit(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, [])
    for change in pending:
        ledger_changed.send(change.entity_type, event=change)


@event.listens_for(Session, "after_rollback")
def _discard_after_rollback(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)
