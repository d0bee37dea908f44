"""
tests/integration/test_change_events.py — ledger_changed notifications.

One event per audited mutation, sent after the commit that made it, in
flush order. Nothing is sent for work that rolls back.
"""

from __future__ import annotations

from backend.app.events import ledger_changed
from backend.app.extensions import db as _db
from backend.app.models.group import Group
from backend.app.services import audit_service

from .conftest import add_member, make_expense, make_group, register


class _Recorder:

    def __init__(self):
        self.events = []

    def __call__(self, sender, event):
        self.events.append((sender, event))

    def summary(self) -> list[tuple[str, str]]:
        return [(e.entity_type, e.action) for _, e in self.events]


def test_registration_sends_one_event(client):
    recorder = _Recorder()

    with ledger_changed.connected_to(recorder):
        alice = register(client, "alice")

    assert recorder.summary() == [("user", "create")]
    sender, event = recorder.events[0]
    assert sender == "user"
    assert event.entity_id == alice["user"]["id"]
    assert event.group_id is None
    assert event.audit_entry_id is not None


def test_group_creation_sends_events_in_flush_order(client):
    alice = register(client, "alice")
    recorder = _Recorder()

    with ledger_changed.connected_to(recorder):
        group = make_group(client, alice["access_token"])

    assert recorder.summary() == [("group", "create"), ("group_member", "create")]
    assert {e.group_id for _, e in recorder.events} == {group["id"]}


def test_expense_creation_reports_shares_too(client):
    alice = register(client, "alice")
    bob = register(client, "bob")
    group = make_group(client, alice["access_token"])
    add_member(client, alice["access_token"], group["id"], bob["user"]["id"])
    recorder = _Recorder()

    with ledger_changed.connected_to(recorder):
        make_expense(
            client, alice["access_token"], group["id"],
            payer_id=alice["user"]["id"], amount="10.00",
        )

    assert recorder.summary() == [
        ("expense", "create"),
        ("expense_participant", "create"),
        ("expense_participant", "create"),
    ]


def test_subscribing_to_one_entity_type(client):
    alice = register(client, "alice")
    recorder = _Recorder()

    with ledger_changed.connected_to(recorder, sender="group_member"):
        make_group(client, alice["access_token"])

    assert recorder.summary() == [("group_member", "create")]


def test_rejected_request_sends_nothing(client):
    alice = register(client, "alice")
    bob = register(client, "bob")
    group = make_group(client, alice["access_token"])
    add_member(client, alice["access_token"], group["id"], bob["user"]["id"])
    recorder = _Recorder()

    with ledger_changed.connected_to(recorder):
        resp = add_member(client, alice["access_token"], group["id"], bob["user"]["id"])

    assert resp.status_code == 409
    assert recorder.events == []


def test_rollback_discards_queued_events(app, client):
    alice = register(client, "alice")
    recorder = _Recorder()

    with ledger_changed.connected_to(recorder):
        with app.app_context():
            audit_service.bind_actor(_db.session, alice["user"]["id"])
            _db.session.add(Group(name="Scratch", creator_id=alice["user"]["id"], primary_currency="USD"))
            _db.session.flush()
            _db.session.rollback()

            _db.session.add(Group(name="Kept", creator_id=alice["user"]["id"], primary_currency="USD"))
            _db.session.flush()
            _db.session.commit()

    assert recorder.summary() == [("group", "create")]
