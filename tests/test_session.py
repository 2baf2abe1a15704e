"""Tests for the load / detect / apply session."""
from __future__ import annotations

import pytest

from contacts_editor.errors import BatchFailure, RecordFailure, SessionBusy, StoreUnavailable
from contacts_editor.model import PhoneAction
from contacts_editor.session import Session, SessionState
from contacts_editor.store import MemoryContactStore, StoredContact, StoredPhone


def _book() -> list[StoredContact]:
    return [
        StoredContact("z1", "Zé", (StoredPhone("CELL", "912345678"), StoredPhone("CELL", "+351912345678"))),
        StoredContact("a1", "Ana", (StoredPhone("HOME", "21 234 5678"),)),
        StoredContact("n1", "Nobody", ()),
    ]


class DownStore(MemoryContactStore):
    def list_contacts_with_phones(self):
        raise StoreUnavailable("access denied")


class BrokenStore(MemoryContactStore):
    def submit_batch(self, mutations):
        raise BatchFailure("nope")

    def submit_one(self, mutation):
        if mutation.contact_id == "a1":
            raise RecordFailure("a1", "locked")
        super().submit_one(mutation)


# ── Load ───────────────────────────────────────────────────────────────────────

def test_load_sorts_and_skips_contacts_without_phones():
    session = Session(store=MemoryContactStore(_book()))
    session.load()
    assert session.state is SessionState.READY
    assert [c.display_name for c in session.contacts] == ["Ana", "Zé"]
    assert session.status_message == "✓ 2 contacts loaded"
    assert not session.has_error


def test_reload_regenerates_entry_ids():
    session = Session(store=MemoryContactStore(_book()))
    session.load()
    before = {p.id for c in session.contacts for p in c.phones}
    session.load()
    after = {p.id for c in session.contacts for p in c.phones}
    assert before.isdisjoint(after)


def test_load_failure_sets_error_flag():
    session = Session(store=DownStore())
    session.load()
    assert session.has_error
    assert session.state is SessionState.IDLE
    assert "access denied" in session.status_message
    assert session.contacts == []


def test_busy_session_refuses_second_load():
    session = Session(store=MemoryContactStore(_book()))
    session.state = SessionState.APPLYING
    with pytest.raises(SessionBusy):
        session.load()


# ── Detect / edit ──────────────────────────────────────────────────────────────

def test_auto_detect_is_explicit():
    session = Session(store=MemoryContactStore(_book()))
    session.load()
    assert not session.has_selected_actions
    assert session.contacts_needing_action == 2

    session.auto_detect()
    assert session.has_selected_actions
    ana, ze = session.contacts
    assert [p.action for p in ana.phones] == [PhoneAction.ADD_PREFIX]
    assert [p.action for p in ze.phones] == [PhoneAction.DELETE, PhoneAction.SKIP]


def test_set_action_overrides_one_entry():
    session = Session(store=MemoryContactStore(_book()))
    session.load()
    ze = session.contacts[1]
    assert session.set_action(ze.id, ze.phones[0].id, PhoneAction.DELETE)
    assert ze.phones[0].action is PhoneAction.DELETE
    assert not session.set_action(ze.id, "missing", PhoneAction.DELETE)
    assert not session.set_action("missing", ze.phones[0].id, PhoneAction.DELETE)


def test_pending_changes_preview():
    session = Session(store=MemoryContactStore(_book()))
    session.load()
    session.auto_detect()
    preview = [(c.contact_name, c.phone.raw_number, c.new_number, c.deleted) for c in session.pending_changes()]
    assert preview == [
        ("Ana", "21 234 5678", "+351212345678", False),
        ("Zé", "912345678", None, True),
    ]


def test_preview_keeps_literal_deleted_text_apart_from_deletions():
    book = [StoredContact("d1", "Dora", (StoredPhone("CELL", "deleted"), StoredPhone("CELL", "21 234 5678")))]
    session = Session(store=MemoryContactStore(book))
    session.load()
    dora = session.contacts[0]
    session.set_action(dora.id, dora.phones[0].id, PhoneAction.ADD_PREFIX)
    session.set_action(dora.id, dora.phones[1].id, PhoneAction.DELETE)
    changes = session.pending_changes()
    assert [(c.phone.raw_number, c.new_number, c.deleted) for c in changes] == [
        ("deleted", None, False),
        ("21 234 5678", None, True),
    ]


# ── Apply ──────────────────────────────────────────────────────────────────────

def test_apply_reloads_and_summarises():
    store = MemoryContactStore(_book())
    seen: list[SessionState] = []
    session = Session(store=store, on_change=lambda s: seen.append(s.state))
    session.load()
    session.auto_detect()
    result = session.apply()

    assert (result.updated, result.prefixed, result.deleted, result.failed) == (2, 1, 1, 0)
    assert session.state is SessionState.READY
    assert not session.has_error
    assert "2 contact(s) updated" in session.status_message
    assert "error" not in session.status_message
    assert SessionState.APPLYING in seen
    assert [p.raw_number for c in session.contacts for p in c.phones] == ["+351212345678", "+351912345678"]
    assert all(p.action is PhoneAction.SKIP for c in session.contacts for p in c.phones)


def test_apply_with_failures_flags_error():
    session = Session(store=BrokenStore(_book()))
    session.load()
    session.auto_detect()
    result = session.apply()
    assert result.failed == 1
    assert result.updated == 1
    assert session.has_error
    assert "1 error(s)" in session.status_message


# ── Unexpected errors ──────────────────────────────────────────────────────────

class CrashingBatchStore(MemoryContactStore):
    def submit_batch(self, mutations):
        raise RuntimeError("connection reset")


class FlakyListStore(MemoryContactStore):
    down = True

    def list_contacts_with_phones(self):
        if self.down:
            raise RuntimeError("socket closed")
        return super().list_contacts_with_phones()


class CrashingFetchStore(MemoryContactStore):
    def fetch_contact(self, contact_id):
        raise RuntimeError("timeout")


def test_unexpected_batch_error_falls_back():
    session = Session(store=CrashingBatchStore(_book()))
    session.load()
    session.auto_detect()
    result = session.apply()
    assert result.used_fallback
    assert (result.updated, result.failed) == (2, 0)
    assert session.state is SessionState.READY
    assert not session.has_error


def test_unexpected_load_error_leaves_session_usable():
    store = FlakyListStore(_book())
    session = Session(store=store)
    session.load()
    assert session.has_error
    assert session.state is SessionState.IDLE
    assert "socket closed" in session.status_message

    store.down = False
    session.load()
    assert session.state is SessionState.READY
    assert not session.has_error
    assert len(session.contacts) == 2


def test_unexpected_fetch_error_counts_as_failure():
    session = Session(store=CrashingFetchStore(_book()))
    session.load()
    session.auto_detect()
    result = session.apply()
    assert result.failed == 2
    assert result.updated == 0
    assert any("timeout" in e for e in result.errors)
    assert session.state is SessionState.READY
    assert session.has_error


def test_apply_crash_does_not_leave_session_applying(monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr("contacts_editor.session.apply_changes", boom)
    session = Session(store=MemoryContactStore(_book()))
    session.load()
    session.auto_detect()
    result = session.apply()
    assert result.failed == 2
    assert result.errors == ["boom"]
    assert session.state is SessionState.READY
    assert session.has_error
    session.load()
    assert session.state is SessionState.READY
