"""Tests for committing actions to a store, including the per-contact fallback."""
from __future__ import annotations

from contacts_editor.apply import ApplyResult, apply_changes, build_mutation
from contacts_editor.classify import classify_all
from contacts_editor.errors import BatchFailure, NotFound, RecordFailure
from contacts_editor.model import Contact, PhoneAction, PhoneEntry
from contacts_editor.session import load_contacts
from contacts_editor.store import MemoryContactStore, Mutation, StoredContact, StoredPhone


# ── helpers ────────────────────────────────────────────────────────────────────

def _stored(contact_id: str, *phones: tuple[str, str]) -> StoredContact:
    return StoredContact(
        id=contact_id,
        display_name=contact_id.title(),
        phones=tuple(StoredPhone(label, number) for label, number in phones),
    )


def _address_book() -> list[StoredContact]:
    return [
        _stored("ana", ("CELL", "912345678"), ("CELL", "+351912345678")),
        _stored("bruno", ("HOME", "21 234 5678")),
        _stored("carla", ("CELL", "+351962000111")),
    ]


class FlakyStore(MemoryContactStore):
    """Rejects every batch; optionally rejects single saves for some ids."""

    def __init__(self, contacts, broken: set[str] = frozenset()) -> None:
        super().__init__(contacts)
        self.broken = set(broken)
        self.batch_calls = 0
        self.single_calls = 0

    def submit_batch(self, mutations):
        self.batch_calls += 1
        raise BatchFailure("store rejected the batch")

    def submit_one(self, mutation):
        self.single_calls += 1
        if mutation.contact_id in self.broken:
            raise RecordFailure(mutation.contact_id, "validation failed")
        super().submit_one(mutation)


class VanishingStore(MemoryContactStore):
    def __init__(self, contacts, gone: set[str]) -> None:
        super().__init__(contacts)
        self.gone = gone

    def fetch_contact(self, contact_id):
        if contact_id in self.gone:
            raise NotFound(contact_id)
        return super().fetch_contact(contact_id)


def _detected(store) -> list[Contact]:
    return classify_all(load_contacts(store))


# ── Batch path ─────────────────────────────────────────────────────────────────

def test_batch_applies_all_actions():
    store = MemoryContactStore(_address_book())
    result = apply_changes(_detected(store), store)

    assert (result.updated, result.prefixed, result.deleted, result.failed) == (2, 1, 1, 0)
    assert not result.used_fallback
    assert not result.had_errors
    assert store.fetch_contact("ana") == (StoredPhone("CELL", "+351912345678"),)
    assert store.fetch_contact("bruno") == (StoredPhone("HOME", "+351212345678"),)
    assert store.fetch_contact("carla") == (StoredPhone("CELL", "+351962000111"),)


def test_nothing_to_apply():
    store = FlakyStore(_address_book())
    contacts = load_contacts(store)
    assert apply_changes(contacts, store) == ApplyResult()
    assert store.batch_calls == 0


def test_missing_contact_fails_only_itself():
    store = VanishingStore(_address_book(), gone={"ana"})
    result = apply_changes(_detected(store), store)
    assert result.updated == 1
    assert result.failed == 1
    assert result.deleted == 0
    assert result.had_errors
    assert result.errors and result.errors[0].startswith("Ana:")


def test_external_additions_survive():
    store = MemoryContactStore(_address_book())
    contacts = _detected(store)
    added = StoredPhone("WORK", "22 123 4567")
    store.submit_one(Mutation("bruno", store.fetch_contact("bruno") + (added,)))

    apply_changes(contacts, store)
    assert store.fetch_contact("bruno") == (StoredPhone("HOME", "+351212345678"), added)


def test_unactionable_number_is_kept():
    store = MemoryContactStore([_stored("dora", ("CELL", "91234567"))])
    contacts = load_contacts(store)
    contacts[0].phones[0].action = PhoneAction.ADD_PREFIX

    result = apply_changes(contacts, store)
    assert result.updated == 1
    assert result.prefixed == 0
    assert result.unactionable == 1
    assert store.fetch_contact("dora") == (StoredPhone("CELL", "91234567"),)


def test_build_mutation_reformats_spaces():
    contact = Contact(
        id="eva",
        display_name="Eva",
        phones=[PhoneEntry(raw_number="+351 21 234 5678", label="WORK", action=PhoneAction.REMOVE_SPACES)],
    )
    prepared = build_mutation(contact, (StoredPhone("WORK", "+351 21 234 5678"),))
    assert prepared.mutation.phones == (StoredPhone("WORK", "+351212345678"),)
    assert prepared.reformatted == 1
    assert prepared.prefixed == 0


# ── Fallback path ──────────────────────────────────────────────────────────────

def test_batch_failure_falls_back_once_per_contact():
    store = FlakyStore(_address_book(), broken={"bruno"})
    result = apply_changes(_detected(store), store)

    assert store.batch_calls == 1
    assert store.single_calls == 2
    assert result.used_fallback
    assert result.updated + result.failed == 2
    assert (result.updated, result.failed) == (1, 1)
    assert result.deleted == 1
    assert result.prefixed == 0
    assert store.fetch_contact("ana") == (StoredPhone("CELL", "+351912345678"),)
    assert store.fetch_contact("bruno") == (StoredPhone("HOME", "21 234 5678"),)


def test_fallback_resets_counters():
    store = FlakyStore(_address_book(), broken={"ana", "bruno"})
    result = apply_changes(_detected(store), store)
    assert (result.updated, result.prefixed, result.deleted, result.failed) == (0, 0, 0, 2)
    assert len(result.errors) == 2


def test_fallback_in_parallel():
    store = FlakyStore(_address_book(), broken={"bruno"})
    result = apply_changes(_detected(store), store, workers=4)
    assert (result.updated, result.failed) == (1, 1)
    assert store.single_calls == 2
