"""Contact store port, plus an in-memory adapter for dry runs."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from .errors import BatchFailure, NotFound, RecordFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredPhone:
    label: str
    raw_number: str
    # opaque handle to the store's own property; None for phones the store has not seen
    key: str | None = field(default=None, compare=False)


@dataclass(frozen=True)
class StoredContact:
    id: str
    display_name: str
    phones: tuple[StoredPhone, ...]


@dataclass(frozen=True)
class Mutation:
    """Replacement phone list for one contact."""

    contact_id: str
    phones: tuple[StoredPhone, ...]


@runtime_checkable
class ContactStorePort(Protocol):
    """What the editor needs from an address book."""

    def list_contacts_with_phones(self) -> list[StoredContact]:
        """Return every contact that has at least one phone.

        Raises StoreUnavailable when the store cannot be read.
        """
        ...

    def fetch_contact(self, contact_id: str) -> tuple[StoredPhone, ...]:
        """Return the current phones of ``contact_id``; raises NotFound."""
        ...

    def submit_batch(self, mutations: Sequence[Mutation]) -> None:
        """Commit all mutations or none; raises BatchFailure."""
        ...

    def submit_one(self, mutation: Mutation) -> None:
        """Commit a single mutation; raises RecordFailure."""
        ...


class MemoryContactStore:
    """Dict-backed store. Safe to share between fallback worker threads."""

    def __init__(self, contacts: Iterable[StoredContact] = ()) -> None:
        self._contacts: dict[str, StoredContact] = {c.id: c for c in contacts}
        self._lock = threading.Lock()

    def list_contacts_with_phones(self) -> list[StoredContact]:
        with self._lock:
            return [c for c in self._contacts.values() if c.phones]

    def fetch_contact(self, contact_id: str) -> tuple[StoredPhone, ...]:
        with self._lock:
            try:
                return self._contacts[contact_id].phones
            except KeyError:
                raise NotFound(contact_id) from None

    def submit_batch(self, mutations: Sequence[Mutation]) -> None:
        with self._lock:
            missing = [m.contact_id for m in mutations if m.contact_id not in self._contacts]
            if missing:
                raise BatchFailure(f"unknown contact(s): {', '.join(missing)}")
            for m in mutations:
                self._write(m)

    def submit_one(self, mutation: Mutation) -> None:
        with self._lock:
            if mutation.contact_id not in self._contacts:
                raise RecordFailure(mutation.contact_id, "no such contact")
            self._write(mutation)

    def _write(self, mutation: Mutation) -> None:
        current = self._contacts[mutation.contact_id]
        self._contacts[mutation.contact_id] = StoredContact(
            id=current.id, display_name=current.display_name, phones=tuple(mutation.phones)
        )
        logger.debug("stored %d phone(s) for %s", len(mutation.phones), mutation.contact_id)
