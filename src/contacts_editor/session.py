"""Load → auto-detect → edit → apply → reload, with status for a front end.

A Session owns the in-memory contact list. Front ends read its fields and
may pass ``on_change`` to be told when they moved; nothing is published
implicitly.
"""
from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .apply import ApplyResult, apply_changes, participates
from .classify import classify_all, needs_action
from .errors import SessionBusy, StoreUnavailable
from .model import Contact, PhoneAction, PhoneEntry
from .normalize import DEFAULT_PLAN, NumberingPlan, try_canonical_form
from .store import ContactStorePort

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    APPLYING = "applying"


@dataclass(frozen=True)
class PendingChange:
    contact_name: str
    phone: PhoneEntry
    new_number: str | None = None   # None for deletions and numbers that cannot be canonicalised

    @property
    def deleted(self) -> bool:
        return self.phone.action == PhoneAction.DELETE


def load_contacts(store: ContactStorePort) -> list[Contact]:
    """Read every contact with phones, sorted by display name, with fresh entry ids."""
    contacts = [
        Contact(
            id=stored.id,
            display_name=stored.display_name or "Unnamed",
            phones=[PhoneEntry(raw_number=p.raw_number, label=p.label) for p in stored.phones],
        )
        for stored in store.list_contacts_with_phones()
        if stored.phones
    ]
    contacts.sort(key=lambda c: c.display_name)
    return contacts


def summarise(result: ApplyResult) -> str:
    lines = [
        "✓ Done:",
        f"• {result.updated} contact(s) updated",
        f"• {result.prefixed} number(s) prefixed",
        f"• {result.deleted} number(s) deleted",
    ]
    if result.failed:
        lines.append(f"• {result.failed} error(s)")
    return "\n".join(lines)


@dataclass
class Session:
    store: ContactStorePort
    plan: NumberingPlan = DEFAULT_PLAN
    workers: int = 1
    on_change: Callable[[Session], None] | None = None
    state: SessionState = SessionState.IDLE
    contacts: list[Contact] = field(default_factory=list)
    status_message: str = ""
    has_error: bool = False
    last_result: ApplyResult | None = None

    # ── Derived ────────────────────────────────────────────────────────────────

    @property
    def contacts_needing_action(self) -> int:
        return sum(1 for c in self.contacts if needs_action(c))

    @property
    def has_selected_actions(self) -> bool:
        return any(participates(c) for c in self.contacts)

    def pending_changes(self) -> list[PendingChange]:
        out: list[PendingChange] = []
        for contact in self.contacts:
            for phone in contact.phones:
                if phone.action == PhoneAction.SKIP:
                    continue
                new_number = None
                if phone.action != PhoneAction.DELETE:
                    new_number = try_canonical_form(phone.raw_number, self.plan)
                out.append(PendingChange(contact.display_name, phone, new_number))
        return out

    # ── Transitions ────────────────────────────────────────────────────────────

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self)

    def _ensure_idle(self) -> None:
        if self.state in (SessionState.LOADING, SessionState.APPLYING):
            raise SessionBusy(f"session is {self.state.value}")

    def load(self) -> None:
        self._ensure_idle()
        previous = self.state
        self.state = SessionState.LOADING
        self.status_message = "Loading contacts..."
        self._notify()
        try:
            contacts = load_contacts(self.store)
        except StoreUnavailable as exc:
            logger.error("load failed: %s", exc)
            self._load_failed(exc)
        except Exception as exc:
            logger.exception("load failed")
            self._load_failed(exc)
        else:
            self.contacts = contacts
            self.state = SessionState.READY
            self.status_message = f"✓ {len(contacts)} contacts loaded"
            self.has_error = False
            logger.info("loaded %d contact(s)", len(contacts))
        finally:
            if self.state == SessionState.LOADING:
                self.state = previous
        self._notify()

    def _load_failed(self, exc: Exception) -> None:
        self.status_message = f"Could not load contacts: {exc}"
        self.has_error = True

    def auto_detect(self) -> None:
        self.contacts = classify_all(self.contacts, self.plan)
        self.status_message = "✓ Actions detected automatically"
        self._notify()

    def set_action(self, contact_id: str, phone_id: str, action: PhoneAction) -> bool:
        for contact in self.contacts:
            if contact.id != contact_id:
                continue
            for phone in contact.phones:
                if phone.id == phone_id:
                    phone.action = action
                    self._notify()
                    return True
        return False

    def apply(self) -> ApplyResult:
        self._ensure_idle()
        self.state = SessionState.APPLYING
        self.status_message = "Applying changes..."
        self._notify()

        snapshot = copy.deepcopy(self.contacts)
        try:
            result = apply_changes(snapshot, self.store, self.plan, workers=self.workers)
        except Exception as exc:
            logger.exception("apply failed")
            failed = sum(1 for c in snapshot if participates(c))
            result = ApplyResult(failed=failed, errors=[str(exc)])
        finally:
            self.state = SessionState.READY
        self.last_result = result

        self.load()
        summary = summarise(result)
        if self.has_error:
            summary = f"{summary}\n{self.status_message}"
        self.status_message = summary
        self.has_error = self.has_error or result.had_errors
        self._notify()
        return result
