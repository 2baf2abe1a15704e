"""Commit chosen phone actions to a contact store.

All participating contacts go out in one batch. When the store rejects the
batch, every contact is prepared again and submitted on its own so one bad
record cannot block the rest.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace

from .errors import StoreError
from .model import Contact, PhoneAction, PhoneEntry
from .normalize import DEFAULT_PLAN, NumberingPlan, try_canonical_form
from .store import ContactStorePort, Mutation, StoredPhone

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    updated: int = 0
    prefixed: int = 0
    deleted: int = 0
    failed: int = 0
    reformatted: int = 0
    unactionable: int = 0
    errors: list[str] = field(default_factory=list)
    used_fallback: bool = False

    @property
    def had_errors(self) -> bool:
        return self.failed > 0

    def merge(self, other: ApplyResult) -> None:
        self.updated += other.updated
        self.prefixed += other.prefixed
        self.deleted += other.deleted
        self.failed += other.failed
        self.reformatted += other.reformatted
        self.unactionable += other.unactionable
        self.errors.extend(other.errors)


@dataclass
class PreparedMutation:
    mutation: Mutation
    prefixed: int = 0
    deleted: int = 0
    reformatted: int = 0
    unactionable: int = 0

    def committed(self) -> ApplyResult:
        return ApplyResult(
            updated=1,
            prefixed=self.prefixed,
            deleted=self.deleted,
            reformatted=self.reformatted,
            unactionable=self.unactionable,
        )


def participates(contact: Contact) -> bool:
    return any(p.action != PhoneAction.SKIP for p in contact.phones)


def _match_entries(
    stored: Sequence[StoredPhone],
    entries: Sequence[PhoneEntry],
) -> list[PhoneEntry | None]:
    """Pair each stored phone with the in-memory entry it was loaded as."""
    pool = list(entries)
    matched: list[PhoneEntry | None] = []
    for phone in stored:
        hit = next(
            (e for e in pool if e.label == phone.label and e.raw_number == phone.raw_number),
            None,
        )
        if hit is not None:
            pool.remove(hit)
        matched.append(hit)
    return matched


def build_mutation(
    contact: Contact,
    stored: Sequence[StoredPhone],
    plan: NumberingPlan = DEFAULT_PLAN,
) -> PreparedMutation:
    """Turn the chosen actions into a replacement phone list for ``contact``.

    ``stored`` is the store's current phone list. Stored phones with no
    matching entry (added elsewhere since the load) are kept untouched.
    """
    phones: list[StoredPhone] = []
    prepared = PreparedMutation(mutation=Mutation(contact.id, ()))

    for phone, entry in zip(stored, _match_entries(stored, contact.phones)):
        action = entry.action if entry is not None else PhoneAction.SKIP
        if action == PhoneAction.DELETE:
            prepared.deleted += 1
            logger.debug("%s: deleting %r", contact.display_name, phone.raw_number)
            continue
        if action in (PhoneAction.ADD_PREFIX, PhoneAction.REMOVE_SPACES):
            canonical = try_canonical_form(phone.raw_number, plan)
            if canonical is None:
                prepared.unactionable += 1
                phones.append(phone)
                continue
            if action == PhoneAction.ADD_PREFIX:
                prepared.prefixed += 1
            else:
                prepared.reformatted += 1
            logger.debug("%s: %r -> %r", contact.display_name, phone.raw_number, canonical)
            phones.append(replace(phone, raw_number=canonical))
            continue
        phones.append(phone)

    prepared.mutation = Mutation(contact_id=contact.id, phones=tuple(phones))
    return prepared


def _prepare(
    contact: Contact,
    store: ContactStorePort,
    plan: NumberingPlan,
) -> PreparedMutation:
    return build_mutation(contact, store.fetch_contact(contact.id), plan)


def _failure(contact: Contact, exc: Exception) -> ApplyResult:
    logger.warning("%s: %s", contact.display_name, exc)
    return ApplyResult(failed=1, errors=[f"{contact.display_name}: {exc}"])


def _apply_one(contact: Contact, store: ContactStorePort, plan: NumberingPlan) -> ApplyResult:
    try:
        prepared = _prepare(contact, store, plan)
        store.submit_one(prepared.mutation)
    except StoreError as exc:
        return _failure(contact, exc)
    except Exception as exc:
        logger.exception("%s: unexpected error while saving", contact.display_name)
        return _failure(contact, exc)
    return prepared.committed()


def _apply_batch(
    contacts: Sequence[Contact],
    store: ContactStorePort,
    plan: NumberingPlan,
) -> ApplyResult:
    result = ApplyResult()
    prepared: list[PreparedMutation] = []
    for contact in contacts:
        try:
            prepared.append(_prepare(contact, store, plan))
        except StoreError as exc:
            result.merge(_failure(contact, exc))

    if prepared:
        store.submit_batch([p.mutation for p in prepared])
    for p in prepared:
        result.merge(p.committed())
    return result


def _apply_individually(
    contacts: Sequence[Contact],
    store: ContactStorePort,
    plan: NumberingPlan,
    workers: int,
) -> ApplyResult:
    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(lambda c: _apply_one(c, store, plan), contacts))
    else:
        outcomes = [_apply_one(c, store, plan) for c in contacts]

    result = ApplyResult(used_fallback=True)
    for outcome in outcomes:
        result.merge(outcome)
    return result


def apply_changes(
    contacts: Sequence[Contact],
    store: ContactStorePort,
    plan: NumberingPlan = DEFAULT_PLAN,
    workers: int = 1,
) -> ApplyResult:
    """Write every non-Skip action in ``contacts`` to ``store``.

    Errors raised by the store never escape: they end up in ``failed`` and
    ``errors``. Any error from the batch pass switches to the fallback.
    ``contacts`` is only read. Reload from the store afterwards to see the
    committed state.
    """
    participants = [c for c in contacts if participates(c)]
    if not participants:
        logger.info("nothing to apply")
        return ApplyResult()

    try:
        result = _apply_batch(participants, store, plan)
    except Exception as exc:
        logger.warning("batch of %d contact(s) rejected (%s); retrying one by one", len(participants), exc)
        result = _apply_individually(participants, store, plan, workers)

    logger.info(
        "applied: %d updated, %d prefixed, %d deleted, %d failed%s",
        result.updated, result.prefixed, result.deleted, result.failed,
        " (fallback)" if result.used_fallback else "",
    )
    return result
