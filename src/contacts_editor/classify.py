"""Duplicate detection and automatic action suggestions for a contact's phones.

Two numbers are treated as the same line when one digit string is a suffix of
the other. This catches ``912345678`` vs ``+351 912 345 678`` but will also
pair genuinely distinct numbers that share a long tail; that false-positive
risk is accepted.

Entries with no digits at all (``"n/a"``, ``"ext"``) never pair with
anything. A bare suffix test would see ``""`` as a suffix of every number
and mark such entries for deletion; here they are left alone on purpose and
show up as not actionable instead.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import replace

from .errors import NormalizationError
from .model import Contact, PhoneAction, PhoneEntry
from .normalize import (
    DEFAULT_PLAN,
    NumberingPlan,
    canonical_error,
    has_country_prefix,
    has_interior_whitespace,
    normalized_digits,
)

logger = logging.getLogger(__name__)


def _suffix_related(a: str, b: str) -> bool:
    if not a or not b:
        return False
    return a.endswith(b) or b.endswith(a)


def has_duplicates(contact: Contact) -> bool:
    digits = [normalized_digits(p.raw_number) for p in contact.phones]
    for i in range(len(digits)):
        for j in range(i + 1, len(digits)):
            if _suffix_related(digits[i], digits[j]):
                return True
    return False


def needs_action(contact: Contact) -> bool:
    return any(not has_country_prefix(p.raw_number) for p in contact.phones) or has_duplicates(contact)


def _exact_duplicate_deletes(phones: list[PhoneEntry], digits: list[str]) -> set[int]:
    groups: dict[str, list[int]] = defaultdict(list)
    for idx, d in enumerate(digits):
        if d:
            groups[d].append(idx)

    doomed: set[int] = set()
    for members in groups.values():
        if len(members) < 2:
            continue
        keeper = next((i for i in members if has_country_prefix(phones[i].raw_number)), None)
        if keeper is None:
            continue
        doomed.update(i for i in members if i != keeper)
    return doomed


def _suggest(
    idx: int,
    phones: list[PhoneEntry],
    digits: list[str],
    plan: NumberingPlan,
) -> PhoneAction:
    phone = phones[idx]
    prefixed = has_country_prefix(phone.raw_number)

    if not prefixed:
        for other, other_digits in enumerate(digits):
            if other == idx or not has_country_prefix(phones[other].raw_number):
                continue
            if _suffix_related(digits[idx], other_digits):
                return PhoneAction.DELETE

    if not prefixed and not digits[idx].startswith("1"):
        wanted = PhoneAction.ADD_PREFIX
    elif has_interior_whitespace(phone.raw_number):
        wanted = PhoneAction.REMOVE_SPACES
    else:
        return PhoneAction.SKIP

    error = canonical_error(phone.raw_number, plan)
    if error is not None:
        logger.debug("leaving %r as-is: %s", phone.raw_number, error)
        return PhoneAction.SKIP
    return wanted


def classify(contact: Contact, plan: NumberingPlan = DEFAULT_PLAN) -> Contact:
    """Return a copy of ``contact`` with a suggested action on every phone."""
    phones = contact.phones
    digits = [normalized_digits(p.raw_number) for p in phones]
    doomed = _exact_duplicate_deletes(phones, digits)

    updated: list[PhoneEntry] = []
    for idx, phone in enumerate(phones):
        if idx in doomed:
            action = PhoneAction.DELETE
        else:
            action = _suggest(idx, phones, digits, plan)
        updated.append(replace(phone, action=action))
    return replace(contact, phones=updated)


def classify_all(contacts: list[Contact], plan: NumberingPlan = DEFAULT_PLAN) -> list[Contact]:
    return [classify(c, plan) for c in contacts]


def find_unactionable(
    contact: Contact,
    plan: NumberingPlan = DEFAULT_PLAN,
) -> list[tuple[PhoneEntry, NormalizationError]]:
    """Phones that want a prefix or reformat but cannot be canonicalised."""
    out: list[tuple[PhoneEntry, NormalizationError]] = []
    for phone in contact.phones:
        if phone.action == PhoneAction.DELETE:
            continue
        prefixed = has_country_prefix(phone.raw_number)
        wants_fix = (
            (not prefixed and not normalized_digits(phone.raw_number).startswith("1"))
            or has_interior_whitespace(phone.raw_number)
        )
        if not wants_fix:
            continue
        error = canonical_error(phone.raw_number, plan)
        if error is not None:
            out.append((phone, error))
    return out
