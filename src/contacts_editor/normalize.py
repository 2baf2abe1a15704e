from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from .errors import InvalidLength, InvalidNumberingPlan, NormalizationError

logger = logging.getLogger(__name__)

_NON_DIGIT = re.compile(r"[^0-9]")
_WHITESPACE = re.compile(r"\s")


# ── Numbering plan ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class NumberingPlan:
    """Leading-digit rules for the national numbers of one country.

    The defaults describe Portugal: nine-digit national numbers starting with
    2, 3, 7, 8 or 9, where mobiles (9x) must have 1-6 as their second digit.
    """

    country_code: str = "351"
    national_length: int = 9
    leading_digits: str = "23789"
    mobile_marker: str = "9"
    mobile_second_digits: str = "123456"

    def validate(self, raw: str, national: str) -> None:
        if len(national) != self.national_length:
            raise InvalidLength(
                raw, f"expected {self.national_length} national digits, got {len(national)}"
            )
        first = national[0]
        if first not in self.leading_digits:
            raise InvalidNumberingPlan(raw, f"national number cannot start with {first}")
        if first == self.mobile_marker and national[1:2] not in tuple(self.mobile_second_digits):
            raise InvalidNumberingPlan(
                raw, f"mobile number cannot continue with {national[1:2] or 'nothing'}"
            )


DEFAULT_PLAN = NumberingPlan()


# ── Derived fields ─────────────────────────────────────────────────────────────

def normalized_digits(raw: str) -> str:
    """Return only the ASCII digits of ``raw``, in order ("" when there are none)."""
    return _NON_DIGIT.sub("", raw or "")


def has_country_prefix(raw: str) -> bool:
    return (raw or "").strip().startswith("+")


def has_interior_whitespace(raw: str) -> bool:
    return bool(_WHITESPACE.search(raw or ""))


# ── Canonical form ─────────────────────────────────────────────────────────────

def national_number(raw: str, plan: NumberingPlan = DEFAULT_PLAN) -> str:
    """Strip dial-out zeros and the calling code from the digits of ``raw``."""
    digits = normalized_digits(raw).lstrip("0")
    if digits.startswith(plan.country_code):
        digits = digits[len(plan.country_code):]
    return digits


def canonical_form(raw: str, plan: NumberingPlan = DEFAULT_PLAN) -> str:
    """Return ``+<country code><national number>`` for ``raw``.

    Raises InvalidLength or InvalidNumberingPlan when the number does not fit
    ``plan``. The result is stable: feeding it back in returns it unchanged.
    """
    national = national_number(raw, plan)
    plan.validate(raw, national)
    return f"+{plan.country_code}{national}"


def try_canonical_form(raw: str, plan: NumberingPlan = DEFAULT_PLAN) -> str | None:
    try:
        return canonical_form(raw, plan)
    except NormalizationError as exc:
        logger.debug("not canonicalisable: %s", exc)
        return None


def canonical_error(raw: str, plan: NumberingPlan = DEFAULT_PLAN) -> NormalizationError | None:
    """Return the reason ``raw`` cannot be canonicalised, or None if it can."""
    try:
        canonical_form(raw, plan)
    except NormalizationError as exc:
        return exc
    return None
