"""Error taxonomy for contacts-editor."""

from __future__ import annotations


class ContactsEditorError(Exception):
    """Base class for every error raised by this package."""


# ── Normalizer ─────────────────────────────────────────────────────────────────

class NormalizationError(ContactsEditorError):
    """A phone number cannot be brought into canonical form."""

    def __init__(self, raw: str, message: str) -> None:
        super().__init__(f"{raw!r}: {message}")
        self.raw = raw


class InvalidLength(NormalizationError):
    """National number has the wrong number of digits."""


class InvalidNumberingPlan(NormalizationError):
    """National number breaks the leading-digit rules of the numbering plan."""


# ── Store boundary ─────────────────────────────────────────────────────────────

class StoreError(ContactsEditorError):
    """Failure reported by a contact store."""


class StoreUnavailable(StoreError):
    """The store cannot be reached or access was not granted."""


class NotFound(StoreError):
    def __init__(self, contact_id: str) -> None:
        super().__init__(f"contact {contact_id!r} not found")
        self.contact_id = contact_id


class BatchFailure(StoreError):
    """A multi-contact submission was rejected as a whole."""


class RecordFailure(StoreError):
    """A single-contact submission was rejected."""

    def __init__(self, contact_id: str, reason: str) -> None:
        super().__init__(f"contact {contact_id!r}: {reason}")
        self.contact_id = contact_id
        self.reason = reason


# ── Configuration / session ────────────────────────────────────────────────────

class ConfigurationError(ContactsEditorError):
    """Raised when configuration values are invalid."""


class SessionBusy(ContactsEditorError):
    """A load or apply is already running on this session."""
