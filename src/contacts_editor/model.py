from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import uuid4


class PhoneAction(str, Enum):
    SKIP = "skip"
    ADD_PREFIX = "add-prefix"
    REMOVE_SPACES = "remove-spaces"
    DELETE = "delete"

    @property
    def caption(self) -> str:
        return _ACTION_CAPTIONS[self]


_ACTION_CAPTIONS = {
    PhoneAction.SKIP: "Skip",
    PhoneAction.ADD_PREFIX: "Add prefix",
    PhoneAction.REMOVE_SPACES: "Remove spaces",
    PhoneAction.DELETE: "Delete",
}


def _new_id() -> str:
    return uuid4().hex


@dataclass
class PhoneEntry:
    raw_number: str
    label: str = ""
    action: PhoneAction = PhoneAction.SKIP
    id: str = field(default_factory=_new_id)  # session-scoped, regenerated on every load


@dataclass
class Contact:
    id: str                      # the store's own identifier
    display_name: str
    phones: list[PhoneEntry] = field(default_factory=list)
