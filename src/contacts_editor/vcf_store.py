from __future__ import annotations

import logging
import os
import re
import tempfile
import threading
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import vobject

from .errors import BatchFailure, NotFound, RecordFailure, StoreUnavailable
from .store import Mutation, StoredContact, StoredPhone

logger = logging.getLogger(__name__)

# ── Pre-parse sanitisation ─────────────────────────────────────────────────────
#
# iCloud exports contain group prefixes vobject's parser rejects:
#
#   item1..TEL   double-dot group prefix  → item1.TEL
#   .TEL         bare leading dot         → TEL
#
# Well-formed ``item1.TEL`` groups parse fine and are kept, so a TEL stays
# tied to its ``item1.X-ABLabel`` line.

_ITEM_DOUBLE_DOT = re.compile(r"^(item\d+)\.\.", re.IGNORECASE)
_BARE_DOT = re.compile(r"^\.(?=[A-Z])", re.IGNORECASE)
_BOM = b"\xef\xbb\xbf"


def _sanitise_vcf(data: str, source_label: str) -> str:
    out: list[str] = []
    fixed = 0
    for line in data.splitlines(keepends=True):
        if _ITEM_DOUBLE_DOT.match(line):
            line = _ITEM_DOUBLE_DOT.sub(r"\1.", line)
            fixed += 1
        elif _BARE_DOT.match(line):
            line = _BARE_DOT.sub("", line)
            fixed += 1
        out.append(line)
    if fixed:
        logger.debug("%s: %d line(s) fixed", source_label, fixed)
    return "".join(out)


# ── Card blocks ────────────────────────────────────────────────────────────────
#
# The file is kept as a list of byte blocks. Only cards that were changed are
# re-serialised; everything else (text between cards, cards in another
# encoding, cards vobject cannot parse) is written back byte for byte.

@dataclass
class _Block:
    raw: bytes
    is_card: bool = False
    card: vobject.base.Component | None = None
    id: str | None = None
    dirty: bool = False

    def render(self) -> bytes:
        if self.dirty and self.card is not None:
            return self.card.serialize().encode("utf-8")
        return self.raw


def _split_blocks(data: bytes) -> list[_Block]:
    blocks: list[_Block] = []
    pending: list[bytes] = []
    in_card = False
    for line in data.splitlines(keepends=True):
        marker = line.strip().removeprefix(_BOM).upper()
        if marker == b"BEGIN:VCARD" and not in_card:
            if pending:
                blocks.append(_Block(raw=b"".join(pending)))
            pending = [line]
            in_card = True
            continue
        pending.append(line)
        if marker == b"END:VCARD" and in_card:
            blocks.append(_Block(raw=b"".join(pending), is_card=True))
            pending = []
            in_card = False
    if pending:
        blocks.append(_Block(raw=b"".join(pending)))
    return blocks


def _parse_card(raw: bytes, source_label: str) -> vobject.base.Component | None:
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        logger.warning("%s: skipping card that is not UTF-8 (%s)", source_label, exc.reason)
        return None
    try:
        card = vobject.readOne(_sanitise_vcf(text, source_label))
    except (vobject.base.VObjectError, ValueError) as exc:
        logger.warning("%s: skipping unreadable card (%s)", source_label, exc)
        return None
    return card


def _get_text(v, default: str | None = None) -> str | None:
    if v is None:
        return default
    value = v.value
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def _display_name(vc: vobject.base.Component) -> str:
    fn = _get_text(getattr(vc, "fn", None))
    if fn:
        return fn
    n = getattr(vc, "n", None)
    if n is not None:
        name = n.value
        parts = [name.prefix, name.given, name.additional, name.family, name.suffix]
        joined = " ".join(p for p in parts if isinstance(p, str) and p)
        if joined:
            return joined
    org = getattr(vc, "org", None)
    if org is not None and org.value:
        return " ".join(p for p in org.value if p)
    return "Unnamed"


def _tel_label(tel) -> str:
    return ",".join(tel.params.get("TYPE", []))


def _phones_of(vc: vobject.base.Component) -> tuple[StoredPhone, ...]:
    return tuple(
        StoredPhone(label=_tel_label(t), raw_number=_get_text(t, "") or "", key=str(i))
        for i, t in enumerate(vc.contents.get("tel", []))
    )


def _replace_phones(vc: vobject.base.Component, phones: Sequence[StoredPhone]) -> None:
    """Edit the card's TEL lines to match ``phones``.

    Phones carrying a key update the TEL they came from in place, so its
    group and other parameters survive. TELs no phone refers to are
    removed; phones without a key are appended.
    """
    existing = list(vc.contents.get("tel", []))
    wanted = {p.key: p for p in phones if p.key is not None}

    for i, tel in enumerate(existing):
        phone = wanted.get(str(i))
        if phone is None:
            vc.remove(tel)
            continue
        if (_get_text(tel, "") or "") != phone.raw_number:
            tel.value = phone.raw_number
        if _tel_label(tel) != phone.label:
            if phone.label:
                tel.params["TYPE"] = phone.label.split(",")
            else:
                tel.params.pop("TYPE", None)

    for phone in phones:
        if phone.key is not None and int(phone.key) < len(existing):
            continue
        tel = vc.add("tel")
        tel.value = phone.raw_number
        if phone.label:
            tel.params["TYPE"] = phone.label.split(",")


class VcfContactStore:
    """Contact store backed by a single .vcf address book file.

    Contact ids are the card's UID, or ``card-<n>`` (position in the file)
    for cards without one. A UID seen before gets ``#<k>`` appended so every
    card keeps its own id. Writes rewrite the file atomically but only
    re-serialise the cards that changed.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    # ── Reading ────────────────────────────────────────────────────────────────

    def _read(self) -> list[_Block]:
        try:
            data = self.path.read_bytes()
        except OSError as exc:
            raise StoreUnavailable(f"cannot read {self.path}: {exc}") from exc

        blocks = _split_blocks(data)
        seen: Counter[str] = Counter()
        position = 0
        for block in blocks:
            if not block.is_card:
                continue
            block.card = _parse_card(block.raw, self.path.name)
            uid = _get_text(getattr(block.card, "uid", None)) if block.card is not None else None
            base = uid or f"card-{position}"
            seen[base] += 1
            block.id = base if seen[base] == 1 else f"{base}#{seen[base]}"
            position += 1
        return blocks

    @staticmethod
    def _cards(blocks: list[_Block]) -> dict[str, _Block]:
        return {b.id: b for b in blocks if b.card is not None}

    def list_contacts_with_phones(self) -> list[StoredContact]:
        with self._lock:
            cards = self._cards(self._read())
        out: list[StoredContact] = []
        for contact_id, block in cards.items():
            phones = _phones_of(block.card)
            if phones:
                out.append(StoredContact(id=contact_id, display_name=_display_name(block.card), phones=phones))
        logger.debug("%s: %d card(s), %d with phones", self.path.name, len(cards), len(out))
        return out

    def fetch_contact(self, contact_id: str) -> tuple[StoredPhone, ...]:
        with self._lock:
            cards = self._cards(self._read())
        if contact_id not in cards:
            raise NotFound(contact_id)
        return _phones_of(cards[contact_id].card)

    # ── Writing ────────────────────────────────────────────────────────────────

    def _write(self, blocks: list[_Block]) -> None:
        data = b"".join(b.render() for b in blocks)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def submit_batch(self, mutations: Sequence[Mutation]) -> None:
        with self._lock:
            try:
                blocks = self._read()
            except StoreUnavailable as exc:
                raise BatchFailure(str(exc)) from exc
            cards = self._cards(blocks)
            missing = [m.contact_id for m in mutations if m.contact_id not in cards]
            if missing:
                raise BatchFailure(f"unknown contact(s): {', '.join(missing)}")
            for m in mutations:
                block = cards[m.contact_id]
                _replace_phones(block.card, m.phones)
                block.dirty = True
            try:
                self._write(blocks)
            except (OSError, vobject.base.VObjectError) as exc:
                raise BatchFailure(f"cannot write {self.path}: {exc}") from exc
        logger.info("%s: wrote %d contact(s) in one batch", self.path.name, len(mutations))

    def submit_one(self, mutation: Mutation) -> None:
        with self._lock:
            try:
                blocks = self._read()
            except StoreUnavailable as exc:
                raise RecordFailure(mutation.contact_id, str(exc)) from exc
            cards = self._cards(blocks)
            if mutation.contact_id not in cards:
                raise RecordFailure(mutation.contact_id, "no such contact")
            block = cards[mutation.contact_id]
            _replace_phones(block.card, mutation.phones)
            block.dirty = True
            try:
                self._write(blocks)
            except (OSError, vobject.base.VObjectError) as exc:
                raise RecordFailure(mutation.contact_id, f"cannot write {self.path}: {exc}") from exc
