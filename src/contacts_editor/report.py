from __future__ import annotations

from rich.columns import Columns
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .apply import ApplyResult
from .classify import find_unactionable, has_duplicates, needs_action
from .model import Contact, PhoneAction
from .normalize import DEFAULT_PLAN, NumberingPlan
from .session import PendingChange

console = Console()

# ── Palette ────────────────────────────────────────────────────────────────────
_ACCENT  = "#4d9fff"
_GREEN   = "#3ecf8e"
_AMBER   = "#f0a500"
_RED     = "#f05c5c"
_TEXT    = "#c9d1e0"
_MID     = "#8896af"
_DIM     = "#546075"
_BORDER  = "#2a3347"

_ACTION_COLOURS = {
    PhoneAction.SKIP: _DIM,
    PhoneAction.ADD_PREFIX: _GREEN,
    PhoneAction.REMOVE_SPACES: _ACCENT,
    PhoneAction.DELETE: _RED,
}

_LABELS = {
    "cell": "mobile",
    "voice": "phone",
    "home": "home",
    "work": "work",
    "fax": "fax",
    "main": "main",
    "pref": "preferred",
}


def humanise_label(label: str) -> str:
    """``"CELL,VOICE"`` → ``"mobile, phone"``."""
    parts = [p.strip().lower() for p in label.split(",") if p.strip()]
    if not parts:
        return "other"
    return ", ".join(_LABELS.get(p, p) for p in parts)


def _stat_panel(value: str, label: str, colour: str) -> Panel:
    body = Text()
    body.append(f"{value}\n", style=f"bold {colour}")
    body.append(label, style=f"dim {_DIM}")
    return Panel(body, border_style=_BORDER, padding=(0, 2), expand=True)


def print_contacts(contacts: list[Contact], *, only_needing_action: bool = False) -> None:
    shown = [c for c in contacts if needs_action(c)] if only_needing_action else contacts
    table = Table(show_header=True, header_style="bold", show_lines=True)
    table.add_column("Contact", style="bold")
    table.add_column("Label", style=_MID)
    table.add_column("Number")
    table.add_column("Action")
    for c in shown:
        name = Text(c.display_name)
        if has_duplicates(c):
            name.append("\nduplicates", style=_AMBER)
        actions = Text()
        for i, p in enumerate(c.phones):
            if i:
                actions.append("\n")
            actions.append(p.action.caption, style=_ACTION_COLOURS[p.action])
        table.add_row(
            name,
            Text("\n".join(humanise_label(p.label) for p in c.phones)),
            Text("\n".join(p.raw_number for p in c.phones)),
            actions,
        )
    console.print(table)
    console.print(
        Text(f"  {sum(1 for c in contacts if needs_action(c))} of {len(contacts)} contact(s) need action",
             style=f"dim {_DIM}")
    )


def print_preview(changes: list[PendingChange]) -> None:
    if not changes:
        console.print(Text("  No changes selected.", style=f"dim {_DIM}"))
        return

    console.print()
    console.print(Text(f"  PREVIEW  {len(changes)} change(s)", style=f"dim {_DIM}"))
    console.print()
    current = None
    for change in changes:
        if change.contact_name != current:
            current = change.contact_name
            console.print(Text(f"  {current}", style=f"bold {_TEXT}"))
        row = Text()
        row.append(f"    {change.phone.raw_number}", style=_TEXT)
        if change.deleted:
            row.append("  will be deleted", style=f"bold {_RED}")
        elif change.new_number is None:
            row.append("  not actionable, left as-is", style=f"dim {_AMBER}")
        else:
            row.append("  → ", style=_DIM)
            row.append(change.new_number, style=f"bold {_GREEN}")
        console.print(row)
    console.print()


def print_unactionable(contacts: list[Contact], plan: NumberingPlan = DEFAULT_PLAN) -> None:
    rows = [(c, phone, err) for c in contacts for phone, err in find_unactionable(c, plan)]
    if not rows:
        return
    table = Table(title="Numbers left as-is", show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("Contact")
    table.add_column("Number")
    table.add_column("Reason", style=_AMBER)
    for c, phone, err in rows:
        table.add_row(Text(c.display_name), Text(phone.raw_number), type(err).__name__)
    console.print(table)


def print_summary(result: ApplyResult) -> None:
    console.print()
    console.print(Text("  APPLY SUMMARY", style=f"dim {_DIM}"))
    console.print()

    row1 = Columns([
        _stat_panel(str(result.updated),  "contacts updated",  _ACCENT),
        _stat_panel(str(result.prefixed), "numbers prefixed",  _GREEN),
    ], equal=True, expand=True)
    row2 = Columns([
        _stat_panel(str(result.deleted),  "numbers deleted",   _TEXT),
        _stat_panel(str(result.failed),   "contacts failed",   _RED if result.failed else _TEXT),
    ], equal=True, expand=True)
    console.print(row1)
    console.print(row2)

    if result.used_fallback:
        console.print(Text("  batch rejected, contacts were saved one by one", style=f"dim {_AMBER}"))
    if result.unactionable:
        console.print(Text(f"  {result.unactionable} number(s) could not be canonicalised", style=f"dim {_AMBER}"))
    for err in result.errors:
        console.print(Text(f"  ✗ {err}", style=_RED))
    console.print()

    if not result.had_errors:
        console.print(Panel(Text("✓  Changes applied", style=f"bold {_GREEN}"), border_style=_GREEN, padding=(0, 2)))
