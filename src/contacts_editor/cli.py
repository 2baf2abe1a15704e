from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from .config import DEFAULT_CONFIG_PATH, Settings, ensure_config, load_settings, numbering_plan
from .errors import ConfigurationError
from .logging_setup import configure_logging
from .report import print_contacts, print_preview, print_summary, print_unactionable
from .session import Session
from .store import MemoryContactStore
from .vcf_store import VcfContactStore

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="contacts-editor: find duplicate phone numbers and fix missing country prefixes.",
)
console = Console()


# ── Shared setup ───────────────────────────────────────────────────────────────

def _settings(config: Path, region: str | None, workers: int | None) -> Settings:
    settings = load_settings(ensure_config(config))
    if region:
        settings.region = region
        settings.country_code = None
    if workers is not None:
        settings.workers = workers
    return settings


def _open_session(
    file: Path | None,
    config: Path,
    region: str | None,
    verbose: bool,
    workers: int | None = None,
) -> Session:
    configure_logging(level=logging.DEBUG if verbose else logging.WARNING)
    settings = _settings(config, region, workers)
    try:
        plan = numbering_plan(settings)
    except ConfigurationError as exc:
        console.print(f"Configuration error: {exc}", style="bold red", markup=False)
        raise typer.Exit(code=2) from exc

    path = file or Path(settings.contacts_file)
    session = Session(store=VcfContactStore(path), plan=plan, workers=settings.workers)
    session.load()
    if session.has_error:
        console.print(Panel(Text(session.status_message), title="Cannot read contacts", border_style="red"))
        raise typer.Exit(code=2)
    console.print(f"{path}: {session.status_message}", style="dim", markup=False)
    return session


_FILE = typer.Argument(None, help="Address book .vcf (default: contacts_file from config)")
_CONFIG = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="TOML settings file")
_REGION = typer.Option(None, "--region", "-r", help="Phone region ISO-2 code (e.g. PT)")
_VERBOSE = typer.Option(False, "--verbose", "-v", help="Debug logging")


# ── Commands ───────────────────────────────────────────────────────────────────

@app.command()
def scan(
    file: Path | None = _FILE,
    config: Path = _CONFIG,
    region: str | None = _REGION,
    all_contacts: bool = typer.Option(False, "--all", help="Also list contacts needing nothing"),
    verbose: bool = _VERBOSE,
) -> None:
    """List contacts with their phone numbers, flagging duplicates."""
    session = _open_session(file, config, region, verbose)
    print_contacts(session.contacts, only_needing_action=not all_contacts)


@app.command()
def detect(
    file: Path | None = _FILE,
    config: Path = _CONFIG,
    region: str | None = _REGION,
    verbose: bool = _VERBOSE,
) -> None:
    """Suggest an action for every phone number and preview the result."""
    session = _open_session(file, config, region, verbose)
    session.auto_detect()
    print_preview(session.pending_changes())
    print_unactionable(session.contacts, session.plan)


@app.command()
def apply(
    file: Path | None = _FILE,
    config: Path = _CONFIG,
    region: str | None = _REGION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Apply to an in-memory copy only"),
    workers: int | None = typer.Option(None, "--workers", "-w", min=1, help="Parallel saves when falling back"),
    verbose: bool = _VERBOSE,
) -> None:
    """Auto-detect actions and write them back to the address book."""
    session = _open_session(file, config, region, verbose, workers)
    session.auto_detect()
    changes = session.pending_changes()
    print_preview(changes)
    print_unactionable(session.contacts, session.plan)

    if not session.has_selected_actions:
        raise typer.Exit(code=0)

    if dry_run:
        session.store = MemoryContactStore(session.store.list_contacts_with_phones())
        console.print("[yellow bold]Dry-run mode — the address book is not touched.[/yellow bold]")
    elif not yes:
        if not typer.confirm(f"Apply {len(changes)} change(s)?", default=True):
            console.print("[dim]Aborted.[/dim]")
            raise typer.Exit(code=0)

    result = session.apply()
    print_summary(result)
    if session.has_error:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
