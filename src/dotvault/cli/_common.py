"""Shared utilities for all CLI command modules.

Provides the Rich console instance, engine construction, error
reporting and result formatting used across every command.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, NoReturn, Optional

import click
from rich.console import Console
from rich.table import Table

from ..config import dotvault_home
from ..prompts import ConsolePrompter
from ..vault.engine import VaultEngine, open_engine
from ..vault.errors import SchemaInvalid, VaultError
from ..vault.models import DriftStatus, ItemAction, ItemResult, OperationSummary

console = Console()
logger = logging.getLogger("dotvault.cli")


def home_from(ctx: click.Context) -> Path:
    home = (ctx.obj or {}).get("home")
    return Path(home).expanduser() if home else dotvault_home()


def config_from(ctx: click.Context) -> Optional[Path]:
    config = (ctx.obj or {}).get("config")
    return Path(config).expanduser() if config else None


def build_engine(ctx: click.Context) -> VaultEngine:
    """Engine for the current invocation's --config / --home."""
    return open_engine(
        config_file=config_from(ctx),
        home=home_from(ctx),
        prompter=ConsolePrompter(console),
    )


def fail(exc: VaultError) -> NoReturn:
    """Print a vault error with its remediation and exit 1."""
    console.print(f"\n  [bold red]Error:[/] {exc}")
    if isinstance(exc, SchemaInvalid):
        for error in exc.errors:
            console.print(f"    [red]✗[/] {error}")
    if exc.remediation:
        for line in exc.remediation.splitlines():
            console.print(f"  [yellow]{line}[/]")
    console.print()
    sys.exit(1)


@contextmanager
def vault_errors() -> Iterator[None]:
    """Turn VaultError into a red message and exit status 1."""
    try:
        yield
    except VaultError as exc:
        fail(exc)


_ACTION_STYLE = {
    ItemAction.CREATED: "[green]created[/]",
    ItemAction.UPDATED: "[green]updated[/]",
    ItemAction.RESTORED: "[green]restored[/]",
    ItemAction.DELETED: "[green]deleted[/]",
    ItemAction.UNCHANGED: "[dim]unchanged[/]",
    ItemAction.PLANNED: "[cyan]planned[/]",
    ItemAction.SKIPPED: "[yellow]skipped[/]",
    ItemAction.FAILED: "[bold red]failed[/]",
}

_DRIFT_STYLE = {
    DriftStatus.IN_SYNC: "[green]in sync[/]",
    DriftStatus.DIVERGED: "[bold red]diverged[/]",
    DriftStatus.LOCAL_ONLY: "[yellow]local only[/]",
    DriftStatus.VAULT_ONLY: "[cyan]vault only[/]",
    DriftStatus.UNKNOWN: "[dim]unknown[/]",
}


def action_label(action: ItemAction) -> str:
    return _ACTION_STYLE.get(action, action.value)


def drift_label(status: DriftStatus) -> str:
    return _DRIFT_STYLE.get(status, status.value)


def print_result(result: ItemResult) -> None:
    flag = " [bold yellow](flagged)[/]" if result.flagged else ""
    message = f" [dim]{result.message}[/]" if result.message else ""
    console.print(f"  {action_label(result.action)} [bold]{result.name}[/]{flag}{message}")


def print_summary(summary: OperationSummary) -> None:
    """Per-item table plus the one-line summary."""
    if summary.results:
        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Item", style="bold")
        table.add_column("Result")
        table.add_column("Detail", style="dim")
        for r in summary.results:
            flag = " [bold yellow]![/]" if r.flagged else ""
            table.add_row(r.name, action_label(r.action) + flag, r.message)
        console.print()
        console.print(table)

    console.print()
    style = "bold red" if summary.exit_code else "bold green"
    console.print(f"  [{style}]{summary.summary_line()}[/]")
    for r in summary.flagged:
        console.print(f"  [yellow]! {r.name}: {r.message}[/]")
    console.print()


def exit_with(code: int) -> None:
    """Exit with a batch failure count (capped to a valid status)."""
    if code:
        sys.exit(min(code, 125))
