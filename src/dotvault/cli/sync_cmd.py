"""Sync commands: restore, push, status."""

from __future__ import annotations

import sys

import click
from rich.panel import Panel
from rich.table import Table

from ._common import (
    build_engine,
    console,
    drift_label,
    exit_with,
    print_summary,
    vault_errors,
)
from ..vault.errors import DriftDetected
from ..vault.models import DriftStatus


def register_sync_commands(main: click.Group) -> None:
    """Register restore, push and status on the main group."""

    @main.command()
    @click.option("--force", is_flag=True, help="Overwrite local files even if they have drifted.")
    @click.option("--preview", is_flag=True, help="Show what would be written; write nothing.")
    @click.pass_context
    def restore(ctx, force: bool, preview: bool):
        """Restore secrets from the vault to this machine."""
        with vault_errors():
            engine = build_engine(ctx)
            console.print(f"\n  Restoring from [cyan]{engine.backend.name}[/]...")
            try:
                summary = engine.restore(force=force, preview=preview)
            except DriftDetected as exc:
                console.print(
                    Panel(
                        "\n".join(f"[bold red]✗[/] {name}" for name in exc.items)
                        + "\n\n[yellow]" + (exc.remediation or "") + "[/]",
                        title="Local changes would be overwritten",
                        border_style="red",
                    )
                )
                sys.exit(1)

        if summary.drift is not None and summary.drift.has_drift and preview and not force:
            console.print(
                f"  [yellow]A real restore would stop: {', '.join(summary.drift.diverged)} "
                "have local changes.[/]"
            )
        if summary.drift is not None and summary.drift.local_only:
            console.print(
                f"  [yellow]Not backed up yet: {', '.join(summary.drift.local_only)}[/] "
                "[dim](dotvault create <item>)[/]"
            )
        print_summary(summary)
        exit_with(summary.exit_code)

    @main.command()
    @click.argument("items", nargs=-1)
    @click.option("--all", "all_items", is_flag=True, help="Push every syncable item.")
    @click.option("--dry-run", is_flag=True, help="Show what would be pushed.")
    @click.pass_context
    def push(ctx, items: tuple[str, ...], all_items: bool, dry_run: bool):
        """Push local changes to the vault."""
        if not items and not all_items:
            console.print("[bold red]Nothing to push.[/] Name items or use --all.")
            sys.exit(1)

        with vault_errors():
            engine = build_engine(ctx)
            summary = engine.push(items, all_items=all_items, dry_run=dry_run)

        print_summary(summary)
        exit_with(summary.exit_code)

    @main.command()
    @click.pass_context
    def status(ctx):
        """Show drift between local files and the vault."""
        with vault_errors():
            engine = build_engine(ctx)
            report = engine.status()

        state = engine.state
        console.print()
        console.print(
            Panel(
                f"Backend: [cyan]{engine.backend.name}[/]\n"
                f"Items: [bold]{len(engine.config.vault_items)}[/] "
                f"([dim]{len(engine.config.syncable_items)} syncable[/])\n"
                f"Last restore: {state.last_pull or '[dim]never[/]'}\n"
                f"Last push: {state.last_push or '[dim]never[/]'}",
                title="dotvault",
                border_style="bright_blue",
            )
        )

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Item", style="bold")
        table.add_column("Status")
        table.add_column("Path", style="dim")
        for entry in report.entries:
            table.add_row(entry.name, drift_label(entry.status), entry.path or "")
        console.print(table)
        console.print()

        if report.diverged:
            console.print(
                "  [bold red]Drift:[/] " + ", ".join(report.diverged)
                + "\n  [dim]Push local changes (dotvault push ITEM) or overwrite them "
                "(dotvault restore --force).[/]"
            )
        if report.names(DriftStatus.LOCAL_ONLY):
            console.print(
                "  [yellow]Not in vault:[/] " + ", ".join(report.local_only)
                + "  [dim](dotvault create ITEM)[/]"
            )
        console.print()
