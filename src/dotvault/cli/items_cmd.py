"""Item commands: create, delete, list, check."""

from __future__ import annotations

import sys
from typing import Optional

import click
from rich.table import Table

from ._common import (
    build_engine,
    console,
    exit_with,
    print_result,
    print_summary,
    vault_errors,
)


def register_items_commands(main: click.Group) -> None:
    """Register create, delete, list and check on the main group."""

    @main.command()
    @click.argument("item")
    @click.argument("path", required=False)
    @click.option("--force", is_flag=True, help="Overwrite an existing vault item.")
    @click.option("--dry-run", is_flag=True, help="Show what would be created.")
    @click.pass_context
    def create(ctx, item: str, path: Optional[str], force: bool, dry_run: bool):
        """Create a vault item from a local file.

        PATH defaults to the item's configured path.
        """
        with vault_errors():
            engine = build_engine(ctx)
            result = engine.create(item, path, force=force, dry_run=dry_run)

        console.print()
        print_result(result)
        console.print()
        if not result.ok:
            sys.exit(1)

    @main.command()
    @click.argument("items", nargs=-1, required=True)
    @click.option("--dry-run", is_flag=True, help="Show what would be deleted.")
    @click.option("--force", is_flag=True, help="Skip the yes/no prompt for unprotected items.")
    @click.pass_context
    def delete(ctx, items: tuple[str, ...], dry_run: bool, force: bool):
        """Delete items from the vault.

        Items listed in the configuration are protected: deleting one
        requires typing its name, even with --force.
        """
        with vault_errors():
            engine = build_engine(ctx)
            summary = engine.delete(items, force=force, dry_run=dry_run)

        print_summary(summary)
        exit_with(summary.exit_code)

    @main.command("list")
    @click.option("--verbose", "-V", "verbose", is_flag=True, help="Show paths and local status.")
    @click.option("--location", default=None, help="Filter by location (type:value, e.g. folder:dotfiles).")
    @click.option("--locations", "show_locations", is_flag=True, help="List the provider's folders/vaults instead.")
    @click.pass_context
    def list_items(ctx, verbose: bool, location: Optional[str], show_locations: bool):
        """List vault items alongside the configuration."""
        with vault_errors():
            engine = build_engine(ctx)
            if show_locations:
                names = engine.locations()
                console.print()
                for name in names:
                    console.print(f"  {name}")
                if not names:
                    console.print("  [dim]No locations found.[/]")
                console.print()
                return
            try:
                rows = engine.inventory(location)
            except ValueError as exc:
                raise click.BadParameter(str(exc), param_hint="--location")

        if not rows:
            console.print("\n  [dim]No items found.[/]\n")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Item", style="bold")
        table.add_column("Vault")
        table.add_column("Config")
        if verbose:
            table.add_column("Type", style="dim")
            table.add_column("Path", style="dim")
            table.add_column("Local")

        for row in rows:
            vault = "[green]✓[/]" if row.in_vault else "[red]✗[/]"
            if row.configured:
                config = "[bold]required[/]" if row.required else "optional"
            else:
                config = "[dim]-[/]"
            cells = [row.name, vault, config]
            if verbose:
                local = "[green]✓[/]" if row.local_exists else "[dim]-[/]"
                cells += [row.type or "", row.path or "", local if row.configured else ""]
            table.add_row(*cells)

        console.print()
        console.print(table)
        missing = [r.name for r in rows if r.configured and r.required and not r.in_vault]
        console.print(
            f"\n  [dim]{sum(1 for r in rows if r.in_vault)} in vault, "
            f"{sum(1 for r in rows if r.configured)} configured[/]"
        )
        if missing:
            console.print(f"  [bold red]Missing required:[/] {', '.join(missing)}")
        console.print()

    @main.command()
    @click.pass_context
    def check(ctx):
        """Check that every configured item exists in the vault."""
        with vault_errors():
            engine = build_engine(ctx)
            report = engine.check()

        console.print()
        for warning in report.warnings:
            console.print(f"  [yellow]![/] {warning}")
        for error in report.errors:
            console.print(f"  [red]✗[/] {error}")
        if report.ok:
            console.print(f"  [bold green]All required items present[/] [dim]({report.checked} checked)[/]")
        else:
            console.print(
                f"\n  [bold red]{report.error_count} required item(s) missing.[/] "
                "[dim]Run 'dotvault create ITEM' to add them.[/]"
            )
        console.print()
        if not report.ok:
            sys.exit(1)
