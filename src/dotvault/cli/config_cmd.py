"""Setup and configuration commands: init, discover, validate, doctor, unlock, lock."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from ._common import config_from, console, home_from, logger, vault_errors
from ..config import config_path, load_config, load_settings, read_document, save_config, session_file_path
from ..discovery import discover, find_conflicts, merge
from ..fileio import backup_file
from ..models import BackendType, VaultLocation
from ..preflight import run_preflight
from ..validation import validate_document
from ..vault.backends import create_backend
from ..vault.engine import init_vault, open_engine
from ..vault.errors import VaultError
from ..vault.session import SessionManager


def _session_manager(ctx: click.Context) -> SessionManager:
    """Session manager for the configured backend; needs no item document."""
    home = home_from(ctx)
    settings = load_settings(home)
    backend = create_backend(settings.backend.value, settings)
    return SessionManager(
        backend,
        session_file_path(settings, home),
        env=backend.env,
        max_attempts=settings.unlock_attempts,
    )


def _print_preflight(backend: str) -> bool:
    result = run_preflight(backend)
    for tool in result.checks:
        if tool.installed:
            console.print(f"    [green]✓[/] {tool.name} [dim]({tool.version or tool.binary})[/]")
        else:
            console.print(f"    [red]✗[/] {tool.name} [dim](not found)[/]")
            console.print(f"      [yellow]{tool.hint()}[/]")
    return result.all_ok


def register_config_commands(main: click.Group) -> None:
    """Register init, discover, validate, doctor, unlock and lock."""

    @main.command()
    @click.option(
        "--backend", type=click.Choice([b.value for b in BackendType]),
        default=BackendType.BITWARDEN.value, show_default=True,
        help="Vault provider to use.",
    )
    @click.option("--force", is_flag=True, help="Reinitialize an existing setup.")
    @click.pass_context
    def init(ctx, backend: str, force: bool):
        """Set up dotvault on this machine."""
        home = home_from(ctx)
        with vault_errors():
            settings = init_vault(home, BackendType(backend), force=force)

        console.print()
        console.print(
            Panel(
                f"Home: [cyan]{home}[/]\nBackend: [bold]{settings.backend.value}[/]",
                title="dotvault initialized",
                border_style="green",
            )
        )
        console.print("  [bold]Provider tools[/]")
        ready = _print_preflight(settings.backend.value)
        console.print()
        if ready:
            console.print("  Next: [cyan]dotvault discover[/] then [cyan]dotvault restore[/]\n")
        else:
            console.print("  [yellow]Install the missing tools, then run 'dotvault doctor'.[/]\n")

    @main.command("discover")
    @click.option("--dry-run", is_flag=True, help="Print the document instead of writing it.")
    @click.option("--force", is_flag=True, help="Replace an existing document (a backup is kept).")
    @click.option("--merge", "merge_existing", is_flag=True, help="Merge into an existing document.")
    @click.option("--location", default=None, help="Vault location to record (type:value).")
    @click.option(
        "--ssh-path", "ssh_paths", multiple=True, type=click.Path(file_okay=False),
        help="Extra directory to scan for SSH keys (repeatable).",
    )
    @click.pass_context
    def discover_cmd(ctx, dry_run: bool, force: bool, merge_existing: bool,
                     location: Optional[str], ssh_paths: tuple[str, ...]):
        """Scan this machine for secrets and write vault-items.json."""
        target = config_path(config_from(ctx))
        try:
            vault_location = VaultLocation.parse(location) if location else None
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="--location")

        candidate = discover(
            home=Path.home(),
            extra_ssh_dirs=[Path(p).expanduser() for p in ssh_paths],
            location=vault_location,
        )

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Item", style="bold")
        table.add_column("Type", style="dim")
        table.add_column("Required")
        table.add_column("Path", style="dim")
        for name, item in sorted(candidate.vault_items.items()):
            table.add_row(name, item.type.value, "yes" if item.required else "no", item.path)
        console.print()
        console.print(table if candidate.vault_items else "  [dim]Nothing found.[/]")
        if candidate.aws_expected_profiles:
            console.print(f"\n  AWS profiles: {', '.join(candidate.aws_expected_profiles)}")

        result = candidate
        if target.exists():
            if merge_existing:
                with vault_errors():
                    existing = load_config(target)
                conflicts = find_conflicts(candidate, existing)
                if conflicts:
                    console.print("\n  [bold yellow]Changed since last discovery:[/]")
                    for conflict in conflicts:
                        console.print(f"    [yellow]![/] {conflict}")
                    if not force and not dry_run and not Confirm.ask(
                        "  Use the newly discovered values?", default=False, console=console
                    ):
                        console.print("  [dim]Aborted; nothing written.[/]\n")
                        sys.exit(1)
                result = merge(candidate, existing)
            elif not force and not dry_run:
                console.print(
                    f"\n  [bold red]{target} already exists.[/] "
                    "Use --merge to keep your edits or --force to replace it.\n"
                )
                sys.exit(1)

        if dry_run:
            console.print()
            click.echo(json.dumps(result.to_document(), indent=2))
            return

        if target.exists() and force and not merge_existing:
            backup = backup_file(target)
            if backup is not None:
                console.print(f"\n  [dim]Previous document saved to {backup}[/]")
        save_config(result, target)
        console.print(
            f"\n  [green]✓[/] Wrote {len(result.vault_items)} item(s) to [cyan]{target}[/]\n"
        )

    @main.command()
    @click.argument("config", required=False, type=click.Path(dir_okay=False))
    @click.option("--remote", is_flag=True, help="Also check the content of each vault item.")
    @click.pass_context
    def validate(ctx, config: Optional[str], remote: bool):
        """Validate vault-items.json (and, with --remote, the vault contents)."""
        path = config_path(Path(config) if config else config_from(ctx))
        with vault_errors():
            report = validate_document(read_document(path))
            if remote and report.ok:
                engine = open_engine(config_file=path, home=home_from(ctx))
                report.extend(engine.validate_remote())

        console.print(f"\n  Validating [cyan]{path}[/]")
        for warning in report.warnings:
            console.print(f"    [yellow]![/] {warning}")
        for error in report.errors:
            console.print(f"    [red]✗[/] {error}")
        if report.ok:
            scope = " and vault contents" if remote else ""
            console.print(f"  [bold green]✓ Configuration{scope} valid.[/]\n")
            return
        console.print(f"\n  [bold red]{report.error_count} error(s) found.[/]\n")
        sys.exit(1)

    @main.command()
    @click.option("--json-out", is_flag=True, help="Output as machine-readable JSON.")
    @click.pass_context
    def doctor(ctx, json_out: bool):
        """Diagnose the vault setup on this machine."""
        from ..doctor import run_diagnostics

        home = home_from(ctx)
        config_file = config_path(config_from(ctx))
        with vault_errors():
            settings = load_settings(home)

        config = None
        try:
            config = load_config(config_file)
        except VaultError as exc:
            logger.info("Configuration not loaded: %s", exc)

        backend = create_backend(
            settings.backend.value, settings,
            location=config.vault_location if config else None,
        )
        session = None
        if run_preflight(settings.backend.value).all_ok:
            sessions = SessionManager(backend, session_file_path(settings, home), env=backend.env)
            try:
                session = sessions.peek()
            except VaultError:
                session = None

        with vault_errors():
            report = run_diagnostics(
                home, settings, config=config, config_file=config_file,
                backend=backend, session=session,
            )

        if json_out:
            click.echo(json.dumps(report.to_dict(), indent=2))
            return

        console.print()

        categories = {}
        for check in report.checks:
            categories.setdefault(check.category, []).append(check)

        category_labels = {
            "tools": "Provider Tools",
            "config": "Configuration",
            "backend": f"Vault ({report.backend})",
            "files": "Local Files",
        }

        for cat_key in ["tools", "config", "backend", "files"]:
            checks = categories.get(cat_key, [])
            if not checks:
                continue

            console.print(f"  [bold]{category_labels[cat_key]}[/]")
            for c in checks:
                icon = "[green]✓[/]" if c.passed else "[red]✗[/]"
                detail = f" [dim]({c.detail})[/]" if c.detail else ""
                console.print(f"    {icon} {c.description}{detail}")
                if not c.passed and c.fix:
                    console.print(f"      [yellow]Fix: {c.fix}[/]")
            console.print()

        if report.all_passed:
            console.print(f"  [bold green]✓ All {report.total_count} checks passed.[/]")
        else:
            console.print(
                f"  [bold green]{report.passed_count}[/] passed, "
                f"[bold red]{report.failed_count}[/] failed "
                f"out of {report.total_count} checks."
            )
        console.print()
        if not report.all_passed:
            sys.exit(1)

    @main.command()
    @click.pass_context
    def unlock(ctx):
        """Unlock the vault and cache the session."""
        with vault_errors():
            sessions = _session_manager(ctx)
            sessions.backend.init()
            session = sessions.get()
        console.print(
            f"\n  [green]✓[/] {session.backend} unlocked [dim](session from {session.source.value})[/]\n"
        )

    @main.command()
    @click.pass_context
    def lock(ctx):
        """Forget the cached vault session."""
        with vault_errors():
            sessions = _session_manager(ctx)
        if sessions.invalidate():
            console.print(f"\n  [green]✓[/] Removed {sessions.cache_file}\n")
        else:
            console.print("\n  [dim]No cached session.[/]\n")
