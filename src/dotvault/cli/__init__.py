"""
dotvault CLI -- restore and push developer secrets.

Commands are grouped by concern, one module each. The main Click group
is defined here and every module registers its commands on it.

Entry point: dotvault.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="dotvault")
@click.option(
    "--config", "config", type=click.Path(dir_okay=False), default=None,
    envvar="DOTVAULT_CONFIG", help="Path to vault-items.json.",
)
@click.option(
    "--home", "home", type=click.Path(file_okay=False), default=None,
    envvar="DOTVAULT_HOME", help="dotvault state directory (default ~/.dotvault).",
)
@click.option("-v", "--verbose", is_flag=True, help="Log progress to stderr.")
@click.pass_context
def main(ctx, config, home, verbose):
    """dotvault -- your dotfile secrets, kept in your vault.

    Restore SSH keys, cloud credentials and environment secrets onto a
    new machine, and push local edits back.
    """
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["home"] = home


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .sync_cmd import register_sync_commands
from .items_cmd import register_items_commands
from .config_cmd import register_config_commands

register_sync_commands(main)
register_items_commands(main)
register_config_commands(main)
