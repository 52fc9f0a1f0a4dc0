"""
Clawback CLI — back up and restore agent workspaces.

Each command group lives in its own module and is registered on the
main Click group via a register function.

Entry point: clawback.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="clawback")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def main(verbose: bool):
    """Clawback — disaster recovery for agent workspaces.

    One file holds your agent's identity, memory, skills and config,
    checksummed and with its secrets sealed away.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Register all commands from modular files
# ---------------------------------------------------------------------------

from .backup import register_backup_commands
from .restore import register_restore_commands
from .inspect import register_inspect_commands

register_backup_commands(main)
register_restore_commands(main)
register_inspect_commands(main)
