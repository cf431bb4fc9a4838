"""
dotvault CLI -- manage environment files from the command line.

The main Click group is defined here and every command group is
registered from its own module.

Entry point: dotvault.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="dotvault")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """dotvault -- your environment files, versioned and encrypted."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .files_cmd import register_files_commands
from .link_cmd import register_link_commands
from .lock_cmd import register_lock_commands
from .sync_cmd import register_sync_commands

register_sync_commands(main)
register_files_commands(main)
register_link_commands(main)
register_lock_commands(main)
