"""CLI entry points for clientlink.

Provides command-line tools for:
- Database setup
- Resolving and escalating single documents
- Batch reconciliation of unlinked documents
"""

import asyncio
import sys

import click

from .. import __version__
from .link import cli as link_cli


@click.group()
@click.version_option(version=__version__, prog_name="clientlink")
def main():
    """clientlink - link transcripts and form responses to clients."""
    from ..logging import setup_logging

    setup_logging()


@main.command(name="init-db")
def init_db_command():
    """Create the linking tables if they do not exist."""
    from ..db import close_db, init_db

    async def _init():
        try:
            await init_db()
        finally:
            await close_db()

    try:
        asyncio.run(_init())
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.secho("Database tables ready.", fg="green")


main.add_command(link_cli, name="link")


if __name__ == "__main__":
    main()
