"""Start command."""

import asyncio
import logging

import click

from . import cli
from .shared import console


@cli.command()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def start(debug):
    """Start the PocketPA bot."""
    from pocketpa.config import load_settings
    from pocketpa.main import run, setup_logging

    settings = load_settings()
    setup_logging(settings, debug=debug)
    if debug:
        logging.getLogger("pocketpa").setLevel(logging.DEBUG)

    console.print(f"[bold blue]Starting {settings.bot_name}...[/bold blue]")
    asyncio.run(run(settings))
