"""Contact directory and cache maintenance commands."""

import asyncio

import click
from rich.table import Table

from . import cli
from .shared import console


@cli.group()
def contacts():
    """Inspect or reset the contact directory."""
    pass


@contacts.command(name="stats")
def contacts_stats():
    """Show contact directory statistics."""
    from pocketpa.bot.app import build_directory
    from pocketpa.config import load_settings

    directory = build_directory(load_settings())
    directory.load()
    stats = directory.stats()
    info = directory.file_info()

    table = Table(title="Contact Directory", show_header=False, padding=(0, 2))
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Total", str(stats["total"]))
    table.add_row("Individuals", f"{stats['individuals']} ({stats['individuals_with_names']} named)")
    table.add_row("Groups", str(stats["groups"]))
    for label in ("main_file", "backup_file"):
        entry = info[label]
        if entry["exists"]:
            table.add_row(label.replace("_", " ").title(), f"{entry['path']} ({entry.get('size', 0)} bytes)")
        else:
            table.add_row(label.replace("_", " ").title(), f"{entry['path']} [dim](missing)[/dim]")
    console.print(table)


@contacts.command(name="clear")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def contacts_clear(yes):
    """Delete every stored contact (the previous file is kept as backup)."""
    from pocketpa.bot.app import build_directory
    from pocketpa.config import load_settings

    directory = build_directory(load_settings())
    count = directory.load()
    if not yes and not click.confirm(f"Delete all {count} contacts?"):
        console.print("[dim]Aborted.[/dim]")
        return

    directory.clear()
    asyncio.run(directory.shutdown())
    console.print(f"[green]✓ Cleared {count} contacts.[/green]")


@cli.group()
def cache():
    """Manage the groups and history caches."""
    pass


@cache.command(name="purge")
def cache_purge():
    """Delete expired history cache files."""
    from pocketpa.bot.app import build_history_store
    from pocketpa.config import load_settings

    history = build_history_store(load_settings())
    removed = history.purge_expired()
    if removed:
        console.print(f"[green]✓ Removed {removed} expired history file(s).[/green]")
    else:
        console.print("[dim]No expired history files.[/dim]")
