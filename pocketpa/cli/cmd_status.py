"""Status command."""

from rich.table import Table

from . import cli
from .shared import console, format_hours


@cli.command()
def status():
    """Show PocketPA settings and cache status."""
    from pocketpa import __version__
    from pocketpa.bot.app import build_directory, build_groups_store, build_history_store
    from pocketpa.config import load_settings
    from pocketpa.groups.registry import SNAPSHOT_KEY

    settings = load_settings()

    table = Table(title=f"PocketPA Status v{__version__}", show_header=False, padding=(0, 2))
    table.add_column("Key", style="bold")
    table.add_column("Value")

    table.add_row("Bot", settings.bot_name)
    table.add_row("AI", "[green]Enabled[/green]" if settings.ai_enabled else "[dim]Disabled[/dim]")
    table.add_row("OpenAI key", "[green]Set[/green]" if settings.openai_api_key else "[yellow]Not set[/yellow]")
    table.add_row("Chat model", settings.chat_model)
    table.add_row("Bridge", settings.bridge_url)
    table.add_row("PA group", settings.pa_group_jid or "[dim]-[/dim]")

    # Contacts
    directory = build_directory(settings)
    directory.load()
    stats = directory.stats()
    table.add_row(
        "Contacts",
        f"{stats['total']} ({stats['individuals']} people, {stats['groups']} groups, "
        f"{stats['with_names']} named)",
    )
    table.add_row("Contacts file", settings.contacts_path)

    # Groups cache
    groups_store = build_groups_store(settings)
    if groups_store.exists(SNAPSHOT_KEY):
        envelope = groups_store.load(SNAPSHOT_KEY, allow_expired=True)
        count = len(envelope.payload) if envelope else 0
        age = groups_store.age_of(SNAPSHOT_KEY)
        expired = " [yellow](expired)[/yellow]" if envelope and groups_store.is_expired(envelope.captured_at) else ""
        table.add_row("Groups cache", f"{count} groups, {format_hours(age)} old{expired}")
    else:
        table.add_row("Groups cache", "[dim]None[/dim]")

    # History cache
    history = build_history_store(settings)
    entries = history.cached()
    if entries:
        expired = sum(1 for e in entries if e.expired)
        table.add_row("Cached histories", f"{len(entries)} ({expired} expired)")
    else:
        table.add_row("Cached histories", "[dim]None[/dim]")

    console.print(table)

    if entries:
        hist = Table(title="Cached Histories")
        hist.add_column("Group")
        hist.add_column("Messages", justify="right")
        hist.add_column("Age", justify="right")
        for entry in entries:
            hist.add_row(entry.display_name or entry.key, str(entry.item_count), format_hours(entry.age_seconds))
        console.print(hist)
