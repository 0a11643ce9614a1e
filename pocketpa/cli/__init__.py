"""PocketPA CLI — command line interface."""

import click
from pocketpa import __version__
from .shared import console


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="pocketpa")
@click.pass_context
def cli(ctx):
    """PocketPA — WhatsApp personal assistant"""
    if ctx.invoked_subcommand is None:
        _show_help()


def _show_help():
    """List every registered command, one section per command group."""
    console.print(f"[bold]PocketPA v{__version__}[/bold]: WhatsApp personal assistant\n")

    bot_commands = []
    sections = []
    for name, command in cli.commands.items():
        if command.hidden:
            continue
        if isinstance(command, click.Group):
            rows = [
                (f"{name} {sub_name}", sub.get_short_help_str(limit=60))
                for sub_name, sub in command.commands.items()
                if not sub.hidden
            ]
            sections.append((command.get_short_help_str(limit=60).rstrip("."), rows))
        else:
            bot_commands.append((name, command.get_short_help_str(limit=60)))

    for title, rows in [("Bot", bot_commands)] + sections:
        console.print(f"  [bold cyan]{title}[/bold cyan]")
        for name, desc in rows:
            console.print(f"    [bold]pocketpa {name:16s}[/bold] {desc}")
        console.print()

    console.print("[dim]Run 'pocketpa <command> --help' for details on a specific command.[/dim]")


# Import all command modules (registers commands onto cli group)
from . import cmd_start  # noqa: E402, F401
from . import cmd_status  # noqa: E402, F401
from . import cmd_data  # noqa: E402, F401


@cli.command(name="help", hidden=True)
def help_cmd():
    """Show all available commands."""
    _show_help()


def main():
    """CLI entry point."""
    import sys
    try:
        cli(standalone_mode=False)
    except click.UsageError as e:
        if e.ctx:
            click.echo(e.ctx.command.get_usage(e.ctx), err=True)
        click.echo("Try 'pocketpa help' for help.\n", err=True)
        click.echo(f"Error: {e.format_message()}", err=True)
        sys.exit(2)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.exceptions.Exit as e:
        sys.exit(e.code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
