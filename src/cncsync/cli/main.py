# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/cli/main.py

"""Main CLI entry point for cncsync."""

import tomllib
from pathlib import Path
from typing import Optional

import typer

from cncsync.cli.commands.archive import main as archive_command
from cncsync.cli.commands.cleanup import main as cleanup_command
from cncsync.cli.commands.generate import main as generate_command
from cncsync.cli.commands.init_db import main as init_db_command
from cncsync.cli.commands.migrate import main as migrate_command
from cncsync.cli.commands.push import main as push_command
from cncsync.cli.commands.serve import main as serve_command
from cncsync.cli.commands.sync import main as sync_command
from cncsync.config import load_settings
from cncsync.logging.setup import setup_logging

app = typer.Typer(
    name="cncsync",
    help="Machine queue synchronization between the database and CNC program shares",
    no_args_is_help=True,
)

app.command("init-db", help="Create database tables")(init_db_command)
app.command("cleanup", help="Force cleanup of unused program directories")(cleanup_command)
app.command("sync", help="Run one control file sync cycle")(sync_command)
app.command("generate", help="Print or write a machine control file")(generate_command)
app.command("push", help="Write queued programs to a machine and regenerate its control file")(push_command)
app.command("archive", help="Move completed items of a machine to the completed queue")(archive_command)
app.command("migrate", help="Move inline attachment content to the upload directory")(migrate_command)
app.command("serve", help="Run startup cleanup, then sync periodically")(serve_command)


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """cncsync: machine queue filesystem synchronization."""
    try:
        settings = load_settings(config)
    except (OSError, tomllib.TOMLDecodeError, TypeError, ValueError) as e:
        typer.echo(f"Cannot load settings: {e}", err=True)
        raise typer.Exit(2)
    setup_logging(verbose=verbose, log_file=settings.log_file)
    ctx.obj = settings


if __name__ == "__main__":
    app()
