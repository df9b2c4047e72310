# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/cli/commands/init_db.py

"""Init-db command."""

import typer

from cncsync.service.database.operations import DatabaseManager


def main(ctx: typer.Context):
    """Create database tables."""
    db = DatabaseManager(ctx.obj.database_url)
    db.create_tables()
    typer.echo(f"Initialized {ctx.obj.database_url}")
