# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/cli/commands/archive.py

"""Archive command for completed queue items."""

import typer

from cncsync.errors import MachineNotFound
from cncsync.service.app import build_services


def main(
    ctx: typer.Context,
    machine_id: int = typer.Argument(..., help="Machine id"),
):
    """Move completed items of a machine to the completed queue."""
    services = build_services(ctx.obj)
    try:
        moved = services.scheduler.archive_completed(machine_id)
    except MachineNotFound as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    typer.echo(f"Moved {len(moved)} completed items from machine {machine_id}")
