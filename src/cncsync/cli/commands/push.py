# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/cli/commands/push.py

"""Push command for writing queued programs to a machine."""

import typer

from cncsync.errors import MachineNotFound
from cncsync.service.app import build_services


def main(
    ctx: typer.Context,
    machine_id: int = typer.Argument(..., help="Machine id"),
):
    """Write every queued item's programs to the machine and regenerate its control file."""
    services = build_services(ctx.obj)
    try:
        result = services.scheduler.push_machine(machine_id)
    except MachineNotFound as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)

    written = sum(len(r.written) for r in result.reports)
    versioned = sum(len(r.versioned) for r in result.reports)
    typer.echo(f"Pushed {len(result.reports)} items to machine {machine_id}: {written} files written")
    if versioned:
        typer.echo(f"  {versioned} files written under versioned names (destination locked)")
    for report in result.reports:
        for name, error in report.failed.items():
            typer.echo(f"  - {report.directory / name}: {error}")
    for item_id, error in result.failed_items.items():
        typer.echo(f"  - item {item_id}: {error}")
    if result.control_file is not None:
        typer.echo(f"Control file: {result.control_file}")
    if result.failed_items or any(not r.ok for r in result.reports):
        raise typer.Exit(1)
