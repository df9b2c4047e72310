# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/cli/commands/sync.py

"""Sync command for running one control file cycle."""

from typing import Optional

import typer

from cncsync.errors import MachineNotFound
from cncsync.service.app import build_services


def main(
    ctx: typer.Context,
    machine: Optional[int] = typer.Option(None, "--machine", "-m", help="Only sync this machine"),
):
    """Run one control file sync cycle."""
    services = build_services(ctx.obj)
    scheduler = services.scheduler

    if machine is None:
        results = scheduler.run_cycle()
        scheduler.stop()
    else:
        try:
            results = [scheduler.sync_machine(machine)]
        except MachineNotFound as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(1)

    for result in results:
        state = "skipped" if result.skipped else "deferred" if result.deferred else "ok"
        typer.echo(
            f"machine {result.machine_id}: {state}, {result.updated} updated, "
            f"{'written' if result.written else 'unchanged'}"
        )
