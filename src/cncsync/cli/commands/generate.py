# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/cli/commands/generate.py

"""Generate command for control files."""

import typer

from cncsync.service.app import build_services


def main(
    ctx: typer.Context,
    machine_id: int = typer.Argument(..., help="Machine id"),
    write: bool = typer.Option(False, "--write", "-w", help="Write the file instead of printing it"),
):
    """Print or write a machine control file."""
    services = build_services(ctx.obj)
    if services.db.get_machine(machine_id) is None:
        typer.echo(f"Machine not found: {machine_id}", err=True)
        raise typer.Exit(1)

    if write:
        path = services.generator.write(machine_id)
        typer.echo(f"Wrote {path}")
    else:
        typer.echo(services.generator.generate(machine_id), nl=False)
