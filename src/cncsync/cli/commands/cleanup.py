# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/cli/commands/cleanup.py

"""Cleanup command for forcing directory reconciliation."""

import os
from typing import Optional

import typer

from cncsync.service.app import build_services


def main(
    ctx: typer.Context,
    machine: Optional[int] = typer.Option(None, "--machine", "-m", help="Only clean this machine"),
):
    """Force cleanup of unused program directories."""
    services = build_services(ctx.obj)
    actor = os.environ.get("USER", "cli")
    if machine is None:
        result = services.admin.force_cleanup_all(actor=actor)
    else:
        result = services.admin.force_cleanup_machine(machine, actor=actor)

    typer.echo(result.message)
    if not result.success:
        raise typer.Exit(1)
