# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/cli/commands/serve.py

"""Serve command: startup cleanup followed by periodic sync."""

import signal
import threading

import typer
from loguru import logger

from cncsync.service.app import build_services, startup_sweep


def main(
    ctx: typer.Context,
    skip_cleanup: bool = typer.Option(False, "--skip-cleanup", help="Do not run the startup cleanup"),
):
    """Run startup cleanup, then sync control files every interval."""
    services = build_services(ctx.obj)
    services.db.create_tables()

    stop = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    if not skip_cleanup:
        startup_sweep(services)

    services.scheduler.start()
    try:
        while not stop.wait(1.0):
            pass
    finally:
        services.scheduler.stop()
