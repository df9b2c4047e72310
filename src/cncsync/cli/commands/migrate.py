# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/cli/commands/migrate.py

"""Migrate command for inline attachment content."""

import humanize
import typer

from cncsync.service.app import build_services
from cncsync.service.migration import migrate_attachment_content


def main(ctx: typer.Context):
    """Move inline attachment content to the upload directory."""
    services = build_services(ctx.obj)
    result = migrate_attachment_content(services.db, services.settings.upload_root)
    typer.echo(
        f"Migrated {result.migrated} attachments ({humanize.naturalsize(result.bytes_written)}), "
        f"{len(result.failed)} failed"
    )
    if result.failed:
        raise typer.Exit(1)
