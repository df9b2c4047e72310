# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/service/admin.py

"""Administrative cleanup triggers."""

from dataclasses import dataclass
from typing import Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from cncsync.errors import CncSyncError
from cncsync.filesystem.reconciliation import CleanupResult, DirectoryCleaner


@dataclass
class AdminResult:
    success: bool
    message: str
    cleanup: Optional[CleanupResult] = None


class AdminService:
    """Forced cleanup for privileged callers; failures come back as results."""

    def __init__(self, cleaner: DirectoryCleaner):
        self.cleaner = cleaner

    def force_cleanup_all(self, actor: str = "admin") -> AdminResult:
        logger.info(f"Forced cleanup of all machines requested by {actor}")
        try:
            result = self.cleaner.cleanup_all_machines()
        except (OSError, SQLAlchemyError, CncSyncError) as e:
            logger.error(f"Forced cleanup of all machines failed: {e}")
            return AdminResult(False, f"Cleanup failed: {e}")
        return AdminResult(
            True,
            f"Cleanup of all machines completed: {result.deleted} deleted, {result.blocked} blocked",
            result,
        )

    def force_cleanup_machine(self, machine_id, actor: str = "admin") -> AdminResult:
        logger.info(f"Forced cleanup of machine {machine_id} requested by {actor}")
        try:
            result = self.cleaner.cleanup_machine(machine_id)
        except (OSError, SQLAlchemyError, CncSyncError) as e:
            logger.error(f"Forced cleanup of machine {machine_id} failed: {e}")
            return AdminResult(False, f"Cleanup failed for machine {machine_id}: {e}")
        return AdminResult(
            True,
            f"Cleanup of machine {machine_id} completed: {result.deleted} deleted, {result.blocked} blocked",
            result,
        )
