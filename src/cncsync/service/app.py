# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/service/app.py

"""Wiring of the sync services from settings."""

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from cncsync.config import Settings
from cncsync.filesystem.reconciliation import DirectoryCleaner
from cncsync.filesystem.registry import BlockedResourceRegistry
from cncsync.filesystem.synchronizer import FileSynchronizer
from cncsync.naming.sanitizer import policy_for
from cncsync.queuefile.generator import QueueFileGenerator
from cncsync.scheduler.queue_sync import QueueSyncScheduler
from cncsync.service.admin import AdminService
from cncsync.service.database.operations import DatabaseManager
from cncsync.service.notifications import LoggingNotifier, Notifier


@dataclass
class Services:
    settings: Settings
    db: DatabaseManager
    notifier: Notifier
    synchronizer: FileSynchronizer
    registry: BlockedResourceRegistry
    cleaner: DirectoryCleaner
    generator: QueueFileGenerator
    scheduler: QueueSyncScheduler
    admin: AdminService


def build_services(settings: Settings, notifier: Optional[Notifier] = None, db: Optional[DatabaseManager] = None) -> Services:
    db = db or DatabaseManager(settings.database_url)
    notifier = notifier or LoggingNotifier()
    policy = policy_for(settings.naming_policy)

    synchronizer = FileSynchronizer(db, settings.mount_root, policy)
    registry = BlockedResourceRegistry(db, notifier)
    cleaner = DirectoryCleaner(db, registry, notifier, settings.mount_root)
    generator = QueueFileGenerator(db, settings.mount_root, policy)
    scheduler = QueueSyncScheduler(
        db,
        generator,
        notifier,
        settings.mount_root,
        synchronizer=synchronizer,
        interval=settings.sync_interval,
        max_workers=settings.max_workers,
    )
    return Services(
        settings=settings,
        db=db,
        notifier=notifier,
        synchronizer=synchronizer,
        registry=registry,
        cleaner=cleaner,
        generator=generator,
        scheduler=scheduler,
        admin=AdminService(cleaner),
    )


def startup_sweep(services: Services) -> None:
    """Orphan cleanup and a full directory cleanup, once after startup. Never raises."""
    logger.info("Running startup cleanup")
    steps = (
        ("orphaned control files", services.cleaner.cleanup_orphaned_queue_files),
        ("orphaned uploads", lambda: services.cleaner.cleanup_orphaned_uploads(services.settings.upload_root)),
        ("unused directories", services.cleaner.cleanup_all_machines),
    )
    for name, step in steps:
        try:
            step()
        except Exception as e:
            logger.exception(f"Startup cleanup of {name} failed: {e}")
