# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/filesystem/reconciliation.py

"""
Directory reconciliation: remove program directories no queue item uses.

For a machine root the active set is every sanitized (order, part) pair of
every item queued on any machine whose program path resolves to the same
root. Only <root>/<order>/<part> directories outside that set are touched.
Part directories that cannot be removed because of locks go to the
blocked-resource registry; order directories never do.
"""

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set, Tuple

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from cncsync.config import resolve_mounted_path
from cncsync.errors import CncSyncError, MachineNotFound
from cncsync.filesystem import locks
from cncsync.filesystem.registry import BlockedResourceRegistry, RegistryResult
from cncsync.naming.sanitizer import queue_file_name, sanitize_item_names
from cncsync.service.database.models import is_pseudo_queue
from cncsync.service.notifications import Notifier, cleanup_summary


@dataclass
class CleanupResult:
    deleted: int = 0
    blocked: int = 0
    registered: List[str] = field(default_factory=list)  # paths registered during this pass

    def add(self, other: "CleanupResult") -> None:
        self.deleted += other.deleted
        self.blocked += other.blocked
        self.registered.extend(other.registered)

    def add_registry(self, other: RegistryResult) -> None:
        self.deleted += other.deleted
        self.blocked += other.still_blocked


class DirectoryCleaner:
    """Deletes unused order/part directories under machine program roots."""

    def __init__(
        self,
        db,
        registry: BlockedResourceRegistry,
        notifier: Optional[Notifier],
        mount_root: Path,
    ):
        self.db = db
        self.registry = registry
        self.notifier = notifier
        self.mount_root = Path(mount_root)

    def resolve(self, path_str: Optional[str]) -> Path:
        return resolve_mounted_path(path_str, self.mount_root)

    def active_pairs(self, root: Path, queue_id) -> Set[Tuple[str, str]]:
        """Sanitized (order, part) pairs in use by any machine sharing root."""
        queue_ids = {m.queue_id for m in self.db.machines_sharing_root(root, self.resolve)}
        if not is_pseudo_queue(queue_id):
            queue_ids.add(str(queue_id))
        return {sanitize_item_names(item) for item in self.db.items_for_queues(queue_ids)}

    def clean_unused_directories(self, root: Path, queue_id) -> CleanupResult:
        """Delete inactive <order>/<part> directories below root.

        Args:
            root: Resolved machine program directory
            queue_id: Machine queue the pass runs for (owner of registered paths)
        """
        root = Path(root)
        result = CleanupResult()
        if not root.is_dir():
            logger.debug(f"Program directory {root} does not exist, nothing to clean")
            return result

        active = self.active_pairs(root, queue_id)
        tracked = set(self.registry.tracked_paths())
        logger.info(f"Cleaning {root} for queue {queue_id}: {len(active)} active directories")

        for order_dir in sorted(root.iterdir()):
            if not order_dir.is_dir() or order_dir.is_symlink():
                continue
            for part_dir in sorted(order_dir.iterdir()):
                if not part_dir.is_dir() or part_dir.is_symlink():
                    continue
                if (order_dir.name, part_dir.name) in active:
                    continue
                if str(part_dir) in tracked:
                    logger.debug(f"{part_dir} is tracked as blocked, retried by the registry pass")
                    continue
                outcome = locks.delete_directory_if_unlocked(part_dir)
                if outcome is locks.DeletionOutcome.DELETED:
                    result.deleted += 1
                elif outcome is locks.DeletionOutcome.LOCKED:
                    if self.registry.register(part_dir, queue_id):
                        result.registered.append(str(part_dir))
                    result.blocked += 1

            if not any(order_dir.iterdir()):
                try:
                    order_dir.rmdir()
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning(f"Could not remove empty order directory {order_dir}: {e}")
                    continue
                logger.info(f"Audit: deleted empty order directory {order_dir}")
                result.deleted += 1

        return result

    def cleanup_all_machines(self) -> CleanupResult:
        """Clean every machine root once, retry blocked paths, send one summary."""
        total = CleanupResult()
        seen: Set[Path] = set()

        for machine in self.db.list_machines():
            if not machine.program_path:
                continue
            root = self.resolve(machine.program_path)
            if root in seen:
                # Shared root already cleaned with the union of its machines' items
                continue
            seen.add(root)
            try:
                total.add(self.clean_unused_directories(root, machine.queue_id))
            except (OSError, SQLAlchemyError, CncSyncError) as e:
                logger.error(f"Directory cleanup failed for machine {machine.id} ({root}): {e}")

        self._finish(total)
        logger.info(f"Cleanup of all machines finished: {total.deleted} deleted, {total.blocked} blocked")
        return total

    def cleanup_machine(self, machine_id) -> CleanupResult:
        """Clean one machine's root, retry blocked paths, send one summary."""
        machine = self.db.get_machine(machine_id)
        if machine is None:
            raise MachineNotFound(machine_id)

        result = CleanupResult()
        if machine.program_path:
            result.add(self.clean_unused_directories(self.resolve(machine.program_path), machine.queue_id))
        else:
            logger.warning(f"Machine {machine.id} has no program path configured")

        self._finish(result)
        logger.info(f"Cleanup of machine {machine.id} finished: {result.deleted} deleted, {result.blocked} blocked")
        return result

    def _finish(self, result: CleanupResult) -> None:
        try:
            result.add_registry(self.registry.process_all(exclude=result.registered))
        except (OSError, SQLAlchemyError, CncSyncError) as e:
            logger.error(f"Blocked resource pass failed: {e}")
        if self.notifier is not None:
            self.notifier.notify(cleanup_summary(result.deleted, result.blocked))

    def cleanup_orphaned_queue_files(self) -> int:
        """Delete *.txt control files that belong to no configured machine."""
        machines = self.db.list_machines()
        if not machines:
            logger.info("No machines configured, skipping control file cleanup")
            return 0

        expected = {queue_file_name(m.name) for m in machines}
        directories = {self.resolve(m.queue_file_path) for m in machines if m.queue_file_path}
        if not directories:
            logger.info("No control file directories configured, skipping cleanup")
            return 0

        deleted = 0
        for directory in sorted(directories):
            if not directory.is_dir():
                logger.warning(f"Control file directory {directory} does not exist, skipping")
                continue
            for path in sorted(directory.glob("*.txt")):
                if path.name in expected or not path.is_file():
                    continue
                try:
                    path.unlink()
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.error(f"Failed to delete orphaned control file {path}: {e}")
                    continue
                logger.info(f"Audit: deleted orphaned control file {path}")
                deleted += 1

        logger.info(f"Orphaned control file cleanup finished: {deleted} deleted")
        return deleted

    def cleanup_orphaned_uploads(self, upload_root: Path) -> int:
        """Delete <upload_root>/<item id> directories of items that no longer exist."""
        upload_root = Path(upload_root)
        if not upload_root.is_dir():
            logger.warning(f"Upload directory {upload_root} does not exist, skipping cleanup")
            return 0

        deleted = 0
        for item_dir in sorted(upload_root.iterdir()):
            if not item_dir.is_dir():
                continue
            if not item_dir.name.isdigit():
                logger.warning(f"Skipping non-numeric directory in uploads: {item_dir.name}")
                continue
            if self.db.item_exists(int(item_dir.name)):
                continue
            logger.info(f"Found orphaned upload directory for deleted item {item_dir.name}")
            shutil.rmtree(item_dir, onexc=_log_delete_error)
            if not item_dir.exists():
                logger.info(f"Audit: deleted upload directory {item_dir}")
                deleted += 1

        logger.info(f"Orphaned upload cleanup finished: {deleted} deleted")
        return deleted


def _log_delete_error(function, path, exc) -> None:
    logger.error(f"Failed to delete {path}: {exc}")
