# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/scheduler/queue_sync.py

"""
Periodic two-way sync between the database and machine control files.

Each cycle, per machine:

1. Stat the control file. If it is missing, or its mtime differs from the
   one recorded after our last write, the operator may have edited it.
2. Parse the edited file and fold changed completion markers into the
   database (attachment flag plus item aggregate, one transaction each).
3. Regenerate the file from the database and record the new mtime.

Machines run concurrently on a thread pool. A per-machine lock keeps two
cycles for the same machine from overlapping; a failing machine is logged
and reported without affecting the others.
"""

import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger

from cncsync.errors import MachineNotFound, PathConflict, QueueItemNotFound
from cncsync.filesystem.synchronizer import FileSynchronizer, SyncReport
from cncsync.naming.sanitizer import attachment_disk_name
from cncsync.queuefile.generator import QueueFileGenerator
from cncsync.queuefile.parser import ParseResult, parse_queue_file
from cncsync.service.notifications import Notifier, queue_sync_failed

DEFAULT_INTERVAL = 300  # seconds
DEFAULT_MAX_WORKERS = 4


@dataclass
class MachineSyncResult:
    """Outcome of one machine's cycle."""
    machine_id: int
    skipped: bool = False  # previous cycle still running
    edited: bool = False  # control file was parsed
    updated: int = 0  # attachment flags changed from the file
    written: bool = False  # control file content was replaced
    deferred: bool = False  # file changed while we worked, left for next cycle
    parse_errors: int = 0


@dataclass
class PushResult:
    machine_id: int
    reports: List[SyncReport] = field(default_factory=list)
    failed_items: Dict[int, str] = field(default_factory=dict)
    control_file: Optional[Path] = None


def mtime_ns(path: Path) -> Optional[int]:
    try:
        return os.stat(path).st_mtime_ns
    except FileNotFoundError:
        return None


class QueueSyncScheduler:
    """Runs control file sync cycles for every machine."""

    def __init__(
        self,
        db,
        generator: QueueFileGenerator,
        notifier: Optional[Notifier],
        mount_root: Path,
        synchronizer: Optional[FileSynchronizer] = None,
        interval: int = DEFAULT_INTERVAL,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self.db = db
        self.generator = generator
        self.notifier = notifier
        self.mount_root = Path(mount_root)
        self.synchronizer = synchronizer or FileSynchronizer(db, mount_root, generator.policy)
        self.interval = interval
        self.max_workers = max_workers

        # Control file mtimes (ns) recorded after our own writes; empty on start
        self._last_modified: Dict[int, int] = {}
        self._machine_locks: Dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

        self._executor: Optional[ThreadPoolExecutor] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _lock_for(self, machine_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._machine_locks.get(machine_id)
            if lock is None:
                lock = self._machine_locks[machine_id] = threading.Lock()
            return lock

    # ------------------------------------------------------------------
    # One machine

    def sync_machine(self, machine_id) -> MachineSyncResult:
        """Run one cycle for one machine.

        Raises:
            MachineNotFound: No machine with this id
        """
        machine = self.db.get_machine(machine_id)
        if machine is None:
            raise MachineNotFound(machine_id)

        lock = self._lock_for(machine.id)
        if not lock.acquire(blocking=False):
            logger.debug(f"Machine {machine.id}: previous cycle still running, skipping")
            return MachineSyncResult(machine.id, skipped=True)
        try:
            return self._sync(machine)
        finally:
            lock.release()

    def _sync(self, machine) -> MachineSyncResult:
        result = MachineSyncResult(machine.id)
        path = self.generator.path_for(machine)

        seen = mtime_ns(path)
        known = self._last_modified.get(machine.id)
        if seen is None or seen != known:
            result.edited = True
            if seen is not None:
                logger.info(f"Machine {machine.id}: control file changed externally, reading {path}")
                parsed = parse_queue_file(path.read_text(encoding="utf-8", errors="replace"))
                result.parse_errors = len(parsed.errors)
                result.updated = self.apply_completion(machine, parsed)
            else:
                logger.info(f"Machine {machine.id}: control file missing, regenerating {path}")

        if seen is not None and mtime_ns(path) != seen:
            # Operator saved again while we were reading; pick it up next cycle
            logger.warning(f"Machine {machine.id}: {path} changed during sync, not overwriting")
            result.deferred = True
            return result

        self.generator.write(machine.queue_id)
        after = mtime_ns(path)
        result.written = after != seen
        if after is not None:
            self._last_modified[machine.id] = after
        logger.debug(
            f"Machine {machine.id}: {result.updated} completion changes, "
            f"control file {'rewritten' if result.written else 'unchanged'}"
        )
        return result

    def apply_completion(self, machine, parsed: ParseResult) -> int:
        """Fold parsed completion markers into the database.

        Returns:
            Number of attachments whose flag changed
        """
        changed = 0
        items = {}
        for entry in parsed.entries:
            if entry.job_id not in items:
                items[entry.job_id] = self.db.get_item(entry.job_id, with_attachments=True)
            item = items[entry.job_id]
            if item is None:
                logger.warning(f"Machine {machine.id}, line {entry.line_no}: {QueueItemNotFound(entry.job_id)}")
                continue
            if str(item.queue_id) != machine.queue_id:
                logger.warning(
                    f"Machine {machine.id}, line {entry.line_no}: item {item.id} is queued on "
                    f"{item.queue_id}, ignoring"
                )
                continue

            attachment = self._match_attachment(item, entry.file_name)
            if attachment is None:
                logger.warning(
                    f"Machine {machine.id}, line {entry.line_no}: item {item.id} has no file {entry.file_name}"
                )
                continue
            if bool(attachment.completed) == entry.completed:
                continue

            self.db.set_attachment_completion(
                item.id, attachment.id, entry.completed, self.generator.policy
            )
            attachment.completed = entry.completed
            changed += 1
        return changed

    def _match_attachment(self, item, file_name: str):
        wanted = file_name.lower()
        for attachment in item.attachments:
            if attachment_disk_name(attachment, self.generator.policy).lower() == wanted:
                return attachment
        for attachment in item.attachments:
            if (attachment.file_name or "").lower() == wanted:
                return attachment
        return None

    def push_machine(self, machine_id) -> PushResult:
        """Write every queued item's files to the machine and regenerate its control file.

        Raises:
            MachineNotFound: No machine with this id
        """
        machine = self.db.get_machine(machine_id)
        if machine is None:
            raise MachineNotFound(machine_id)

        result = PushResult(machine.id)
        with self._lock_for(machine.id):
            for item in self.db.items_for_queue(machine.queue_id):
                try:
                    report = self.synchronizer.sync_item(item, machine)
                except (PathConflict, OSError) as e:
                    logger.error(f"Machine {machine.id}: item {item.id} not synchronized: {e}")
                    result.failed_items[item.id] = str(e)
                    continue
                if report is not None:
                    result.reports.append(report)
            result.control_file = self.generator.write(machine.queue_id)
            if result.control_file is not None:
                seen = mtime_ns(result.control_file)
                if seen is not None:
                    self._last_modified[machine.id] = seen
        logger.info(
            f"Machine {machine.id}: pushed {len(result.reports)} items, {len(result.failed_items)} failed"
        )
        return result

    def archive_completed(self, machine_id) -> List[int]:
        """Move completed items to the archive queue and regenerate the control file."""
        machine = self.db.get_machine(machine_id)
        if machine is None:
            raise MachineNotFound(machine_id)
        with self._lock_for(machine.id):
            moved = self.db.move_completed_items(machine.id)
            path = self.generator.write(machine.queue_id)
            if path is not None and mtime_ns(path) is not None:
                self._last_modified[machine.id] = mtime_ns(path)
        return moved

    # ------------------------------------------------------------------
    # All machines

    def _run_guarded(self, machine_id) -> Optional[MachineSyncResult]:
        try:
            return self.sync_machine(machine_id)
        except MachineNotFound as e:
            logger.warning(f"Skipping sync: {e}")
        except Exception as e:
            logger.exception(f"Queue sync failed for machine {machine_id}: {e}")
            if self.notifier is not None:
                self.notifier.notify(queue_sync_failed(machine_id, str(e)))
        return None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="queue-sync")
        return self._executor

    def run_cycle(self, wait: bool = True) -> List[MachineSyncResult]:
        """Dispatch one cycle for every machine. Never raises."""
        try:
            machine_ids = [m.id for m in self.db.list_machines()]
        except Exception as e:
            logger.exception(f"Queue sync cycle aborted, cannot list machines: {e}")
            return []

        futures = [self._get_executor().submit(self._run_guarded, mid) for mid in machine_ids]
        if not wait:
            return []
        results = [f.result() for f in futures]
        done = [r for r in results if r is not None]
        logger.debug(
            f"Queue sync cycle: {len(done)}/{len(machine_ids)} machines, "
            f"{sum(r.updated for r in done)} completion changes"
        )
        return done

    def start(self) -> None:
        """Run cycles every interval seconds on a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="queue-sync-timer", daemon=True)
        self._thread.start()
        logger.info(f"Queue sync scheduler started, interval {self.interval}s, {self.max_workers} workers")

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_cycle()
            if self._stop_event.wait(self.interval):
                break

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        logger.info("Queue sync scheduler stopped")
