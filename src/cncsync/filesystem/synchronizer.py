# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/filesystem/synchronizer.py

"""
Materialize queue item attachments into machine program directories.

Layout: <machine root>/<order>/<part>/<file>, all names sanitized. Several
queue items (possibly on different machines pointing at the same root) can
share one <order>/<part> directory, so the set of files that belongs there
is recomputed from the database on every pass: a file is only removed when
no item sharing the directory references it any more.

Writes go through a temporary directory inside the part directory and are
renamed into place. A destination held open by a controller is never
overwritten; the new content lands under name_v2, name_v3, ... instead.
"""

import os
import re
import shutil
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import blake3
from loguru import logger

from cncsync.config import resolve_mounted_path
from cncsync.errors import EmptyAttachment, LockedResource, NameExhausted, PathConflict
from cncsync.filesystem import locks
from cncsync.naming.sanitizer import (
    DEFAULT_POLICY,
    NamingPolicy,
    attachment_disk_name,
    sanitize_item_names,
    split_extension,
)
from cncsync.service.database.models import is_pseudo_queue

MAX_VERSION_ATTEMPTS = 1000  # name_v2 .. name_v1000
HASH_CHUNK_SIZE = 1024 * 1024

VERSIONED_NAME = re.compile(r"^(?P<stem>.+)_v(?P<n>\d+)(?P<ext>\.[^.]*)?$")


@dataclass
class SyncReport:
    """Outcome of one synchronize call."""
    directory: Path
    written: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)  # identical content already on disk
    deleted: List[str] = field(default_factory=list)
    locked: List[str] = field(default_factory=list)  # unexpected files left in place
    versioned: Dict[str, str] = field(default_factory=dict)  # requested -> written name
    failed: Dict[str, str] = field(default_factory=dict)  # name -> error message

    @property
    def ok(self) -> bool:
        return not self.failed


def file_digest(path: Path) -> Optional[str]:
    """BLAKE3 hex digest of a file, None when it cannot be read."""
    hasher = blake3.blake3()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
                hasher.update(chunk)
    except OSError:
        return None
    return hasher.hexdigest()


def attachment_bytes(attachment) -> bytes:
    """Inline content, or the bytes of the migrated file on disk."""
    if attachment.content is not None:
        return bytes(attachment.content)
    if attachment.file_path:
        path = Path(attachment.file_path)
        if path.is_file():
            return path.read_bytes()
    raise EmptyAttachment(attachment.id, attachment.file_name)


def versioned_name(name: str, n: int) -> str:
    stem, ext = split_extension(name)
    return f"{stem}_v{n}{ext}"


class FileSynchronizer:
    """Writes attachments into <root>/<order>/<part> and prunes stale files."""

    def __init__(self, db, mount_root: Path, policy: Optional[NamingPolicy] = None):
        self.db = db
        self.mount_root = Path(mount_root)
        self.policy = policy or DEFAULT_POLICY

    def resolve(self, path_str: Optional[str]) -> Path:
        return resolve_mounted_path(path_str, self.mount_root)

    def synchronize(self, root: Path, order_name: str, part_name: str, attachments: Iterable) -> SyncReport:
        """Bring <root>/<order>/<part> in line with the database.

        Args:
            root: Resolved machine program directory
            order_name: Order name (sanitized here); pass sanitize_item_names output
                for items whose names may be blank
            part_name: Part name (sanitized here)
            attachments: Attachments of the queue item being synchronized

        Raises:
            PathConflict: A non-directory occupies the target directory path
            ValueError: order_name or part_name is blank
        """
        if not (order_name or "").strip() or not (part_name or "").strip():
            raise ValueError(f"Blank order or part name: {order_name!r} / {part_name!r}")
        root = Path(root)
        attachments = list(attachments)
        order = DEFAULT_POLICY.sanitize(order_name)
        part = DEFAULT_POLICY.sanitize(part_name)
        directory = self._ensure_directory(root, order, part)
        report = SyncReport(directory=directory)

        expected = self.expected_file_names(root, order, part, attachments)
        self._prune(directory, expected, report)

        for attachment in attachments:
            name = attachment_disk_name(attachment, self.policy)
            try:
                data = attachment_bytes(attachment)
                self._write(directory, name, data, report)
            except (EmptyAttachment, NameExhausted) as e:
                logger.error(f"Skipping {name} in {directory}: {e}")
                report.failed[name] = str(e)
            except OSError as e:
                logger.error(f"Failed to write {name} to {directory}: {e}")
                report.failed[name] = str(e)

        logger.debug(
            f"Synchronized {directory}: {len(report.written)} written, {len(report.skipped)} unchanged, "
            f"{len(report.deleted)} deleted, {len(report.locked)} locked"
        )
        return report

    def sync_item(self, item, machine) -> Optional[SyncReport]:
        """Synchronize one queue item into its machine's program directory."""
        if is_pseudo_queue(item.queue_id):
            logger.debug(f"Item {item.id} is in pseudo-queue {item.queue_id}, nothing to write")
            return None
        if not machine.program_path:
            logger.warning(f"Machine {machine.id} has no program path, skipping item {item.id}")
            return None
        order, part = sanitize_item_names(item)
        return self.synchronize(self.resolve(machine.program_path), order, part, item.attachments)

    def expected_file_names(self, root: Path, order: str, part: str, attachments: Iterable) -> Set[str]:
        """Union of file names referenced by every item sharing <order>/<part> under root."""
        expected = {attachment_disk_name(a, self.policy) for a in attachments}
        queue_ids = [m.queue_id for m in self.db.machines_sharing_root(root, self.resolve)]
        expected |= self.db.file_names_for_pair(queue_ids, order, part, self.policy)
        return expected

    def _ensure_directory(self, root: Path, order: str, part: str) -> Path:
        directory = root / order / part
        for path in (root / order, directory):
            if path.exists() and not path.is_dir():
                raise PathConflict(path)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except (FileExistsError, NotADirectoryError) as e:
            raise PathConflict(directory) from e
        return directory

    def _prune(self, directory: Path, expected: Set[str], report: SyncReport) -> None:
        for path in sorted(directory.iterdir()):
            if not path.is_file() or path.name in expected:
                continue
            if self._is_fallback_version(directory, path.name, expected):
                continue
            try:
                locks.require_file_accessible(path)
                path.unlink()
            except LockedResource as e:
                logger.warning(f"Stale file left in place: {e}")
                report.locked.append(path.name)
                continue
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Could not delete stale file {path}: {e}")
                report.locked.append(path.name)
                continue
            logger.info(f"Audit: deleted stale file {path}")
            report.deleted.append(path.name)

    def _is_fallback_version(self, directory: Path, name: str, expected: Set[str]) -> bool:
        """name_vN of an expected file whose original is still locked."""
        match = VERSIONED_NAME.match(name)
        if not match:
            return False
        original = match.group("stem") + (match.group("ext") or "")
        return original in expected and not locks.is_file_accessible(directory / original)

    def _write(self, directory: Path, name: str, data: bytes, report: SyncReport) -> None:
        digest = blake3.blake3(data).hexdigest()
        destination = directory / name

        if destination.is_file() and file_digest(destination) == digest:
            report.skipped.append(name)
            return

        if not locks.is_file_accessible(destination):
            logger.warning(f"Destination is locked, writing a versioned copy: {destination}")
            destination = self._versioned_destination(directory, name, digest)
            report.versioned[name] = destination.name
            if destination.is_file():
                report.skipped.append(destination.name)
                return

        self._atomic_write(directory, destination, data)
        logger.debug(f"Wrote {destination} ({len(data)} bytes)")
        report.written.append(destination.name)

    def _versioned_destination(self, directory: Path, name: str, digest: str) -> Path:
        """First free name_vN, or an existing one that already holds the same bytes."""
        for n in range(2, MAX_VERSION_ATTEMPTS + 1):
            candidate = directory / versioned_name(name, n)
            if not candidate.exists():
                return candidate
            if candidate.is_file() and file_digest(candidate) == digest:
                return candidate
        raise NameExhausted(name, MAX_VERSION_ATTEMPTS - 1)

    def _atomic_write(self, directory: Path, destination: Path, data: bytes) -> None:
        tmp_dir = directory / f".tmp_{uuid.uuid4().hex}"
        try:
            tmp_dir.mkdir()
            tmp_file = tmp_dir / destination.name
            with open(tmp_file, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_file, destination)
        finally:
            shutil.rmtree(tmp_dir, onexc=_log_cleanup_error)


def _log_cleanup_error(function, path, exc) -> None:
    if isinstance(exc, FileNotFoundError):
        return
    logger.warning(f"Could not remove temporary path {path}: {exc}")
