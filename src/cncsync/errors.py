# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/errors.py

"""Error taxonomy for queue and directory synchronization."""

from pathlib import Path
from typing import Optional


class CncSyncError(Exception):
    """Base class for all cncsync errors."""


class PathConflict(CncSyncError):
    """A directory is required where a non-directory already exists."""

    def __init__(self, path: Path):
        self.path = Path(path)
        super().__init__(f"Path exists and is not a directory: {self.path}")


class LockedResource(CncSyncError):
    """A file or directory is held open by another process."""

    def __init__(self, path: Path, reason: Optional[str] = None):
        self.path = Path(path)
        self.reason = reason
        message = f"Resource is locked: {self.path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class NameExhausted(CncSyncError):
    """No free versioned name was found for a locked destination."""

    def __init__(self, file_name: str, attempts: int):
        self.file_name = file_name
        self.attempts = attempts
        super().__init__(f"Cannot find unique name for {file_name} after {attempts} attempts")


class ParseError(CncSyncError):
    """A control-file line does not match the expected grammar."""

    def __init__(self, line_no: int, line: str, reason: str):
        self.line_no = line_no
        self.line = line
        self.reason = reason
        super().__init__(f"Line {line_no}: {reason}: {line!r}")


class MachineNotFound(CncSyncError):
    def __init__(self, machine_id):
        self.machine_id = machine_id
        super().__init__(f"Machine not found: {machine_id}")


class QueueItemNotFound(CncSyncError):
    def __init__(self, item_id):
        self.item_id = item_id
        super().__init__(f"Queue item not found: {item_id}")


class EmptyAttachment(CncSyncError):
    """An attachment has neither inline content nor a readable file on disk."""

    def __init__(self, attachment_id, file_name: str):
        self.attachment_id = attachment_id
        self.file_name = file_name
        super().__init__(f"Attachment {attachment_id} ({file_name}) has no content")
