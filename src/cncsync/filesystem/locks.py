# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/filesystem/locks.py

"""Non-blocking lock checks and guarded directory deletion.

Controllers on the share hold program files open while running them. A
file counts as locked when it cannot be opened for append; the check
opens and closes immediately and never writes.
"""

import os
import uuid
from enum import Enum
from pathlib import Path

from loguru import logger

from cncsync.errors import LockedResource


class DeletionOutcome(Enum):
    DELETED = "deleted"
    LOCKED = "locked"
    MISSING = "missing"


def is_file_accessible(path: Path) -> bool:
    """True when the file can be opened for append (or does not exist)."""
    path = Path(path)
    if not path.is_file():
        return True
    try:
        with open(path, "ab"):
            pass
    except OSError as e:
        logger.trace(f"Lock check failed for {path}: {e}")
        return False
    return True


def is_directory_accessible(path: Path) -> bool:
    """True when a marker file can be created and removed inside the directory."""
    path = Path(path)
    if not path.is_dir():
        return True
    marker = path / f".lockcheck_{uuid.uuid4().hex}"
    try:
        with open(marker, "xb"):
            pass
        marker.unlink()
    except OSError as e:
        logger.trace(f"Directory check failed for {path}: {e}")
        return False
    return True


def require_file_accessible(path: Path) -> None:
    """Raise LockedResource when another process holds the file open."""
    if not is_file_accessible(path):
        raise LockedResource(Path(path), "open in another process")


def delete_directory_if_unlocked(path: Path) -> DeletionOutcome:
    """Delete every unlocked file below path, then the directory if empty.

    Subdirectories are handled recursively. Any locked file or directory
    leaves the directory in place.
    """
    path = Path(path)
    if not path.exists():
        return DeletionOutcome.MISSING

    locked = False
    for child in sorted(path.iterdir()):
        if child.is_dir() and not child.is_symlink():
            if delete_directory_if_unlocked(child) is DeletionOutcome.LOCKED:
                locked = True
            continue
        if not is_file_accessible(child):
            logger.warning(f"File is locked, keeping: {child}")
            locked = True
            continue
        try:
            child.unlink()
            logger.info(f"Audit: deleted file {child}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete {child}: {e}")
            locked = True

    if locked:
        return DeletionOutcome.LOCKED
    if not is_directory_accessible(path):
        logger.warning(f"Directory is locked: {path}")
        return DeletionOutcome.LOCKED

    try:
        os.rmdir(path)
    except FileNotFoundError:
        return DeletionOutcome.MISSING
    except OSError as e:
        logger.warning(f"Could not remove directory {path}: {e}")
        return DeletionOutcome.LOCKED
    logger.info(f"Audit: deleted directory {path}")
    return DeletionOutcome.DELETED
