# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/queuefile/generator.py

"""
Control file generation.

The control file is what the machine controller displays and what the
operator edits to report progress. Example::

    # Edit only the status in brackets: [Incomplete] -> [Completed] (or [NOK] -> [OK]). Do not change ids or names.
    JOB 12 | O1 / P1
    1. O1/P1/X.MPF | qty: 5 | id: 12 | [Incomplete]
    JOB 13 | O1 / P1
    2. O1/P1/Y.MPF | qty: 5 | note text | id: 13 | [Completed]

    JOB 14 | O1 / P2
    3. O1/P2/Z.MPF | qty: 1 | id: 14 | [Incomplete]

Output depends only on database state, so regenerating an unchanged queue
gives byte-identical text.
"""

import os
import re
import tempfile
from pathlib import Path
from typing import List, Optional

from loguru import logger

from cncsync.config import resolve_mounted_path
from cncsync.naming.sanitizer import (
    DEFAULT_POLICY,
    NamingPolicy,
    attachment_disk_name,
    is_program_file,
    queue_file_name,
    sanitize_item_names,
)
from cncsync.service.database.models import is_pseudo_queue

HEADER_COMMENT = (
    "# Edit only the status in brackets: [Incomplete] -> [Completed] "
    "(or [NOK] -> [OK]). Do not change ids or names."
)
COMPLETED = "Completed"
INCOMPLETE = "Incomplete"

NOTE_UNSAFE = re.compile(r"[|\[\]\r\n]")


def clean_note(text: Optional[str]) -> str:
    """Free text made safe for one entry field."""
    if not text:
        return ""
    return " ".join(NOTE_UNSAFE.sub(" ", text).split())


def item_sort_key(item):
    return (item.rank is None, item.rank if item.rank is not None else 0, item.id)


def control_file_path(machine, mount_root: Path) -> Path:
    """<resolved control directory>/<sanitized machine name>.txt"""
    return resolve_mounted_path(machine.queue_file_path, mount_root) / queue_file_name(machine.name)


class QueueFileGenerator:
    """Renders and writes per-machine control files."""

    def __init__(self, db, mount_root: Path, policy: Optional[NamingPolicy] = None):
        self.db = db
        self.mount_root = Path(mount_root)
        self.policy = policy or DEFAULT_POLICY

    def path_for(self, machine) -> Path:
        return control_file_path(machine, self.mount_root)

    def generate(self, queue_id) -> str:
        """Render the control file for a machine queue; "" for pseudo-queues."""
        if is_pseudo_queue(queue_id):
            return ""
        machine = self.db.get_machine(queue_id)
        if machine is None:
            logger.warning(f"No machine for queue {queue_id}, nothing to generate")
            return ""
        items = sorted(self.db.items_for_queue(machine.queue_id), key=item_sort_key)
        return self.render(items)

    def render(self, items) -> str:
        lines: List[str] = [HEADER_COMMENT]
        position = 0
        previous_part = None

        for item in items:
            programs = []
            for attachment in item.attachments:
                name = attachment_disk_name(attachment, self.policy)
                if is_program_file(name):
                    programs.append((name, attachment))
            if not programs:
                continue
            programs.sort(key=lambda pair: (pair[0].lower(), pair[1].id))

            order, part = sanitize_item_names(item)
            if previous_part is not None and part != previous_part:
                lines.append("")
            previous_part = part
            lines.append(f"JOB {item.id} | {order} / {part}")

            note = clean_note(item.additional_info)
            for name, attachment in programs:
                position += 1
                fields = [f"{position}. {order}/{part}/{name}", f"qty: {item.quantity}"]
                if note:
                    fields.append(note)
                fields.append(f"id: {item.id}")
                fields.append(f"[{COMPLETED if attachment.completed else INCOMPLETE}]")
                lines.append(" | ".join(fields))

        return "\n".join(lines) + "\n"

    def write(self, queue_id, only_if_changed: bool = True) -> Optional[Path]:
        """Write the control file for a machine queue.

        Returns:
            Path of the control file, None for pseudo-queues and unknown machines
        """
        if is_pseudo_queue(queue_id):
            return None
        machine = self.db.get_machine(queue_id)
        if machine is None:
            logger.warning(f"No machine for queue {queue_id}, control file not written")
            return None

        text = self.generate(machine.queue_id)
        path = self.path_for(machine)
        if only_if_changed and path.is_file():
            try:
                if path.read_text(encoding="utf-8") == text:
                    logger.debug(f"Control file unchanged: {path}")
                    return path
            except (OSError, UnicodeDecodeError) as e:
                logger.debug(f"Could not read {path} for comparison: {e}")

        write_text_atomic(path, text)
        logger.info(f"Wrote control file {path}")
        return path


def write_text_atomic(path: Path, text: str) -> None:
    """Write through a temporary file in the same directory, then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
