# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/service/migration.py

"""Move inline attachment content to the upload directory.

Files land at <upload_root>/<item id>/<order>/<part>/<file>. After an
attachment is migrated its file_path is set and its content is cleared.
"""

import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import humanize
from loguru import logger

from cncsync.naming.sanitizer import NamingPolicy, attachment_disk_name, sanitize_item_names


@dataclass
class MigrationResult:
    migrated: int = 0
    failed: List[int] = field(default_factory=list)  # attachment ids
    bytes_written: int = 0


def upload_path(upload_root: Path, item, attachment, policy: Optional[NamingPolicy] = None) -> Path:
    order, part = sanitize_item_names(item)
    return Path(upload_root) / str(item.id) / order / part / attachment_disk_name(attachment, policy)


def migrate_attachment_content(db, upload_root: Path, policy: Optional[NamingPolicy] = None) -> MigrationResult:
    """Write inline content to disk and switch each attachment to file_path.

    One failing attachment is logged and the migration continues.
    """
    start = time.time()
    result = MigrationResult()
    attachments = db.attachments_with_content()
    logger.info(f"Found {len(attachments)} attachments with inline content to migrate")

    for attachment in attachments:
        item = attachment.queue_item
        if item is None:
            logger.warning(f"Attachment {attachment.id} has no queue item, skipping")
            result.failed.append(attachment.id)
            continue

        target = upload_path(upload_root, item, attachment, policy)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(f".{target.name}.{os.getpid()}.tmp")
            with open(tmp, "wb") as f:
                f.write(attachment.content)
            os.replace(tmp, target)

            size = len(attachment.content)
            attachment.file_path = str(target)
            attachment.content = None
            attachment.size = size
            db.save_attachment(attachment)
        except OSError as e:
            logger.error(f"Failed to migrate attachment {attachment.id} to {target}: {e}")
            result.failed.append(attachment.id)
            continue

        logger.debug(f"Migrated attachment {attachment.id} to {target}")
        result.migrated += 1
        result.bytes_written += size

    logger.info(
        f"Migration finished: {result.migrated} migrated, {len(result.failed)} failed, "
        f"{humanize.naturalsize(result.bytes_written)} written in {humanize.naturaldelta(time.time() - start)}"
    )
    return result
