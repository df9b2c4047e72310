# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/filesystem/registry.py

"""Persistent ledger of directories that could not be deleted.

Every entry terminates: it is dropped once the path is gone, once it has
failed max_attempts times, or once it is older than max_age. The last two
cases are escalated for manual removal instead of being retried forever.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, List, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from cncsync.filesystem import locks
from cncsync.service.database.models import BlockedResource
from cncsync.service.notifications import Notifier, manual_intervention

MAX_ATTEMPTS = 5
MAX_AGE = timedelta(hours=24)


@dataclass
class RegistryResult:
    deleted: int = 0
    still_blocked: int = 0
    escalated: List[str] = field(default_factory=list)


class BlockedResourceRegistry:
    """Bounded retry of locked directory deletions."""

    def __init__(
        self,
        db,
        notifier: Optional[Notifier] = None,
        max_attempts: int = MAX_ATTEMPTS,
        max_age: timedelta = MAX_AGE,
    ):
        self.db = db
        self.notifier = notifier
        self.max_attempts = max_attempts
        self.max_age = max_age

    def register(self, path: Path, owner_id, now: Optional[datetime] = None) -> bool:
        """Track a locked path. Returns False when it is already tracked."""
        path_str = str(Path(path))
        now = now or datetime.now()
        try:
            with self.db.session_scope() as session:
                existing = session.scalar(
                    select(BlockedResource).where(BlockedResource.path == path_str)
                )
                if existing is not None:
                    logger.debug(f"Already tracking blocked path {path_str} ({existing.attempts} attempts)")
                    return False
                session.add(BlockedResource(
                    path=path_str,
                    owner_id=str(owner_id),
                    attempts=1,
                    created_at=now,
                    last_attempt=now,
                ))
        except IntegrityError:
            # Registered concurrently by another cycle
            logger.debug(f"Blocked path {path_str} registered concurrently")
            return False
        logger.warning(f"Registered blocked path {path_str} for {owner_id}")
        return True

    def tracked_paths(self) -> List[str]:
        with self.db.get_session() as session:
            return list(session.scalars(select(BlockedResource.path).order_by(BlockedResource.id)))

    def process_all(self, now: Optional[datetime] = None, exclude: Iterable = ()) -> RegistryResult:
        """Retry every tracked path once.

        Args:
            now: Reference time for the age limit
            exclude: Paths registered earlier in the same pass, left for the next one
        """
        now = now or datetime.now()
        skip = {str(Path(p)) for p in exclude}
        result = RegistryResult()

        with self.db.get_session() as session:
            ids = list(session.scalars(select(BlockedResource.id).order_by(BlockedResource.id)))

        for resource_id in ids:
            try:
                self._process_one(resource_id, now, skip, result)
            except (OSError, SQLAlchemyError) as e:
                logger.error(f"Blocked resource {resource_id}: retry failed: {e}")
                result.still_blocked += 1

        if result.escalated and self.notifier is not None:
            self.notifier.notify(manual_intervention(result.escalated))

        logger.info(
            f"Blocked resources: {result.deleted} resolved, {result.still_blocked} still blocked, "
            f"{len(result.escalated)} escalated"
        )
        return result

    def _process_one(self, resource_id: int, now: datetime, skip: set, result: RegistryResult) -> None:
        with self.db.session_scope() as session:
            resource = session.get(BlockedResource, resource_id, with_for_update=True)
            if resource is None:
                return
            if resource.path in skip:
                return

            path = Path(resource.path)
            if not path.exists():
                logger.info(f"Blocked path is gone, dropping record: {path}")
                session.delete(resource)
                result.deleted += 1
                return

            if now - resource.created_at > self.max_age:
                logger.warning(f"Blocked path exceeded {self.max_age}, escalating: {path}")
                session.delete(resource)
                result.escalated.append(resource.path)
                result.still_blocked += 1
                return

            outcome = locks.delete_directory_if_unlocked(path)
            if outcome is not locks.DeletionOutcome.LOCKED:
                logger.info(f"Blocked path resolved: {path}")
                session.delete(resource)
                result.deleted += 1
                return

            resource.attempts += 1
            resource.last_attempt = now
            if resource.attempts >= self.max_attempts:
                logger.warning(f"Blocked path failed {resource.attempts} attempts, escalating: {path}")
                session.delete(resource)
                result.escalated.append(resource.path)
            result.still_blocked += 1
