# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/service/database/operations.py

"""Database operations for cncsync."""

from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from loguru import logger
from sqlalchemy import create_engine, event, func, select, text
from sqlalchemy.orm import Session, selectinload, sessionmaker

from cncsync.errors import QueueItemNotFound
from cncsync.naming.sanitizer import (
    NamingPolicy,
    attachment_disk_name,
    is_program_file,
    sanitize_item_names,
)

from .models import COMPLETED_QUEUE, Attachment, Base, Machine, QueueItem


class DatabaseManager:
    """Manages database connections and the queue collaborator operations."""

    def __init__(self, database_url: str):
        """Initialize database manager.

        Args:
            database_url: SQLAlchemy database URL
                e.g., "sqlite:///path/to/cncsync.db"
        """
        self.database_url = database_url
        self.engine = create_engine(
            database_url,
            connect_args={
                "timeout": 30.0,
                "check_same_thread": False,  # scheduler cycles run on worker threads
            } if database_url.startswith("sqlite") else {},
        )
        # Objects are handed to filesystem code after the session closes
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

        if database_url.startswith("sqlite"):
            self._configure_sqlite()

    def _configure_sqlite(self):
        """Configure SQLite for concurrent readers and one writer."""

        @event.listens_for(self.engine, "connect")
        def _set_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

        if ":memory:" not in self.database_url:
            with self.engine.connect() as conn:
                # Enable WAL mode for better concurrency
                conn.execute(text("PRAGMA journal_mode=WAL"))
                conn.execute(text("PRAGMA synchronous=NORMAL"))
                conn.commit()
        logger.debug("SQLite configured for concurrent scheduler access")

    def create_tables(self):
        """Create all database tables."""
        Base.metadata.create_all(self.engine)
        logger.info("Database tables created")

    def get_session(self) -> Session:
        """Get a database session."""
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """One transaction: commit on success, roll back on any error."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Machines

    def add_machine(
        self,
        name: str,
        program_path: Optional[str] = None,
        queue_file_path: Optional[str] = None,
        image_ref: Optional[str] = None,
    ) -> Machine:
        with self.session_scope() as session:
            machine = Machine(
                name=name,
                program_path=program_path,
                queue_file_path=queue_file_path,
                image_ref=image_ref,
            )
            session.add(machine)
            session.flush()
            logger.info(f"Created machine: {machine.id} ({name})")
            return machine

    def list_machines(self) -> List[Machine]:
        with self.get_session() as session:
            return list(session.scalars(select(Machine).order_by(Machine.id)))

    def get_machine(self, machine_id) -> Optional[Machine]:
        try:
            machine_id = int(machine_id)
        except (TypeError, ValueError):
            return None
        with self.get_session() as session:
            return session.get(Machine, machine_id)

    def machines_sharing_root(self, root: Path, resolve: Callable[[Optional[str]], Path]) -> List[Machine]:
        """Machines whose resolved program directory is root.

        Args:
            root: Resolved program directory
            resolve: Maps a configured program_path to a resolved Path
        """
        root = Path(root)
        return [
            machine for machine in self.list_machines()
            if machine.program_path is not None and resolve(machine.program_path) == root
        ]

    # ------------------------------------------------------------------
    # Queue items

    def add_item(
        self,
        order_name: Optional[str],
        part_name: Optional[str],
        queue_id: str,
        quantity: int = 1,
        rank: Optional[int] = None,
        additional_info: Optional[str] = None,
        author: Optional[str] = None,
        attachments: Sequence[Tuple[str, bytes]] = (),
        completed: bool = False,
    ) -> QueueItem:
        """Create a queue item with inline attachment content."""
        with self.session_scope() as session:
            item = QueueItem(
                order_name=order_name,
                part_name=part_name,
                queue_id=str(queue_id),
                quantity=quantity,
                rank=rank,
                additional_info=additional_info,
                author=author,
                completed=completed,
            )
            for file_name, content in attachments:
                item.attachments.append(Attachment(
                    file_name=file_name,
                    content=content,
                    size=len(content) if content is not None else None,
                ))
            session.add(item)
            session.flush()
            logger.info(f"Created queue item: {item.id} ({order_name}/{part_name}) in queue {queue_id}")
            # Load relationship before the session closes
            item.attachments
            return item

    def items_for_queue(self, queue_id) -> List[QueueItem]:
        """All items of a queue with their attachments loaded."""
        with self.get_session() as session:
            stmt = (
                select(QueueItem)
                .where(QueueItem.queue_id == str(queue_id))
                .options(selectinload(QueueItem.attachments))
                .order_by(QueueItem.id)
            )
            return list(session.scalars(stmt))

    def items_for_queues(self, queue_ids: Iterable) -> List[QueueItem]:
        queue_ids = [str(q) for q in queue_ids]
        if not queue_ids:
            return []
        with self.get_session() as session:
            stmt = (
                select(QueueItem)
                .where(QueueItem.queue_id.in_(queue_ids))
                .options(selectinload(QueueItem.attachments))
                .order_by(QueueItem.id)
            )
            return list(session.scalars(stmt))

    def file_names_for_pair(
        self,
        queue_ids: Iterable,
        order: str,
        part: str,
        policy: Optional[NamingPolicy] = None,
    ) -> Set[str]:
        """Disk names of every attachment whose item maps to <order>/<part>.

        Args:
            queue_ids: Queues to search (all machines sharing one root)
            order: Sanitized order directory name
            part: Sanitized part directory name
            policy: Naming policy for attachment file names
        """
        names: Set[str] = set()
        for item in self.items_for_queues(queue_ids):
            if sanitize_item_names(item) != (order, part):
                continue
            names.update(attachment_disk_name(a, policy) for a in item.attachments)
        return names

    def get_item(self, item_id, with_attachments: bool = True) -> Optional[QueueItem]:
        try:
            item_id = int(item_id)
        except (TypeError, ValueError):
            return None
        with self.get_session() as session:
            options = [selectinload(QueueItem.attachments)] if with_attachments else []
            return session.get(QueueItem, item_id, options=options)

    def item_exists(self, item_id) -> bool:
        with self.get_session() as session:
            count = session.scalar(
                select(func.count(QueueItem.id)).where(QueueItem.id == int(item_id))
            )
        return bool(count)

    def move_completed_items(self, machine_id) -> List[int]:
        """Move completed items of a machine queue to the completed archive.

        Ranks continue after the archive's current maximum.

        Returns:
            Ids of moved items
        """
        queue_id = str(machine_id)
        with self.session_scope() as session:
            max_rank = session.scalar(
                select(func.max(QueueItem.rank)).where(QueueItem.queue_id == COMPLETED_QUEUE)
            )
            next_rank = (max_rank or 0) + 1
            items = session.scalars(
                select(QueueItem)
                .where(QueueItem.queue_id == queue_id, QueueItem.completed.is_(True))
                .order_by(QueueItem.rank.is_(None), QueueItem.rank, QueueItem.id)
            ).all()
            moved = []
            for item in items:
                item.queue_id = COMPLETED_QUEUE
                item.rank = next_rank
                next_rank += 1
                moved.append(item.id)
            logger.info(f"Moved {len(moved)} completed items from queue {queue_id} to {COMPLETED_QUEUE}")
            return moved

    # ------------------------------------------------------------------
    # Attachments

    def save_attachment(self, attachment: Attachment) -> Attachment:
        with self.session_scope() as session:
            merged = session.merge(attachment)
            session.flush()
            return merged

    def save_attachments(self, attachments: Iterable[Attachment]) -> int:
        count = 0
        with self.session_scope() as session:
            for attachment in attachments:
                session.merge(attachment)
                count += 1
        return count

    def attachments_with_content(self) -> List[Attachment]:
        """Attachments still stored inline, with their queue items loaded."""
        with self.get_session() as session:
            stmt = (
                select(Attachment)
                .where(Attachment.content.is_not(None), Attachment.file_path.is_(None))
                .options(selectinload(Attachment.queue_item))
                .order_by(Attachment.id)
            )
            return list(session.scalars(stmt))

    def set_attachment_completion(
        self,
        item_id: int,
        attachment_id: int,
        completed: bool,
        policy: Optional[NamingPolicy] = None,
    ) -> bool:
        """Update one attachment's flag and its item's aggregate in one transaction.

        The item is complete when every program attachment is complete. Program
        files are recognized by their disk name under policy, as in the control file.

        Returns:
            The item's new aggregate completion flag
        """
        with self.session_scope() as session:
            item = session.get(
                QueueItem, item_id, options=[selectinload(QueueItem.attachments)],
                with_for_update=True,
            )
            if item is None:
                raise QueueItemNotFound(item_id)
            for attachment in item.attachments:
                if attachment.id == attachment_id:
                    attachment.completed = completed
                    break
            else:
                raise ValueError(f"Attachment {attachment_id} does not belong to item {item_id}")

            programs = [a for a in item.attachments if is_program_file(attachment_disk_name(a, policy))]
            item.completed = bool(programs) and all(a.completed for a in programs)
            item.updated_at = datetime.now()
            logger.info(
                f"Item {item_id}: attachment {attachment_id} completed={completed}, "
                f"item completed={item.completed}"
            )
            return item.completed
