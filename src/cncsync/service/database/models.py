# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/service/database/models.py

"""SQLAlchemy models for the machine queue schema."""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    func,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# Queue identifiers that are not machines and never touch the filesystem
UNASSIGNED_QUEUE = "ncQueue"
COMPLETED_QUEUE = "completed"
PSEUDO_QUEUES = frozenset({UNASSIGNED_QUEUE, COMPLETED_QUEUE})


def is_pseudo_queue(queue_id) -> bool:
    return queue_id is None or str(queue_id) in PSEUDO_QUEUES


class Machine(Base):
    """A machine controller with its program and control-file directories."""

    __tablename__ = "machines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, unique=True)
    program_path = Column(Text, nullable=True)  # Root of <order>/<part>/ program directories
    queue_file_path = Column(Text, nullable=True)  # Directory holding <machine>.txt
    image_ref = Column(Text, nullable=True)

    @property
    def queue_id(self) -> str:
        return str(self.id)

    def __repr__(self):
        return f"<Machine(id={self.id}, name={self.name}, program_path={self.program_path})>"


class QueueItem(Base):
    """One scheduled manufacturing job."""

    __tablename__ = "queue_items"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Identification
    order_name = Column(Text, nullable=True)
    part_name = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)

    # Scheduling
    queue_id = Column(String(64), nullable=False, default=UNASSIGNED_QUEUE)  # Machine id or pseudo-queue
    rank = Column(Integer, nullable=True)  # Position within the queue, NULL sorts last

    # Free text
    additional_info = Column(Text, nullable=True)
    author = Column(Text, nullable=True)
    deadline = Column(Text, nullable=True)

    # Status
    completed = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    # Relationships
    attachments = relationship(
        "Attachment",
        back_populates="queue_item",
        cascade="all, delete-orphan",
        order_by="Attachment.id",
    )

    def __repr__(self):
        return f"<QueueItem(id={self.id}, order={self.order_name}, part={self.part_name}, queue={self.queue_id})>"


class Attachment(Base):
    """A file (usually a machine program) belonging to a queue item.

    Exactly one of content / file_path is populated: content before the
    migration to disk storage, file_path after.
    """

    __tablename__ = "attachments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_name = Column(Text, nullable=False)
    content = Column(LargeBinary, nullable=True)
    file_path = Column(Text, nullable=True)
    size = Column(Integer, nullable=True)
    completed = Column(Boolean, nullable=False, default=False)
    queue_item_id = Column(Integer, ForeignKey("queue_items.id"), nullable=False)

    queue_item = relationship("QueueItem", back_populates="attachments")

    def __repr__(self):
        return f"<Attachment(id={self.id}, file_name={self.file_name}, completed={self.completed})>"


class BlockedResource(Base):
    """A path whose deletion failed because another process holds it open."""

    __tablename__ = "blocked_resources"

    id = Column(Integer, primary_key=True, autoincrement=True)
    path = Column(Text, nullable=False, unique=True)
    owner_id = Column(String(64), nullable=False)  # Machine/queue that registered it
    attempts = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=func.now())
    last_attempt = Column(DateTime, nullable=False, default=func.now())

    def __repr__(self):
        return f"<BlockedResource(path={self.path}, attempts={self.attempts})>"


# Performance indexes
Index("idx_queue_items_queue", QueueItem.queue_id)
Index("idx_queue_items_order_part", QueueItem.order_name, QueueItem.part_name)
Index("idx_attachments_item", Attachment.queue_item_id)
