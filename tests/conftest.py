# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/conftest.py

import os
from pathlib import Path

import pytest

from cncsync.filesystem import locks
from cncsync.service.database.models import Attachment, QueueItem
from cncsync.service.database.operations import DatabaseManager
from cncsync.service.notifications import RecordingNotifier


@pytest.fixture
def db(tmp_path):
    """Fresh SQLite database with all tables."""
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'cncsync.db'}")
    manager.create_tables()
    yield manager
    manager.engine.dispose()


@pytest.fixture
def mount_root(tmp_path):
    root = tmp_path / "cnc"
    root.mkdir()
    return root


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def machine(db):
    """Machine M1 with programs and control file under <mount>/M1."""
    return db.add_machine("M1", program_path="/cnc/M1", queue_file_path="cnc/M1")


@pytest.fixture
def locked_paths(monkeypatch):
    """Paths added to this set are reported as held open by another process.

    POSIX has no mandatory locks, so the access checks are patched instead.
    """
    paths = set()
    real_file_check = locks.is_file_accessible
    real_dir_check = locks.is_directory_accessible

    def file_check(path):
        if Path(path) in paths:
            return False
        return real_file_check(path)

    def dir_check(path):
        if Path(path) in paths:
            return False
        return real_dir_check(path)

    monkeypatch.setattr(locks, "is_file_accessible", file_check)
    monkeypatch.setattr(locks, "is_directory_accessible", dir_check)
    return paths


def write_file(path: Path, content: bytes = b"data") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def touch_later(path: Path, seconds: int = 1) -> None:
    """Move a file's mtime forward, as a later external save would."""
    st = os.stat(path)
    later = st.st_mtime_ns + seconds * 1_000_000_000
    os.utime(path, ns=(later, later))


def edit_control_file(path: Path, old: str, new: str, count: int = 1) -> None:
    """Replace text in a control file the way an operator would, bumping its mtime."""
    text = path.read_text(encoding="utf-8")
    assert old in text
    path.write_text(text.replace(old, new, count), encoding="utf-8")
    touch_later(path)


def attachment_of(item, file_name: str):
    return next(a for a in item.attachments if a.file_name == file_name)


def delete_item(db, item_id: int) -> None:
    with db.session_scope() as session:
        session.delete(session.get(QueueItem, item_id))


def delete_attachment(db, attachment_id: int) -> None:
    with db.session_scope() as session:
        session.delete(session.get(Attachment, attachment_id))
