# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_registry.py

from datetime import datetime, timedelta

import pytest
from conftest import write_file
from sqlalchemy import select

from cncsync.filesystem.registry import BlockedResourceRegistry
from cncsync.service.database.models import BlockedResource
from cncsync.service.notifications import MANUAL_INTERVENTION


@pytest.fixture
def registry(db, notifier):
    return BlockedResourceRegistry(db, notifier)


def attempts_for(db, path):
    with db.get_session() as session:
        return session.scalar(select(BlockedResource.attempts).where(BlockedResource.path == str(path)))


class TestRegister:
    """At most one record per path."""

    def test_register_creates_record(self, registry, tmp_path):
        assert registry.register(tmp_path / "O1" / "P1", "1")
        assert registry.tracked_paths() == [str(tmp_path / "O1" / "P1")]

    def test_register_twice_keeps_one_record(self, db, registry, tmp_path):
        path = tmp_path / "O1" / "P1"
        assert registry.register(path, "1")
        assert not registry.register(path, "2")
        assert registry.tracked_paths() == [str(path)]
        assert attempts_for(db, path) == 1


class TestProcessAll:
    """Each pass resolves, retries or escalates every record."""

    def test_missing_path_dropped(self, registry, tmp_path):
        registry.register(tmp_path / "gone", "1")
        result = registry.process_all()
        assert result.deleted == 1
        assert registry.tracked_paths() == []

    def test_unlocked_path_deleted(self, registry, tmp_path):
        target = tmp_path / "O1" / "P1"
        write_file(target / "x.mpf")
        registry.register(target, "1")

        result = registry.process_all()
        assert result.deleted == 1
        assert not target.exists()
        assert registry.tracked_paths() == []

    def test_locked_path_attempts_increment(self, db, registry, tmp_path, locked_paths):
        target = tmp_path / "P1"
        locked_paths.add(write_file(target / "x.mpf"))
        registry.register(target, "1")

        result = registry.process_all()
        assert result.still_blocked == 1
        assert result.escalated == []
        assert attempts_for(db, target) == 2
        assert target.exists()

    def test_permanently_locked_path_terminates(self, registry, notifier, tmp_path, locked_paths):
        target = tmp_path / "P1"
        locked_paths.add(write_file(target / "x.mpf"))
        registry.register(target, "1")

        escalated = []
        for _ in range(registry.max_attempts):
            escalated.extend(registry.process_all().escalated)

        assert registry.tracked_paths() == []
        assert escalated == [str(target)]
        assert target.exists()
        events = notifier.of_kind(MANUAL_INTERVENTION)
        assert len(events) == 1
        assert events[0].payload["paths"] == [str(target)]

    def test_old_record_escalated_without_deleting(self, registry, notifier, tmp_path):
        target = tmp_path / "P1"
        write_file(target / "x.mpf")
        registry.register(target, "1", now=datetime.now() - timedelta(hours=25))

        result = registry.process_all()
        assert result.escalated == [str(target)]
        assert (target / "x.mpf").exists()
        assert registry.tracked_paths() == []
        assert len(notifier.of_kind(MANUAL_INTERVENTION)) == 1

    def test_excluded_paths_untouched(self, db, registry, tmp_path, locked_paths):
        target = tmp_path / "P1"
        locked_paths.add(write_file(target / "x.mpf"))
        registry.register(target, "1")

        result = registry.process_all(exclude=[target])
        assert (result.deleted, result.still_blocked) == (0, 0)
        assert attempts_for(db, target) == 1

    def test_escalations_aggregated_into_one_event(self, registry, notifier, tmp_path):
        old = datetime.now() - timedelta(hours=48)
        for name in ("A", "B", "C"):
            write_file(tmp_path / name / "x.mpf")
            registry.register(tmp_path / name, "1", now=old)

        result = registry.process_all()
        assert len(result.escalated) == 3
        events = notifier.of_kind(MANUAL_INTERVENTION)
        assert len(events) == 1
        assert len(events[0].payload["paths"]) == 3
