# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_queue_sync.py

import time

import pytest
from conftest import attachment_of, edit_control_file, touch_later

from cncsync.errors import MachineNotFound
from cncsync.queuefile.generator import QueueFileGenerator
from cncsync.scheduler.queue_sync import QueueSyncScheduler
from cncsync.service.database.models import COMPLETED_QUEUE
from cncsync.service.notifications import QUEUE_SYNC_FAILED


@pytest.fixture
def generator(db, mount_root):
    return QueueFileGenerator(db, mount_root)


@pytest.fixture
def scheduler(db, generator, notifier, mount_root):
    scheduler = QueueSyncScheduler(db, generator, notifier, mount_root, interval=1, max_workers=2)
    yield scheduler
    scheduler.stop(timeout=5)


def reload(db, item):
    return db.get_item(item.id)


class TestSyncMachine:
    """One machine's cycle: read edits, write the file."""

    def test_missing_file_generated(self, db, scheduler, generator, machine):
        db.add_item("O1", "P1", machine.queue_id, attachments=[("X.MPF", b"x")])
        result = scheduler.sync_machine(machine.id)
        assert result.edited and result.written
        assert result.updated == 0
        assert generator.path_for(machine).read_text(encoding="utf-8") == generator.generate(machine.queue_id)

    def test_operator_completion_round_trip(self, db, scheduler, generator, machine):
        item = db.add_item("O1", "P1", machine.queue_id, attachments=[("X.MPF", b"x")])
        scheduler.sync_machine(machine.id)
        path = generator.path_for(machine)
        before = path.read_text(encoding="utf-8")

        edit_control_file(path, "[Incomplete]", "[Completed]")
        result = scheduler.sync_machine(machine.id)

        assert result.edited
        assert result.updated == 1
        item = reload(db, item)
        assert item.completed
        assert attachment_of(item, "X.MPF").completed
        after = path.read_text(encoding="utf-8")
        assert after == before.replace("[Incomplete]", "[Completed]")

    def test_only_marked_entry_changes(self, db, scheduler, generator, machine):
        a = db.add_item("O1", "P1", machine.queue_id, rank=1, attachments=[("x.mpf", b"a")])
        b = db.add_item("O1", "P1", machine.queue_id, rank=2, attachments=[("y.mpf", b"b")])
        scheduler.sync_machine(machine.id)
        path = generator.path_for(machine)
        assert "\n\n" not in path.read_text(encoding="utf-8")

        edit_control_file(path, f"x.mpf | qty: 1 | id: {a.id} | [Incomplete]", f"x.mpf | qty: 1 | id: {a.id} | [OK]")
        result = scheduler.sync_machine(machine.id)

        assert result.updated == 1
        assert reload(db, a).completed
        assert not reload(db, b).completed
        text = path.read_text(encoding="utf-8")
        assert f"id: {a.id} | [Completed]" in text
        assert f"id: {b.id} | [Incomplete]" in text
        assert "[OK]" not in text

    def test_item_complete_only_when_all_programs_complete(self, db, scheduler, generator, machine):
        item = db.add_item("O1", "P1", machine.queue_id,
                           attachments=[("a.mpf", b"a"), ("b.mpf", b"b"), ("doc.pdf", b"d")])
        scheduler.sync_machine(machine.id)
        path = generator.path_for(machine)

        edit_control_file(path, "[Incomplete]", "[Completed]")
        scheduler.sync_machine(machine.id)
        assert not reload(db, item).completed

        edit_control_file(path, "[Incomplete]", "[Completed]")
        scheduler.sync_machine(machine.id)
        item = reload(db, item)
        assert item.completed
        assert not attachment_of(item, "doc.pdf").completed

    def test_unchanged_file_not_parsed(self, db, scheduler, machine):
        db.add_item("O1", "P1", machine.queue_id, attachments=[("x.mpf", b"x")])
        scheduler.sync_machine(machine.id)
        result = scheduler.sync_machine(machine.id)
        assert not result.edited
        assert not result.written

    def test_database_changes_reach_file(self, db, scheduler, generator, machine):
        scheduler.sync_machine(machine.id)
        item = db.add_item("O1", "P1", machine.queue_id, attachments=[("x.mpf", b"x")])
        result = scheduler.sync_machine(machine.id)
        assert result.written
        assert f"JOB {item.id}" in generator.path_for(machine).read_text(encoding="utf-8")

    def test_restart_treats_file_as_edited(self, db, generator, notifier, mount_root, machine):
        item = db.add_item("O1", "P1", machine.queue_id, attachments=[("x.mpf", b"x")])
        first = QueueSyncScheduler(db, generator, notifier, mount_root)
        first.sync_machine(machine.id)
        path = generator.path_for(machine)
        edit_control_file(path, "[Incomplete]", "[Completed]")

        restarted = QueueSyncScheduler(db, generator, notifier, mount_root)
        result = restarted.sync_machine(machine.id)
        assert result.edited
        assert result.updated == 1
        assert reload(db, item).completed

    def test_mtime_going_backwards_counts_as_edit(self, db, scheduler, generator, machine):
        item = db.add_item("O1", "P1", machine.queue_id, attachments=[("x.mpf", b"x")])
        scheduler.sync_machine(machine.id)
        path = generator.path_for(machine)
        edit_control_file(path, "[Incomplete]", "[Completed]")
        touch_later(path, seconds=-3600)

        assert scheduler.sync_machine(machine.id).updated == 1
        assert reload(db, item).completed

    def test_edit_during_sync_deferred(self, db, scheduler, generator, machine, monkeypatch):
        db.add_item("O1", "P1", machine.queue_id, attachments=[("x.mpf", b"x")])
        scheduler.sync_machine(machine.id)
        path = generator.path_for(machine)
        edit_control_file(path, "[Incomplete]", "[OK]")
        operator_text = path.read_text(encoding="utf-8")

        def saved_again(machine, parsed):
            touch_later(path)
            return 0

        monkeypatch.setattr(scheduler, "apply_completion", saved_again)
        result = scheduler.sync_machine(machine.id)
        assert result.deferred
        assert not result.written
        assert path.read_text(encoding="utf-8") == operator_text

        monkeypatch.undo()
        assert scheduler.sync_machine(machine.id).edited

    def test_lock_held_skips(self, scheduler, machine):
        lock = scheduler._lock_for(machine.id)
        lock.acquire()
        try:
            result = scheduler.sync_machine(machine.id)
        finally:
            lock.release()
        assert result.skipped
        assert not result.written

    def test_unknown_machine(self, scheduler):
        with pytest.raises(MachineNotFound):
            scheduler.sync_machine(999)


class TestApplyCompletion:
    """Entries that cannot be applied are skipped."""

    def test_unknown_job_id_ignored(self, db, scheduler, generator, machine):
        item = db.add_item("O1", "P1", machine.queue_id, attachments=[("x.mpf", b"x")])
        scheduler.sync_machine(machine.id)
        path = generator.path_for(machine)
        path.write_text(
            path.read_text(encoding="utf-8") + "JOB 9999 | O9 / P9\n9. O9/P9/z.mpf | id: 9999 | [OK]\n",
            encoding="utf-8",
        )
        touch_later(path)

        result = scheduler.sync_machine(machine.id)
        assert result.updated == 0
        assert not reload(db, item).completed
        assert "9999" not in path.read_text(encoding="utf-8")

    def test_item_of_other_machine_ignored(self, db, scheduler, generator, machine):
        other = db.add_machine("M2", program_path="M2", queue_file_path="M2")
        foreign = db.add_item("O1", "P1", other.queue_id, attachments=[("x.mpf", b"x")])
        scheduler.sync_machine(machine.id)
        path = generator.path_for(machine)
        path.write_text(
            path.read_text(encoding="utf-8") + f"JOB {foreign.id}\n1. x.mpf | id: {foreign.id} | [OK]\n",
            encoding="utf-8",
        )
        touch_later(path)

        assert scheduler.sync_machine(machine.id).updated == 0
        assert not reload(db, foreign).completed

    def test_unknown_file_name_ignored(self, db, scheduler, generator, machine):
        item = db.add_item("O1", "P1", machine.queue_id, attachments=[("x.mpf", b"x")])
        scheduler.sync_machine(machine.id)
        path = generator.path_for(machine)
        edit_control_file(path, "O1/P1/x.mpf | qty: 1", "O1/P1/other.mpf | qty: 1")
        edit_control_file(path, "[Incomplete]", "[OK]")

        assert scheduler.sync_machine(machine.id).updated == 0
        assert not reload(db, item).completed

    def test_file_names_match_case_insensitively(self, db, scheduler, generator, machine):
        item = db.add_item("O1", "P1", machine.queue_id, attachments=[("Prog.MPF", b"x")])
        scheduler.sync_machine(machine.id)
        path = generator.path_for(machine)
        edit_control_file(path, "Prog.MPF", "prog.mpf")
        edit_control_file(path, "[Incomplete]", "[OK]")

        assert scheduler.sync_machine(machine.id).updated == 1
        assert reload(db, item).completed

    def test_stored_name_with_trailing_space_completes_item(self, db, scheduler, generator, machine):
        item = db.add_item("O1", "P1", machine.queue_id, attachments=[("x.mpf ", b"x")])
        scheduler.sync_machine(machine.id)
        path = generator.path_for(machine)
        assert "O1/P1/x.mpf | qty: 1" in path.read_text(encoding="utf-8")
        edit_control_file(path, "[Incomplete]", "[Completed]")

        assert scheduler.sync_machine(machine.id).updated == 1
        item = reload(db, item)
        assert attachment_of(item, "x.mpf ").completed
        assert item.completed

    def test_parse_errors_counted(self, db, scheduler, generator, machine):
        db.add_item("O1", "P1", machine.queue_id, attachments=[("x.mpf", b"x")])
        scheduler.sync_machine(machine.id)
        path = generator.path_for(machine)
        edit_control_file(path, "[Incomplete]", "[Maybe]")

        result = scheduler.sync_machine(machine.id)
        assert result.parse_errors == 1
        assert result.updated == 0


class TestRunCycle:
    """All machines, concurrently and isolated."""

    def test_every_machine_synced(self, db, scheduler, generator):
        machines = [db.add_machine(name, program_path=name, queue_file_path=name) for name in ("A", "B", "C")]
        results = scheduler.run_cycle()
        assert sorted(r.machine_id for r in results) == [m.id for m in machines]
        for machine in machines:
            assert generator.path_for(machine).is_file()

    def test_failure_isolated_and_reported(self, db, scheduler, generator, notifier, monkeypatch):
        broken = db.add_machine("A", program_path="A", queue_file_path="A")
        healthy = db.add_machine("B", program_path="B", queue_file_path="B")
        real = scheduler.sync_machine

        def flaky(machine_id):
            if machine_id == broken.id:
                raise RuntimeError("share unreachable")
            return real(machine_id)

        monkeypatch.setattr(scheduler, "sync_machine", flaky)
        results = scheduler.run_cycle()

        assert [r.machine_id for r in results] == [healthy.id]
        assert generator.path_for(healthy).is_file()
        events = notifier.of_kind(QUEUE_SYNC_FAILED)
        assert len(events) == 1
        assert events[0].payload["machine_id"] == broken.id
        assert "share unreachable" in events[0].payload["error"]

    def test_no_machines(self, scheduler):
        assert scheduler.run_cycle() == []

    def test_start_and_stop(self, db, scheduler, generator):
        machine = db.add_machine("A", program_path="A", queue_file_path="A")
        scheduler.start()
        path = generator.path_for(machine)
        deadline = time.monotonic() + 5
        while not path.is_file() and time.monotonic() < deadline:
            time.sleep(0.05)
        scheduler.stop(timeout=5)

        assert path.is_file()
        assert scheduler._thread is None


class TestPushAndArchive:
    """Pushing programs and archiving completed items."""

    def test_push_writes_programs_and_control_file(self, db, scheduler, mount_root, machine):
        item = db.add_item("O1", "P1", machine.queue_id, attachments=[("x.mpf", b"X"), ("d.pdf", b"D")])
        result = scheduler.push_machine(machine.id)

        assert result.failed_items == {}
        assert (mount_root / "M1" / "O1" / "P1" / "x.mpf").read_bytes() == b"X"
        assert (mount_root / "M1" / "O1" / "P1" / "d.pdf").read_bytes() == b"D"
        assert f"JOB {item.id}" in result.control_file.read_text(encoding="utf-8")
        # Our own write is not mistaken for an operator edit
        assert not scheduler.sync_machine(machine.id).edited

    def test_push_unknown_machine(self, scheduler):
        with pytest.raises(MachineNotFound):
            scheduler.push_machine(42)

    def test_archive_completed(self, db, scheduler, generator, machine):
        done = db.add_item("O1", "P1", machine.queue_id, completed=True, attachments=[("x.mpf", b"x")])
        open_item = db.add_item("O1", "P2", machine.queue_id, attachments=[("y.mpf", b"y")])

        assert scheduler.archive_completed(machine.id) == [done.id]
        assert reload(db, done).queue_id == COMPLETED_QUEUE
        text = generator.path_for(machine).read_text(encoding="utf-8")
        assert f"JOB {done.id}" not in text
        assert f"JOB {open_item.id}" in text
