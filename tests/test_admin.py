# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_admin.py

from conftest import write_file

from cncsync.config import Settings
from cncsync.service.app import build_services, startup_sweep
from cncsync.service.notifications import CLEANUP_SUMMARY


def services_for(db, notifier, tmp_path, mount_root):
    settings = Settings(
        mount_root=mount_root,
        upload_root=tmp_path / "Uploads",
        database_url=str(db.engine.url),
    )
    return build_services(settings, notifier=notifier, db=db)


class TestAdminService:
    """Forced cleanup reports instead of raising."""

    def test_force_cleanup_all(self, db, notifier, tmp_path, mount_root, machine):
        write_file(mount_root / "M1" / "O1" / "P1" / "x.mpf")
        admin = services_for(db, notifier, tmp_path, mount_root).admin

        result = admin.force_cleanup_all(actor="tester")
        assert result.success
        assert result.cleanup.deleted == 2
        assert "2 deleted" in result.message
        assert len(notifier.of_kind(CLEANUP_SUMMARY)) == 1

    def test_force_cleanup_machine(self, db, notifier, tmp_path, mount_root, machine):
        write_file(mount_root / "M1" / "O1" / "P1" / "x.mpf")
        admin = services_for(db, notifier, tmp_path, mount_root).admin

        result = admin.force_cleanup_machine(machine.id)
        assert result.success
        assert not (mount_root / "M1" / "O1").exists()

    def test_unknown_machine_is_a_failed_result(self, db, notifier, tmp_path, mount_root):
        admin = services_for(db, notifier, tmp_path, mount_root).admin
        result = admin.force_cleanup_machine(77)
        assert not result.success
        assert "77" in result.message
        assert result.cleanup is None

    def test_filesystem_error_is_a_failed_result(self, db, notifier, tmp_path, mount_root, monkeypatch):
        services = services_for(db, notifier, tmp_path, mount_root)

        def broken():
            raise PermissionError("share offline")

        monkeypatch.setattr(services.cleaner, "cleanup_all_machines", broken)
        result = services.admin.force_cleanup_all()
        assert not result.success
        assert "share offline" in result.message


class TestStartupSweep:
    def test_runs_every_step(self, db, notifier, tmp_path, mount_root, machine):
        write_file(mount_root / "M1" / "O1" / "P1" / "x.mpf")
        orphan_queue = write_file(mount_root / "M1" / "Retired.txt")
        orphan_upload = write_file(tmp_path / "Uploads" / "404" / "O1" / "P1" / "x.mpf")

        startup_sweep(services_for(db, notifier, tmp_path, mount_root))
        assert not (mount_root / "M1" / "O1").exists()
        assert not orphan_queue.exists()
        assert not orphan_upload.exists()

    def test_failing_step_does_not_stop_the_rest(self, db, notifier, tmp_path, mount_root, machine, monkeypatch):
        services = services_for(db, notifier, tmp_path, mount_root)
        write_file(mount_root / "M1" / "O1" / "P1" / "x.mpf")

        def broken():
            raise PermissionError("share offline")

        monkeypatch.setattr(services.cleaner, "cleanup_orphaned_queue_files", broken)
        startup_sweep(services)
        assert not (mount_root / "M1" / "O1").exists()

    def test_unexpected_error_does_not_stop_the_rest(self, db, notifier, tmp_path, mount_root, machine, monkeypatch):
        services = services_for(db, notifier, tmp_path, mount_root)
        write_file(mount_root / "M1" / "O1" / "P1" / "x.mpf")
        orphan_queue = write_file(mount_root / "M1" / "Retired.txt")

        def broken(upload_root):
            raise RuntimeError("bad upload record")

        monkeypatch.setattr(services.cleaner, "cleanup_orphaned_uploads", broken)
        startup_sweep(services)
        assert not orphan_queue.exists()
        assert not (mount_root / "M1" / "O1").exists()
