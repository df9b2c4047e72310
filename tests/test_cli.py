# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_cli.py

import sys

import pytest
from conftest import write_file
from loguru import logger
from typer.testing import CliRunner

from cncsync.cli.main import app
from cncsync.queuefile.generator import HEADER_COMMENT

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def env(db, mount_root, tmp_path):
    return {
        "APP_ENV": "test",
        "CNCSYNC_DATABASE_URL": str(db.engine.url),
        "CNCSYNC_MOUNT_ROOT": str(mount_root),
        "CNCSYNC_UPLOAD_ROOT": str(tmp_path / "Uploads"),
    }


def invoke(env, *args):
    return runner.invoke(app, list(args), env=env)


class TestSetup:
    def test_init_db(self, tmp_path, mount_root):
        url = f"sqlite:///{tmp_path / 'fresh.db'}"
        result = invoke({"CNCSYNC_DATABASE_URL": url, "CNCSYNC_MOUNT_ROOT": str(mount_root)}, "init-db")
        assert result.exit_code == 0
        assert (tmp_path / "fresh.db").exists()

    def test_config_file(self, db, tmp_path, mount_root, machine):
        config = tmp_path / "cncsync.toml"
        config.write_text(
            f'[cncsync]\ndatabase_url = "{db.engine.url}"\nmount_root = "{mount_root}"\n',
            encoding="utf-8",
        )
        result = invoke({}, "--config", str(config), "generate", str(machine.id))
        assert result.exit_code == 0
        assert HEADER_COMMENT in result.output

    def test_missing_config_file(self, tmp_path):
        result = invoke({}, "--config", str(tmp_path / "nope.toml"), "sync")
        assert result.exit_code == 2


class TestGenerate:
    def test_prints_control_file(self, db, env, machine):
        item = db.add_item("O1", "P1", machine.queue_id, attachments=[("x.mpf", b"x")])
        result = invoke(env, "generate", str(machine.id))
        assert result.exit_code == 0
        assert f"JOB {item.id} | O1 / P1" in result.output

    def test_writes_control_file(self, env, machine, mount_root):
        result = invoke(env, "generate", str(machine.id), "--write")
        assert result.exit_code == 0
        assert (mount_root / "M1" / "M1.txt").read_text(encoding="utf-8") == HEADER_COMMENT + "\n"

    def test_unknown_machine(self, env):
        assert invoke(env, "generate", "999").exit_code == 1


class TestCommands:
    def test_cleanup_all(self, env, machine, mount_root):
        write_file(mount_root / "M1" / "O1" / "P1" / "x.mpf")
        result = invoke(env, "cleanup")
        assert result.exit_code == 0
        assert "Cleanup of all machines completed" in result.output
        assert not (mount_root / "M1" / "O1").exists()

    def test_cleanup_unknown_machine(self, env):
        assert invoke(env, "cleanup", "--machine", "999").exit_code == 1

    def test_sync(self, db, env, machine, mount_root):
        db.add_item("O1", "P1", machine.queue_id, attachments=[("x.mpf", b"x")])
        result = invoke(env, "sync")
        assert result.exit_code == 0
        assert f"machine {machine.id}: ok" in result.output
        assert (mount_root / "M1" / "M1.txt").exists()

    def test_sync_unknown_machine(self, env):
        assert invoke(env, "sync", "--machine", "999").exit_code == 1

    def test_push(self, db, env, machine, mount_root):
        db.add_item("O1", "P1", machine.queue_id, attachments=[("x.mpf", b"X")])
        result = invoke(env, "push", str(machine.id))
        assert result.exit_code == 0
        assert (mount_root / "M1" / "O1" / "P1" / "x.mpf").read_bytes() == b"X"

    def test_push_with_missing_content_fails(self, db, env, machine):
        db.add_item("O1", "P1", machine.queue_id, attachments=[("x.mpf", None)])
        assert invoke(env, "push", str(machine.id)).exit_code == 1

    def test_archive(self, db, env, machine):
        item = db.add_item("O1", "P1", machine.queue_id, completed=True)
        result = invoke(env, "archive", str(machine.id))
        assert result.exit_code == 0
        assert db.get_item(item.id).queue_id == "completed"

    def test_migrate(self, db, env, machine, tmp_path):
        item = db.add_item("O1", "P1", machine.queue_id, attachments=[("x.mpf", b"X")])
        result = invoke(env, "migrate")
        assert result.exit_code == 0
        assert (tmp_path / "Uploads" / str(item.id) / "O1" / "P1" / "x.mpf").read_bytes() == b"X"
