# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/config.py

"""Runtime configuration.

Settings are layered: built-in defaults, then an optional TOML file, then
environment variables. The runtime mode (``APP_ENV``) decides which mount
root all machine paths are resolved against:

- ``prod`` / ``docker-local``: the shared volume mounted at ``/cnc``
- anything else: ``./cnc`` relative to the working directory
"""

import os
import re
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping, Optional

from loguru import logger

MOUNTED_ENVS = ("prod", "docker-local")
PROD_MOUNT_ROOT = Path("/cnc")
LOCAL_MOUNT_ROOT = Path("./cnc")

ENV_PREFIX = "CNCSYNC_"


@dataclass
class Settings:
    """Resolved runtime settings."""
    app_env: str = "local"
    mount_root: Optional[Path] = None  # None = derived from app_env
    upload_root: Path = Path("Uploads")
    database_url: str = "sqlite:///cncsync.db"
    sync_interval: int = 300  # seconds between queue sync cycles
    max_workers: int = 4  # concurrent machine cycles
    naming_policy: str = "inframet"
    log_file: Optional[Path] = None

    def __post_init__(self):
        if self.mount_root is None:
            self.mount_root = mount_root_for(self.app_env)
        self.mount_root = Path(self.mount_root)
        self.upload_root = Path(self.upload_root)
        if self.log_file is not None:
            self.log_file = Path(self.log_file)
        self.sync_interval = int(self.sync_interval)
        self.max_workers = int(self.max_workers)


def mount_root_for(app_env: Optional[str]) -> Path:
    """Pick the mount root for a runtime mode."""
    if app_env and app_env.lower() in MOUNTED_ENVS:
        return PROD_MOUNT_ROOT
    return LOCAL_MOUNT_ROOT


def resolve_mounted_path(path_str: Optional[str], mount_root: Path) -> Path:
    """Resolve a configured machine path against the mount root.

    Leading ``./`` and ``/`` are dropped, as is a leading ``cnc`` segment,
    so ``/cnc/M1``, ``cnc/M1``, ``./cnc/M1`` and ``M1`` all land on
    ``<mount_root>/M1``.
    """
    cleaned = (path_str or "").replace("\\", "/").strip()
    cleaned = re.sub(r"^(\./)+", "", cleaned).lstrip("/")
    cleaned = re.sub(r"^cnc(/|$)", "", cleaned)
    if not cleaned:
        return Path(os.path.normpath(mount_root))
    return Path(os.path.normpath(Path(mount_root) / cleaned))


def _from_env(environ: Mapping[str, str]) -> dict:
    values = {}
    if "APP_ENV" in environ:
        values["app_env"] = environ["APP_ENV"]
    for field in fields(Settings):
        key = ENV_PREFIX + field.name.upper()
        if key in environ and environ[key] != "":
            values[field.name] = environ[key]
    return values


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from defaults, an optional TOML file and the environment.

    Args:
        config_path: TOML file with a ``[cncsync]`` table (or top-level keys)
        environ: Environment mapping, defaults to ``os.environ``
    """
    environ = os.environ if environ is None else environ
    values: dict = {}

    if config_path is not None:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
        table = data.get("cncsync", data)
        known = {field.name for field in fields(Settings)}
        for key, value in table.items():
            if key in known:
                values[key] = value
            else:
                logger.warning(f"Ignoring unknown setting '{key}' in {config_path}")

    values.update(_from_env(environ))
    settings = Settings(**values)
    logger.debug(
        f"Settings: env={settings.app_env}, mount_root={settings.mount_root}, "
        f"db={settings.database_url}"
    )
    return settings
