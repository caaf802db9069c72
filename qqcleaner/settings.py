"""
User-editable settings.

Everything lives in an optional TOML file (``config.toml`` in the working
directory by default); command line flags override it.
"""
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from . import config
from .exceptions import ConfigError

DEFAULT_CONFIG_PATH = Path("config.toml")


@dataclass
class Settings:
    data_dirs: List[Path] = field(default_factory=list)
    db_dir: Path = Path("nt_db")
    files_db_name: str = config.FILES_DB_NAME
    group_db_name: str = config.GROUP_DB_NAME
    key_file: Path = Path(config.DEFAULT_KEY_FILE)
    log_dir: Path = Path("logs")
    max_workers: int = config.DEFAULT_MAX_WORKERS
    migrate_target: Path = Path(config.DEFAULT_MIGRATE_DIR)

    @property
    def files_db_path(self) -> Path:
        return self.db_dir / self.files_db_name

    @property
    def group_db_path(self) -> Path:
        return self.db_dir / self.group_db_name


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _path(value, key: str) -> Path:
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string path")
    return Path(value).expanduser()


def load_settings(path: Optional[Path] = None) -> Settings:
    """
    Loads settings from TOML. A missing default file yields defaults;
    an explicitly requested file must exist.
    """
    explicit = path is not None
    path = path or DEFAULT_CONFIG_PATH
    settings = Settings()

    if not path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {path}")
        return settings

    try:
        with path.open("rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e

    logging.debug(f"Loaded settings from {path}")

    paths = _section(raw, "paths")
    if "data_dirs" in paths:
        dirs = paths["data_dirs"]
        if not isinstance(dirs, list):
            raise ConfigError("paths.data_dirs must be a list")
        settings.data_dirs = [_path(d, "paths.data_dirs") for d in dirs]

    database = _section(raw, "database")
    if "db_dir" in database:
        settings.db_dir = _path(database["db_dir"], "database.db_dir")
    if "key_file" in database:
        settings.key_file = _path(database["key_file"], "database.key_file")
    for key in ("files_db_name", "group_db_name"):
        if key in database:
            if not isinstance(database[key], str):
                raise ConfigError(f"database.{key} must be a string")
            setattr(settings, key, database[key])

    logs = _section(raw, "logging")
    if "log_dir" in logs:
        settings.log_dir = _path(logs["log_dir"], "logging.log_dir")

    actions = _section(raw, "actions")
    if "max_workers" in actions:
        workers = actions["max_workers"]
        if not isinstance(workers, int) or isinstance(workers, bool) or workers < 1:
            raise ConfigError("actions.max_workers must be a positive integer")
        settings.max_workers = workers
    if "migrate_target" in actions:
        settings.migrate_target = _path(actions["migrate_target"], "actions.migrate_target")

    return settings
