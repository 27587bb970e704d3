"""Session configuration, optionally read from an INI file."""

import configparser
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import ConfigError
from .executor import DEFAULT_RETRIES, DEFAULT_RETRY_WAIT
from .folders import DEFAULT_FOLDERS
from .models import ConflictPolicy
from .operators import OPERATORS

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_EXTENSIONS = ("pst", "ost")
STATE_DIR_NAME = ".folder_backup"
LEDGER_FILE_NAME = "ledger.jsonl"
JOURNAL_FILE_NAME = "conflicts.db"
COPY_LOG_FILE_NAME = "copy.log"

EXAMPLE_CONFIG = """\
[backup]
# Folders transferred, in order
folders = Desktop, Documents, Downloads, Pictures, Music, Videos, Favorites
# Cloud-synced copy of the profile folders (leave blank for none)
synced_root =
# Extensions never copied (case-insensitive)
exclude_extensions = pst, ost
# auto | robocopy | rsync | local
operator = auto
retries = 3
retry_wait = 5
mirror = false
verify = false
# ask | skip | overwrite | if-newer
on_conflict = ask
"""


def _split_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.replace("\n", ",").split(",") if item.strip())


@dataclass
class SyncConfig:
    """Settings for one backup or restore session."""
    folders: tuple[str, ...] = DEFAULT_FOLDERS
    synced_root: Optional[Path] = None
    exclude_extensions: tuple[str, ...] = DEFAULT_EXCLUDE_EXTENSIONS
    operator: str = "auto"
    retries: int = DEFAULT_RETRIES
    retry_wait: int = DEFAULT_RETRY_WAIT
    mirror: bool = False
    verify: bool = False
    on_conflict: ConflictPolicy = ConflictPolicy.ASK
    state_dir_name: str = STATE_DIR_NAME

    def state_dir(self, destination: Path) -> Path:
        """Directory at the destination holding ledger, journal and copy log."""
        return Path(destination) / self.state_dir_name

    def ledger_path(self, destination: Path) -> Path:
        return self.state_dir(destination) / LEDGER_FILE_NAME

    def journal_path(self, destination: Path) -> Path:
        return self.state_dir(destination) / JOURNAL_FILE_NAME

    def copy_log_path(self, destination: Path) -> Path:
        return self.state_dir(destination) / COPY_LOG_FILE_NAME

    def validate(self) -> None:
        if not self.folders:
            raise ConfigError("No folders configured")
        if self.retries < 0 or self.retry_wait < 0:
            raise ConfigError("retries and retry_wait must not be negative")
        if self.operator != "auto" and self.operator not in OPERATORS:
            raise ConfigError(f"Unknown copy operator: {self.operator}")


def load_config(path: Optional[Path] = None) -> SyncConfig:
    """
    Load a SyncConfig from the [backup] section of an INI file.

    Missing keys keep their defaults; no path returns the defaults.
    """
    config = SyncConfig()
    if path is None:
        return config
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}", details={"path": str(path)})

    parser = configparser.ConfigParser()
    try:
        parser.read(path, encoding="utf-8")
    except configparser.Error as e:
        raise ConfigError(f"Cannot parse config file {path}: {e}", cause=e) from e
    if not parser.has_section("backup"):
        return config
    section = parser["backup"]

    try:
        if "folders" in section:
            config.folders = _split_list(section["folders"])
        if section.get("synced_root", "").strip():
            config.synced_root = Path(section["synced_root"].strip())
        if "exclude_extensions" in section:
            config.exclude_extensions = _split_list(section["exclude_extensions"])
        config.operator = section.get("operator", config.operator).strip()
        config.retries = section.getint("retries", config.retries)
        config.retry_wait = section.getint("retry_wait", config.retry_wait)
        config.mirror = section.getboolean("mirror", config.mirror)
        config.verify = section.getboolean("verify", config.verify)
        if "on_conflict" in section:
            config.on_conflict = ConflictPolicy(section["on_conflict"].strip().lower())
    except ValueError as e:
        raise ConfigError(f"Invalid value in {path}: {e}", cause=e) from e

    known = {"folders", "synced_root", "exclude_extensions", "operator", "retries",
             "retry_wait", "mirror", "verify", "on_conflict"}
    for key in section:
        if key not in known:
            logger.warning("Ignoring unknown config key %r in %s", key, path)
    config.validate()
    return config
