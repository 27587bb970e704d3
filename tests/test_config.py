"""Tests for folder_backup.config module."""

from pathlib import Path

import pytest

from folder_backup.config import EXAMPLE_CONFIG, SyncConfig, load_config
from folder_backup.errors import ConfigError
from folder_backup.folders import DEFAULT_FOLDERS
from folder_backup.models import ConflictPolicy


class TestSyncConfig:
    """Tests for SyncConfig defaults and paths."""

    def test_defaults(self):
        config = SyncConfig()
        assert config.folders == DEFAULT_FOLDERS
        assert config.exclude_extensions == ("pst", "ost")
        assert config.on_conflict is ConflictPolicy.ASK
        assert config.mirror is False

    def test_state_paths(self):
        config = SyncConfig()
        assert config.ledger_path(Path("/dst")) == Path("/dst/.folder_backup/ledger.jsonl")
        assert config.journal_path(Path("/dst")) == Path("/dst/.folder_backup/conflicts.db")
        assert config.copy_log_path(Path("/dst")).name == "copy.log"

    def test_validate_rejects_empty_folders(self):
        with pytest.raises(ConfigError):
            SyncConfig(folders=()).validate()

    def test_validate_rejects_negative_retries(self):
        with pytest.raises(ConfigError):
            SyncConfig(retries=-1).validate()

    def test_validate_rejects_unknown_operator(self):
        with pytest.raises(ConfigError):
            SyncConfig(operator="teleport").validate()


class TestLoadConfig:
    """Tests for load_config function."""

    def test_no_path_returns_defaults(self):
        assert load_config() == SyncConfig()

    def test_missing_file(self, temp_dir):
        with pytest.raises(ConfigError):
            load_config(temp_dir / "missing.ini")

    def test_example_config_loads(self, temp_dir):
        path = temp_dir / "backup.ini"
        path.write_text(EXAMPLE_CONFIG)
        config = load_config(path)
        assert config == SyncConfig()

    def test_values_parsed(self, temp_dir):
        path = temp_dir / "backup.ini"
        path.write_text(
            "[backup]\n"
            "folders = Documents, Pictures\n"
            "synced_root = /cloud\n"
            "exclude_extensions = pst, tmp\n"
            "operator = local\n"
            "retries = 1\n"
            "retry_wait = 0\n"
            "mirror = yes\n"
            "verify = true\n"
            "on_conflict = IF-NEWER\n"
        )
        config = load_config(path)
        assert config.folders == ("Documents", "Pictures")
        assert config.synced_root == Path("/cloud")
        assert config.exclude_extensions == ("pst", "tmp")
        assert config.operator == "local"
        assert config.retries == 1
        assert config.retry_wait == 0
        assert config.mirror is True
        assert config.verify is True
        assert config.on_conflict is ConflictPolicy.IF_NEWER

    def test_bad_value(self, temp_dir):
        path = temp_dir / "backup.ini"
        path.write_text("[backup]\nretries = many\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_bad_policy(self, temp_dir):
        path = temp_dir / "backup.ini"
        path.write_text("[backup]\non_conflict = maybe\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_unparseable_file(self, temp_dir):
        path = temp_dir / "backup.ini"
        path.write_text("no section header\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_unknown_key_warns(self, temp_dir, caplog):
        path = temp_dir / "backup.ini"
        path.write_text("[backup]\ncolour = blue\n")
        with caplog.at_level("WARNING"):
            load_config(path)
        assert "colour" in caplog.text

    def test_missing_section_uses_defaults(self, temp_dir):
        path = temp_dir / "backup.ini"
        path.write_text("[other]\nkey = value\n")
        assert load_config(path) == SyncConfig()
