"""Tests for folder_backup.cli module."""

from pathlib import Path
from unittest.mock import patch

import pytest

from folder_backup.cli import (
    EXIT_ERROR,
    EXIT_FOLDERS_FAILED,
    EXIT_OK,
    build_config,
    main,
    open_ledger,
    parse_args,
    validate_sources,
)
from folder_backup.errors import SourceNotFound
from folder_backup.ledger import FINISH, Ledger
from folder_backup.models import ConflictPolicy

from conftest import write_file


def _run_main(argv):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestParseArgs:
    """Tests for parse_args function."""

    def test_backup(self):
        args = parse_args(["backup", "/home/u", "/backup"])
        assert args.command == "backup"
        assert args.profile == Path("/home/u")
        assert args.destination == Path("/backup")
        assert args.reset is False
        assert args.mirror is None

    def test_backup_options(self):
        args = parse_args([
            "backup", "/p", "/d", "--mirror", "--operator", "local", "--retries", "2",
            "--retry-wait", "0", "--folders", "Documents,Music", "--exclude-ext", "pst",
            "--reset", "--verify", "-v",
        ])
        assert args.mirror is True
        assert args.operator == "local"
        assert args.retries == 2
        assert args.retry_wait == 0
        assert args.folders == "Documents,Music"
        assert args.reset is True
        assert args.verify is True
        assert args.verbose is True

    def test_restore_splits_backups_and_profile(self):
        args = parse_args(["restore", "/b1", "/b2", "/home/u", "--on-conflict", "if-newer"])
        assert args.backups == [Path("/b1"), Path("/b2")]
        assert args.profile == Path("/home/u")
        assert args.on_conflict == "if-newer"

    def test_restore_needs_two_paths(self):
        with pytest.raises(SystemExit):
            parse_args(["restore", "/home/u"])

    def test_invalid_policy(self):
        with pytest.raises(SystemExit):
            parse_args(["restore", "/b", "/p", "--on-conflict", "maybe"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])


class TestBuildConfig:
    """Tests for build_config function."""

    def test_defaults(self):
        config = build_config(parse_args(["backup", "/p", "/d"]))
        assert config.operator == "auto"
        assert config.mirror is False

    def test_overrides(self):
        args = parse_args([
            "restore", "/b", "/p", "--folders", "Documents, Music", "--exclude-ext", "",
            "--on-conflict", "skip", "--synced-root", "/cloud",
        ])
        config = build_config(args)
        assert config.folders == ("Documents", "Music")
        assert config.exclude_extensions == ()
        assert config.on_conflict is ConflictPolicy.SKIP
        assert config.synced_root == Path("/cloud")

    def test_command_line_beats_config_file(self, temp_dir):
        path = temp_dir / "backup.ini"
        path.write_text("[backup]\nretries = 9\nfolders = Music\n")
        config = build_config(parse_args(["backup", "/p", "/d", "-c", str(path), "--retries", "1"]))
        assert config.retries == 1
        assert config.folders == ("Music",)


class TestValidateSources:
    """Tests for validate_sources function."""

    def test_missing(self, temp_dir):
        with pytest.raises(SourceNotFound):
            validate_sources([temp_dir / "nope"])

    def test_not_a_directory(self, temp_dir):
        with pytest.raises(SourceNotFound):
            validate_sources([write_file(temp_dir / "file.txt", "x")])

    def test_ok(self, temp_dir):
        validate_sources([temp_dir])


class TestOpenLedger:
    """Tests for open_ledger function."""

    def test_resume(self, ledger):
        ledger.persist(FINISH, "Documents", 1)
        assert open_ledger(ledger.log_path, reset=False).session_id == "test-session"

    def test_reset(self, ledger, capsys):
        ledger.persist(FINISH, "Documents", 1)
        fresh = open_ledger(ledger.log_path, reset=True)
        assert fresh.session_id != "test-session"
        assert "Resetting" in capsys.readouterr().out


class TestMain:
    """Tests for main function."""

    def test_backup(self, sample_profile, temp_dir):
        dest = temp_dir / "backup"
        code = _run_main(["backup", str(sample_profile), str(dest), "--operator", "local",
                          "--folders", "Documents,Pictures"])
        assert code == EXIT_OK
        assert (dest / "Documents" / "report.txt").exists()
        assert not (dest / "Documents" / "mail.PST").exists()
        assert (dest / ".folder_backup" / "ledger.jsonl").exists()
        assert (dest / ".folder_backup" / "copy.log").exists()

    def test_backup_twice_resumes(self, sample_profile, temp_dir, capsys):
        dest = temp_dir / "backup"
        argv = ["backup", str(sample_profile), str(dest), "--operator", "local",
                "--folders", "Pictures"]
        _run_main(argv)
        session = Ledger.load(dest / ".folder_backup" / "ledger.jsonl").session_id
        capsys.readouterr()

        assert _run_main(argv) == EXIT_OK
        out = capsys.readouterr().out
        assert f"Resuming session {session}" in out
        assert "Nothing to transfer" in out

    def test_custom_ledger_path(self, sample_profile, temp_dir):
        ledger_path = temp_dir / "elsewhere" / "progress.jsonl"
        _run_main(["backup", str(sample_profile), str(temp_dir / "backup"), "--operator", "local",
                   "--folders", "Pictures", "--ledger", str(ledger_path)])
        assert ledger_path.exists()

    def test_missing_source(self, temp_dir, capsys):
        code = _run_main(["backup", str(temp_dir / "nope"), str(temp_dir / "backup")])
        assert code == EXIT_ERROR
        assert "Source does not exist" in capsys.readouterr().out

    def test_unwritable_destination(self, sample_profile, temp_dir, capsys):
        blocker = write_file(temp_dir / "blocker", "x")
        code = _run_main(["backup", str(sample_profile), str(blocker / "dest")])
        assert code == EXIT_ERROR
        assert "not writable" in capsys.readouterr().out

    def test_bad_config(self, sample_profile, temp_dir, capsys):
        code = _run_main(["backup", str(sample_profile), str(temp_dir / "backup"),
                          "-c", str(temp_dir / "missing.ini")])
        assert code == EXIT_ERROR
        assert "Config file not found" in capsys.readouterr().out

    def test_failed_folder_exit_code(self, sample_profile, temp_dir):
        from folder_backup.operators import CopyResult, LocalCopyOperator

        class Failing(LocalCopyOperator):
            def run(self, request):
                return CopyResult(8, "boom")

        with patch("folder_backup.cli.get_operator", return_value=Failing()):
            code = _run_main(["backup", str(sample_profile), str(temp_dir / "backup"),
                              "--folders", "Pictures"])
        assert code == EXIT_FOLDERS_FAILED

    def test_restore(self, temp_dir):
        backup = temp_dir / "backup"
        profile = temp_dir / "profile"
        write_file(backup / "Documents" / "X.txt", "from backup", mtime=8.0)
        write_file(profile / "Documents" / "X.txt", "local", mtime=5.0)

        code = _run_main(["restore", str(backup), str(profile), "--operator", "local",
                          "--folders", "Documents", "--on-conflict", "if-newer"])
        assert code == EXIT_OK
        assert (profile / "Documents" / "X.txt").read_text() == "from backup"
        assert (profile / ".folder_backup" / "conflicts.db").exists()

    def test_restore_interactive(self, temp_dir):
        backup = temp_dir / "backup"
        profile = temp_dir / "profile"
        write_file(backup / "Documents" / "X.txt", "from backup", mtime=8.0)
        write_file(profile / "Documents" / "X.txt", "local", mtime=5.0)

        with patch("builtins.input", return_value="1"):
            code = _run_main(["restore", str(backup), str(profile), "--operator", "local",
                              "--folders", "Documents"])
        assert code == EXIT_OK
        assert (profile / "Documents" / "X.txt").read_text() == "local"

    def test_os_error_reported(self, sample_profile, temp_dir, capsys):
        with patch("folder_backup.cli.run_backup", side_effect=PermissionError("Access is denied")):
            code = _run_main(["backup", str(sample_profile), str(temp_dir / "backup")])
        assert code == EXIT_ERROR
        assert "Error: Access is denied" in capsys.readouterr().out

    def test_keyboard_interrupt(self, sample_profile, temp_dir, capsys):
        with patch("folder_backup.cli.run_backup", side_effect=KeyboardInterrupt):
            code = _run_main(["backup", str(sample_profile), str(temp_dir / "backup")])
        assert code == EXIT_ERROR
        out = capsys.readouterr().out
        assert "Interrupted! Progress has been saved." in out
        assert "--reset" in out

    def test_init_config(self, temp_dir):
        path = temp_dir / "backup.ini"
        assert _run_main(["init-config", str(path)]) == EXIT_OK
        assert "[backup]" in path.read_text()
        assert _run_main(["init-config", str(path)]) == EXIT_ERROR
