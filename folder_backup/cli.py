"""Command-line interface for folder backup."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from .config import EXAMPLE_CONFIG, SyncConfig, load_config
from .db import ConflictJournal
from .errors import ConfigError, DestinationUnwritable, SourceNotFound
from .executor import TransferExecutor
from .folders import backup_units
from .ledger import Ledger
from .models import ConflictPolicy
from .operators import get_operator
from .session import ProgressPrinter, check_destination, print_summary, run_backup, run_restore

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_FOLDERS_FAILED = 2


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="INI file with a [backup] section (see the init-config command)"
    )
    parser.add_argument(
        "--folders",
        help="Comma-separated folder names, in transfer order (default: standard profile folders)"
    )
    parser.add_argument(
        "--synced-root",
        type=Path,
        help="Cloud-synced folder root whose copies of the folders are also transferred"
    )
    parser.add_argument(
        "--exclude-ext",
        help="Comma-separated extensions never copied (default: pst,ost)"
    )
    parser.add_argument(
        "--ledger",
        type=Path,
        help="Path of the progress ledger (default: <destination>/.folder_backup/ledger.jsonl)"
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Ignore earlier progress and start a new session"
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        default=None,
        help="Re-copy completed files whose destination copy is missing, resized or older"
    )
    parser.add_argument(
        "--operator",
        choices=["auto", "robocopy", "rsync", "local"],
        help="Copy operator (default: auto)"
    )
    parser.add_argument("--retries", type=int, help="Retries for transient copy failures")
    parser.add_argument("--retry-wait", type=int, help="Seconds between retries")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug logging")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="folder-backup",
        description="Resumable backup and merge-restore of profile folders.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s backup C:\\Users\\alice E:\\Backups\\alice
  %(prog)s restore E:\\Backups\\alice F:\\Old\\alice C:\\Users\\alice --on-conflict if-newer
  %(prog)s init-config backup.ini
        """
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    backup = subparsers.add_parser("backup", help="Back up profile folders to a destination")
    backup.add_argument("profile", type=Path, help="Profile folder holding Desktop, Documents, ...")
    backup.add_argument("destination", type=Path, help="Backup destination folder")
    backup.add_argument(
        "--mirror",
        action="store_true",
        default=None,
        help="Delete destination files that no longer exist in the source"
    )
    _add_common_options(backup)

    restore = subparsers.add_parser("restore", help="Merge one or more backups into a profile")
    restore.add_argument("paths", type=Path, nargs="+", metavar="PATH",
                         help="Backup folders in merge order, followed by the target profile")
    restore.add_argument(
        "--on-conflict",
        choices=[p.value for p in ConflictPolicy],
        help="How to treat files that already exist in the profile (default: ask)"
    )
    _add_common_options(restore)

    init = subparsers.add_parser("init-config", help="Write an example config file")
    init.add_argument("path", type=Path, help="Where to write the config file")

    args = parser.parse_args(argv)
    if args.command == "restore":
        if len(args.paths) < 2:
            parser.error("restore needs at least one backup folder and a target profile")
        args.backups = args.paths[:-1]
        args.profile = args.paths[-1]
    return args


def _split(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def build_config(args: argparse.Namespace) -> SyncConfig:
    """Load the config file (if any) and apply command-line overrides."""
    config = load_config(args.config)
    if args.folders:
        config.folders = _split(args.folders)
    if args.synced_root is not None:
        config.synced_root = args.synced_root
    if args.exclude_ext is not None:
        config.exclude_extensions = _split(args.exclude_ext)
    if args.operator:
        config.operator = args.operator
    if args.retries is not None:
        config.retries = args.retries
    if args.retry_wait is not None:
        config.retry_wait = args.retry_wait
    if args.verify:
        config.verify = True
    if getattr(args, "mirror", None):
        config.mirror = True
    if getattr(args, "on_conflict", None):
        config.on_conflict = ConflictPolicy(args.on_conflict)
    config.validate()
    return config


def validate_sources(paths: list[Path]) -> None:
    """Check that every source root exists and is a directory."""
    for path in paths:
        if not path.exists():
            raise SourceNotFound(f"Source does not exist: {path}", details={"path": str(path)})
        if not path.is_dir():
            raise SourceNotFound(f"Source is not a directory: {path}", details={"path": str(path)})


def open_ledger(path: Path, reset: bool) -> Ledger:
    """Load the ledger for resuming, or start a new session on reset."""
    if reset:
        print("Resetting progress, starting a new session...")
        return Ledger.start_new(path)
    return Ledger.load(path)


def _run(args: argparse.Namespace) -> int:
    config = build_config(args)
    if args.command == "backup":
        validate_sources([args.profile])
        destination = args.destination.absolute()
    else:
        validate_sources(args.backups)
        destination = args.profile.absolute()

    check_destination(destination)
    ledger = open_ledger(args.ledger or config.ledger_path(destination), args.reset)
    executor = TransferExecutor(
        ledger,
        get_operator(config.operator),
        retries=config.retries,
        retry_wait=config.retry_wait,
        mirror=config.mirror if args.command == "backup" else False,
        exclude_extensions=config.exclude_extensions,
        log_path=config.copy_log_path(destination),
        on_progress=ProgressPrinter(ledger.files_done),
    )

    print("=" * 60)
    print("FOLDER BACKUP" if args.command == "backup" else "FOLDER RESTORE")
    print("=" * 60)
    print(f"Operator: {executor.operator.name}")
    print(f"Ledger:   {ledger.log_path}")

    if args.command == "backup":
        print(f"Profile:  {args.profile.absolute()}")
        print(f"Output:   {destination}")
        units = backup_units(args.profile.absolute(), destination, config.folders,
                             config.synced_root)
        summary = run_backup(units, ledger, executor, config.exclude_extensions, config.verify)
    else:
        for i, backup in enumerate(args.backups, start=1):
            print(f"Backup {i}: {backup.absolute()}")
        print(f"Profile:  {destination}")
        journal = ConflictJournal(config.journal_path(destination))
        if args.reset:
            journal.clear()
            journal = ConflictJournal(config.journal_path(destination))
        try:
            summary = run_restore(
                [b.absolute() for b in args.backups],
                destination,
                ledger,
                executor,
                config.on_conflict,
                config.folders,
                synced_root=config.synced_root,
                exclude_extensions=config.exclude_extensions,
                journal=journal,
                verify=config.verify,
            )
        finally:
            journal.close()

    print_summary(summary)
    return EXIT_FOLDERS_FAILED if summary.failed_folders else EXIT_OK


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s"
    )

    if args.command == "init-config":
        if args.path.exists():
            print(f"Error: Config file already exists: {args.path}")
            sys.exit(EXIT_ERROR)
        args.path.write_text(EXAMPLE_CONFIG, encoding="utf-8")
        print(f"Wrote example config to {args.path}")
        sys.exit(EXIT_OK)

    try:
        code = _run(args)
    except (ConfigError, SourceNotFound, DestinationUnwritable) as e:
        print(f"Error: {e}")
        sys.exit(EXIT_ERROR)
    except OSError as e:
        print(f"Error: {e}")
        sys.exit(EXIT_ERROR)
    except KeyboardInterrupt:
        print("\n\nInterrupted! Progress has been saved.")
        print("To resume, run the same command again.")
        print("To start fresh, use --reset flag.")
        sys.exit(EXIT_ERROR)
    sys.exit(code)
