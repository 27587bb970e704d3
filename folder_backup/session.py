"""Backup and restore-merge sessions: folders processed one at a time, in order."""

import logging
import os
import time
from pathlib import Path
from typing import Iterable, Optional

from tqdm import tqdm

from .db import ConflictJournal
from .errors import ConflictAborted, DestinationUnwritable
from .executor import TransferExecutor
from .folders import restore_units
from .ledger import Ledger
from .models import (
    ConflictPolicy,
    FileRecord,
    FolderOutcome,
    FolderUnit,
    PlanStatus,
    ProgressMarker,
    Resolution,
    SessionSummary,
    Tier,
)
from .planner import apply_resolutions, plan
from .reporter import format_duration, format_progress
from .resolver import ConsolePrompt, Prompt, resolve, was_aborted
from .scanner import same_content, scan, scan_to_dict

logger = logging.getLogger(__name__)


def check_destination(destination: Path) -> None:
    """
    Make sure the destination root exists and accepts writes.

    This is the only session-fatal check: it runs before any folder starts.
    """
    test_file = Path(destination) / f".write_test_{os.getpid()}"
    try:
        Path(destination).mkdir(parents=True, exist_ok=True)
        test_file.write_bytes(b"")
        test_file.unlink()
    except OSError as e:
        raise DestinationUnwritable(
            f"Destination is not writable: {destination}: {e}",
            details={"destination": str(destination)},
            cause=e
        ) from e


class ProgressPrinter:
    """Print a progress line for every marker the executor persists."""

    def __init__(self, files_at_start: int = 0):
        self.started = time.monotonic()
        self.files_at_start = files_at_start

    def __call__(self, marker: ProgressMarker) -> None:
        elapsed = time.monotonic() - self.started
        tqdm.write(format_progress(marker, elapsed, self.files_at_start))


def _source_inventory(unit: FolderUnit, exclude_extensions: Iterable[str]) -> Optional[dict[str, FileRecord]]:
    if not unit.source_path.is_dir():
        return None
    return scan_to_dict(unit.source_path, exclude_extensions)


def _report_outcome(outcome: FolderOutcome) -> None:
    tqdm.write(
        f"  [{outcome.label}] {outcome.folder.name}: {outcome.exit_detail} "
        f"({outcome.copied} copied, {outcome.skipped} already done"
        + (f", {outcome.conflicts_skipped} kept as existing" if outcome.conflicts_skipped else "")
        + ")"
    )


def _announce_resume(ledger: Ledger) -> None:
    if ledger.corrupt:
        print("Ledger could not be read; all files will be checked again.")
    elif ledger.last_marker is not None:
        last = ledger.last_event or {}
        state = "finished" if last.get("event") == "finish" else "not confirmed"
        print(
            f"Resuming session {ledger.session_id}: last folder reached "
            f"{ledger.last_marker.folder_index}/{ledger.last_marker.total_folders} "
            f"({last.get('folder', '?')}, {state}), "
            f"{ledger.files_done} files already copied"
        )


def _summarize(ledger: Ledger, outcomes: list[FolderOutcome], started: float) -> SessionSummary:
    return SessionSummary(
        session_id=ledger.session_id,
        outcomes=outcomes,
        files_copied=sum(o.copied for o in outcomes),
        files_skipped=sum(o.skipped for o in outcomes),
        elapsed_seconds=time.monotonic() - started,
        ledger_path=ledger.log_path,
        conflicts_skipped=sum(o.conflicts_skipped for o in outcomes),
    )


def run_backup(
    units: list[FolderUnit],
    ledger: Ledger,
    executor: TransferExecutor,
    exclude_extensions: Iterable[str] = (),
    verify: bool = False
) -> SessionSummary:
    """
    Back up every folder unit in order.

    A folder whose transfer fails is reported and the session moves on to
    the next folder.
    """
    started = time.monotonic()
    exclude_extensions = tuple(exclude_extensions)
    _announce_resume(ledger)

    outcomes = []
    planned_total = 0
    with tqdm(total=len(units), desc="Folders", unit="folder") as pbar:
        for index, unit in enumerate(units, start=1):
            pbar.set_postfix_str(unit.name)
            source = scan(unit.source_path, exclude_extensions) if unit.source_path.is_dir() else None
            destination = scan_to_dict(unit.dest_path, exclude_extensions) if verify else None
            transfer_plan = plan(source, unit, ledger, destination)
            planned_total += len(transfer_plan.records)
            ledger.set_totals(len(units), max(ledger.total_files, planned_total))

            outcome = executor.execute(transfer_plan, index)
            outcomes.append(outcome)
            _report_outcome(outcome)
            pbar.update(1)

    return _summarize(ledger, outcomes, started)


def _content_checker(unit: FolderUnit):
    def check(existing: FileRecord, incoming: FileRecord) -> bool:
        if existing.size != incoming.size:
            return False
        return same_content(unit.dest_path / existing.relative_path,
                            unit.source_path / incoming.relative_path)
    return check


def merge_folder(
    unit: FolderUnit,
    folder_index: int,
    ledger: Ledger,
    executor: TransferExecutor,
    policy: ConflictPolicy,
    exclude_extensions: tuple[str, ...] = (),
    journal: Optional[ConflictJournal] = None,
    prompt: Optional[Prompt] = None,
    verify: bool = False
) -> FolderOutcome:
    """
    Merge one backed-up folder into its destination.

    Files already confirmed by the ledger are skipped; the rest are checked
    against what the destination already holds and every collision goes
    through the conflict resolver before the executor runs. Files that an
    interrupted transfer of this folder set out to write are recopied
    without a conflict review.
    """
    source = _source_inventory(unit, exclude_extensions)
    existing = scan_to_dict(unit.dest_path, exclude_extensions)
    transfer_plan = plan(
        source.values() if source is not None else None,
        unit,
        ledger,
        existing if verify else None
    )

    aborted = None
    if transfer_plan.status is PlanStatus.PENDING:
        incoming = {p: transfer_plan.records[p] for p in transfer_plan.files_to_copy}
        # Files an interrupted transfer of this folder was writing are recopied, not conflicts
        leftovers = {p for p in ledger.interrupted_writes(unit.ledger_key, existing) if p in incoming}
        if leftovers:
            logger.info("%s: recopying %d files left by an interrupted transfer", unit.name, len(leftovers))
            existing = {p: r for p, r in existing.items() if p not in leftovers}
        previous = (
            journal.previous_for_folder(ledger.session_id, unit.ledger_key)
            if journal is not None else None
        )
        if policy is ConflictPolicy.ASK and prompt is None:
            prompt = ConsolePrompt(unit.dest_path, unit.source_path)
        conflicts = resolve(existing, incoming, policy, prompt,
                            same_content=_content_checker(unit), previous=previous)
        if journal is not None:
            fresh = [c for c in conflicts if not previous or c.relative_path not in previous]
            journal.log_batch(ledger.session_id, unit.ledger_key, fresh)
        if was_aborted(conflicts):
            undecided = sum(1 for c in conflicts if c.resolution is Resolution.PENDING)
            aborted = ConflictAborted(
                f"Conflict review aborted, {undecided} conflicts left undecided",
                details={"folder": unit.name, "undecided": undecided}
            )
        if conflicts:
            overwritten = sum(1 for c in conflicts if c.resolution is Resolution.OVERWRITE)
            tqdm.write(f"  {unit.name}: {len(conflicts)} conflicts, {overwritten} overwritten")
        apply_resolutions(transfer_plan, conflicts)

    # Lower bound: everything done so far plus what this folder still needs
    ledger.set_totals(
        ledger.total_folders,
        max(ledger.total_files, ledger.files_done + len(transfer_plan.files_to_copy))
    )

    outcome = executor.execute(transfer_plan, folder_index)
    if aborted is not None:
        logger.warning("%s: %s", unit.name, aborted)
        outcome.exit_detail = f"{outcome.exit_detail}; {aborted}"
        if outcome.status is Tier.SUCCESS:
            outcome.status = Tier.WARNING
    return outcome


def run_restore(
    backups: list[Path],
    profile: Path,
    ledger: Ledger,
    executor: TransferExecutor,
    policy: ConflictPolicy,
    names: Iterable[str],
    synced_root: Optional[Path] = None,
    exclude_extensions: Iterable[str] = (),
    journal: Optional[ConflictJournal] = None,
    prompt: Optional[Prompt] = None,
    verify: bool = False
) -> SessionSummary:
    """
    Restore one or more backups into a profile, merging them in order.

    Each later backup is merged on top of what the earlier ones left at the
    destination. Merges never delete destination files.
    """
    started = time.monotonic()
    exclude_extensions = tuple(exclude_extensions)
    names = list(names)
    if executor.mirror:
        logger.warning("Mirror mode is ignored when restoring backups")
        executor.mirror = False
    _announce_resume(ledger)

    units = []
    for backup in backups:
        origin = Path(backup).resolve().as_posix()
        units += restore_units(backup, profile, names, synced_root, origin=origin)

    outcomes = []
    with tqdm(total=len(units), desc="Folders", unit="folder") as pbar:
        for index, unit in enumerate(units, start=1):
            pbar.set_postfix_str(unit.name)
            ledger.set_totals(len(units), ledger.total_files)
            outcome = merge_folder(unit, index, ledger, executor, policy, exclude_extensions,
                                   journal, prompt, verify)
            outcomes.append(outcome)
            _report_outcome(outcome)
            pbar.update(1)

    return _summarize(ledger, outcomes, started)


def print_summary(summary: SessionSummary) -> None:
    """Print the end-of-session report."""
    print("\n" + "=" * 60)
    print("SESSION COMPLETE" if not summary.failed_folders else "SESSION FINISHED WITH FAILURES")
    print("=" * 60)
    print(f"Session: {summary.session_id}")
    for outcome in summary.outcomes:
        print(f"  {outcome.folder.name:<28} {outcome.label:<8} {outcome.exit_detail}")
    print(f"Files copied: {summary.files_copied}")
    print(f"Files already done (skipped): {summary.files_skipped}")
    if summary.conflicts_skipped:
        print(f"Conflicts kept as existing: {summary.conflicts_skipped}")
    print(f"Elapsed: {format_duration(summary.elapsed_seconds)}")
    print(f"Ledger: {summary.ledger_path}")

    if summary.failed_folders:
        print(f"\n--- Failed folders ({len(summary.failed_folders)}) ---")
        for outcome in summary.failed_folders:
            print(f"  {outcome.folder.name}: {outcome.folder.source_path}")
            print(f"    {outcome.exit_detail}")
        print("Run the same command again to retry them.")
