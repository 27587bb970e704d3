"""Append-only progress ledger used to resume interrupted sessions."""

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Mapping, Optional

from .errors import LedgerCorrupt
from .models import FileRecord, ProgressMarker

logger = logging.getLogger(__name__)

START = "start"
FINISH = "finish"
FAILED = "failed"
EVENTS = (START, FINISH, FAILED)

REQUIRED_KEYS = (
    "session_id", "event", "folder", "folder_index", "total_folders",
    "folders_done", "completed_delta", "files_done", "total_files", "timestamp",
)


def new_session_id() -> str:
    """Generate a short unique session identifier."""
    return uuid.uuid4().hex[:12]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def parse_record(line: str) -> Optional[dict]:
    """Parse one ledger line, returning None for anything malformed."""
    line = line.strip()
    if not line:
        return None
    try:
        record = json.loads(line)
    except ValueError:
        return None
    if not isinstance(record, dict) or any(key not in record for key in REQUIRED_KEYS):
        return None
    if record["event"] not in EVENTS or not isinstance(record["completed_delta"], list):
        return None
    return record


def read_records(log_path: Path) -> list[dict]:
    """
    Read every valid record of the latest session in a ledger log.

    Raises LedgerCorrupt when the file has content but no valid record.
    """
    records = []
    with open(log_path, "r", encoding="utf-8", errors="replace") as f:
        for line in f:
            record = parse_record(line)
            if record is not None:
                records.append(record)
    if not records:
        if log_path.stat().st_size > 0:
            raise LedgerCorrupt(
                f"Ledger contains no valid records: {log_path}",
                details={"path": str(log_path)}
            )
        return []
    latest = records[-1]["session_id"]
    return [r for r in records if r["session_id"] == latest]


class Ledger:
    """
    Persistent record of which files each folder has had confirmed copied.

    Completed sets only grow within a session. Every persisted marker is
    appended as one JSON line; history is never rewritten, so a crash
    mid-write can only damage the final line, which is ignored on load.
    """

    def __init__(self, log_path: Path, session_id: Optional[str] = None):
        self.log_path = Path(log_path)
        self.session_id = session_id or new_session_id()
        self.completed_files: dict[str, set[str]] = {}
        self.last_marker: Optional[ProgressMarker] = None
        self.last_event: Optional[dict] = None
        self.finished_folders: set[str] = set()
        self.planned_files: dict[str, set[str]] = {}
        self.unplanned_starts: dict[str, float] = {}
        self.corrupt = False
        self.folder_index = 0
        self.total_folders = 0
        self.total_files = 0
        self._pending: dict[str, set[str]] = {}

    @classmethod
    def load(cls, log_path: Path) -> "Ledger":
        """
        Rebuild resume state from a previous run's log.

        A missing log starts a fresh session. A log with no valid records
        yields an empty ledger (full resync) rather than an error.
        """
        log_path = Path(log_path)
        if not log_path.exists():
            return cls(log_path)

        try:
            records = read_records(log_path)
        except LedgerCorrupt as e:
            logger.warning("%s; starting without resume data", e)
            ledger = cls(log_path)
            ledger.corrupt = True
            return ledger
        except OSError as e:
            logger.warning("Cannot read ledger %s: %s; starting without resume data", log_path, e)
            ledger = cls(log_path)
            ledger.corrupt = True
            return ledger

        if not records:
            return cls(log_path)

        ledger = cls(log_path, session_id=records[0]["session_id"])
        for record in records:
            folder = record["folder"]
            done = ledger.completed_files.setdefault(folder, set())
            done.update(str(p) for p in record["completed_delta"])
            if record["event"] == FINISH:
                ledger.finished_folders.add(folder)
            elif record["event"] == START:
                ledger._note_start(folder, record.get("planned"), record["timestamp"])

        last = records[-1]
        ledger.last_event = last
        ledger.folder_index = last["folder_index"]
        ledger.total_folders = last["total_folders"]
        ledger.total_files = last["total_files"]
        ledger.last_marker = ProgressMarker(
            folder_index=last["folder_index"],
            total_folders=last["total_folders"],
            files_done_estimate=last["files_done"],
            total_files_estimate=last["total_files"],
            timestamp=last["timestamp"],
        )
        logger.debug(
            "Loaded ledger %s: session %s, %d records",
            log_path, ledger.session_id, len(records)
        )
        return ledger

    @classmethod
    def start_new(cls, log_path: Path) -> "Ledger":
        """Begin a brand-new session, ignoring earlier history in the log."""
        return cls(Path(log_path))

    @property
    def files_done(self) -> int:
        return sum(len(paths) for paths in self.completed_files.values())

    @property
    def folders_done(self) -> int:
        return len(self.finished_folders)

    def completed(self, folder_key: str) -> frozenset[str]:
        """Return the relative paths confirmed copied for a folder."""
        return frozenset(self.completed_files.get(folder_key, ()))

    def is_completed(self, folder_key: str, relative_path: str) -> bool:
        return relative_path in self.completed_files.get(folder_key, ())

    def record_completed(self, folder_key: str, relative_path: str) -> None:
        """Mark a file as copied. Recording the same pair twice has no effect."""
        done = self.completed_files.setdefault(folder_key, set())
        if relative_path in done:
            return
        done.add(relative_path)
        self._pending.setdefault(folder_key, set()).add(relative_path)

    def _note_start(self, folder_key: str, planned: Optional[list], timestamp: str) -> None:
        if isinstance(planned, list):
            self.planned_files.setdefault(folder_key, set()).update(str(p) for p in planned)
            return
        try:
            started = datetime.fromisoformat(timestamp).timestamp()
        except (TypeError, ValueError):
            return
        self.unplanned_starts.setdefault(folder_key, started)

    def planned(self, folder_key: str) -> frozenset[str]:
        """Return the paths earlier transfers of this session set out to write."""
        return frozenset(self.planned_files.get(folder_key, ()))

    def interrupted_writes(self, folder_key: str, destination: Mapping[str, FileRecord]) -> set[str]:
        """
        Destination paths that may be leftovers of an earlier transfer of
        this folder in the current session.

        A path counts when a start marker listed it as planned. A start
        marker without a plan marks every file modified at or after it.
        """
        planned = self.planned_files.get(folder_key, set())
        leftovers = {path for path in destination if path in planned}
        started = self.unplanned_starts.get(folder_key)
        if started is not None:
            leftovers.update(
                path for path, record in destination.items()
                if record.modified_time >= started
            )
        return leftovers

    def set_totals(self, total_folders: int, total_files: int) -> None:
        self.total_folders = total_folders
        self.total_files = total_files

    def snapshot(self) -> ProgressMarker:
        """Capture the current counters."""
        return ProgressMarker(
            folder_index=self.folder_index,
            total_folders=self.total_folders,
            files_done_estimate=self.files_done,
            total_files_estimate=max(self.total_files, self.files_done),
            timestamp=_now(),
        )

    def persist(
        self,
        event: str,
        folder_key: str,
        folder_index: int,
        planned: Optional[Iterable[str]] = None
    ) -> ProgressMarker:
        """
        Append a marker for a folder, carrying the paths completed since
        the previous marker for that folder.

        A start marker may also carry ``planned``, the paths the transfer
        is about to write, so a resumed run can tell its own partially
        written files from files that were already at the destination.
        """
        if event not in EVENTS:
            raise ValueError(f"Unknown ledger event: {event}")
        self.folder_index = folder_index
        if event == FINISH:
            self.finished_folders.add(folder_key)
        marker = self.snapshot()
        delta = sorted(self._pending.pop(folder_key, ()))
        record = {
            "session_id": self.session_id,
            "event": event,
            "folder": folder_key,
            "folder_index": marker.folder_index,
            "total_folders": marker.total_folders,
            "folders_done": self.folders_done,
            "completed_delta": delta,
            "files_done": marker.files_done_estimate,
            "total_files": marker.total_files_estimate,
            "timestamp": marker.timestamp,
        }
        if event == START and planned is not None:
            record["planned"] = sorted(planned)
        self._append(record)
        self.last_marker = marker
        if event == START:
            self._note_start(folder_key, record.get("planned"), marker.timestamp)
        self.last_event = record
        return marker

    def _ends_mid_line(self) -> bool:
        """Check whether the log ends with a partially written line."""
        try:
            with open(self.log_path, "rb") as f:
                f.seek(0, os.SEEK_END)
                if f.tell() == 0:
                    return False
                f.seek(-1, os.SEEK_END)
                return f.read(1) != b"\n"
        except FileNotFoundError:
            return False

    def _append(self, record: dict) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record, ensure_ascii=False)
        # Terminate a truncated tail so the new record starts on its own line
        prefix = "\n" if self._ends_mid_line() else ""
        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(prefix + line + "\n")
            f.flush()
            os.fsync(f.fileno())
