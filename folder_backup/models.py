"""Data models for folder backup."""

from dataclasses import dataclass, asdict, field
from enum import Enum
from pathlib import Path
from typing import Optional


class FolderKind(Enum):
    """How a folder unit maps onto the destination."""
    STANDARD = "standard"
    SYNCED_ROOT = "synced_root"


class PlanStatus(Enum):
    """Status of a folder after planning."""
    PENDING = "pending"
    COMPLETE = "complete"
    SKIPPED_NOT_FOUND = "skipped_not_found"


class Resolution(Enum):
    """Outcome of a single file conflict."""
    SKIP = "skip"
    OVERWRITE = "overwrite"
    KEEP_NEWER = "keep_newer"
    PENDING = "pending"


class ConflictPolicy(Enum):
    """Conflict policy supplied by the caller."""
    ASK = "ask"
    SKIP = "skip"
    OVERWRITE = "overwrite"
    IF_NEWER = "if-newer"


class Tier(Enum):
    """Three-level outcome of a folder transfer."""
    SUCCESS = "success"
    WARNING = "warning"
    FAILED = "failed"


@dataclass(frozen=True)
class FileRecord:
    """Snapshot of one file at scan time."""
    relative_path: str
    size: int
    modified_time: float

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "FileRecord":
        return cls(**data)


@dataclass(frozen=True)
class FolderUnit:
    """One top-level folder transferred during a session."""
    name: str
    source_path: Path
    dest_path: Path
    kind: FolderKind = FolderKind.STANDARD
    origin: str = ""

    @property
    def ledger_key(self) -> str:
        """Key under which completed files are recorded in the ledger."""
        if self.origin:
            return f"{self.origin}/{self.name}"
        return self.name


@dataclass(frozen=True)
class ProgressMarker:
    """Counters captured at one point of a session."""
    folder_index: int
    total_folders: int
    files_done_estimate: int
    total_files_estimate: int
    timestamp: str


@dataclass
class TransferPlan:
    """Work list for one folder, recomputed on every run."""
    folder: FolderUnit
    files_to_copy: set[str] = field(default_factory=set)
    files_to_skip: set[str] = field(default_factory=set)
    status: PlanStatus = PlanStatus.PENDING
    records: dict[str, FileRecord] = field(default_factory=dict)
    # Subset of files_to_skip kept back by a conflict decision (or an aborted review)
    conflicts_skipped: set[str] = field(default_factory=set)


@dataclass
class ConflictRecord:
    """A relative path present on both sides of a merge."""
    relative_path: str
    existing: FileRecord
    incoming: FileRecord
    resolution: Resolution = Resolution.PENDING

    def to_dict(self) -> dict:
        return {
            "relative_path": self.relative_path,
            "existing": self.existing.to_dict(),
            "incoming": self.incoming.to_dict(),
            "resolution": self.resolution.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConflictRecord":
        return cls(
            relative_path=data["relative_path"],
            existing=FileRecord.from_dict(data["existing"]),
            incoming=FileRecord.from_dict(data["incoming"]),
            resolution=Resolution(data["resolution"]),
        )


@dataclass
class FolderOutcome:
    """Result of executing the plan for one folder."""
    folder: FolderUnit
    status: Tier
    exit_detail: str
    copied: int = 0
    skipped: int = 0
    exit_code: Optional[int] = None
    conflicts_skipped: int = 0
    source_missing: bool = False

    @property
    def label(self) -> str:
        """Status shown to the user; a missing source reads as skipped."""
        if self.source_missing:
            return "SKIPPED"
        return self.status.value.upper()


@dataclass
class SessionSummary:
    """End-of-run report handed to the orchestration layer."""
    session_id: str
    outcomes: list[FolderOutcome]
    files_copied: int
    files_skipped: int
    elapsed_seconds: float
    ledger_path: Path
    conflicts_skipped: int = 0

    @property
    def failed_folders(self) -> list[FolderOutcome]:
        return [o for o in self.outcomes if o.status is Tier.FAILED]
