"""Progress estimates and display formatting. No side effects."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .models import ProgressMarker


@dataclass(frozen=True)
class ProgressEstimate:
    """Percent complete and estimated seconds remaining."""
    percent: float
    eta_seconds: Optional[float]


def percent_complete(done: int, total: int) -> float:
    """Percentage of work done, clamped to 0-100. An empty job is complete."""
    if total <= 0:
        return 100.0
    return max(0.0, min(100.0, done * 100.0 / total))


def estimate(marker: ProgressMarker, elapsed_seconds: float, files_at_start: int = 0) -> ProgressEstimate:
    """
    Derive percent complete and ETA from a marker.

    The rate is measured only over files done in this run (``files_at_start``
    were already done when the session resumed). No ETA until at least one
    file has been copied in this run.
    """
    done = marker.files_done_estimate
    total = marker.total_files_estimate
    percent = percent_complete(done, total)
    done_this_run = done - files_at_start
    if done >= total:
        return ProgressEstimate(percent, 0.0)
    if done_this_run <= 0 or elapsed_seconds <= 0:
        return ProgressEstimate(percent, None)
    rate = done_this_run / elapsed_seconds
    return ProgressEstimate(percent, (total - done) / rate)


def format_timestamp(timestamp: float) -> str:
    """Format a Unix timestamp as a human-readable string."""
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def format_size(size: int) -> str:
    """Format file size in human-readable form."""
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def format_duration(seconds: Optional[float]) -> str:
    """Format a duration as e.g. '1h 02m 03s'."""
    if seconds is None:
        return "unknown"
    seconds = int(round(seconds))
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {seconds:02d}s"
    if minutes:
        return f"{minutes}m {seconds:02d}s"
    return f"{seconds}s"


def format_progress(marker: ProgressMarker, elapsed_seconds: float, files_at_start: int = 0) -> str:
    """One-line progress description for the console."""
    result = estimate(marker, elapsed_seconds, files_at_start)
    return (
        f"Folder {marker.folder_index}/{marker.total_folders} | "
        f"{marker.files_done_estimate}/{marker.total_files_estimate} files "
        f"({result.percent:.1f}%) | ETA {format_duration(result.eta_seconds)}"
    )
