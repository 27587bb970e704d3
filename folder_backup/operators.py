"""Bulk copy operators invoked once per folder."""

import logging
import os
import platform
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from .models import Tier
from .scanner import _long_path, is_excluded, normalize_extensions, scan

logger = logging.getLogger(__name__)

LOG_TS_FMT = "%Y-%m-%d %H:%M:%S"

# Exit bits shared by robocopy and the in-process operator
EXIT_COPIED = 1
EXIT_EXTRAS = 2
EXIT_MISMATCH = 4
EXIT_FAILED_COPIES = 8
EXIT_FATAL = 16

# Local operator reuses the mismatch bit for files held open by another process
EXIT_LOCKED = EXIT_MISMATCH

RSYNC_PARTIAL = 23
RSYNC_VANISHED = 24

# Beyond this many explicit excludes robocopy reads them from a job file
MAX_INLINE_EXCLUDES = 200


@dataclass(frozen=True)
class ExitClass:
    """Tier of a raw exit code and whether a rerun may help."""
    tier: Tier
    retryable: bool = False


@dataclass
class CopyRequest:
    """Everything an operator needs to transfer one folder."""
    source: Path
    destination: Path
    mirror: bool = False
    exclude_extensions: tuple[str, ...] = ()
    exclude_paths: frozenset[str] = field(default_factory=frozenset)
    retries: int = 3
    retry_wait: int = 5
    log_path: Optional[Path] = None


@dataclass
class CopyResult:
    """Raw exit status of one operator run."""
    exit_code: int
    detail: str = ""


class CopyError:
    """Record of a file that failed to copy."""

    def __init__(self, relative_path: str, src_path: str, dst_path: str, error: str,
                 locked: bool = False):
        self.relative_path = relative_path
        self.src_path = src_path
        self.dst_path = dst_path
        self.error = error
        self.locked = locked


def copy_file(src: Path, dst: Path) -> None:
    """Copy a file, creating parent directories if needed."""
    # Use long path format on Windows
    dst_long = _long_path(dst)
    dst_parent = os.path.dirname(dst_long)
    os.makedirs(dst_parent, exist_ok=True)
    shutil.copy2(_long_path(src), dst_long)


def safe_copy_file(src: Path, dst: Path, relative_path: str) -> CopyError | None:
    """
    Copy a file safely, returning a CopyError if the copy fails.
    Returns None on success.
    """
    try:
        copy_file(src, dst)
        return None
    except PermissionError as e:
        # Sharing violations surface as PermissionError on Windows
        return CopyError(relative_path, str(src), str(dst), str(e), locked=True)
    except (OSError, shutil.Error) as e:
        return CopyError(relative_path, str(src), str(dst), str(e))


def append_log_line(log_path: Optional[Path], msg: str) -> None:
    """Append a timestamped line to an operator log, if one was requested."""
    if log_path is None:
        return
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("a", encoding="utf-8") as f:
        f.write(f"[{datetime.now().strftime(LOG_TS_FMT)}] {msg}\n")


class CopyOperator:
    """Base class for an external bulk copy capability."""

    name = "base"

    def run(self, request: CopyRequest) -> CopyResult:
        raise NotImplementedError

    def classify(self, exit_code: int) -> ExitClass:
        raise NotImplementedError


def classify_exit(operator: CopyOperator, exit_code: int) -> ExitClass:
    """Map an operator's raw exit code onto the three outcome tiers."""
    return operator.classify(exit_code)


def classify_bitmask(exit_code: int) -> ExitClass:
    """Classify robocopy-style bitmask exit codes."""
    if exit_code < 0 or exit_code >= EXIT_FAILED_COPIES:
        return ExitClass(Tier.FAILED)
    if exit_code & EXIT_MISMATCH:
        return ExitClass(Tier.WARNING)
    return ExitClass(Tier.SUCCESS)


class LocalCopyOperator(CopyOperator):
    """
    In-process operator built on shutil.copy2.

    Unchanged files (same size and modification time) are left alone, like
    robocopy does. Exit codes follow robocopy's bitmask; files locked by
    another process set EXIT_LOCKED, which is retryable.
    """

    name = "local"

    def classify(self, exit_code: int) -> ExitClass:
        result = classify_bitmask(exit_code)
        if result.tier is Tier.WARNING:
            return ExitClass(Tier.WARNING, retryable=bool(exit_code & EXIT_LOCKED))
        return result

    def run(self, request: CopyRequest) -> CopyResult:
        source = Path(request.source)
        destination = Path(request.destination)
        try:
            destination.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            append_log_line(request.log_path, f"ERROR destination unusable: {destination}: {e}")
            return CopyResult(EXIT_FATAL, f"Destination unusable: {e}")

        append_log_line(request.log_path, f"Copy {source} -> {destination}")
        extensions = normalize_extensions(request.exclude_extensions)
        copied = 0
        errors: list[CopyError] = []
        seen: set[str] = set()

        for record in scan(source, request.exclude_extensions):
            rel = record.relative_path
            seen.add(rel)
            if rel in request.exclude_paths:
                continue
            dst = destination / rel
            if _unchanged(dst, record.size, record.modified_time):
                continue
            error = safe_copy_file(source / rel, dst, rel)
            if error:
                errors.append(error)
                append_log_line(request.log_path, f"ERROR {rel}: {error.error}")
            else:
                copied += 1

        purged = 0
        if request.mirror:
            purged = self._purge_extras(destination, seen, request.exclude_paths, extensions,
                                        request.log_path)

        exit_code = 0
        if copied:
            exit_code |= EXIT_COPIED
        if purged:
            exit_code |= EXIT_EXTRAS
        if any(e.locked for e in errors):
            exit_code |= EXIT_LOCKED
        if any(not e.locked for e in errors):
            exit_code |= EXIT_FAILED_COPIES

        detail = f"{copied} copied, {purged} purged, {len(errors)} errors"
        append_log_line(request.log_path, f"Done: {detail} (exit {exit_code})")
        return CopyResult(exit_code, detail)

    @staticmethod
    def _purge_extras(destination: Path, keep: set[str], protected: frozenset[str],
                      extensions: frozenset[str], log_path: Optional[Path]) -> int:
        purged = 0
        for record in scan(destination):
            rel = record.relative_path
            if rel in keep or rel in protected or is_excluded(rel, extensions):
                continue
            try:
                os.remove(_long_path(destination / rel))
                purged += 1
                append_log_line(log_path, f"Purged extra file {rel}")
            except OSError as e:
                append_log_line(log_path, f"ERROR purging {rel}: {e}")
        return purged


def _unchanged(dst: Path, size: int, modified_time: float) -> bool:
    # FAT volumes store modification times with 2 second resolution
    try:
        stat = os.stat(_long_path(dst))
    except OSError:
        return False
    return stat.st_size == size and abs(stat.st_mtime - modified_time) < 2.0


class RobocopyOperator(CopyOperator):
    """Windows robocopy. Exit codes 0-3 succeed, 4-7 warn, 8 and above fail."""

    name = "robocopy"

    def __init__(self, executable: str = "robocopy", threads: int = 8):
        self.executable = executable
        self.threads = threads

    def classify(self, exit_code: int) -> ExitClass:
        return classify_bitmask(exit_code)

    def build_command(self, request: CopyRequest, job_file: Optional[Path] = None) -> list[str]:
        cmd = [
            self.executable,
            str(request.source),
            str(request.destination),
            "/MIR" if request.mirror else "/E",
            "/COPY:DAT",
            f"/R:{request.retries}",
            f"/W:{request.retry_wait}",
            f"/MT:{self.threads}",
            "/XJ",
            "/NP",
            "/NDL",
        ]
        patterns = [f"*.{ext}" for ext in sorted(normalize_extensions(request.exclude_extensions))]
        if job_file is None:
            patterns += [
                str(Path(request.source) / rel) for rel in sorted(request.exclude_paths)
            ]
        if patterns:
            cmd += ["/XF", *patterns]
        if job_file is not None:
            cmd.append(f"/JOB:{job_file}")
        if request.log_path is not None:
            cmd += [f"/LOG+:{request.log_path}", "/TEE"]
        return cmd

    @staticmethod
    def write_job_file(request: CopyRequest) -> Path:
        """Write explicit excludes to a robocopy job file."""
        fd, name = tempfile.mkstemp(suffix=".rcj", prefix="folder_backup_")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write("/XF\n")
            for rel in sorted(request.exclude_paths):
                f.write(f"\t{Path(request.source) / rel}\n")
        return Path(name)

    def run(self, request: CopyRequest) -> CopyResult:
        job_file = None
        if len(request.exclude_paths) > MAX_INLINE_EXCLUDES:
            job_file = self.write_job_file(request)
        try:
            cmd = self.build_command(request, job_file)
            logger.debug("Running: %s", " ".join(cmd[:6]))
            result = subprocess.run(cmd, capture_output=True, text=True)
        finally:
            if job_file is not None:
                job_file.unlink(missing_ok=True)
        return CopyResult(result.returncode, (result.stderr or "").strip()[:500])


class RsyncOperator(CopyOperator):
    """
    rsync. 0 succeeds, 24 (vanished source files) warns, 23 (partial
    transfer, usually locked or unreadable files) warns and is retryable.
    """

    name = "rsync"

    def __init__(self, executable: str = "rsync"):
        self.executable = executable

    def classify(self, exit_code: int) -> ExitClass:
        if exit_code == 0:
            return ExitClass(Tier.SUCCESS)
        if exit_code == RSYNC_PARTIAL:
            return ExitClass(Tier.WARNING, retryable=True)
        if exit_code == RSYNC_VANISHED:
            return ExitClass(Tier.WARNING)
        return ExitClass(Tier.FAILED)

    @staticmethod
    def exclude_patterns(request: CopyRequest) -> list[str]:
        """Anchored exclude patterns, with rsync wildcards escaped."""
        patterns = []
        for ext in sorted(normalize_extensions(request.exclude_extensions)):
            # rsync matching is case-sensitive; spell out each letter
            patterns.append("*." + "".join(
                f"[{c.lower()}{c.upper()}]" if c.isalpha() else c for c in ext
            ))
        for rel in sorted(request.exclude_paths):
            escaped = "".join("\\" + c if c in "*?[\\" else c for c in rel)
            patterns.append("/" + escaped)
        return patterns

    def build_command(self, request: CopyRequest, exclude_file: Optional[Path] = None) -> list[str]:
        cmd = [self.executable, "-a"]
        if request.mirror:
            cmd.append("--delete")
        if exclude_file is not None:
            cmd.append(f"--exclude-from={exclude_file}")
        if request.log_path is not None:
            cmd.append(f"--log-file={request.log_path}")
        # Trailing slash copies the folder's contents, not the folder itself
        cmd += [f"{request.source}/", f"{request.destination}/"]
        return cmd

    def run(self, request: CopyRequest) -> CopyResult:
        Path(request.destination).mkdir(parents=True, exist_ok=True)
        patterns = self.exclude_patterns(request)
        exclude_file = None
        if patterns:
            fd, name = tempfile.mkstemp(suffix=".txt", prefix="folder_backup_")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write("\n".join(patterns) + "\n")
            exclude_file = Path(name)
        try:
            cmd = self.build_command(request, exclude_file)
            logger.debug("Running: %s", " ".join(cmd))
            result = subprocess.run(cmd, capture_output=True, text=True)
        finally:
            if exclude_file is not None:
                exclude_file.unlink(missing_ok=True)
        return CopyResult(result.returncode, (result.stderr or "").strip()[:500])


OPERATORS = {
    LocalCopyOperator.name: LocalCopyOperator,
    RobocopyOperator.name: RobocopyOperator,
    RsyncOperator.name: RsyncOperator,
}


def get_operator(name: str = "auto") -> CopyOperator:
    """
    Build an operator by name. "auto" picks robocopy on Windows, rsync when
    it is installed, and the in-process operator otherwise.
    """
    if name == "auto":
        if platform.system() == "Windows" and shutil.which("robocopy"):
            return RobocopyOperator()
        if shutil.which("rsync"):
            return RsyncOperator()
        return LocalCopyOperator()
    try:
        return OPERATORS[name]()
    except KeyError:
        raise ValueError(f"Unknown copy operator: {name}") from None
