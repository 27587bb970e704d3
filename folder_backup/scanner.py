"""Folder scanning functionality."""

import logging
import os
from pathlib import Path
from typing import Iterable, Iterator, Optional

import xxhash

from .models import FileRecord

logger = logging.getLogger(__name__)


def _long_path(path: Path) -> str:
    """Convert path to long path format on Windows to handle paths > 260 chars."""
    path_str = str(Path(path).resolve())
    if os.name == 'nt' and not path_str.startswith('\\\\?\\'):
        return '\\\\?\\' + path_str
    return path_str


class ScanError:
    """Record of a file or directory that failed to scan."""

    def __init__(self, relative_path: str, absolute_path: str, error: str):
        self.relative_path = relative_path
        self.absolute_path = absolute_path
        self.error = error


def normalize_extensions(extensions: Iterable[str]) -> frozenset[str]:
    """Lower-case extensions and strip any leading dot ('.PST' -> 'pst')."""
    return frozenset(ext.lower().lstrip(".") for ext in extensions if ext.strip("."))


def is_excluded(relative_path: str, extensions: frozenset[str]) -> bool:
    """Check whether a file's extension is in the (normalized) exclusion set."""
    if not extensions:
        return False
    suffix = Path(relative_path).suffix
    return bool(suffix) and suffix[1:].lower() in extensions


def compute_file_hash(file_path: Path, chunk_size: int = 65536) -> str:
    """Compute hash of a file using xxhash (fast hashing algorithm)."""
    hasher = xxhash.xxh64()
    # Use long path format on Windows for paths > 260 chars
    with open(_long_path(file_path), 'rb') as f:
        while chunk := f.read(chunk_size):
            hasher.update(chunk)
    return hasher.hexdigest()


def same_content(first: Path, second: Path) -> bool:
    """Check whether two files hold identical bytes (size first, then xxhash)."""
    try:
        if os.stat(_long_path(first)).st_size != os.stat(_long_path(second)).st_size:
            return False
        return compute_file_hash(first) == compute_file_hash(second)
    except OSError as e:
        logger.warning("Could not compare %s and %s: %s", first, second, e)
        return False


def get_file_record(base_path: Path, relative_path: str) -> FileRecord:
    """Stat a file and build its FileRecord."""
    stat = os.stat(_long_path(base_path / relative_path))
    return FileRecord(
        relative_path=relative_path,
        size=stat.st_size,
        modified_time=stat.st_mtime
    )


def scan(
    root: Path,
    exclude_extensions: Iterable[str] = (),
    errors: Optional[list[ScanError]] = None
) -> Iterator[FileRecord]:
    """
    Lazily walk a folder tree and yield a FileRecord per file.

    Unreadable directories and files are logged and skipped; when an
    ``errors`` list is given they are also appended to it. A root that
    does not exist yields nothing. Every call starts a fresh walk.

    Args:
        root: Folder to walk
        exclude_extensions: Extensions to leave out, matched case-insensitively
        errors: Optional list collecting ScanError entries
    """
    root = Path(root)
    if not root.is_dir():
        return
    extensions = normalize_extensions(exclude_extensions)

    def on_walk_error(error: OSError) -> None:
        path = Path(error.filename) if error.filename else root
        rel = _relative(path, root)
        logger.warning("Cannot read directory %s: %s", path, error.strerror or error)
        if errors is not None:
            errors.append(ScanError(rel, str(path), str(error)))

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_walk_error):
        # Sorted walk keeps scans reproducible across runs
        dirnames.sort()
        for filename in sorted(filenames):
            abs_path = Path(dirpath) / filename
            # Use POSIX-style paths for cross-platform consistency
            rel_path = abs_path.relative_to(root).as_posix()
            if is_excluded(rel_path, extensions):
                continue
            try:
                yield get_file_record(root, rel_path)
            except OSError as e:
                logger.warning("Cannot read file %s: %s", abs_path, e)
                if errors is not None:
                    errors.append(ScanError(rel_path, str(abs_path), str(e)))


def scan_to_dict(
    root: Path,
    exclude_extensions: Iterable[str] = (),
    errors: Optional[list[ScanError]] = None
) -> dict[str, FileRecord]:
    """Scan a folder into a dictionary keyed by relative path."""
    return {record.relative_path: record for record in scan(root, exclude_extensions, errors)}


def _relative(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()
