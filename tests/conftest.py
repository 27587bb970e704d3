"""Shared test fixtures."""

import os
import tempfile
from pathlib import Path

import pytest

from folder_backup.db import ConflictJournal
from folder_backup.ledger import Ledger
from folder_backup.models import FileRecord, FolderUnit
from folder_backup.operators import CopyOperator, CopyResult, LocalCopyOperator


def write_file(path: Path, content: str, mtime: float = None) -> Path:
    """Write a file, creating parents, optionally setting its modification time."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


class ScriptedOperator(CopyOperator):
    """Operator returning scripted exit codes, optionally copying via the local operator."""

    name = "scripted"

    def __init__(self, exit_codes, copy=False, classifier=None):
        self.exit_codes = list(exit_codes)
        self.copy = copy
        self.requests = []
        self._classifier = classifier or LocalCopyOperator()

    def run(self, request):
        self.requests.append(request)
        if self.copy:
            LocalCopyOperator().run(request)
        code = self.exit_codes.pop(0) if len(self.exit_codes) > 1 else self.exit_codes[0]
        return CopyResult(code, f"scripted exit {code}")

    def classify(self, exit_code):
        return self._classifier.classify(exit_code)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_profile(temp_dir):
    """Create a profile with a few standard folders."""
    profile = temp_dir / "profile"
    write_file(profile / "Documents" / "report.txt", "quarterly report")
    write_file(profile / "Documents" / "sub" / "notes.txt", "notes")
    write_file(profile / "Documents" / "mail.PST", "mailbox archive")
    write_file(profile / "Pictures" / "cat.jpg", "not really a jpeg")
    return profile


@pytest.fixture
def ledger_path(temp_dir):
    """Path of a ledger log inside the temporary directory."""
    return temp_dir / "state" / "ledger.jsonl"


@pytest.fixture
def ledger(ledger_path):
    """A fresh ledger."""
    return Ledger(ledger_path, session_id="test-session")


@pytest.fixture
def folder_unit(temp_dir):
    """A standard folder unit with source and destination under temp_dir."""
    return FolderUnit("Documents", temp_dir / "src" / "Documents", temp_dir / "dst" / "Documents")


@pytest.fixture
def journal(temp_dir):
    """Create a ConflictJournal instance."""
    db = ConflictJournal(temp_dir / "state" / "conflicts.db")
    yield db
    try:
        db.close()
    except Exception:
        pass


@pytest.fixture
def sample_file_record():
    """Create a sample FileRecord for testing."""
    return FileRecord(
        relative_path="test/file.txt",
        size=1024,
        modified_time=1700000000.0
    )
