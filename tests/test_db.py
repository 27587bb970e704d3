"""Tests for folder_backup.db module."""

import pytest

from folder_backup.db import ConflictJournal
from folder_backup.models import ConflictRecord, FileRecord, Resolution


def _record(path, resolution):
    return ConflictRecord(path, FileRecord(path, 10, 5.0), FileRecord(path, 20, 8.0), resolution)


class TestConflictJournal:
    """Tests for ConflictJournal class."""

    def test_creates_database(self, temp_dir):
        db_path = temp_dir / "nested" / "conflicts.db"
        journal = ConflictJournal(db_path)
        assert db_path.exists()
        journal.close()

    def test_log_and_previous(self, journal):
        journal.log("s1", "Documents", _record("a.txt", Resolution.OVERWRITE))
        assert journal.previous("s1", "Documents", "a.txt") is Resolution.OVERWRITE
        assert journal.count() == 1

    def test_previous_is_scoped(self, journal):
        journal.log("s1", "Documents", _record("a.txt", Resolution.SKIP))
        assert journal.previous("s2", "Documents", "a.txt") is None
        assert journal.previous("s1", "Pictures", "a.txt") is None
        assert journal.previous("s1", "Documents", "b.txt") is None

    def test_latest_decision_wins(self, journal):
        journal.log("s1", "Documents", _record("a.txt", Resolution.SKIP))
        journal.log("s1", "Documents", _record("a.txt", Resolution.OVERWRITE))
        assert journal.previous("s1", "Documents", "a.txt") is Resolution.OVERWRITE
        assert journal.previous_for_folder("s1", "Documents") == {"a.txt": Resolution.OVERWRITE}

    def test_pending_not_logged(self, journal):
        journal.log("s1", "Documents", _record("a.txt", Resolution.PENDING))
        assert journal.count() == 0

    def test_log_batch(self, journal):
        journal.log_batch("s1", "Documents", [
            _record("a.txt", Resolution.SKIP),
            _record("b.txt", Resolution.OVERWRITE),
            _record("c.txt", Resolution.PENDING),
        ])
        assert journal.previous_for_folder("s1", "Documents") == {
            "a.txt": Resolution.SKIP,
            "b.txt": Resolution.OVERWRITE,
        }

    def test_log_batch_rolls_back_on_error(self, journal):
        bad = _record("b.txt", Resolution.SKIP)
        bad.existing = None  # to_dict fails mid-batch
        with pytest.raises(AttributeError):
            journal.log_batch("s1", "Documents", [_record("a.txt", Resolution.SKIP), bad])
        assert journal.count() == 0

    def test_persists_across_connections(self, temp_dir):
        db_path = temp_dir / "conflicts.db"
        first = ConflictJournal(db_path)
        first.log("s1", "Documents", _record("a.txt", Resolution.SKIP))
        first.close()

        second = ConflictJournal(db_path)
        assert second.previous("s1", "Documents", "a.txt") is Resolution.SKIP
        second.close()

    def test_clear(self, temp_dir):
        db_path = temp_dir / "conflicts.db"
        journal = ConflictJournal(db_path)
        journal.log("s1", "Documents", _record("a.txt", Resolution.SKIP))
        journal.clear()
        assert not db_path.exists()

        fresh = ConflictJournal(db_path)
        assert fresh.count() == 0
        fresh.close()
