"""
Folder Backup - resumable backup and merge-restore of profile folders.

Features:
- Per-folder transfers driven by robocopy, rsync or an in-process copier
- Append-only progress ledger, so an interrupted run resumes where it stopped
- Merge of several backups into one profile with deterministic conflict handling
- Retries of transient copy failures, failed folders reported at the end
- Progress visualization
"""

__version__ = "1.0.0"
