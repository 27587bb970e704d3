"""Folder units: which profile folders are transferred and where they land."""

from pathlib import Path
from typing import Iterable, Optional

from .models import FolderKind, FolderUnit

DEFAULT_FOLDERS = (
    "Desktop",
    "Documents",
    "Downloads",
    "Pictures",
    "Music",
    "Videos",
    "Favorites",
)

SYNCED_ROOT_PREFIX = "SyncedRoot_"


def synced_dest_name(name: str) -> str:
    """Destination folder name for a synced-root folder ('Documents' -> 'SyncedRoot_Documents')."""
    return f"{SYNCED_ROOT_PREFIX}{name}"


def backup_units(
    profile: Path,
    destination: Path,
    names: Iterable[str] = DEFAULT_FOLDERS,
    synced_root: Optional[Path] = None
) -> list[FolderUnit]:
    """
    Build the folder units for a backup, in configured order.

    Every name is backed up from the profile. When a synced root (e.g. a
    OneDrive folder) is given, the same names found under it are added as
    synced-root units stored under a namespaced destination folder.
    """
    units = [
        FolderUnit(name, Path(profile) / name, Path(destination) / name, FolderKind.STANDARD)
        for name in names
    ]
    if synced_root is not None:
        units += [
            FolderUnit(
                synced_dest_name(name),
                Path(synced_root) / name,
                Path(destination) / synced_dest_name(name),
                FolderKind.SYNCED_ROOT
            )
            for name in names
        ]
    return units


def restore_units(
    backup: Path,
    profile: Path,
    names: Iterable[str] = DEFAULT_FOLDERS,
    synced_root: Optional[Path] = None,
    origin: str = ""
) -> list[FolderUnit]:
    """
    Build the folder units for restoring one backup into a profile.

    Synced-root folders map back from their namespaced backup folder to
    their original location under the synced root. Without a synced root
    they are restored next to the standard folders in the profile.
    """
    names = list(names)
    units = [
        FolderUnit(name, Path(backup) / name, Path(profile) / name, FolderKind.STANDARD, origin)
        for name in names
    ]
    target_root = Path(synced_root) if synced_root is not None else Path(profile)
    for name in names:
        stored = synced_dest_name(name)
        units.append(FolderUnit(
            stored,
            Path(backup) / stored,
            target_root / name,
            FolderKind.SYNCED_ROOT,
            origin
        ))
    return units
