"""Merge conflict detection and resolution."""

import os
import platform
import subprocess
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Mapping, Optional

from .models import ConflictPolicy, ConflictRecord, FileRecord, Resolution
from .reporter import format_size, format_timestamp

SameContent = Callable[[FileRecord, FileRecord], bool]


@dataclass(frozen=True)
class Decision:
    """One answer from the interactive prompt."""
    choice: Resolution
    apply_to_all: bool = False
    abort: bool = False


ABORT = Decision(Resolution.PENDING, abort=True)

Prompt = Callable[[ConflictRecord, int, int], Decision]

POLICY_CHOICES = {
    ConflictPolicy.SKIP: Resolution.SKIP,
    ConflictPolicy.OVERWRITE: Resolution.OVERWRITE,
    ConflictPolicy.IF_NEWER: Resolution.KEEP_NEWER,
}


def find_conflicts(
    destination_inventory: Mapping[str, FileRecord],
    incoming_inventory: Mapping[str, FileRecord],
    same_content: Optional[SameContent] = None
) -> list[ConflictRecord]:
    """
    List relative paths present on both sides, sorted lexicographically.

    When ``same_content`` is given, pairs it reports as identical do not
    disagree and are left out.
    """
    conflicts = []
    for path in sorted(destination_inventory.keys() & incoming_inventory.keys()):
        existing = destination_inventory[path]
        incoming = incoming_inventory[path]
        if same_content is not None and same_content(existing, incoming):
            continue
        conflicts.append(ConflictRecord(path, existing, incoming))
    return conflicts


def apply_choice(choice: Resolution, record: ConflictRecord) -> Resolution:
    """
    Turn a choice into the final resolution for one record.

    KEEP_NEWER overwrites only when the incoming file is strictly newer;
    ties keep the existing file.
    """
    if choice is Resolution.KEEP_NEWER:
        if record.incoming.modified_time > record.existing.modified_time:
            return Resolution.OVERWRITE
        return Resolution.SKIP
    return choice


def resolve(
    destination_inventory: Mapping[str, FileRecord],
    incoming_inventory: Mapping[str, FileRecord],
    policy: ConflictPolicy,
    prompt: Optional[Prompt] = None,
    same_content: Optional[SameContent] = None,
    previous: Optional[Mapping[str, Resolution]] = None
) -> list[ConflictRecord]:
    """
    Detect conflicts between two inventories and decide each one.

    Records come back in relative path order. With ASK, each conflict goes
    to ``prompt`` until the user picks an "all remaining" answer, which then
    decides every later conflict of this pass. An abort leaves the current
    and all later records PENDING. ``previous`` holds decisions already made
    in an interrupted run; those paths are not asked again.

    Nothing on disk is touched.
    """
    conflicts = find_conflicts(destination_inventory, incoming_inventory, same_content)

    if policy is not ConflictPolicy.ASK:
        choice = POLICY_CHOICES[policy]
        return [replace(c, resolution=apply_choice(choice, c)) for c in conflicts]

    if prompt is None:
        raise ValueError("Interactive conflict policy requires a prompt")

    previous = previous or {}
    resolved = []
    sticky: Optional[Resolution] = None
    aborted = False
    total = len(conflicts)
    for index, conflict in enumerate(conflicts, start=1):
        if aborted:
            resolved.append(replace(conflict))
            continue
        earlier = previous.get(conflict.relative_path)
        if earlier is not None and earlier is not Resolution.PENDING:
            resolved.append(replace(conflict, resolution=earlier))
            continue
        if sticky is not None:
            resolved.append(replace(conflict, resolution=apply_choice(sticky, conflict)))
            continue

        decision = prompt(conflict, index, total)
        if decision.abort:
            aborted = True
            resolved.append(replace(conflict))
            continue
        if decision.apply_to_all:
            sticky = decision.choice
        resolved.append(replace(conflict, resolution=apply_choice(decision.choice, conflict)))
    return resolved


def was_aborted(conflicts: list[ConflictRecord]) -> bool:
    """Check whether any conflict was left undecided."""
    return any(c.resolution is Resolution.PENDING for c in conflicts)


def open_file_in_viewer(file_path: str) -> None:
    """Open a file using the system default application."""
    system = platform.system()
    try:
        if system == "Windows":
            os.startfile(file_path)
        elif system == "Darwin":  # macOS
            subprocess.run(["open", file_path], check=True)
        else:  # Linux and others
            subprocess.run(["xdg-open", file_path], check=True)
    except (OSError, subprocess.CalledProcessError) as e:
        print(f"Could not open file: {e}")
        print(f"Please manually open: {file_path}")


MENU = {
    "1": Decision(Resolution.SKIP),
    "2": Decision(Resolution.OVERWRITE),
    "3": Decision(Resolution.KEEP_NEWER),
    "4": Decision(Resolution.SKIP, apply_to_all=True),
    "5": Decision(Resolution.OVERWRITE, apply_to_all=True),
    "6": Decision(Resolution.KEEP_NEWER, apply_to_all=True),
    "7": ABORT,
}


class ConsolePrompt:
    """Ask the user about each conflict on the console."""

    def __init__(self, existing_root: Optional[Path] = None, incoming_root: Optional[Path] = None):
        self.existing_root = existing_root
        self.incoming_root = incoming_root

    def __call__(self, record: ConflictRecord, index: int, total: int) -> Decision:
        print("\n" + "=" * 60)
        print(f"CONFLICT [{index}/{total}]: {record.relative_path}")
        print("=" * 60)

        for label, info in (("Existing", record.existing), ("Incoming", record.incoming)):
            print(f"\n{label} version:")
            print(f"  Modified: {format_timestamp(info.modified_time)}")
            print(f"  Size: {format_size(info.size)}")

        if record.existing.modified_time > record.incoming.modified_time:
            recent_label = "Existing"
        elif record.incoming.modified_time > record.existing.modified_time:
            recent_label = "Incoming"
        else:
            recent_label = "Same time"
        print(f"\nMore recent: {recent_label}")

        can_open = self.existing_root is not None and self.incoming_root is not None
        while True:
            print("\nOptions:")
            print("  1: Keep existing file")
            print("  2: Use incoming file")
            print("  3: Keep the more recent file")
            print("  4: Keep existing for this and all remaining conflicts")
            print("  5: Use incoming for this and all remaining conflicts")
            print("  6: Keep the more recent for this and all remaining conflicts")
            print("  7: Abort this folder")
            if can_open:
                print("  8: Open both files to inspect")

            choice = input("\nEnter your choice: ").strip()
            if choice in MENU:
                return MENU[choice]
            if choice == "8" and can_open:
                print("\nOpening both files...")
                open_file_in_viewer(str(self.existing_root / record.relative_path))
                open_file_in_viewer(str(self.incoming_root / record.relative_path))
                print("Files opened. Please inspect them.")
                continue
            print("Invalid choice.")
