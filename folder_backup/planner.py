"""Transfer planning: decide which files of a folder still need copying."""

from typing import Iterable, Mapping, Optional

from .ledger import Ledger
from .models import (
    ConflictRecord,
    FileRecord,
    FolderUnit,
    PlanStatus,
    Resolution,
    TransferPlan,
)


def _needs_recopy(source: FileRecord, dest: Optional[FileRecord]) -> bool:
    """A completed file is stale when its destination copy is gone, resized or older."""
    if dest is None:
        return True
    return dest.size != source.size or source.modified_time > dest.modified_time


def plan(
    source: Optional[Iterable[FileRecord]],
    folder: FolderUnit,
    ledger: Ledger,
    destination: Optional[Mapping[str, FileRecord]] = None
) -> TransferPlan:
    """
    Split a folder's source inventory into files to copy and files to skip.

    Files whose relative path the ledger already holds as completed are
    skipped; everything else is copied. A ``source`` of None means the
    folder does not exist. When a ``destination`` inventory is supplied,
    completed files are also re-checked against their destination copy.
    """
    if source is None:
        return TransferPlan(folder=folder, status=PlanStatus.SKIPPED_NOT_FOUND)

    completed = ledger.completed(folder.ledger_key)
    result = TransferPlan(folder=folder)
    for record in source:
        result.records[record.relative_path] = record
        if record.relative_path in completed:
            if destination is not None and _needs_recopy(
                record, destination.get(record.relative_path)
            ):
                result.files_to_copy.add(record.relative_path)
            else:
                result.files_to_skip.add(record.relative_path)
        else:
            result.files_to_copy.add(record.relative_path)

    result.status = PlanStatus.PENDING if result.files_to_copy else PlanStatus.COMPLETE
    return result


def apply_resolutions(transfer_plan: TransferPlan, conflicts: Iterable[ConflictRecord]) -> TransferPlan:
    """
    Fold conflict resolutions into a plan.

    Overwrite keeps the file in files_to_copy; Skip (and Pending, which is
    what an aborted review leaves behind) moves it to files_to_skip and
    conflicts_skipped, so it is not counted as already done.
    """
    for conflict in conflicts:
        path = conflict.relative_path
        if conflict.resolution is Resolution.OVERWRITE:
            if path in transfer_plan.records:
                transfer_plan.files_to_skip.discard(path)
                transfer_plan.conflicts_skipped.discard(path)
                transfer_plan.files_to_copy.add(path)
        else:
            transfer_plan.files_to_copy.discard(path)
            transfer_plan.files_to_skip.add(path)
            transfer_plan.conflicts_skipped.add(path)

    if transfer_plan.status is not PlanStatus.SKIPPED_NOT_FOUND:
        transfer_plan.status = (
            PlanStatus.PENDING if transfer_plan.files_to_copy else PlanStatus.COMPLETE
        )
    return transfer_plan
