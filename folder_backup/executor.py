"""Per-folder transfer execution with retries and ledger updates."""

import logging
import time
from pathlib import Path
from typing import Callable, Iterable, Optional

from .errors import DestinationUnwritable, FolderBackupError, TransientCopyFailure
from .ledger import FAILED, FINISH, START, Ledger
from .models import FolderOutcome, PlanStatus, ProgressMarker, Tier, TransferPlan
from .operators import CopyOperator, CopyRequest, CopyResult, classify_exit
from .scanner import scan_to_dict

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 3
DEFAULT_RETRY_WAIT = 5


class TransferExecutor:
    """
    Drives the copy operator for one planned folder at a time.

    Each pending folder goes Pending -> InProgress -> Success/Warning/Failed.
    A start marker is persisted before the operator runs and a finish (or
    failed) marker afterwards, carrying only the files that the destination
    re-scan confirms were copied with the expected size. A ledger that
    cannot be written ends the folder as FAILED.
    """

    def __init__(
        self,
        ledger: Ledger,
        operator: CopyOperator,
        retries: int = DEFAULT_RETRIES,
        retry_wait: int = DEFAULT_RETRY_WAIT,
        mirror: bool = False,
        exclude_extensions: Iterable[str] = (),
        log_path: Optional[Path] = None,
        on_progress: Optional[Callable[[ProgressMarker], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ledger = ledger
        self.operator = operator
        self.retries = retries
        self.retry_wait = retry_wait
        self.mirror = mirror
        self.exclude_extensions = tuple(exclude_extensions)
        self.log_path = log_path
        self.on_progress = on_progress
        self.sleep = sleep

    def execute(self, plan: TransferPlan, folder_index: int) -> FolderOutcome:
        """Transfer one folder and report its outcome tier."""
        folder = plan.folder
        key = folder.ledger_key
        skipped = len(plan.files_to_skip - plan.conflicts_skipped)
        conflicts_skipped = len(plan.conflicts_skipped)

        if plan.status is PlanStatus.SKIPPED_NOT_FOUND:
            logger.info("Source not found for %s: %s", folder.name, folder.source_path)
            return FolderOutcome(folder, Tier.SUCCESS,
                                 f"Skipped (source not found): {folder.source_path}",
                                 source_missing=True)

        if plan.status is PlanStatus.COMPLETE:
            try:
                self._persist(FINISH, key, folder_index)
            except DestinationUnwritable as e:
                logger.error("%s: %s", folder.name, e)
                return FolderOutcome(folder, Tier.FAILED, str(e), skipped=skipped,
                                     conflicts_skipped=conflicts_skipped)
            return FolderOutcome(folder, Tier.SUCCESS, "Nothing to transfer", skipped=skipped,
                                 conflicts_skipped=conflicts_skipped)

        try:
            self._persist(START, key, folder_index, planned=plan.files_to_copy)
        except DestinationUnwritable as e:
            logger.error("%s: %s", folder.name, e)
            return FolderOutcome(folder, Tier.FAILED, str(e), skipped=skipped,
                                 conflicts_skipped=conflicts_skipped)

        request = CopyRequest(
            source=folder.source_path,
            destination=folder.dest_path,
            mirror=self.mirror,
            exclude_extensions=self.exclude_extensions,
            exclude_paths=frozenset(plan.files_to_skip),
            retries=self.retries,
            retry_wait=self.retry_wait,
            log_path=self.log_path,
        )

        exit_code = None
        try:
            result = self._run_with_retries(request)
            exit_code = result.exit_code
            status = classify_exit(self.operator, exit_code).tier
            detail = result.detail or f"exit code {exit_code}"
        except FolderBackupError as e:
            exit_code = e.details.get("exit_code")
            status = Tier.FAILED
            detail = str(e)
            logger.error("%s: %s", folder.name, e)

        copied = self._confirm_copied(plan)
        try:
            self._persist(FAILED if status is Tier.FAILED else FINISH, key, folder_index)
        except DestinationUnwritable as e:
            logger.error("%s: %s", folder.name, e)
            status = Tier.FAILED
            detail = str(e)
        return FolderOutcome(folder, status, detail, copied=copied, skipped=skipped,
                             exit_code=exit_code, conflicts_skipped=conflicts_skipped)

    def _run_with_retries(self, request: CopyRequest) -> CopyResult:
        """
        Run the operator, re-running retryable warnings up to ``retries``
        times with a fixed delay.

        Raises DestinationUnwritable for hard failures and
        TransientCopyFailure when a retryable failure outlasts every retry;
        both end the folder as FAILED.
        """
        attempt = 0
        while True:
            try:
                result = self.operator.run(request)
            except OSError as e:
                raise DestinationUnwritable(
                    f"Copy operator {self.operator.name} could not run: {e}",
                    details={"destination": str(request.destination)},
                    cause=e
                ) from e

            exit_class = classify_exit(self.operator, result.exit_code)
            if exit_class.tier is Tier.FAILED:
                raise DestinationUnwritable(
                    f"Copy failed with exit code {result.exit_code}"
                    + (f": {result.detail}" if result.detail else ""),
                    details={"exit_code": result.exit_code, "destination": str(request.destination)}
                )
            if exit_class.tier is Tier.WARNING and exit_class.retryable:
                if attempt < self.retries:
                    attempt += 1
                    logger.warning(
                        "Transient copy failure (exit %d), retry %d/%d in %ss",
                        result.exit_code, attempt, self.retries, self.retry_wait
                    )
                    self.sleep(self.retry_wait)
                    continue
                raise TransientCopyFailure(
                    f"Transient failure persisted after {self.retries} retries "
                    f"(exit code {result.exit_code})",
                    details={"exit_code": result.exit_code, "destination": str(request.destination)}
                )
            return result

    def _confirm_copied(self, plan: TransferPlan) -> int:
        """Record the planned files now present at the destination with the right size."""
        present = scan_to_dict(plan.folder.dest_path)
        key = plan.folder.ledger_key
        confirmed = 0
        for rel in sorted(plan.files_to_copy):
            dest = present.get(rel)
            source = plan.records.get(rel)
            if dest is None or source is None or dest.size != source.size:
                continue
            self.ledger.record_completed(key, rel)
            confirmed += 1
        return confirmed

    def _persist(
        self,
        event: str,
        key: str,
        folder_index: int,
        planned: Optional[Iterable[str]] = None
    ) -> None:
        """
        Append a ledger marker and report it.

        Raises DestinationUnwritable when the ledger cannot be written, for
        example because the destination went away mid-session.
        """
        try:
            marker = self.ledger.persist(event, key, folder_index, planned=planned)
        except OSError as e:
            raise DestinationUnwritable(
                f"Cannot write ledger {self.ledger.log_path}: {e}",
                details={"path": str(self.ledger.log_path), "event": event},
                cause=e
            ) from e
        if self.on_progress is not None:
            self.on_progress(marker)
