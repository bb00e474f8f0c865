"""
Import controller - owns one ImportJob and drives its row loop.

One instance per import run. The row loop is the only writer of the job;
presenters read snapshots and send pause/resume/cancel through the control
channel, which the loop checks between rows and while paused.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Callable, Sequence

from inventory_import.core.config import get_settings
from inventory_import.core.exceptions import (
    InvalidJobStateError,
    MalformedInputError,
    StoreError,
)
from inventory_import.services.control import ControlChannel, LocalControlChannel
from inventory_import.services.csv_parser import parse_candidates
from inventory_import.services.import_models import (
    CANCELLED_MESSAGE,
    CandidateRecord,
    ImportErrorEntry,
    ImportJob,
    ImportStatus,
    ReconciliationMode,
)
from inventory_import.services.item_store import ItemStore
from inventory_import.services.progress_tracker import (
    ProgressListener,
    ProgressReporter,
    ProgressSnapshot,
    snapshot,
)
from inventory_import.services.reconciler import DecisionAction, reconcile

logger = logging.getLogger(__name__)


class ImportController:
    """State machine: idle -> preparing -> processing <-> paused -> completed | error."""

    def __init__(
        self,
        store: ItemStore,
        *,
        job_id: str | None = None,
        control: ControlChannel | None = None,
        reporter: ProgressReporter | None = None,
        poll_interval: float | None = None,
        error_preview_limit: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
        interrupts: tuple[type[BaseException], ...] = (),
    ):
        settings = get_settings()
        self.job_id = job_id or str(uuid.uuid4())
        self._store = store
        self._control = control or LocalControlChannel()
        self._reporter = reporter or ProgressReporter(self.job_id)
        self._poll_interval = (
            settings.pause_poll_interval if poll_interval is None else poll_interval
        )
        self._preview_limit = (
            settings.error_preview_limit if error_preview_limit is None else error_preview_limit
        )
        self._sleep = sleep
        # Raised through the row loop instead of becoming row errors
        self._interrupts = interrupts
        self._lock = threading.Lock()
        self._job = ImportJob()
        self._records: tuple[CandidateRecord, ...] = ()
        self._sequence = 0
        self._last_milestone = 0

    # ── Observation ───────────────────────────────────────────────────

    @property
    def status(self) -> ImportStatus:
        return self._reporter.latest.status

    @property
    def reporter(self) -> ProgressReporter:
        return self._reporter

    def snapshot(self) -> ProgressSnapshot:
        return self._reporter.latest

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        return self._reporter.subscribe(listener)

    def stream(self, timeout: float | None = None):
        return self._reporter.stream(timeout=timeout)

    def errors(self) -> list[ImportErrorEntry]:
        with self._lock:
            return list(self._job.errors)

    # ── Control surface ───────────────────────────────────────────────

    def pause(self) -> bool:
        """Ask the loop to pause before its next row. False if the job is finished."""
        if self.status.is_terminal:
            return False
        self._control.pause()
        return True

    def resume(self) -> bool:
        if self.status.is_terminal:
            return False
        self._control.resume()
        return True

    def cancel(self) -> bool:
        """Request cooperative cancellation; rows already written stay written.

        True means the request was delivered, not that the job will end
        cancelled: a request that lands during the last row's store call
        finds no row left to skip, so the job completes.
        """
        if self.status.is_terminal:
            return False
        self._control.cancel()
        return True

    def reset(self) -> None:
        """Discard a finished (or never started) job and return to idle."""
        with self._lock:
            if self._job.status.is_running:
                raise InvalidJobStateError(
                    f"Cannot reset job {self.job_id} while it is {self._job.status.value}"
                )
            self._job = ImportJob()
            self._records = ()
            self._last_milestone = 0
            self._control.clear()
            snap = self._next_snapshot()
        self._reporter.publish(snap)

    # ── Lifecycle ─────────────────────────────────────────────────────

    def prepare(self, records: Sequence[CandidateRecord], mode: ReconciliationMode) -> ProgressSnapshot:
        """Idle -> preparing. Fixes the record list, mode and total."""
        mode = ReconciliationMode(mode)
        with self._lock:
            if self._job.status is not ImportStatus.IDLE:
                raise InvalidJobStateError(
                    f"Job {self.job_id} must be idle to start, not {self._job.status.value}"
                )
            if not records:
                raise MalformedInputError("No data rows to import")
            self._records = tuple(records)
            self._job.mode = mode
            self._job.total = len(self._records)
            self._job.status = ImportStatus.PREPARING
            snap = self._next_snapshot()
        self._reporter.publish(snap)

        logger.info(
            f"Prepared import job {self.job_id}: {snap.total} rows, mode={mode.value}"
        )
        return snap

    def prepare_csv(self, raw: str | bytes, mode: ReconciliationMode) -> ProgressSnapshot:
        """Parse CSV text and prepare; malformed input leaves the job idle."""
        if self.status is not ImportStatus.IDLE:
            raise InvalidJobStateError(
                f"Job {self.job_id} must be idle to start, not {self.status.value}"
            )
        return self.prepare(parse_candidates(raw), mode)

    def start(self, records: Sequence[CandidateRecord], mode: ReconciliationMode) -> ProgressSnapshot:
        """Prepare and run to completion on the calling thread."""
        self.prepare(records, mode)
        return self.run()

    def start_csv(self, raw: str | bytes, mode: ReconciliationMode) -> ProgressSnapshot:
        self.prepare_csv(raw, mode)
        return self.run()

    def run(self) -> ProgressSnapshot:
        """Preparing -> processing -> completed | error. Returns the final snapshot.

        An interrupt raised during a row ends the job in error and propagates.
        """
        with self._lock:
            if self._job.status is not ImportStatus.PREPARING:
                raise InvalidJobStateError(
                    f"Job {self.job_id} must be prepared before running, not {self._job.status.value}"
                )
            self._job.status = ImportStatus.PROCESSING
            snap = self._next_snapshot()
            records = self._records
            mode = self._job.mode
        self._reporter.publish(snap)

        started = time.monotonic()
        try:
            for record in records:
                if self._control.is_cancelled():
                    return self._finish_cancelled()
                if self._control.is_paused() and not self._wait_while_paused():
                    return self._finish_cancelled()
                self._apply(record, mode)
        except BaseException as exc:
            self._finish_interrupted(exc)
            raise

        final = self._finish(ImportStatus.COMPLETED)
        logger.info(
            f"Import job {self.job_id} completed in {time.monotonic() - started:.1f}s: "
            f"{final.success_count} inserted, {final.updated_count} updated, "
            f"{final.error_count} errors"
        )
        return final

    # ── Row handling ──────────────────────────────────────────────────

    def _apply(self, record: CandidateRecord, mode: ReconciliationMode) -> None:
        outcome, message = self._process(record, mode)

        with self._lock:
            if outcome is DecisionAction.INSERT:
                self._job.success_count += 1
            elif outcome is DecisionAction.UPDATE:
                self._job.updated_count += 1
            else:
                self._job.record_error(record.row_number, message)
            self._job.current += 1
            snap = self._next_snapshot()
        self._reporter.publish(snap)
        self._log_milestone(snap)

    def _process(
        self, record: CandidateRecord, mode: ReconciliationMode
    ) -> tuple[DecisionAction, str | None]:
        """Reconcile and apply one record. Store failures come back as errors."""
        if not record.is_valid:
            logger.debug(f"Job {self.job_id} row {record.row_number}: {record.error}")
            return DecisionAction.ERROR, record.error

        try:
            decision = reconcile(record, mode, self._store)
            if decision.action is DecisionAction.INSERT:
                self._store.create(dict(record.fields))
            elif decision.action is DecisionAction.UPDATE:
                self._store.update(decision.item_id, dict(record.fields))
            else:
                logger.debug(f"Job {self.job_id} row {record.row_number}: {decision.message}")
                return DecisionAction.ERROR, decision.message
        except self._interrupts:
            raise
        except Exception as exc:
            logger.warning(
                f"Job {self.job_id} row {record.row_number} failed: {exc}",
                exc_info=not isinstance(exc, StoreError),
            )
            return DecisionAction.ERROR, str(exc) or exc.__class__.__name__

        return decision.action, None

    def _wait_while_paused(self) -> bool:
        """Block while the pause flag is set. False if cancelled meanwhile."""
        with self._lock:
            self._job.status = ImportStatus.PAUSED
            snap = self._next_snapshot()
        self._reporter.publish(snap)
        logger.info(f"Import job {self.job_id} paused at row index {snap.current}")

        while self._control.is_paused():
            if self._control.is_cancelled():
                return False
            self._sleep(self._poll_interval)
        if self._control.is_cancelled():
            return False

        with self._lock:
            self._job.status = ImportStatus.PROCESSING
            snap = self._next_snapshot()
        self._reporter.publish(snap)
        logger.info(f"Import job {self.job_id} resumed")
        return True

    def _finish_cancelled(self) -> ProgressSnapshot:
        with self._lock:
            self._job.errors.append(ImportErrorEntry(row=0, message=CANCELLED_MESSAGE))
        final = self._finish(ImportStatus.ERROR, CANCELLED_MESSAGE)
        logger.info(
            f"Import job {self.job_id} cancelled after {final.current}/{final.total} rows"
        )
        return final

    def _finish_interrupted(self, exc: BaseException) -> None:
        final = self._finish(
            ImportStatus.ERROR, f"Import interrupted: {str(exc) or exc.__class__.__name__}"
        )
        logger.error(
            f"Import job {self.job_id} interrupted after {final.current}/{final.total} rows: "
            f"{exc!r}"
        )

    def _finish(self, status: ImportStatus, message: str | None = None) -> ProgressSnapshot:
        with self._lock:
            self._job.status = status
            if message is not None:
                self._job.message = message
            final = self._next_snapshot()
        self._reporter.publish(final)
        return final

    def _next_snapshot(self) -> ProgressSnapshot:
        """Caller holds the lock; publish the result after releasing it."""
        self._sequence += 1
        return snapshot(
            self._job,
            self.job_id,
            preview_limit=self._preview_limit,
            sequence=self._sequence,
        )

    def _log_milestone(self, snap: ProgressSnapshot) -> None:
        milestone = snap.percentage // 10 * 10
        if milestone > self._last_milestone:
            self._last_milestone = milestone
            logger.info(
                f"Import {self.job_id} reached {milestone}% ({snap.current:,}/{snap.total:,} rows)"
            )
