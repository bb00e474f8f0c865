"""Job registries that start imports and forward control intents.

`LocalJobRunner` keeps controllers in this process and runs each on a
background thread. `CeleryJobRunner` stages the upload in Redis and lets a
worker run it; status, errors and control flags travel through Redis.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Callable, Protocol

from redis import Redis

from inventory_import.core.exceptions import InvalidJobStateError, JobNotFoundError
from inventory_import.services.control import RedisControlChannel
from inventory_import.services.csv_parser import parse_candidates
from inventory_import.services.import_controller import ImportController
from inventory_import.services.import_models import (
    ImportErrorEntry,
    ImportStatus,
    ReconciliationMode,
)
from inventory_import.services.item_store import ItemStore
from inventory_import.services.progress_tracker import (
    ProgressSnapshot,
    delete_progress,
    fetch_errors,
    fetch_progress,
    list_progress_job_ids,
    publish_progress,
)
from inventory_import.storage.upload_store import delete_upload, store_upload

logger = logging.getLogger(__name__)


class JobRunner(Protocol):
    def submit(self, content: bytes, mode: ReconciliationMode) -> ProgressSnapshot: ...

    def get(self, job_id: str) -> ProgressSnapshot: ...

    def list(self) -> list[ProgressSnapshot]: ...

    def pause(self, job_id: str) -> ProgressSnapshot: ...

    def resume(self, job_id: str) -> ProgressSnapshot: ...

    def cancel(self, job_id: str) -> ProgressSnapshot: ...

    def errors(self, job_id: str) -> list[ImportErrorEntry]: ...

    def discard(self, job_id: str) -> None: ...


def _require_active(snap: ProgressSnapshot, action: str) -> None:
    if snap.is_terminal:
        raise InvalidJobStateError(
            f"Cannot {action} job {snap.job_id}: it is already {snap.status.value}",
            details={"job_id": snap.job_id, "status": snap.status.value},
        )


class LocalJobRunner:
    """Runs imports on daemon threads inside the API process."""

    def __init__(self, store_factory: Callable[[], ItemStore]) -> None:
        self._store_factory = store_factory
        self._controllers: dict[str, ImportController] = {}
        self._threads: dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    def submit(self, content: bytes, mode: ReconciliationMode) -> ProgressSnapshot:
        """Parse synchronously, then process on a background thread.

        MalformedInputError propagates before any job is registered.
        """
        controller = ImportController(self._store_factory())
        snap = controller.prepare_csv(content, mode)

        thread = threading.Thread(
            target=self._run,
            args=(controller,),
            name=f"import-{controller.job_id}",
            daemon=True,
        )
        with self._lock:
            self._controllers[controller.job_id] = controller
            self._threads[controller.job_id] = thread
        thread.start()
        return snap

    def get(self, job_id: str) -> ProgressSnapshot:
        return self._controller(job_id).snapshot()

    def list(self) -> list[ProgressSnapshot]:
        with self._lock:
            controllers = list(self._controllers.values())
        return [controller.snapshot() for controller in controllers]

    def pause(self, job_id: str) -> ProgressSnapshot:
        return self._signal(job_id, "pause")

    def resume(self, job_id: str) -> ProgressSnapshot:
        return self._signal(job_id, "resume")

    def cancel(self, job_id: str) -> ProgressSnapshot:
        return self._signal(job_id, "cancel")

    def errors(self, job_id: str) -> list[ImportErrorEntry]:
        return self._controller(job_id).errors()

    def discard(self, job_id: str) -> None:
        controller = self._controller(job_id)
        if controller.status.is_running:
            raise InvalidJobStateError(
                f"Job {job_id} is still {controller.status.value}; cancel it first",
                details={"job_id": job_id, "status": controller.status.value},
            )
        with self._lock:
            self._controllers.pop(job_id, None)
            self._threads.pop(job_id, None)
        logger.info(f"Discarded import job {job_id}")

    def wait(self, job_id: str, timeout: float | None = None) -> ProgressSnapshot:
        """Block until the job's thread finishes (or timeout) and return its snapshot."""
        with self._lock:
            thread = self._threads.get(job_id)
        if thread is not None:
            thread.join(timeout)
        return self.get(job_id)

    def _controller(self, job_id: str) -> ImportController:
        with self._lock:
            controller = self._controllers.get(job_id)
        if controller is None:
            raise JobNotFoundError(job_id)
        return controller

    def _signal(self, job_id: str, action: str) -> ProgressSnapshot:
        controller = self._controller(job_id)
        if not getattr(controller, action)():
            _require_active(controller.snapshot(), action)
        logger.info(f"{action.capitalize()} requested for import job {job_id}")
        return controller.snapshot()

    @staticmethod
    def _run(controller: ImportController) -> None:
        try:
            controller.run()
        except Exception:
            # Nothing above a daemon thread can handle this; keep it in the logs
            logger.exception(f"Import job {controller.job_id} crashed")


class CeleryJobRunner:
    """Hands imports to the Celery `imports` queue; state lives in Redis."""

    def __init__(self, client: Redis, *, ttl_seconds: int, task=None) -> None:
        self._client = client
        self._ttl_seconds = ttl_seconds
        self._task = task

    @property
    def task(self):
        if self._task is None:
            from inventory_import.workers.tasks.import_inventory import import_inventory_task

            self._task = import_inventory_task
        return self._task

    def submit(self, content: bytes, mode: ReconciliationMode) -> ProgressSnapshot:
        """Validate the CSV here so malformed uploads are rejected before queueing."""
        mode = ReconciliationMode(mode)
        records = parse_candidates(content)
        job_id = str(uuid.uuid4())

        store_upload(self._client, job_id, content, ttl_seconds=self._ttl_seconds)
        snap = ProgressSnapshot(
            job_id=job_id,
            status=ImportStatus.PREPARING,
            total=len(records),
            mode=mode.value,
            message="Queued",
        )
        publish_progress(self._client, snap, ttl_seconds=self._ttl_seconds)

        try:
            self.task.apply_async(args=(job_id, mode.value), queue="imports")
        except Exception:
            logger.error(f"Error enqueueing import job {job_id}", exc_info=True)
            delete_upload(self._client, job_id)
            delete_progress(self._client, job_id)
            raise

        logger.info(f"Queued import job {job_id} ({len(records)} rows, mode={mode.value})")
        return snap

    def get(self, job_id: str) -> ProgressSnapshot:
        snap = fetch_progress(self._client, job_id)
        if snap is None:
            raise JobNotFoundError(job_id)
        return snap

    def list(self) -> list[ProgressSnapshot]:
        snaps = []
        for job_id in list_progress_job_ids(self._client):
            snap = fetch_progress(self._client, job_id)
            if snap is not None:
                snaps.append(snap)
        return snaps

    def pause(self, job_id: str) -> ProgressSnapshot:
        return self._signal(job_id, "pause")

    def resume(self, job_id: str) -> ProgressSnapshot:
        return self._signal(job_id, "resume")

    def cancel(self, job_id: str) -> ProgressSnapshot:
        return self._signal(job_id, "cancel")

    def errors(self, job_id: str) -> list[ImportErrorEntry]:
        snap = self.get(job_id)
        errors = fetch_errors(self._client, job_id)
        if errors is None:
            # Full list is written when the worker finishes
            return list(snap.errors_preview)
        return errors

    def discard(self, job_id: str) -> None:
        snap = self.get(job_id)
        if snap.status.is_running:
            raise InvalidJobStateError(
                f"Job {job_id} is still {snap.status.value}; cancel it first",
                details={"job_id": job_id, "status": snap.status.value},
            )
        delete_progress(self._client, job_id)
        RedisControlChannel(job_id, self._client).clear()
        delete_upload(self._client, job_id)
        logger.info(f"Discarded import job {job_id}")

    def _signal(self, job_id: str, action: str) -> ProgressSnapshot:
        snap = self.get(job_id)
        _require_active(snap, action)
        getattr(RedisControlChannel(job_id, self._client), action)()
        logger.info(f"{action.capitalize()} requested for import job {job_id}")
        return snap
