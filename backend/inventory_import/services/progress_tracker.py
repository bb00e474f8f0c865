"""Progress snapshots for import jobs, in-process and via Redis."""

from __future__ import annotations

import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from redis import Redis
from redis.exceptions import RedisError

from inventory_import.services.import_models import (
    ImportErrorEntry,
    ImportJob,
    ImportStatus,
)

logger = logging.getLogger(__name__)

PROGRESS_PREFIX = "jobs:progress:"
ERRORS_PREFIX = "jobs:errors:"


@dataclass(frozen=True)
class ProgressSnapshot:
    """Immutable point-in-time view of a job, safe to hand to any thread."""

    job_id: str
    status: ImportStatus
    current: int = 0
    total: int = 0
    percentage: int = 0
    success_count: int = 0
    updated_count: int = 0
    error_count: int = 0
    message: str | None = None
    mode: str | None = None
    errors_preview: tuple[ImportErrorEntry, ...] = field(default_factory=tuple)
    sequence: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "current": self.current,
            "total": self.total,
            "percentage": self.percentage,
            "success_count": self.success_count,
            "updated_count": self.updated_count,
            "error_count": self.error_count,
            "message": self.message,
            "mode": self.mode,
            "errors_preview": [entry.to_dict() for entry in self.errors_preview],
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ProgressSnapshot":
        return cls(
            job_id=payload["job_id"],
            status=ImportStatus(payload.get("status", ImportStatus.IDLE.value)),
            current=payload.get("current", 0),
            total=payload.get("total", 0),
            percentage=payload.get("percentage", 0),
            success_count=payload.get("success_count", 0),
            updated_count=payload.get("updated_count", 0),
            error_count=payload.get("error_count", 0),
            message=payload.get("message"),
            mode=payload.get("mode"),
            errors_preview=tuple(
                ImportErrorEntry(row=e["row"], message=e["message"])
                for e in payload.get("errors_preview") or []
            ),
            sequence=payload.get("sequence", 0),
        )


def percentage_of(current: int, total: int) -> int:
    """Whole-number percentage, rounding halves up."""
    if total <= 0:
        return 0
    return (current * 200 + total) // (2 * total)


def snapshot(
    job: ImportJob,
    job_id: str,
    *,
    preview_limit: int = 10,
    sequence: int = 0,
) -> ProgressSnapshot:
    """Pure read model of an ImportJob. Callers hold the job's lock."""
    return ProgressSnapshot(
        job_id=job_id,
        status=job.status,
        current=job.current,
        total=job.total,
        percentage=percentage_of(job.current, job.total),
        success_count=job.success_count,
        updated_count=job.updated_count,
        error_count=job.error_count,
        message=job.message,
        mode=job.mode.value if job.mode else None,
        errors_preview=tuple(job.errors[:preview_limit]),
        sequence=sequence,
    )


ProgressListener = Callable[[ProgressSnapshot], None]


class ProgressReporter:
    """Holds the latest snapshot of one job and fans it out to listeners.

    Publishing swaps a single reference, so `latest` never returns a
    half-updated view. A snapshot older than `latest` is dropped. Listeners
    run on the publishing thread and may call back into the controller.
    """

    def __init__(self, job_id: str, sinks: list[ProgressListener] | None = None) -> None:
        self.job_id = job_id
        self._latest = ProgressSnapshot(job_id=job_id, status=ImportStatus.IDLE)
        self._sinks = list(sinks or [])
        self._listeners: list[ProgressListener] = []
        self._listeners_lock = threading.Lock()

    @property
    def latest(self) -> ProgressSnapshot:
        return self._latest

    def publish(self, snap: ProgressSnapshot) -> None:
        with self._listeners_lock:
            if snap.sequence < self._latest.sequence:
                return
            self._latest = snap
            listeners = self._sinks + self._listeners
        for listener in listeners:
            try:
                listener(snap)
            except Exception:
                logger.exception(f"Progress listener failed for job {self.job_id}")

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a callback; returns a function that removes it."""
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def stream(self, timeout: float | None = None) -> Iterator[ProgressSnapshot]:
        """Yield snapshots in order until a terminal one has been yielded.

        Stops early if no new snapshot arrives within `timeout` seconds.
        """
        updates: queue.Queue[ProgressSnapshot] = queue.Queue()
        unsubscribe = self.subscribe(updates.put)
        try:
            last = self._latest
            yield last
            while not last.is_terminal:
                try:
                    snap = updates.get(timeout=timeout)
                except queue.Empty:
                    return
                if snap.sequence <= last.sequence:
                    continue
                last = snap
                yield snap
        finally:
            unsubscribe()


class RedisProgressSink:
    """Listener that persists snapshots so other processes can read them."""

    def __init__(self, client: Redis, ttl_seconds: int) -> None:
        self._client = client
        self._ttl_seconds = ttl_seconds

    def __call__(self, snap: ProgressSnapshot) -> None:
        publish_progress(self._client, snap, ttl_seconds=self._ttl_seconds)


def _key(job_id: str) -> str:
    return f"{PROGRESS_PREFIX}{job_id}"


def publish_progress(client: Redis, snap: ProgressSnapshot, *, ttl_seconds: int) -> None:
    """Persist a progress snapshot so the API can serve it."""
    try:
        client.set(_key(snap.job_id), json.dumps(snap.to_dict()), ex=ttl_seconds)
    except RedisError as exc:
        # Redis availability should not break ingestion.
        logger.warning(f"Failed to publish progress for job {snap.job_id}: {exc}")


def fetch_progress(client: Redis, job_id: str) -> ProgressSnapshot | None:
    """Return the latest persisted snapshot for a job, if any."""
    try:
        raw = client.get(_key(job_id))
    except RedisError as exc:
        logger.warning(f"Failed to fetch progress for job {job_id}: {exc}")
        return None
    if not raw:
        return None
    try:
        return ProgressSnapshot.from_dict(json.loads(raw))
    except (json.JSONDecodeError, KeyError, ValueError) as exc:
        logger.warning(f"Discarding unreadable progress payload for job {job_id}: {exc}")
        return None


def list_progress_job_ids(client: Redis) -> list[str]:
    try:
        keys = list(client.scan_iter(match=f"{PROGRESS_PREFIX}*"))
    except RedisError as exc:
        logger.warning(f"Failed to list progress keys: {exc}")
        return []
    ids = []
    for key in keys:
        if isinstance(key, bytes):
            key = key.decode()
        ids.append(key[len(PROGRESS_PREFIX):])
    return ids


def delete_progress(client: Redis, job_id: str) -> None:
    client.delete(_key(job_id), f"{ERRORS_PREFIX}{job_id}")


def publish_errors(
    client: Redis,
    job_id: str,
    errors: list[ImportErrorEntry],
    *,
    ttl_seconds: int,
) -> None:
    """Persist the full row-error list once a job has finished."""
    payload = json.dumps([entry.to_dict() for entry in errors])
    try:
        client.set(f"{ERRORS_PREFIX}{job_id}", payload, ex=ttl_seconds)
    except RedisError as exc:
        logger.warning(f"Failed to publish errors for job {job_id}: {exc}")


def fetch_errors(client: Redis, job_id: str) -> list[ImportErrorEntry] | None:
    try:
        raw = client.get(f"{ERRORS_PREFIX}{job_id}")
    except RedisError as exc:
        logger.warning(f"Failed to fetch errors for job {job_id}: {exc}")
        return None
    if not raw:
        return None
    return [ImportErrorEntry(row=e["row"], message=e["message"]) for e in json.loads(raw)]
