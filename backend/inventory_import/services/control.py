"""Pause and cancel signals shared between presenters and the row loop."""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Protocol

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

CONTROL_PREFIX = "jobs:control:"
CONTROL_TTL = timedelta(hours=24)


class ControlChannel(Protocol):
    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def cancel(self) -> None: ...

    def is_paused(self) -> bool: ...

    def is_cancelled(self) -> bool: ...

    def clear(self) -> None: ...


class LocalControlChannel:
    """In-process flags for a controller driven from other threads."""

    def __init__(self) -> None:
        self._paused = threading.Event()
        self._cancelled = threading.Event()

    def pause(self) -> None:
        self._paused.set()

    def resume(self) -> None:
        self._paused.clear()

    def cancel(self) -> None:
        self._cancelled.set()

    def is_paused(self) -> bool:
        return self._paused.is_set()

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def clear(self) -> None:
        self._paused.clear()
        self._cancelled.clear()


class RedisControlChannel:
    """Flags kept in a Redis hash so the API can steer a Celery worker.

    Read failures are logged and treated as "no signal"; the worker keeps
    importing rather than stalling on a Redis outage.
    """

    def __init__(self, job_id: str, client: Redis) -> None:
        self.job_id = job_id
        self._client = client
        self._key = f"{CONTROL_PREFIX}{job_id}"

    def pause(self) -> None:
        self._set("paused", "1")

    def resume(self) -> None:
        self._set("paused", "0")

    def cancel(self) -> None:
        self._set("cancelled", "1")

    def is_paused(self) -> bool:
        return self._get("paused") == "1"

    def is_cancelled(self) -> bool:
        return self._get("cancelled") == "1"

    def clear(self) -> None:
        self._client.delete(self._key)

    def _set(self, flag: str, value: str) -> None:
        self._client.hset(self._key, flag, value)
        self._client.expire(self._key, int(CONTROL_TTL.total_seconds()))

    def _get(self, flag: str) -> str | None:
        try:
            value = self._client.hget(self._key, flag)
        except RedisError as exc:
            logger.warning(f"Could not read {flag} flag for job {self.job_id}: {exc}")
            return None
        if isinstance(value, bytes):
            return value.decode()
        return value
