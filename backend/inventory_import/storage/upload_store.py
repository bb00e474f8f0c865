"""Stage uploaded CSV bytes in Redis so a worker in another process can read them."""

from __future__ import annotations

import logging

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

UPLOAD_PREFIX = "files:upload:"
UPLOAD_TTL = 86400  # seconds


def _key(job_id: str) -> str:
    return f"{UPLOAD_PREFIX}{job_id}"


def store_upload(client: Redis, job_id: str, content: bytes, *, ttl_seconds: int = UPLOAD_TTL) -> None:
    """Store file content for a job.

    Unlike progress publishing this raises: a job whose file never reached
    Redis cannot be processed by the worker.
    """
    client.set(_key(job_id), content, ex=ttl_seconds)
    logger.info(f"Stored upload in Redis for job {job_id} ({len(content)} bytes)")


def get_upload(client: Redis, job_id: str) -> bytes | None:
    content = client.get(_key(job_id))
    if content is None:
        return None
    if isinstance(content, str):
        content = content.encode("utf-8")
    logger.info(f"Retrieved upload from Redis for job {job_id} ({len(content)} bytes)")
    return content


def delete_upload(client: Redis, job_id: str) -> None:
    try:
        client.delete(_key(job_id))
    except RedisError as e:
        logger.warning(f"Failed to delete upload from Redis for job {job_id}: {e}")
